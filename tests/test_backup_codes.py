"""Tests for backup code generation and single-use consumption."""
import re

import pytest
from sqlalchemy import select

from authguard.auth.backup_codes import (
    BackupCodeManager,
    decode_backup_codes,
    encode_backup_codes,
    generate_backup_codes,
    normalize_code,
)
from authguard.core.errors import (
    MFAConflictError,
    MFAErrorKind,
    MFAForbiddenError,
    MFAInvalidInputError,
    MFANoBackupCodesError,
)
from authguard.models.mfa import UserSecurityRecord
from authguard.models.security_log import SecurityEventType, SecurityLogEntry


SEEDED_CODES = [
    "XYZ-123",
    "AB-CD-12",
    "AAAA-1111",
    "BBBB-2222",
    "CCCC-3333",
    "DDDD-4444",
    "EEEE-5555",
    "FFFF-6666",
]


def seed_codes(db, identity, codes=SEEDED_CODES):
    record = UserSecurityRecord(
        tenant_id=identity.tenant_id,
        user_id=identity.user_id,
        secret=None,
        enabled=True,
        backup_codes=encode_backup_codes(list(codes)),
        version=1,
    )
    db.add(record)
    db.commit()
    return record


def stored_codes(db, identity):
    db.expire_all()
    record = db.execute(
        select(UserSecurityRecord).where(
            UserSecurityRecord.tenant_id == identity.tenant_id,
            UserSecurityRecord.user_id == identity.user_id,
        )
    ).scalar_one()
    return decode_backup_codes(record.backup_codes)


def event_types(db):
    return [e.event_type for e in db.execute(select(SecurityLogEntry).order_by(SecurityLogEntry.id)).scalars()]


class TestBackupCodeHelpers:

    def test_generated_codes_format(self):
        codes = generate_backup_codes()
        assert len(codes) == 8
        for code in codes:
            assert re.fullmatch(r"[A-Z0-9]{4}-[A-Z0-9]{4}", code)

    def test_generated_codes_are_distinct(self):
        assert len(set(generate_backup_codes(20))) == 20

    @pytest.mark.parametrize("raw", ["ab-cd-12", "AB-CD-12", "abcd12", "AB CD 12", "ab_cd.12"])
    def test_normalization(self, raw):
        assert normalize_code(raw) == "ABCD12"

    def test_codes_encrypted_at_rest(self):
        stored = encode_backup_codes(["AAAA-1111"])
        assert "AAAA-1111" not in stored
        assert decode_backup_codes(stored) == ["AAAA-1111"]

    def test_empty_set_stored_as_null(self):
        assert encode_backup_codes([]) is None
        assert decode_backup_codes(None) == []


class TestBackupCodeManager:

    @pytest.fixture
    def manager(self, test_db, clock):
        return BackupCodeManager(test_db, clock=clock)

    @pytest.mark.asyncio
    async def test_consume_removes_code(self, manager, test_db, identity):
        """Scenario B: a code is accepted once, then rejected."""
        seed_codes(test_db, identity)

        first = await manager.consume(identity, identity.user_id, "XYZ-123")
        assert first.accepted is True
        assert first.remaining == 7
        assert len(stored_codes(test_db, identity)) == 7

        second = await manager.consume(identity, identity.user_id, "XYZ-123")
        assert second.accepted is False
        assert len(stored_codes(test_db, identity)) == 7

        assert event_types(test_db) == [
            SecurityEventType.MFA_BACKUP_CODE_USED.value,
            SecurityEventType.MFA_BACKUP_CODE_FAILED.value,
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("submitted", ["ab-cd-12", "AB-CD-12", "abcd12"])
    async def test_any_formatting_matches(self, manager, test_db, identity, submitted):
        seed_codes(test_db, identity)

        result = await manager.consume(identity, identity.user_id, submitted)

        assert result.accepted is True
        assert "AB-CD-12" not in stored_codes(test_db, identity)

    @pytest.mark.asyncio
    async def test_success_event_reports_remaining(self, manager, test_db, identity):
        seed_codes(test_db, identity)
        await manager.consume(identity, identity.user_id, "aaaa1111")

        entry = test_db.execute(select(SecurityLogEntry)).scalar_one()
        assert entry.details == {"remaining_codes": 7}
        assert entry.tenant_id == identity.tenant_id

    @pytest.mark.asyncio
    async def test_version_bumped_on_write(self, manager, test_db, identity):
        seed_codes(test_db, identity)
        await manager.consume(identity, identity.user_id, "XYZ-123")

        test_db.expire_all()
        record = test_db.execute(select(UserSecurityRecord)).scalar_one()
        assert record.version == 2

    @pytest.mark.asyncio
    async def test_last_code_leaves_empty_set(self, manager, test_db, identity):
        seed_codes(test_db, identity, codes=["XYZ-123"])

        result = await manager.consume(identity, identity.user_id, "XYZ-123")
        assert result.accepted is True
        assert result.remaining == 0

        with pytest.raises(MFANoBackupCodesError):
            await manager.consume(identity, identity.user_id, "XYZ-123")

    @pytest.mark.asyncio
    async def test_no_record_raises_no_backup_codes(self, manager, identity):
        with pytest.raises(MFANoBackupCodesError) as exc_info:
            await manager.consume(identity, identity.user_id, "XYZ-123")
        assert exc_info.value.kind == MFAErrorKind.NO_BACKUP_CODES

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["", "ABC12", "ABCD-1234-EFGH", "------", "......."])
    async def test_invalid_input(self, manager, test_db, identity, code):
        seed_codes(test_db, identity)

        with pytest.raises(MFAInvalidInputError):
            await manager.consume(identity, identity.user_id, code)

        assert event_types(test_db) == []
        assert len(stored_codes(test_db, identity)) == 8

    @pytest.mark.asyncio
    async def test_other_user_forbidden(self, manager, test_db, identity):
        seed_codes(test_db, identity)

        with pytest.raises(MFAForbiddenError):
            await manager.consume(identity, "someone-else", "XYZ-123")

    @pytest.mark.asyncio
    async def test_concurrent_consumers_only_one_wins(self, session_factory, clock, identity, monkeypatch):
        """Two sessions race for the same code; the loser re-reads and is rejected."""
        session_a = session_factory()
        session_b = session_factory()
        try:
            seed_codes(session_a, identity)
            manager_a = BackupCodeManager(session_a, clock=clock)
            manager_b = BackupCodeManager(session_b, clock=clock)

            original_load = manager_a._load_codes
            raced = []

            def load_then_lose_race(tenant_id, user_id):
                snapshot = original_load(tenant_id, user_id)
                if not raced:
                    raced.append(True)
                    # B consumes the same code between A's read and A's write
                    assert manager_b._remove_code(tenant_id, user_id, "XYZ123") == 7
                    session_b.commit()
                return snapshot

            monkeypatch.setattr(manager_a, "_load_codes", load_then_lose_race)

            result_a = await manager_a.consume(identity, identity.user_id, "XYZ-123")

            assert result_a.accepted is False
            codes = stored_codes(session_a, identity)
            assert len(codes) == 7
            assert "XYZ-123" not in codes
        finally:
            session_a.close()
            session_b.close()

    @pytest.mark.asyncio
    async def test_conflict_after_retries_exhausted(self, test_db, clock, identity, monkeypatch):
        seed_codes(test_db, identity)
        manager = BackupCodeManager(test_db, clock=clock, max_retries=2)
        attempts = []

        def always_conflict(record_id, expected_version, codes):
            attempts.append(expected_version)
            return False

        monkeypatch.setattr(manager, "_write_codes", always_conflict)

        with pytest.raises(MFAConflictError) as exc_info:
            await manager.consume(identity, identity.user_id, "XYZ-123")

        assert len(attempts) == 3
        assert exc_info.value.status_code == 401
        assert exc_info.value.public_message == "Invalid verification code"
        assert exc_info.value.retryable is False
