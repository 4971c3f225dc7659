"""Tests for trusted device grants and checks."""
from datetime import timedelta

import pytest
from sqlalchemy import select

from authguard.auth.fingerprint import fingerprint
from authguard.models.base import as_utc
from authguard.models.security_log import SecurityEventType, SecurityLogEntry
from authguard.models.trusted_device import TrustedDeviceRecord
from authguard.services.audit_logging_service import RequestMeta
from authguard.services.trusted_device_service import DeviceInfo, TrustedDeviceService


@pytest.fixture
def service(test_db, clock):
    return TrustedDeviceService(test_db, clock=clock)


@pytest.fixture
def laptop():
    return DeviceInfo(device_id="D1", device_name="Work laptop", device_type="desktop", user_agent="Mozilla/5.0")


def _record(db, device_id="D1"):
    db.expire_all()
    return db.execute(select(TrustedDeviceRecord).where(TrustedDeviceRecord.device_id == device_id)).scalar_one()


class TestGrantTrust:

    def test_grant_sets_expiry_exactly_one_period_out(self, service, test_db, clock, identity, laptop):
        service.grant_trust(identity, laptop)

        record = _record(test_db)
        assert record.is_trusted is True
        assert as_utc(record.trust_expires_at) == clock.now + timedelta(days=90)
        assert as_utc(record.last_seen_at) == clock.now
        assert record.tenant_id == identity.tenant_id

    def test_grant_stores_fingerprint_and_audits(self, service, test_db, identity, laptop):
        service.grant_trust(identity, laptop, RequestMeta(ip_address="10.0.0.1", user_agent="curl/8"))

        record = _record(test_db)
        assert record.fingerprint == fingerprint("D1", "desktop", "Mozilla/5.0")
        assert record.ip_address == "10.0.0.1"

        entry = test_db.execute(select(SecurityLogEntry)).scalar_one()
        assert entry.event_type == SecurityEventType.MFA_DEVICE_TRUSTED.value
        assert entry.details["device_id"] == "D1"
        assert entry.details["fingerprint"] == record.fingerprint

    def test_request_user_agent_used_when_device_omits_it(self, service, test_db, identity):
        service.grant_trust(identity, DeviceInfo(device_id="D2"), RequestMeta(user_agent="curl/8"))

        record = _record(test_db, "D2")
        assert record.user_agent == "curl/8"
        assert record.fingerprint == fingerprint("D2", None, "curl/8")

    def test_repeated_grant_overwrites_expiry(self, service, test_db, clock, identity, laptop):
        service.grant_trust(identity, laptop)
        clock.advance(days=30)
        service.grant_trust(identity, laptop)

        records = test_db.execute(select(TrustedDeviceRecord)).scalars().all()
        assert len(records) == 1
        assert as_utc(records[0].trust_expires_at) == clock.now + timedelta(days=90)

    def test_simultaneous_first_grants_keep_one_record(self, session_factory, clock, identity, laptop, monkeypatch):
        session_a, session_b = session_factory(), session_factory()
        try:
            service_a = TrustedDeviceService(session_a, clock=clock)
            TrustedDeviceService(session_b, clock=clock).grant_trust(identity, laptop)
            clock.advance(minutes=5)

            original_get_record = service_a._get_record
            reads = []

            def read_before_other_insert(user_id, device_id):
                reads.append(device_id)
                return None if len(reads) == 1 else original_get_record(user_id, device_id)

            monkeypatch.setattr(service_a, "_get_record", read_before_other_insert)

            service_a.grant_trust(identity, laptop)

            records = session_a.execute(select(TrustedDeviceRecord)).scalars().all()
            assert len(records) == 1
            assert as_utc(records[0].trust_expires_at) == clock.now + timedelta(days=90)
            assert records[0].is_trusted is True
        finally:
            session_a.close()
            session_b.close()

    def test_custom_trust_period(self, test_db, clock, identity, laptop):
        TrustedDeviceService(test_db, clock=clock, trust_days=7).grant_trust(identity, laptop)

        assert as_utc(_record(test_db).trust_expires_at) == clock.now + timedelta(days=7)


class TestCheckTrust:

    def test_unknown_device_not_trusted(self, service, identity):
        result = service.check_trust(identity.user_id, "never-seen")
        assert result.trusted is False
        assert result.expires_at is None

    def test_trusted_within_period_refreshes_last_seen(self, service, test_db, clock, identity, laptop):
        service.grant_trust(identity, laptop)
        clock.advance(days=10)

        result = service.check_trust(identity.user_id, "D1")

        assert result.trusted is True
        assert as_utc(_record(test_db).last_seen_at) == clock.now

    def test_expired_after_ninety_one_days(self, service, identity, laptop):
        """Scenario C: trust granted, checked 91 days later."""
        service.grant_trust(identity, laptop)
        service.clock.advance(days=91)

        result = service.check_trust(identity.user_id, "D1")

        assert result.trusted is False
        assert result.expires_at is not None

    def test_expiry_boundary(self, service, test_db, clock, identity, laptop):
        service.grant_trust(identity, laptop)
        expires_at = clock.now + timedelta(days=90)

        clock.now = expires_at - timedelta(seconds=1)
        assert service.check_trust(identity.user_id, "D1").trusted is True

        clock.now = expires_at
        assert service.check_trust(identity.user_id, "D1").trusted is False

        clock.now = expires_at + timedelta(seconds=1)
        assert service.check_trust(identity.user_id, "D1").trusted is False

    def test_expired_check_does_not_touch_last_seen(self, service, test_db, clock, identity, laptop):
        service.grant_trust(identity, laptop)
        granted_at = clock.now
        clock.advance(days=100)

        service.check_trust(identity.user_id, "D1")

        assert as_utc(_record(test_db).last_seen_at) == granted_at

    def test_trust_is_per_user(self, service, identity, laptop):
        service.grant_trust(identity, laptop)
        assert service.check_trust("someone-else", "D1").trusted is False
