"""Backup (recovery) code generation and single-use consumption."""
import hmac
import json
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..config.mfa_config import (
    BACKUP_CODES_COUNT,
    BACKUP_CODE_SEGMENT_LENGTH,
    BACKUP_CODE_MIN_LENGTH,
    BACKUP_CODE_MAX_LENGTH,
    BACKUP_CODE_MAX_RETRIES,
)
from ..core.errors import (
    MFAConflictError,
    MFAForbiddenError,
    MFAInternalError,
    MFAInvalidInputError,
    MFANoBackupCodesError,
)
from ..core.logging import get_logger
from ..models.base import utcnow
from ..models.mfa import UserSecurityRecord
from ..models.security_log import SecurityEventType
from ..services.audit_logging_service import AuditLogger, RequestMeta
from .security import CallerIdentity, InvalidToken, encrypt_sensitive_data, decrypt_sensitive_data

logger = get_logger(__name__)

_NON_ALNUM = re.compile(r"[^A-Z0-9]")
_ALPHABET = string.ascii_uppercase + string.digits


def normalize_code(code: str) -> str:
    """Uppercase, then drop everything outside [A-Z0-9]."""
    return _NON_ALNUM.sub("", code.upper())


def generate_backup_codes(count: int = BACKUP_CODES_COUNT) -> List[str]:
    """Generate secure backup codes formatted as XXXX-XXXX."""
    codes = []
    for _ in range(count):
        segments = [
            "".join(secrets.choice(_ALPHABET) for _ in range(BACKUP_CODE_SEGMENT_LENGTH))
            for _ in range(2)
        ]
        codes.append("-".join(segments))
    return codes


def encode_backup_codes(codes: List[str]) -> Optional[str]:
    return encrypt_sensitive_data(json.dumps(codes)) if codes else None


def decode_backup_codes(stored: Optional[str]) -> List[str]:
    if not stored:
        return []
    try:
        return json.loads(decrypt_sensitive_data(stored))
    except (InvalidToken, json.JSONDecodeError) as e:
        raise MFAInternalError("stored backup codes could not be decoded") from e


def _find_match(submitted: str, stored_codes: List[str]) -> Optional[int]:
    # Compare against every stored code so timing does not depend on position
    match = None
    for index, stored in enumerate(stored_codes):
        if hmac.compare_digest(normalize_code(stored).encode(), submitted.encode()) and match is None:
            match = index
    return match


@dataclass(frozen=True)
class BackupCodeResult:
    accepted: bool
    remaining: Optional[int] = None


class BackupCodeManager:
    """Consumes backup codes with an optimistic-concurrency conditional write.

    The stored set is read together with the record's ``version``; the
    reduced set is written back only if ``version`` is unchanged. A lost race
    re-reads and retries, so two concurrent requests presenting the same code
    can never both succeed.
    """

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = BACKUP_CODE_MAX_RETRIES,
    ):
        self.db = db
        self.clock = clock
        self.audit = audit or AuditLogger(db, clock=clock)
        self.max_retries = max_retries

    async def consume(
        self,
        identity: CallerIdentity,
        user_id: str,
        code: str,
        request_meta: Optional[RequestMeta] = None,
    ) -> BackupCodeResult:
        """Verify and consume a backup code."""
        if user_id != identity.user_id:
            raise MFAForbiddenError(f"caller {identity.user_id} attempted to use backup codes of {user_id}")

        submitted = normalize_code(code or "")
        if not (BACKUP_CODE_MIN_LENGTH <= len(code or "") <= BACKUP_CODE_MAX_LENGTH) or not submitted:
            raise MFAInvalidInputError("backup code has invalid length or characters")

        remaining = self._remove_code(identity.tenant_id, user_id, submitted)

        if remaining is None:
            self.audit.record(
                SecurityEventType.MFA_BACKUP_CODE_FAILED,
                user_id=user_id,
                tenant_id=identity.tenant_id,
                request_meta=request_meta,
                details={"reason": "invalid_code"},
            )
            logger.warning("Backup code rejected", extra={"user_id": user_id, "tenant_id": identity.tenant_id})
            return BackupCodeResult(accepted=False)

        self.audit.record(
            SecurityEventType.MFA_BACKUP_CODE_USED,
            user_id=user_id,
            tenant_id=identity.tenant_id,
            request_meta=request_meta,
            details={"remaining_codes": remaining},
        )
        logger.info("Backup code consumed", extra={"user_id": user_id, "remaining_codes": remaining})
        return BackupCodeResult(accepted=True, remaining=remaining)

    def _load_codes(self, tenant_id: str, user_id: str) -> Optional[Tuple[str, int, List[str]]]:
        row = self.db.execute(
            select(UserSecurityRecord.id, UserSecurityRecord.version, UserSecurityRecord.backup_codes)
            .where(UserSecurityRecord.tenant_id == tenant_id, UserSecurityRecord.user_id == user_id)
        ).one_or_none()
        if row is None:
            return None
        return row.id, row.version, decode_backup_codes(row.backup_codes)

    def _write_codes(self, record_id: str, expected_version: int, codes: List[str]) -> bool:
        result = self.db.execute(
            update(UserSecurityRecord)
            .where(UserSecurityRecord.id == record_id, UserSecurityRecord.version == expected_version)
            .values(
                backup_codes=encode_backup_codes(codes),
                version=expected_version + 1,
                updated_at=self.clock(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _remove_code(self, tenant_id: str, user_id: str, submitted: str) -> Optional[int]:
        """Remove one matching code; returns the remaining count, or None if no code matched.

        The write is left uncommitted so the caller's audit entry commits with it.
        """
        for attempt in range(self.max_retries + 1):
            snapshot = self._load_codes(tenant_id, user_id)
            if snapshot is None or not snapshot[2]:
                if attempt == 0:
                    raise MFANoBackupCodesError(f"no backup codes stored for user {user_id}")
                # Another request consumed the last code between our read and write
                return None

            record_id, version, codes = snapshot
            index = _find_match(submitted, codes)
            if index is None:
                return None

            remaining_codes = codes[:index] + codes[index + 1:]
            if self._write_codes(record_id, version, remaining_codes):
                return len(remaining_codes)

            logger.warning(
                "Backup code write conflict, retrying",
                extra={"user_id": user_id, "attempt": attempt + 1},
            )

        raise MFAConflictError(f"backup code removal for user {user_id} lost {self.max_retries + 1} races")
