"""Trusted device bookkeeping."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from authguard.auth.fingerprint import fingerprint
from authguard.auth.security import CallerIdentity
from authguard.config.mfa_config import TRUSTED_DEVICE_DAYS
from authguard.core.logging import get_logger
from authguard.models.base import as_utc, insert_if_absent, utcnow
from authguard.models.security_log import SecurityEventType
from authguard.models.trusted_device import TrustedDeviceRecord
from authguard.services.audit_logging_service import AuditLogger, RequestMeta

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeviceInfo:
    device_id: str
    device_name: Optional[str] = None
    device_type: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class TrustCheckResult:
    trusted: bool
    expires_at: Optional[datetime] = None


class TrustedDeviceService:
    """Grants and checks time-bounded device trust.

    Expiry is evaluated lazily when a device is checked; expired rows are
    left in place and simply stop counting as trusted.
    """

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utcnow,
        trust_days: int = TRUSTED_DEVICE_DAYS,
    ):
        self.db = db
        self.clock = clock
        self.audit = audit or AuditLogger(db, clock=clock)
        self.trust_period = timedelta(days=trust_days)

    def _get_record(self, user_id: str, device_id: str) -> Optional[TrustedDeviceRecord]:
        return self.db.execute(
            select(TrustedDeviceRecord).where(
                TrustedDeviceRecord.user_id == user_id,
                TrustedDeviceRecord.device_id == device_id,
            )
        ).scalar_one_or_none()

    def grant_trust(
        self,
        identity: CallerIdentity,
        device_info: DeviceInfo,
        request_meta: Optional[RequestMeta] = None,
    ) -> TrustedDeviceRecord:
        """Upsert a trust record expiring exactly ``trust_days`` from now.

        A repeated grant for the same device overwrites the expiry; it does
        not extend it by another period on top of the old one.
        """
        request_meta = request_meta or RequestMeta()
        now = self.clock()
        user_agent = device_info.user_agent or request_meta.user_agent
        device_fingerprint = fingerprint(device_info.device_id, device_info.device_type, user_agent)

        record = self._get_record(identity.user_id, device_info.device_id)
        if record is None:
            insert_if_absent(
                self.db,
                TrustedDeviceRecord,
                {
                    "user_id": identity.user_id,
                    "device_id": device_info.device_id,
                    "fingerprint": device_fingerprint,
                    "is_trusted": False,
                    "trust_expires_at": now,
                },
                ["user_id", "device_id"],
            )
            record = self._get_record(identity.user_id, device_info.device_id)

        record.tenant_id = identity.tenant_id
        record.device_name = device_info.device_name
        record.device_type = device_info.device_type
        record.user_agent = user_agent
        record.ip_address = request_meta.ip_address
        record.fingerprint = device_fingerprint
        record.is_trusted = True
        record.trust_expires_at = now + self.trust_period
        record.last_seen_at = now

        self.audit.record(
            SecurityEventType.MFA_DEVICE_TRUSTED,
            user_id=identity.user_id,
            tenant_id=identity.tenant_id,
            request_meta=request_meta,
            details={
                "device_id": device_info.device_id,
                "device_name": device_info.device_name,
                "fingerprint": device_fingerprint,
                "trust_expires_at": record.trust_expires_at.isoformat(),
            },
        )
        logger.info("Device trusted", extra={"user_id": identity.user_id, "device_id": device_info.device_id})
        return record

    def check_trust(self, user_id: str, device_id: str) -> TrustCheckResult:
        """Report whether the device is currently trusted, refreshing last_seen_at if so."""
        record = self._get_record(user_id, device_id)
        if record is None:
            return TrustCheckResult(trusted=False)

        now = self.clock()
        expires_at = as_utc(record.trust_expires_at)
        if not record.is_trusted_at(now):
            return TrustCheckResult(trusted=False, expires_at=expires_at)

        record.last_seen_at = now
        self.db.commit()
        return TrustCheckResult(trusted=True, expires_at=expires_at)
