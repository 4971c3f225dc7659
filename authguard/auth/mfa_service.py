"""MFA (Multi-Factor Authentication) service implementation."""
import base64
import hashlib
import hmac
import io
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import pyotp
import qrcode
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..config.mfa_config import (
    FACTOR_TYPE_TOTP,
    TOTP_DIGITS,
    TOTP_DRIFT_STEPS,
    TOTP_INTERVAL_SECONDS,
    TOTP_ISSUER,
)
from ..core.errors import (
    MFAForbiddenError,
    MFAInternalError,
    MFAInvalidInputError,
    MFANotConfiguredError,
)
from ..core.logging import get_logger
from ..models.base import insert_if_absent, utcnow
from ..models.mfa import MfaDeviceRecord, UserSecurityRecord
from ..models.security_log import SecurityEventType
from ..services.audit_logging_service import AuditLogger, RequestMeta
from ..services.trusted_device_service import DeviceInfo, TrustedDeviceService
from .backup_codes import decode_backup_codes, encode_backup_codes, generate_backup_codes
from .security import CallerIdentity, InvalidToken, decrypt_sensitive_data, encrypt_sensitive_data

logger = get_logger(__name__)

_TOTP_CODE = re.compile(r"^[0-9]{6}$")


class MFAState:
    NOT_CONFIGURED = "not_configured"
    PENDING_VERIFICATION = "pending_verification"
    ENABLED = "enabled"


@dataclass(frozen=True)
class SetupResult:
    qr_payload: str
    secret: str
    provisioning_uri: str


@dataclass(frozen=True)
class VerificationResult:
    accepted: bool
    enabled_now: bool = False
    backup_codes: Optional[List[str]] = None
    trusted_device: bool = False


@dataclass(frozen=True)
class MFAStatus:
    state: str
    mfa_required: bool
    mfa_type: Optional[str]
    has_backup_codes: bool
    security_record_enabled: bool
    device_factor_enabled: bool


def build_totp(secret: str) -> pyotp.TOTP:
    """TOTP with the fixed SHA1 / 6 digit / 30 second parameters."""
    return pyotp.TOTP(secret, digits=TOTP_DIGITS, digest=hashlib.sha1, interval=TOTP_INTERVAL_SECONDS)


def build_provisioning_uri(secret: str, label: str, issuer: str = TOTP_ISSUER) -> str:
    """otpauth URI that always spells out algorithm, digits and period."""
    uri = build_totp(secret).provisioning_uri(name=label, issuer_name=issuer)
    parts = urlsplit(uri)
    params = dict(parse_qsl(parts.query))
    params.update({"algorithm": "SHA1", "digits": str(TOTP_DIGITS), "period": str(TOTP_INTERVAL_SECONDS)})
    return urlunsplit(parts._replace(query=urlencode(params)))


def render_qr_payload(provisioning_uri: str) -> str:
    """Render the URI as a scannable PNG data URL."""
    qr = qrcode.QRCode(version=1, box_size=10, border=5)
    qr.add_data(provisioning_uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    img_buffer = io.BytesIO()
    img.save(img_buffer, format='PNG')
    return "data:image/png;base64," + base64.b64encode(img_buffer.getvalue()).decode()


def totp_window_matches(secret: str, code: str, for_time: datetime, drift_steps: int = TOTP_DRIFT_STEPS) -> bool:
    """Check ``code`` against every counter in [T - drift, T + drift].

    All candidates are computed and compared in constant time, so neither
    the result timing nor the return value says which window matched.
    """
    totp = build_totp(secret)
    matched = False
    for offset in range(-drift_steps, drift_steps + 1):
        candidate = totp.at(for_time, counter_offset=offset)
        matched |= hmac.compare_digest(candidate.encode(), code.encode())
    return matched


class MFAService:
    """Service for handling Multi-Factor Authentication operations."""

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        audit: Optional[AuditLogger] = None,
        trusted_devices: Optional[TrustedDeviceService] = None,
    ):
        self.db = db
        self.clock = clock
        self.audit = audit or AuditLogger(db, clock=clock)
        self.trusted_devices = trusted_devices or TrustedDeviceService(db, audit=self.audit, clock=clock)

    @staticmethod
    def _ensure_self(identity: CallerIdentity, user_id: str) -> None:
        if user_id != identity.user_id:
            raise MFAForbiddenError(f"caller {identity.user_id} acted on MFA record of {user_id}")

    def _get_record(self, tenant_id: str, user_id: str) -> Optional[UserSecurityRecord]:
        return self.db.execute(
            select(UserSecurityRecord).where(
                UserSecurityRecord.tenant_id == tenant_id,
                UserSecurityRecord.user_id == user_id,
            )
        ).scalar_one_or_none()

    def _get_device(self, tenant_id: str, user_id: str) -> Optional[MfaDeviceRecord]:
        return self.db.execute(
            select(MfaDeviceRecord).where(
                MfaDeviceRecord.tenant_id == tenant_id,
                MfaDeviceRecord.user_id == user_id,
                MfaDeviceRecord.factor_type == FACTOR_TYPE_TOTP,
            )
        ).scalar_one_or_none()

    def _ensure_device(self, tenant_id: str, user_id: str) -> MfaDeviceRecord:
        insert_if_absent(
            self.db,
            MfaDeviceRecord,
            {
                "tenant_id": tenant_id,
                "user_id": user_id,
                "factor_type": FACTOR_TYPE_TOTP,
                "name": "Authenticator app",
                "is_enabled": False,
                "is_verified": False,
                "total_uses": 0,
            },
            ["tenant_id", "user_id", "factor_type"],
        )
        return self._get_device(tenant_id, user_id)

    def _enable(self, record: UserSecurityRecord, now: datetime) -> Tuple[bool, Optional[List[str]]]:
        """Flip a pending record to enabled, issuing backup codes if it has none.

        The write is conditional on the version read with the record, so of
        two concurrent first verifications only one enables the factor and
        hands out codes. The loser gets ``(False, None)``.
        """
        issued_codes = None
        values = {"enabled": True, "version": record.version + 1, "updated_at": now}
        if not decode_backup_codes(record.backup_codes):
            issued_codes = generate_backup_codes()
            values["backup_codes"] = encode_backup_codes(issued_codes)

        result = self.db.execute(
            update(UserSecurityRecord)
            .where(
                UserSecurityRecord.id == record.id,
                UserSecurityRecord.version == record.version,
                UserSecurityRecord.enabled.is_(False),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("MFA already enabled by a concurrent verification", extra={"user_id": record.user_id})
            return False, None
        return True, issued_codes

    def _reject(
        self,
        identity: CallerIdentity,
        user_id: str,
        request_meta: Optional[RequestMeta],
        reason: str,
    ) -> VerificationResult:
        self.audit.record(
            SecurityEventType.MFA_LOGIN_FAILED,
            user_id=user_id,
            tenant_id=identity.tenant_id,
            request_meta=request_meta,
            details={"method": FACTOR_TYPE_TOTP, "reason": reason},
        )
        logger.warning(
            "TOTP verification failed",
            extra={"user_id": user_id, "tenant_id": identity.tenant_id, "reason": reason},
        )
        return VerificationResult(accepted=False)

    async def begin_setup(
        self,
        identity: CallerIdentity,
        user_id: str,
        request_meta: Optional[RequestMeta] = None,
    ) -> SetupResult:
        """Provision a pending TOTP secret and return it with a scannable QR payload."""
        self._ensure_self(identity, user_id)

        record = self._get_record(identity.tenant_id, user_id)
        if record and record.enabled:
            raise MFAInvalidInputError("MFA is already enabled for this user")

        secret = pyotp.random_base32()
        provisioning_uri = build_provisioning_uri(secret, identity.label)
        qr_payload = render_qr_payload(provisioning_uri)

        now = self.clock()
        if record is None:
            insert_if_absent(
                self.db,
                UserSecurityRecord,
                {"tenant_id": identity.tenant_id, "user_id": user_id, "enabled": False, "version": 1},
                ["tenant_id", "user_id"],
            )
            record = self._get_record(identity.tenant_id, user_id)

        # Last write wins: a second setup before verification replaces the pending secret.
        # The version bump invalidates any verification still holding the old secret.
        replaced = self.db.execute(
            update(UserSecurityRecord)
            .where(UserSecurityRecord.id == record.id, UserSecurityRecord.enabled.is_(False))
            .values(
                secret=encrypt_sensitive_data(secret),
                version=UserSecurityRecord.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if replaced.rowcount != 1:
            self.db.rollback()
            raise MFAInvalidInputError("MFA was enabled for this user while setup was in progress")

        self._ensure_device(identity.tenant_id, user_id)

        self.audit.record(
            SecurityEventType.MFA_SETUP_INITIATED,
            user_id=user_id,
            tenant_id=identity.tenant_id,
            request_meta=request_meta,
            details={"factor_type": FACTOR_TYPE_TOTP},
        )
        logger.info("MFA setup initiated", extra={"user_id": user_id, "tenant_id": identity.tenant_id})

        return SetupResult(qr_payload=qr_payload, secret=secret, provisioning_uri=provisioning_uri)

    async def verify_code(
        self,
        identity: CallerIdentity,
        user_id: str,
        code: str,
        trust_device: bool = False,
        device_info: Optional[DeviceInfo] = None,
        request_meta: Optional[RequestMeta] = None,
    ) -> VerificationResult:
        """Verify a TOTP code; the first success after setup enables the factor."""
        self._ensure_self(identity, user_id)

        if not isinstance(code, str) or not _TOTP_CODE.match(code):
            raise MFAInvalidInputError("TOTP code must be exactly 6 digits")

        record = self._get_record(identity.tenant_id, user_id)
        if record is None or not record.has_secret:
            raise MFANotConfiguredError(f"no TOTP secret provisioned for user {user_id}")

        try:
            secret = decrypt_sensitive_data(record.secret)
        except InvalidToken as e:
            raise MFAInternalError(f"TOTP secret for user {user_id} could not be decrypted") from e

        now = self.clock()
        if not totp_window_matches(secret, code, now):
            return self._reject(identity, user_id, request_meta, reason="invalid_code")

        enabled_now, issued_codes = False, None
        if not record.enabled:
            enabled_now, issued_codes = self._enable(record, now)
            if not enabled_now:
                checked_secret = record.secret
                self.db.refresh(record)
                if not record.enabled or record.secret != checked_secret:
                    # A new setup replaced the secret this code was checked against
                    return self._reject(identity, user_id, request_meta, reason="secret_replaced")

        device = self._get_device(identity.tenant_id, user_id) or self._ensure_device(identity.tenant_id, user_id)
        device.is_enabled = True
        device.is_verified = True
        device.last_used_at = now
        device.total_uses = (device.total_uses or 0) + 1

        self.audit.record(
            SecurityEventType.MFA_LOGIN_SUCCESS,
            user_id=user_id,
            tenant_id=identity.tenant_id,
            request_meta=request_meta,
            details={"method": FACTOR_TYPE_TOTP, "factor_confirmed": enabled_now},
        )
        logger.info("TOTP verification succeeded", extra={"user_id": user_id, "factor_confirmed": enabled_now})

        trusted = False
        if trust_device and device_info and device_info.device_id:
            self.trusted_devices.grant_trust(identity, device_info, request_meta)
            trusted = True

        return VerificationResult(
            accepted=True,
            enabled_now=enabled_now,
            backup_codes=issued_codes,
            trusted_device=trusted,
        )

    async def get_mfa_status(self, identity: CallerIdentity, user_id: str) -> MFAStatus:
        """Get MFA status for user, honouring both enablement signals."""
        self._ensure_self(identity, user_id)

        record = self._get_record(identity.tenant_id, user_id)
        device = self._get_device(identity.tenant_id, user_id)

        if record is None or not record.has_secret:
            state = MFAState.NOT_CONFIGURED
        elif record.enabled:
            state = MFAState.ENABLED
        else:
            state = MFAState.PENDING_VERIFICATION

        record_enabled = bool(record and record.enabled and record.has_secret)
        device_enabled = bool(device and device.counts_toward_mfa)
        if record_enabled != device_enabled:
            logger.warning(
                "MFA enablement signals disagree",
                extra={
                    "user_id": user_id,
                    "tenant_id": identity.tenant_id,
                    "security_record_enabled": record_enabled,
                    "device_factor_enabled": device_enabled,
                },
            )

        mfa_required = record_enabled or device_enabled
        has_backup_codes = bool(record and decode_backup_codes(record.backup_codes))

        return MFAStatus(
            state=state,
            mfa_required=mfa_required,
            mfa_type=FACTOR_TYPE_TOTP if mfa_required else None,
            has_backup_codes=has_backup_codes,
            security_record_enabled=record_enabled,
            device_factor_enabled=device_enabled,
        )
