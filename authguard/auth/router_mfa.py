"""MFA (Multi-Factor Authentication) router implementation."""
from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session
from typing import List

from .schemas_mfa import (
    MFAActionRequest, MFASetupRequest, MFASetupResponse, MFAStatusRequest, MFAStatusResponse,
    MFAVerifyRequest, MFAVerifyResponse, MFABackupVerifyRequest, MFABackupVerifyResponse,
    TrustedDeviceCheckRequest, TrustedDeviceCheckResponse, SecurityEventLog, ErrorResponse,
)
from .backup_codes import BackupCodeManager
from .mfa_service import MFAService
from .dependencies import get_caller_identity, get_request_meta
from .security import CallerIdentity
from ..core.errors import MFAForbiddenError, MFAInvalidCodeError
from ..database import get_db
from ..services.audit_logging_service import AuditLogger, RequestMeta
from ..services.trusted_device_service import DeviceInfo, TrustedDeviceService

router = APIRouter(
    prefix="/auth/mfa",
    tags=["mfa"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)


async def _setup(body: MFASetupRequest, identity: CallerIdentity, meta: RequestMeta, db: Session) -> MFASetupResponse:
    result = await MFAService(db).begin_setup(identity, body.user_id, meta)
    return MFASetupResponse(qr_payload=result.qr_payload, secret=result.secret)


async def _status(body: MFAStatusRequest, identity: CallerIdentity, meta: RequestMeta, db: Session) -> MFAStatusResponse:
    mfa_status = await MFAService(db).get_mfa_status(identity, body.user_id)
    return MFAStatusResponse(
        mfa_required=mfa_status.mfa_required,
        mfa_type=mfa_status.mfa_type,
        has_backup_codes=mfa_status.has_backup_codes,
        state=mfa_status.state,
        security_record_enabled=mfa_status.security_record_enabled,
        device_factor_enabled=mfa_status.device_factor_enabled,
    )


async def _verify(body: MFAVerifyRequest, identity: CallerIdentity, meta: RequestMeta, db: Session) -> MFAVerifyResponse:
    device_info = None
    if body.device_info is not None:
        device_info = DeviceInfo(
            device_id=body.device_info.device_id,
            device_name=body.device_info.device_name,
            device_type=body.device_info.device_type,
            user_agent=body.device_info.user_agent,
        )

    result = await MFAService(db).verify_code(
        identity,
        body.user_id,
        body.code,
        trust_device=body.trust_device,
        device_info=device_info,
        request_meta=meta,
    )
    if not result.accepted:
        raise MFAInvalidCodeError("TOTP code rejected")

    return MFAVerifyResponse(verified=True, trusted_device=result.trusted_device, backup_codes=result.backup_codes)


async def _verify_backup(
    body: MFABackupVerifyRequest, identity: CallerIdentity, meta: RequestMeta, db: Session
) -> MFABackupVerifyResponse:
    result = await BackupCodeManager(db).consume(identity, body.user_id, body.code, meta)
    if not result.accepted:
        raise MFAInvalidCodeError("backup code rejected")

    return MFABackupVerifyResponse(verified=True, remaining_codes=result.remaining)


async def _check_trusted_device(
    body: TrustedDeviceCheckRequest, identity: CallerIdentity, meta: RequestMeta, db: Session
) -> TrustedDeviceCheckResponse:
    if body.user_id != identity.user_id:
        raise MFAForbiddenError(f"caller {identity.user_id} checked trusted device of {body.user_id}")

    result = TrustedDeviceService(db).check_trust(body.user_id, body.device_id)
    return TrustedDeviceCheckResponse(is_trusted=result.trusted, expires_at=result.expires_at)


_HANDLERS = {
    "setup": _setup,
    "status": _status,
    "verify": _verify,
    "verify_backup": _verify_backup,
    "check_trusted_device": _check_trusted_device,
}


@router.post("", response_model=None)
async def dispatch_mfa_action(
    body: MFAActionRequest = Body(...),
    identity: CallerIdentity = Depends(get_caller_identity),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
):
    """
    Single entry point for all MFA operations.

    The body is discriminated by its `action` field
    (`setup`, `status`, `verify`, `verify_backup`, `check_trusted_device`)
    and validated before any business logic runs.
    """
    return await _HANDLERS[body.action](body, identity, meta, db)


@router.post("/setup", response_model=MFASetupResponse, status_code=status.HTTP_200_OK)
async def setup_mfa(
    body: MFASetupRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
):
    """
    Begin TOTP setup for the current user.

    Generates a new secret and a QR code data URL for authenticator apps.
    The factor stays pending until a code is verified with `/verify`.
    Calling this again before verification replaces the pending secret.
    """
    return await _setup(body, identity, meta, db)


@router.post("/status", response_model=MFAStatusResponse)
async def get_mfa_status(
    body: MFAStatusRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
):
    """
    Get MFA status for the current user.

    `mfaRequired` is true if either the security record or a verified
    factor record says MFA is enabled; both signals are reported separately.
    """
    return await _status(body, identity, meta, db)


@router.post("/verify", response_model=MFAVerifyResponse)
async def verify_mfa_code(
    body: MFAVerifyRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
):
    """
    Verify a 6-digit TOTP code.

    The first successful verification after setup enables MFA and returns
    the backup codes once. With `trustDevice` and `deviceInfo.deviceId`
    the device is trusted for the configured period.
    """
    return await _verify(body, identity, meta, db)


@router.post("/verify-backup", response_model=MFABackupVerifyResponse)
async def verify_backup_code(
    body: MFABackupVerifyRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
):
    """Verify and consume a single-use backup code."""
    return await _verify_backup(body, identity, meta, db)


@router.post("/trusted-device", response_model=TrustedDeviceCheckResponse)
async def check_trusted_device(
    body: TrustedDeviceCheckRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db),
):
    """Check whether a device is currently exempt from MFA re-verification."""
    return await _check_trusted_device(body, identity, meta, db)


@router.get("/events", response_model=List[SecurityEventLog])
async def get_security_events(
    limit: int = 10,
    identity: CallerIdentity = Depends(get_caller_identity),
    db: Session = Depends(get_db),
):
    """
    Get recent security events for the current user.

    Useful for detecting suspicious activity. The limit is clamped to 1..50 by the audit logger.
    """
    return AuditLogger(db).recent_events(identity.tenant_id, identity.user_id, limit)
