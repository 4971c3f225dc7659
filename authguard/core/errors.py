"""Error kinds for the MFA subsystem.

Every failure the services raise carries an ``MFAErrorKind`` so callers can
tell retryable infrastructure failures (``UNAVAILABLE``) apart from terminal
ones (``INVALID_CODE``). The HTTP layer only ever exposes ``public_message``
and ``status_code``; the detail string stays in the server log.
"""
from enum import Enum
from typing import Optional

from fastapi import status


class MFAErrorKind(str, Enum):
    """Semantic error categories"""
    INVALID_INPUT = "invalid_input"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_CONFIGURED = "not_configured"
    INVALID_CODE = "invalid_code"
    NO_BACKUP_CODES = "no_backup_codes"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"
    INTERNAL = "internal"


class MFAError(Exception):
    """Base class for all MFA errors."""
    kind: MFAErrorKind = MFAErrorKind.INTERNAL
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = "An internal error occurred"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.public_message
        super().__init__(self.detail)

    @property
    def retryable(self) -> bool:
        return self.kind == MFAErrorKind.UNAVAILABLE


class MFAInvalidInputError(MFAError):
    kind = MFAErrorKind.INVALID_INPUT
    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Invalid request"


class MFAUnauthorizedError(MFAError):
    kind = MFAErrorKind.UNAUTHORIZED
    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Could not validate credentials"


class MFAForbiddenError(MFAError):
    kind = MFAErrorKind.FORBIDDEN
    status_code = status.HTTP_403_FORBIDDEN
    public_message = "You can only manage your own MFA settings"


class MFANotConfiguredError(MFAError):
    kind = MFAErrorKind.NOT_CONFIGURED
    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "MFA is not configured for this account"


class MFAInvalidCodeError(MFAError):
    kind = MFAErrorKind.INVALID_CODE
    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Invalid verification code"


class MFANoBackupCodesError(MFAError):
    kind = MFAErrorKind.NO_BACKUP_CODES
    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "No backup codes available"


class MFAConflictError(MFAError):
    # Reported to the caller exactly like an invalid code
    kind = MFAErrorKind.CONFLICT
    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = MFAInvalidCodeError.public_message


class MFAUnavailableError(MFAError):
    kind = MFAErrorKind.UNAVAILABLE
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    public_message = "Service temporarily unavailable, please retry"


class MFAInternalError(MFAError):
    kind = MFAErrorKind.INTERNAL


class AuditWriteError(MFAInternalError):
    """A security event could not be persisted; the operation must fail closed."""
