from .base import Base
from .mfa import UserSecurityRecord, MfaDeviceRecord
from .trusted_device import TrustedDeviceRecord
from .security_log import SecurityLogEntry, SecurityEventType

__all__ = [
    "Base",
    "UserSecurityRecord",
    "MfaDeviceRecord",
    "TrustedDeviceRecord",
    "SecurityLogEntry",
    "SecurityEventType",
]
