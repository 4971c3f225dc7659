from .security import CallerIdentity, create_access_token, decode_access_token, resolve_identity
from .fingerprint import fingerprint

__all__ = [
    "CallerIdentity",
    "create_access_token",
    "decode_access_token",
    "resolve_identity",
    "fingerprint",
]
