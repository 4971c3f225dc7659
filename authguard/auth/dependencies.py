from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from .security import CallerIdentity, resolve_identity
from ..core.errors import MFAUnauthorizedError
from ..services.audit_logging_service import RequestMeta

# Security scheme; missing credentials are reported by get_caller_identity
security = HTTPBearer(auto_error=False)


async def get_caller_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CallerIdentity:
    """Resolve the caller's user and tenant from the bearer token."""
    if credentials is None or not credentials.credentials:
        raise MFAUnauthorizedError("missing bearer credentials")

    identity = resolve_identity(credentials.credentials)
    if identity is None:
        raise MFAUnauthorizedError("bearer token invalid, expired, or missing sub/tenant_id claims")

    return identity


def get_request_meta(request: Request) -> RequestMeta:
    """Extract requester IP and user agent for audit entries."""
    return RequestMeta.from_request(request)
