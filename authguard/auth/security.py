from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from cryptography.fernet import Fernet, InvalidToken
import os
import base64
from dotenv import load_dotenv

load_dotenv()

# Bearer token verification (tokens are issued by the identity provider)
SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-secret-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

# Key for TOTP secrets and backup codes at rest; a random key means data does not survive a restart
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY") or Fernet.generate_key().decode()


def _build_fernet(key: str) -> Fernet:
    # Accept either a proper urlsafe base64 Fernet key or an arbitrary passphrase
    if len(key) == 44:
        return Fernet(key.encode())
    return Fernet(base64.urlsafe_b64encode(key.encode()[:32].ljust(32, b"\0")))


fernet = _build_fernet(ENCRYPTION_KEY)


@dataclass(frozen=True)
class CallerIdentity:
    """Identity resolved from the caller's bearer credential."""
    user_id: str
    tenant_id: str
    email: Optional[str] = None

    @property
    def label(self) -> str:
        return self.email or self.user_id


def create_access_token(
    user_id: str,
    tenant_id: str,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Issue a bearer token carrying the sub, tenant_id and email claims."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": user_id, "tenant_id": tenant_id, "exp": expire}
    if email:
        claims["email"] = email
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Return the token's claims, or None if the signature or expiry check fails."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


def resolve_identity(token: str) -> Optional[CallerIdentity]:
    """Turn a bearer token into a caller identity; None if the token is unusable."""
    payload = decode_access_token(token)
    if not payload:
        return None

    user_id = payload.get("sub")
    tenant_id = payload.get("tenant_id")
    if not user_id or not tenant_id:
        return None

    return CallerIdentity(user_id=str(user_id), tenant_id=str(tenant_id), email=payload.get("email"))


def encrypt_sensitive_data(data: str) -> str:
    """Encrypt sensitive data using Fernet encryption."""
    if not data:
        return data
    return fernet.encrypt(data.encode()).decode()


def decrypt_sensitive_data(encrypted_data: str) -> str:
    """Decrypt sensitive data using Fernet encryption.

    Raises ``InvalidToken`` when the ciphertext was not produced with the
    current key; callers decide how to surface that.
    """
    if not encrypted_data:
        return encrypted_data
    return fernet.decrypt(encrypted_data.encode()).decode()


__all__ = [
    "CallerIdentity",
    "InvalidToken",
    "create_access_token",
    "decode_access_token",
    "resolve_identity",
    "encrypt_sensitive_data",
    "decrypt_sensitive_data",
]
