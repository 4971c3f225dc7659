"""MFA (Multi-Factor Authentication) database models."""
from sqlalchemy import Column, String, DateTime, Boolean, Text, Integer, UniqueConstraint
from sqlalchemy.sql import func
from .base import Base
import uuid


class UserSecurityRecord(Base):
    """Per-tenant TOTP secret and backup codes for a user."""
    __tablename__ = "user_security_records"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    secret = Column(String, nullable=True)        # Encrypted TOTP secret
    enabled = Column(Boolean, nullable=False, default=False)
    backup_codes = Column(Text, nullable=True)    # Encrypted backup codes (JSON)
    version = Column(Integer, nullable=False, default=1)  # Bumped on every secret, enablement or backup code write
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_user_security_records_tenant_user"),
    )

    def __repr__(self):
        return f"<UserSecurityRecord(id={self.id}, user_id={self.user_id}, enabled={self.enabled})>"

    @property
    def has_secret(self) -> bool:
        return bool(self.secret)


class MfaDeviceRecord(Base):
    """A registered authenticator factor."""
    __tablename__ = "mfa_devices"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    factor_type = Column(String, nullable=False, default="totp")
    name = Column(String, nullable=True)
    is_enabled = Column(Boolean, nullable=False, default=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    total_uses = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", "factor_type", name="uq_mfa_devices_tenant_user_factor"),
    )

    def __repr__(self):
        return f"<MfaDeviceRecord(id={self.id}, user_id={self.user_id}, type={self.factor_type}, enabled={self.is_enabled})>"

    @property
    def counts_toward_mfa(self) -> bool:
        return bool(self.is_enabled and self.is_verified)
