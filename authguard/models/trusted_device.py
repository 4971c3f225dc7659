"""Trusted device database model."""
from sqlalchemy import Column, String, DateTime, Boolean, Text, Index, UniqueConstraint
from sqlalchemy.sql import func
from .base import Base, as_utc
from datetime import datetime
import uuid


class TrustedDeviceRecord(Base):
    """A device exempted from MFA re-verification until trust_expires_at."""
    __tablename__ = "trusted_devices"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String, nullable=True, index=True)
    user_id = Column(String, nullable=False)
    device_id = Column(String, nullable=False)

    # Device and network information
    device_name = Column(String, nullable=True)
    device_type = Column(String(20), nullable=True)
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible
    fingerprint = Column(String(64), nullable=False)  # SHA256 hex, audit only

    # Trust state
    is_trusted = Column(Boolean, nullable=False, default=False)
    trust_expires_at = Column(DateTime(timezone=True), nullable=False)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "device_id", name="uq_trusted_devices_user_device"),
        Index("idx_trusted_devices_expires", "trust_expires_at"),
    )

    def __repr__(self):
        return f"<TrustedDeviceRecord(user_id={self.user_id}, device_id={self.device_id}, trusted={self.is_trusted})>"

    def is_trusted_at(self, now: datetime) -> bool:
        return bool(self.is_trusted) and now < as_utc(self.trust_expires_at)
