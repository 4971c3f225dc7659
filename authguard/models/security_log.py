"""Append-only security event log."""
from enum import Enum
from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from .base import Base, utcnow


class SecurityEventType(str, Enum):
    """Security event types written by the MFA subsystem"""
    MFA_SETUP_INITIATED = "mfa_setup_initiated"
    MFA_LOGIN_SUCCESS = "mfa_login_success"
    MFA_LOGIN_FAILED = "mfa_login_failed"
    MFA_BACKUP_CODE_USED = "mfa_backup_code_used"
    MFA_BACKUP_CODE_FAILED = "mfa_backup_code_failed"
    MFA_DEVICE_TRUSTED = "mfa_device_trusted"


class SecurityLogEntry(Base):
    """Immutable once written; insertion order is the primary key order."""
    __tablename__ = "security_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String, nullable=True)
    user_id = Column(String, nullable=False)
    event_type = Column(String(50), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String, nullable=True)
    details = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("idx_security_logs_user", "tenant_id", "user_id"),
        Index("idx_security_logs_type", "event_type"),
        Index("idx_security_logs_created", "created_at"),
    )

    def __repr__(self):
        return f"<SecurityLogEntry(id={self.id}, user_id={self.user_id}, type={self.event_type})>"
