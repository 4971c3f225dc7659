"""
Security audit logging for the MFA subsystem
Append-only event trail written through the account datastore
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime

from fastapi import Request
from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authguard.config.mfa_config import RECENT_EVENTS_LIMIT
from authguard.core.errors import AuditWriteError
from authguard.core.logging import get_logger
from authguard.models.base import utcnow
from authguard.models.security_log import SecurityEventType, SecurityLogEntry

logger = get_logger(__name__)


class AuditSeverity(str, Enum):
    """Audit event severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class RequestMeta:
    """Requester network metadata attached to every security event"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Optional[Request]) -> "RequestMeta":
        if request is None:
            return cls()
        return cls(ip_address=_get_client_ip(request), user_agent=request.headers.get("user-agent"))


def _get_client_ip(request: Request) -> Optional[str]:
    """Extract client IP from request."""
    # Check for forwarded headers first
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    return request.client.host if request.client else None


class AuditLogger:
    """
    Writes security events to the append-only ``security_logs`` table.

    ``record`` commits the session, so any pending state change made by the
    caller in the same session is persisted atomically with its audit entry.
    If the commit fails, everything is rolled back and ``AuditWriteError`` is
    raised: a security action that cannot be audited is never reported as
    successful.
    """

    severity_mapping = {
        SecurityEventType.MFA_LOGIN_FAILED: AuditSeverity.MEDIUM,
        SecurityEventType.MFA_BACKUP_CODE_FAILED: AuditSeverity.MEDIUM,
        SecurityEventType.MFA_BACKUP_CODE_USED: AuditSeverity.MEDIUM,
        SecurityEventType.MFA_DEVICE_TRUSTED: AuditSeverity.MEDIUM,
    }

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def record(
        self,
        event_type: SecurityEventType,
        user_id: str,
        tenant_id: Optional[str] = None,
        request_meta: Optional[RequestMeta] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> SecurityLogEntry:
        """
        Append a security event and commit it.

        Args:
            event_type: Type of security event
            user_id: Subject of the event
            tenant_id: Tenant the subject belongs to
            request_meta: Requester IP and user agent
            details: Free-form payload (never secrets or codes)

        Returns:
            The persisted log entry
        """
        request_meta = request_meta or RequestMeta()
        entry = SecurityLogEntry(
            tenant_id=tenant_id,
            user_id=user_id,
            event_type=event_type.value,
            created_at=self.clock(),
            ip_address=request_meta.ip_address,
            user_agent=request_meta.user_agent,
            details=details or {},
        )

        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(
                "Failed to write security event",
                extra={"event_type": event_type.value, "user_id": user_id, "tenant_id": tenant_id},
            )
            raise AuditWriteError(f"security event {event_type.value} not persisted: {e}") from e

        severity = self.severity_mapping.get(event_type, AuditSeverity.LOW)
        log = logger.warning if severity != AuditSeverity.LOW and "failed" in event_type.value else logger.info
        log(
            f"Security event logged: {event_type.value}",
            extra={"event_id": entry.id, "user_id": user_id, "tenant_id": tenant_id, "severity": severity.value},
        )
        return entry

    def recent_events(self, tenant_id: str, user_id: str, limit: int = 10) -> List[SecurityLogEntry]:
        """Get the most recent events for a user, newest first."""
        limit = max(1, min(limit, RECENT_EVENTS_LIMIT))
        return list(
            self.db.execute(
                select(SecurityLogEntry)
                .where(SecurityLogEntry.tenant_id == tenant_id, SecurityLogEntry.user_id == user_id)
                .order_by(desc(SecurityLogEntry.id))
                .limit(limit)
            ).scalars().all()
        )
