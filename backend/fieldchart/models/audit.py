"""Audit event model - Append-only audit log with per-event checksums."""

import hashlib
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Index, String, Uuid, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, ORMExecuteState, Session, mapped_column

from fieldchart.core.exceptions import AuditLogImmutableError
from fieldchart.models.base import Base, utcnow

# Actions
ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_SUBMIT = "submit"
ACTION_STATUS_CHANGE = "status_change"
ACTION_LOCK = "lock"
ACTION_AMEND = "amend"
ACTION_ACCESS_DENIED = "access_denied"

# Categories
CATEGORY_DATA_MODIFICATION = "data_modification"
CATEGORY_AUTHORIZATION = "authorization"
CATEGORY_DATA_ACCESS = "data_access"
CATEGORY_SYSTEM = "system"

# Severities
SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"
SEVERITY_CRITICAL = "critical"

ACTION_CATEGORIES = {
    ACTION_CREATE: CATEGORY_DATA_MODIFICATION,
    ACTION_UPDATE: CATEGORY_DATA_MODIFICATION,
    ACTION_SUBMIT: CATEGORY_DATA_MODIFICATION,
    ACTION_STATUS_CHANGE: CATEGORY_DATA_MODIFICATION,
    ACTION_LOCK: CATEGORY_DATA_MODIFICATION,
    ACTION_AMEND: CATEGORY_DATA_MODIFICATION,
    ACTION_ACCESS_DENIED: CATEGORY_AUTHORIZATION,
}

SENSITIVE_DETAIL_KEYS = frozenset({
    "ssn",
    "social_security",
    "password",
    "dob",
    "date_of_birth",
    "credit_card",
    "card_number",
    "cvv",
    "address",
    "phone",
})

REDACTED = "[REDACTED]"


def sanitize_details(details: Any) -> Any:
    """Recursively replace sensitive keys with a redaction marker."""
    if isinstance(details, dict):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_DETAIL_KEYS else sanitize_details(value)
            for key, value in details.items()
        }
    if isinstance(details, list):
        return [sanitize_details(item) for item in details]
    return details


def category_for(action: str) -> str:
    return ACTION_CATEGORIES.get(action, CATEGORY_SYSTEM)


def _checksum_time(value: datetime) -> str:
    # SQLite hands back naive datetimes; they are stored as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class AuditEvent(Base):
    """
    Audit Event model - Immutable audit log with tamper-evident checksums.

    Every state-changing encounter operation creates exactly one event.
    checksum = sha256(event_id|user_id|action|resource_type|resource_id|created_at)

    Rows are never updated or deleted through the ORM; see the session
    hooks at the bottom of this module.
    """

    __tablename__ = "audit_events"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        comment="Event ID (UUID)",
    )

    user_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="User who performed the action (NULL for system events)",
    )

    action: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="Action performed (e.g., 'lock', 'amend', 'access_denied')",
    )

    category: Mapped[str] = mapped_column(String(50), nullable=False)

    severity: Mapped[str] = mapped_column(String(20), nullable=False, default=SEVERITY_INFO)

    resource_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Type of resource (e.g., 'encounter')",
    )

    resource_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="ID of the resource being modified",
    )

    details: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
        comment="Sanitized event payload - no PHI",
    )

    ip_address: Mapped[Optional[str]] = mapped_column(
        String(45),  # IPv6 max length
        nullable=True,
    )

    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    checksum: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 hex digest of the identifying fields",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
        comment="When the event occurred",
    )

    __table_args__ = (
        Index("ix_audit_events_resource", "resource_type", "resource_id"),
        Index("ix_audit_events_user_created_at", "user_id", "created_at"),
    )

    @classmethod
    def build(
        cls,
        *,
        action: str,
        resource_type: str,
        resource_id: str,
        user_id: Optional[str],
        details: Optional[dict[str, Any]] = None,
        severity: str = SEVERITY_INFO,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> "AuditEvent":
        """Create a new event with its id, timestamp and checksum fixed."""
        audit_event = cls(
            id=uuid4(),
            user_id=user_id,
            action=action,
            category=category_for(action),
            severity=severity,
            resource_type=resource_type,
            resource_id=resource_id,
            details=sanitize_details(details or {}),
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
            created_at=utcnow(),
        )
        audit_event.checksum = audit_event.compute_checksum()
        return audit_event

    def compute_checksum(self) -> str:
        payload = "|".join([
            str(self.id),
            self.user_id or "",
            self.action,
            self.resource_type,
            self.resource_id,
            _checksum_time(self.created_at),
        ])
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def verify_checksum(self) -> bool:
        return self.checksum == self.compute_checksum()

    def __repr__(self) -> str:
        """String representation."""
        return f"<AuditEvent {self.action} by user={self.user_id} on {self.resource_type}:{self.resource_id}>"


@event.listens_for(AuditEvent, "before_update")
def _refuse_audit_update(mapper, connection, target: AuditEvent) -> None:
    raise AuditLogImmutableError(f"Audit event {target.id} cannot be modified")


@event.listens_for(AuditEvent, "before_delete")
def _refuse_audit_delete(mapper, connection, target: AuditEvent) -> None:
    raise AuditLogImmutableError(f"Audit event {target.id} cannot be deleted")


@event.listens_for(Session, "do_orm_execute")
def _refuse_bulk_audit_writes(orm_execute_state: ORMExecuteState) -> None:
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is not None and mapper.class_ is AuditEvent:
        raise AuditLogImmutableError("Bulk UPDATE/DELETE of audit events is not allowed")
