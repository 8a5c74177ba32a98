"""Audit trail service - INSERT-only writes and integrity verification."""

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fieldchart.core.config import settings
from fieldchart.core.exceptions import IntegrityFailure
from fieldchart.models.audit import SEVERITY_INFO, AuditEvent
from fieldchart.models.base import utcnow
from fieldchart.schemas.audit import ChecksumMismatch, IntegrityReport

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("fieldchart.audit")


def _to_json(value: Any) -> Any:
    """Convert values JSON columns cannot store (dates, UUIDs, decimals, enums)."""
    if isinstance(value, dict):
        return {str(key): _to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


class AuditTrail:
    """
    Append-only audit writer bound to a session.

    `record` only flushes; the caller owns the transaction so the event
    commits together with the change it describes.
    """

    def __init__(
        self,
        db: AsyncSession,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self.db = db
        self.ip_address = ip_address
        self.user_agent = user_agent

    async def record(
        self,
        *,
        action: str,
        resource_type: str,
        resource_id: str,
        user_id: Optional[str],
        details: Optional[dict[str, Any]] = None,
        severity: str = SEVERITY_INFO,
    ) -> AuditEvent:
        """Insert one immutable audit event."""
        audit_event = AuditEvent.build(
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id),
            user_id=user_id,
            details=_to_json(details or {}),
            severity=severity,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )
        self.db.add(audit_event)
        await self.db.flush()

        if settings.AUDIT_LOG_ENABLED:
            audit_logger.info(
                "Audit event recorded",
                extra={
                    "audit_event_id": str(audit_event.id),
                    "action": audit_event.action,
                    "category": audit_event.category,
                    "severity": audit_event.severity,
                    "resource_type": audit_event.resource_type,
                    "resource_id": audit_event.resource_id,
                    "user_id": audit_event.user_id,
                },
            )
        return audit_event

    async def list_for_resource(self, resource_type: str, resource_id: str) -> list[AuditEvent]:
        """Events for one resource, oldest first."""
        result = await self.db.execute(
            select(AuditEvent)
            .where(
                AuditEvent.resource_type == resource_type,
                AuditEvent.resource_id == str(resource_id),
            )
            .order_by(AuditEvent.created_at, AuditEvent.id)
        )
        return list(result.scalars().all())

    async def verify_integrity(self, raise_on_failure: bool = False) -> IntegrityReport:
        """
        Recompute every checksum and compare it with the stored value.

        Mismatches are reported and logged, never corrected.

        Raises:
            IntegrityFailure: For the first mismatch, when raise_on_failure is set
        """
        result = await self.db.execute(
            select(AuditEvent)
            .order_by(AuditEvent.created_at, AuditEvent.id)
            .execution_options(populate_existing=True)
        )
        checked = 0
        failures = []
        for audit_event in result.scalars():
            checked += 1
            expected = audit_event.compute_checksum()
            if expected == audit_event.checksum:
                continue
            failures.append(ChecksumMismatch(
                event_id=audit_event.id,
                expected=expected,
                actual=audit_event.checksum,
            ))
            logger.error(
                "Audit checksum mismatch",
                extra={"audit_event_id": str(audit_event.id), "action": audit_event.action},
            )

        report = IntegrityReport(checked=checked, failures=failures, checked_at=utcnow())
        logger.info(
            "Audit integrity verified",
            extra={"checked": report.checked, "failures": len(report.failures)},
        )

        if failures and raise_on_failure:
            first = failures[0]
            raise IntegrityFailure(str(first.event_id), first.expected, first.actual)
        return report
