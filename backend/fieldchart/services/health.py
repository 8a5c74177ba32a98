"""Health probes for the encounter service."""

import logging
import time

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fieldchart.core.config import settings
from fieldchart.models.audit import AuditEvent
from fieldchart.models.base import utcnow
from fieldchart.schemas.health import ComponentHealth, HealthReport, HealthStatus

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class HealthCheckService:
    """Probes the encounter database and the audit trail stored in it."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def check_database(self) -> ComponentHealth:
        started = time.perf_counter()
        try:
            await self.db.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.error("Database health probe failed", extra={"error": str(e)}, exc_info=True)
            return ComponentHealth(status=HealthStatus.UNHEALTHY, latency_ms=_elapsed_ms(started), error=str(e))

        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            latency_ms=_elapsed_ms(started),
            details={"dialect": self.db.bind.dialect.name},
        )

    async def check_audit_trail(self) -> ComponentHealth:
        """The audit table must be readable for any state change to commit."""
        started = time.perf_counter()
        try:
            result = await self.db.execute(select(func.count(AuditEvent.id), func.max(AuditEvent.created_at)))
            count, last_event_at = result.one()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Audit trail health probe failed", extra={"error": str(e)})
            return ComponentHealth(status=HealthStatus.UNHEALTHY, latency_ms=_elapsed_ms(started), error=str(e))

        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            latency_ms=_elapsed_ms(started),
            details={
                "events": count,
                "last_event_at": last_event_at.isoformat() if last_event_at else None,
                "log_mirroring": settings.AUDIT_LOG_ENABLED,
            },
        )

    async def perform_health_check(self) -> HealthReport:
        database = await self.check_database()
        components = {"database": database}
        if database.status == HealthStatus.HEALTHY:
            components["audit_trail"] = await self.check_audit_trail()

        if database.status == HealthStatus.UNHEALTHY:
            overall = HealthStatus.UNHEALTHY
        elif components["audit_trail"].status != HealthStatus.HEALTHY:
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY

        return HealthReport(
            status=overall,
            checked_at=utcnow(),
            version=settings.APP_VERSION,
            environment=settings.APP_ENV,
            components=components,
        )
