"""Health check API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from fieldchart.core.database import get_db
from fieldchart.schemas.health import HealthReport, HealthStatus
from fieldchart.services.health import HealthCheckService

router = APIRouter(prefix="/health", tags=["Health"])


@router.get(
    "",
    response_model=HealthReport,
    summary="Component health report",
    description="Probe the encounter database and audit trail. Always 200; read `status` for the verdict.",
)
async def health_report(db: Annotated[AsyncSession, Depends(get_db)]) -> HealthReport:
    return await HealthCheckService(db).perform_health_check()


@router.get("/live", summary="Liveness probe")
async def liveness_probe() -> dict[str, str]:
    return {"status": "alive"}


@router.get(
    "/ready",
    summary="Readiness probe",
    responses={503: {"description": "Encounters cannot be written with an audit event right now"}},
)
async def readiness_probe(db: Annotated[AsyncSession, Depends(get_db)]) -> dict[str, str]:
    """
    Ready only when every component is healthy.

    Raises:
        HTTPException: 503 with the failing components
    """
    report = await HealthCheckService(db).perform_health_check()
    if report.status != HealthStatus.HEALTHY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": report.status.value,
                "failing": {
                    name: component.error
                    for name, component in report.components.items()
                    if component.status != HealthStatus.HEALTHY
                },
            },
        )
    return {"status": "ready"}
