"""Audit API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fieldchart.api.dependencies import Actor, get_current_active_user
from fieldchart.core.database import get_db
from fieldchart.schemas.audit import IntegrityReport
from fieldchart.services.audit_service import AuditTrail

router = APIRouter()


@router.get(
    "/audit/integrity",
    response_model=IntegrityReport,
    summary="Verify audit checksums",
    description="Recompute every audit event checksum and list mismatches. Nothing is corrected.",
)
async def verify_audit_integrity(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[Actor, Depends(get_current_active_user)],
) -> IntegrityReport:
    return await AuditTrail(db).verify_integrity()
