"""Encounters API endpoints."""

from typing import Annotated, Union
from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from fieldchart.api.dependencies import Actor, RequestMeta, get_current_active_user, get_request_meta
from fieldchart.core.database import get_db
from fieldchart.schemas.audit import AuditEventResponse
from fieldchart.schemas.encounter import (
    AmendmentRequest,
    EncounterResponse,
    StatusChangeRequest,
    SubmitResponse,
)
from fieldchart.schemas.snapshot import EncounterSnapshot
from fieldchart.services.encounter_service import RESOURCE_TYPE, EncounterService

router = APIRouter()


async def get_encounter_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    meta: Annotated[RequestMeta, Depends(get_request_meta)],
) -> EncounterService:
    return EncounterService(db, ip_address=meta.ip_address, user_agent=meta.user_agent)


ServiceDep = Annotated[EncounterService, Depends(get_encounter_service)]
ActorDep = Annotated[Actor, Depends(get_current_active_user)]


@router.post(
    "/encounters",
    response_model=EncounterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create encounter",
    description="Create an encounter from a form snapshot. The new encounter starts in_progress.",
)
async def create_encounter(
    snapshot: EncounterSnapshot,
    service: ServiceDep,
    current_user: ActorDep,
) -> EncounterResponse:
    encounter = await service.create(snapshot, current_user.user_id)
    return EncounterResponse.model_validate(encounter)


@router.get(
    "/encounters/{encounter_id}",
    response_model=EncounterResponse,
    summary="Get encounter",
)
async def get_encounter(
    encounter_id: UUID,
    service: ServiceDep,
    current_user: ActorDep,
) -> EncounterResponse:
    encounter = await service.get(encounter_id)
    return EncounterResponse.model_validate(encounter)


@router.put(
    "/encounters/{encounter_id}",
    response_model=EncounterResponse,
    summary="Update encounter",
    description="Replace clinical content from a snapshot. Locked encounters need an open amendment.",
    responses={409: {"description": "Encounter is locked"}},
)
async def update_encounter(
    encounter_id: UUID,
    snapshot: EncounterSnapshot,
    service: ServiceDep,
    current_user: ActorDep,
) -> EncounterResponse:
    encounter = await service.update(encounter_id, snapshot, current_user.user_id)
    return EncounterResponse.model_validate(encounter)


@router.put(
    "/encounters/{encounter_id}/submit",
    response_model=SubmitResponse,
    summary="Submit encounter for review",
    responses={
        409: {"description": "Encounter is locked or in a terminal status"},
        422: {"model": SubmitResponse, "description": "Required fields are missing"},
    },
)
async def submit_encounter(
    encounter_id: UUID,
    snapshot: EncounterSnapshot,
    service: ServiceDep,
    current_user: ActorDep,
) -> Union[SubmitResponse, JSONResponse]:
    """
    Validate the snapshot and move the encounter to pending_review.

    Returns 422 with `{success: false, message, errors}` when required
    fields are missing; the encounter is left unchanged.
    """
    result = await service.submit_for_review(encounter_id, snapshot, current_user.user_id)
    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=result.model_dump(mode="json"),
        )
    return result


@router.put(
    "/encounters/{encounter_id}/status",
    response_model=EncounterResponse,
    summary="Change workflow status",
    responses={409: {"description": "Transition not allowed"}},
)
async def change_encounter_status(
    encounter_id: UUID,
    body: StatusChangeRequest,
    service: ServiceDep,
    current_user: ActorDep,
) -> EncounterResponse:
    encounter = await service.change_status(encounter_id, body.status, current_user.user_id)
    return EncounterResponse.model_validate(encounter)


@router.put(
    "/encounters/{encounter_id}/lock",
    response_model=EncounterResponse,
    summary="Lock encounter",
    description="Freeze clinical content and complete the encounter.",
    responses={409: {"description": "Encounter is already locked"}},
)
async def lock_encounter(
    encounter_id: UUID,
    service: ServiceDep,
    current_user: ActorDep,
) -> EncounterResponse:
    encounter = await service.lock(encounter_id, current_user.user_id)
    return EncounterResponse.model_validate(encounter)


@router.put(
    "/encounters/{encounter_id}/amend",
    response_model=EncounterResponse,
    summary="Start amendment",
    description="Open one write window on a locked encounter.",
    responses={409: {"description": "Encounter is not locked"}},
)
async def amend_encounter(
    encounter_id: UUID,
    body: AmendmentRequest,
    service: ServiceDep,
    current_user: ActorDep,
) -> EncounterResponse:
    encounter = await service.start_amendment(encounter_id, body.reason, current_user.user_id)
    return EncounterResponse.model_validate(encounter)


@router.get(
    "/encounters/{encounter_id}/audit",
    response_model=list[AuditEventResponse],
    summary="Encounter audit trail",
)
async def get_encounter_audit(
    encounter_id: UUID,
    service: ServiceDep,
    current_user: ActorDep,
) -> list[AuditEventResponse]:
    await service.get(encounter_id)
    events = await service.audit.list_for_resource(RESOURCE_TYPE, str(encounter_id))
    return [AuditEventResponse.model_validate(event) for event in events]
