"""Encounter service - server-side lifecycle operations with auditing."""

import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fieldchart.core.exceptions import (
    EncounterNotFoundError,
    EncounterValidationError,
    LifecycleViolation,
)
from fieldchart.models.audit import (
    ACTION_ACCESS_DENIED,
    ACTION_AMEND,
    ACTION_CREATE,
    ACTION_LOCK,
    ACTION_STATUS_CHANGE,
    ACTION_SUBMIT,
    ACTION_UPDATE,
    SEVERITY_WARNING,
)
from fieldchart.models.base import utcnow
from fieldchart.models.encounter import Encounter, EncounterStatus
from fieldchart.schemas.encounter import SubmitResponse
from fieldchart.schemas.snapshot import EncounterSnapshot
from fieldchart.services import validation_gate
from fieldchart.services.audit_service import AuditTrail

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "encounter"


def snapshot_to_fields(snapshot: EncounterSnapshot) -> dict[str, Any]:
    """Project the form snapshot onto the encounter's clinical columns."""
    lead = snapshot.lead_provider
    return {
        "chief_complaint": snapshot.incident.chief_complaint,
        "hpi": snapshot.narrative,
        "plan": snapshot.disposition.notes,
        "vitals": [vital_set.model_dump(exclude_none=True) for vital_set in snapshot.objective_findings.vitals],
        "provider_id": lead.id if lead else None,
        "clinical_data": snapshot.model_dump(mode="json"),
    }


class EncounterService:
    """
    Lifecycle operations on server encounters.

    Each state-changing call commits the change and exactly one audit
    event together. A LifecycleViolation rolls the change back, records an
    access_denied event and is re-raised.
    """

    def __init__(
        self,
        db: AsyncSession,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self.db = db
        self.audit = AuditTrail(db, ip_address=ip_address, user_agent=user_agent)

    async def get(self, encounter_id: UUID) -> Encounter:
        result = await self.db.execute(select(Encounter).where(Encounter.id == encounter_id))
        encounter = result.scalar_one_or_none()
        if encounter is None:
            raise EncounterNotFoundError(str(encounter_id))
        return encounter

    async def create(self, snapshot: EncounterSnapshot, user_id: str) -> Encounter:
        encounter = Encounter(
            encounter_type=snapshot.encounter_type,
            status=EncounterStatus.IN_PROGRESS,
            patient_id=snapshot.patient.id,
            created_by=user_id,
            updated_by=user_id,
        )
        encounter.apply_clinical_fields(snapshot_to_fields(snapshot))
        self.db.add(encounter)
        await self.db.flush()

        await self.audit.record(
            action=ACTION_CREATE,
            resource_type=RESOURCE_TYPE,
            resource_id=str(encounter.id),
            user_id=user_id,
            details={
                "status": encounter.status,
                "encounter_type": encounter.encounter_type,
                "schema_version": snapshot.schema_version,
            },
        )
        await self.db.commit()

        logger.info("Encounter created", extra={"encounter_id": str(encounter.id), "user_id": user_id})
        return encounter

    async def update(self, encounter_id: UUID, snapshot: EncounterSnapshot, user_id: str) -> Encounter:
        """
        Replace clinical content from a snapshot.

        Raises:
            EncounterNotFoundError: Unknown encounter
            LifecycleViolation: Encounter is locked without an open amendment
        """
        encounter = await self.get(encounter_id)
        try:
            changed = encounter.apply_clinical_fields(snapshot_to_fields(snapshot))
        except LifecycleViolation as exc:
            await self._deny(encounter, user_id, ACTION_UPDATE, exc)
            raise

        encounter.patient_id = snapshot.patient.id
        encounter.encounter_type = snapshot.encounter_type
        encounter.updated_by = user_id

        details: dict[str, Any] = {"changed_fields": changed}
        if encounter.is_amended:
            details["amendment_reason"] = encounter.amendment_reason
        await self.audit.record(
            action=ACTION_UPDATE,
            resource_type=RESOURCE_TYPE,
            resource_id=str(encounter.id),
            user_id=user_id,
            details=details,
        )
        await self.db.commit()

        logger.info(
            "Encounter updated",
            extra={"encounter_id": str(encounter.id), "changed_fields": changed, "amended": encounter.is_amended},
        )
        return encounter

    async def submit_for_review(
        self,
        encounter_id: UUID,
        snapshot: EncounterSnapshot,
        user_id: str,
    ) -> SubmitResponse:
        """
        Validate the submitted snapshot and move the encounter to pending_review.

        A rejected snapshot leaves the encounter untouched. Submitting an
        encounter that is already pending review succeeds without a second
        submit event.

        Raises:
            EncounterNotFoundError: Unknown encounter
            LifecycleViolation: Encounter is locked or in a terminal status
        """
        encounter = await self.get(encounter_id)

        if encounter.is_locked and not encounter.is_amended:
            exc = LifecycleViolation(
                "Cannot submit a locked encounter. Use amendment process instead.",
                encounter_id=str(encounter_id),
            )
            await self._deny(encounter, user_id, ACTION_SUBMIT, exc)
            raise exc

        result = validation_gate.validate(snapshot)
        if not result.is_valid:
            logger.info(
                "Encounter submission rejected",
                extra={"encounter_id": str(encounter_id), "error_count": len(result.errors)},
            )
            return SubmitResponse(
                success=False,
                message=validation_gate.summary_message(result),
                errors=validation_gate.errors_as_map(result.errors),
                status=encounter.status,
            )

        already_submitted = encounter.status == EncounterStatus.PENDING_REVIEW
        try:
            changed = encounter.apply_clinical_fields(snapshot_to_fields(snapshot))
            if not already_submitted:
                encounter.transition_to(EncounterStatus.PENDING_REVIEW)
        except LifecycleViolation as exc:
            await self._deny(encounter, user_id, ACTION_SUBMIT, exc)
            raise

        encounter.patient_id = snapshot.patient.id
        encounter.updated_by = user_id

        if already_submitted:
            if changed:
                await self.audit.record(
                    action=ACTION_UPDATE,
                    resource_type=RESOURCE_TYPE,
                    resource_id=str(encounter.id),
                    user_id=user_id,
                    details={"changed_fields": changed},
                )
            await self.db.commit()
            return SubmitResponse(
                success=True,
                message="Encounter already submitted for review",
                status=encounter.status,
            )

        encounter.submitted_at = utcnow()
        await self.audit.record(
            action=ACTION_SUBMIT,
            resource_type=RESOURCE_TYPE,
            resource_id=str(encounter.id),
            user_id=user_id,
            details={"status": encounter.status, "changed_fields": changed},
        )
        await self.db.commit()

        logger.info("Encounter submitted for review", extra={"encounter_id": str(encounter.id)})
        return SubmitResponse(
            success=True,
            message="Encounter submitted for review",
            status=encounter.status,
        )

    async def change_status(self, encounter_id: UUID, new_status: EncounterStatus, user_id: str) -> Encounter:
        """
        Move workflow status along the transition table.

        Raises:
            LifecycleViolation: Transition not allowed from the current status
            EncounterValidationError: Completing without a chief complaint
        """
        encounter = await self.get(encounter_id)
        try:
            previous = encounter.transition_to(new_status)
        except LifecycleViolation as exc:
            await self._deny(encounter, user_id, ACTION_STATUS_CHANGE, exc)
            raise

        if previous == new_status:
            return encounter

        encounter.updated_by = user_id
        await self.audit.record(
            action=ACTION_STATUS_CHANGE,
            resource_type=RESOURCE_TYPE,
            resource_id=str(encounter.id),
            user_id=user_id,
            details={"from": previous, "to": new_status},
        )
        await self.db.commit()

        logger.info(
            "Encounter status changed",
            extra={"encounter_id": str(encounter.id), "from_status": previous.value, "to_status": new_status.value},
        )
        return encounter

    async def lock(self, encounter_id: UUID, user_id: str) -> Encounter:
        """
        Lock clinical content.

        Raises:
            LifecycleViolation: Already locked, or cancelled / no-show
            EncounterValidationError: Missing chief complaint
        """
        encounter = await self.get(encounter_id)
        closing_amendment = encounter.is_amended
        previous = encounter.status
        try:
            encounter.lock(user_id)
        except LifecycleViolation as exc:
            await self._deny(encounter, user_id, ACTION_LOCK, exc)
            raise
        except EncounterValidationError:
            await self._discard_changes(encounter)
            raise

        encounter.updated_by = user_id
        await self.audit.record(
            action=ACTION_LOCK,
            resource_type=RESOURCE_TYPE,
            resource_id=str(encounter.id),
            user_id=user_id,
            details={
                "previous_status": previous,
                "locked_at": encounter.locked_at,
                "closed_amendment": closing_amendment,
            },
        )
        await self.db.commit()

        logger.info("Encounter locked", extra={"encounter_id": str(encounter.id), "user_id": user_id})
        return encounter

    async def start_amendment(self, encounter_id: UUID, reason: str, user_id: str) -> Encounter:
        """
        Open one write window on a locked encounter.

        Raises:
            LifecycleViolation: Not locked, or an amendment is already open
            EncounterValidationError: Blank reason
        """
        encounter = await self.get(encounter_id)
        try:
            encounter.start_amendment(reason, user_id)
        except LifecycleViolation as exc:
            await self._deny(encounter, user_id, ACTION_AMEND, exc)
            raise
        except EncounterValidationError:
            await self._discard_changes(encounter)
            raise

        encounter.updated_by = user_id
        await self.audit.record(
            action=ACTION_AMEND,
            resource_type=RESOURCE_TYPE,
            resource_id=str(encounter.id),
            user_id=user_id,
            details={"reason": encounter.amendment_reason, "locked_at": encounter.locked_at},
        )
        await self.db.commit()

        logger.info("Encounter amendment started", extra={"encounter_id": str(encounter.id), "user_id": user_id})
        return encounter

    async def _discard_changes(self, encounter: Encounter) -> None:
        """Roll back and reload the encounter so callers can keep reading it."""
        encounter_id = encounter.id
        await self.db.rollback()
        await self.db.refresh(encounter)
        logger.debug("Encounter changes rolled back", extra={"encounter_id": str(encounter_id)})

    async def _deny(
        self,
        encounter: Encounter,
        user_id: str,
        attempted_action: str,
        exc: LifecycleViolation,
    ) -> None:
        encounter_id = encounter.id
        await self._discard_changes(encounter)
        await self.audit.record(
            action=ACTION_ACCESS_DENIED,
            resource_type=RESOURCE_TYPE,
            resource_id=str(encounter_id),
            user_id=user_id,
            details={"attempted_action": attempted_action, "reason": exc.message},
            severity=SEVERITY_WARNING,
        )
        await self.db.commit()
        logger.warning(
            "Lifecycle violation",
            extra={"encounter_id": str(encounter_id), "attempted_action": attempted_action, "reason": exc.message},
        )
