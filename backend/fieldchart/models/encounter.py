"""Encounter model - Clinical encounters and their lock/amend lifecycle."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum as SQLEnum
from sqlalchemy import String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, validates

from fieldchart.core.exceptions import EncounterValidationError, LifecycleViolation
from fieldchart.models.base import BaseModel, utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")


class EncounterType(str, Enum):
    """Type of clinical encounter."""

    OFFICE_VISIT = "office_visit"
    DOT_PHYSICAL = "dot_physical"
    DRUG_SCREEN = "drug_screen"
    OSHA_INJURY = "osha_injury"
    WORKERS_COMP = "workers_comp"
    PRE_EMPLOYMENT = "pre_employment"
    URGENT = "urgent"
    TELEHEALTH = "telehealth"
    FOLLOW_UP = "follow_up"
    CLINICAL = "clinical"  # Field documentation captured on the mobile workspace


class EncounterStatus(str, Enum):
    """Encounter workflow status."""

    SCHEDULED = "scheduled"  # Future appointment
    CHECKED_IN = "checked_in"  # Patient arrived
    IN_PROGRESS = "in_progress"  # Being documented
    PENDING_REVIEW = "pending_review"  # Submitted by the field provider
    COMPLETE = "complete"  # Finalized and locked
    CANCELLED = "cancelled"  # Cancelled before completion
    NO_SHOW = "no_show"  # Patient didn't attend


STATUS_TRANSITIONS: dict[EncounterStatus, frozenset[EncounterStatus]] = {
    EncounterStatus.SCHEDULED: frozenset({
        EncounterStatus.CHECKED_IN,
        EncounterStatus.IN_PROGRESS,
        EncounterStatus.CANCELLED,
        EncounterStatus.NO_SHOW,
    }),
    EncounterStatus.CHECKED_IN: frozenset({
        EncounterStatus.IN_PROGRESS,
        EncounterStatus.CANCELLED,
        EncounterStatus.NO_SHOW,
    }),
    EncounterStatus.IN_PROGRESS: frozenset({
        EncounterStatus.PENDING_REVIEW,
        EncounterStatus.COMPLETE,
        EncounterStatus.CANCELLED,
        EncounterStatus.NO_SHOW,
    }),
    EncounterStatus.PENDING_REVIEW: frozenset({
        EncounterStatus.IN_PROGRESS,
        EncounterStatus.COMPLETE,
        EncounterStatus.CANCELLED,
        EncounterStatus.NO_SHOW,
    }),
    EncounterStatus.COMPLETE: frozenset(),
    EncounterStatus.CANCELLED: frozenset(),
    EncounterStatus.NO_SHOW: frozenset(),
}

# Every attribute below is frozen once the encounter is locked
CLINICAL_FIELDS = (
    "chief_complaint",
    "hpi",
    "ros",
    "physical_exam",
    "assessment",
    "plan",
    "vitals",
    "clinical_data",
    "icd_codes",
    "cpt_codes",
    "encounter_date",
    "provider_id",
    "clinic_id",
)


def _enum_column(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        values_callable=lambda x: [e.value for e in x],
    )


class Encounter(BaseModel):
    """
    Encounter (Clinical Visit) model.

    Server-authoritative record for clinical content and lock state.
    Clinical attributes pass through a single guard on every assignment:
    once `locked_at` is set, writes are rejected unless an amendment
    window is open. Workflow `status` is not guarded by the lock.
    """

    __tablename__ = "encounters"

    patient_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Patient this encounter is for (NULL while demographics are new)",
    )

    provider_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Lead provider documenting the encounter",
    )

    clinic_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Clinic or field site",
    )

    encounter_type: Mapped[EncounterType] = mapped_column(
        _enum_column(EncounterType, "encounter_type"),
        nullable=False,
        default=EncounterType.CLINICAL,
    )

    status: Mapped[EncounterStatus] = mapped_column(
        _enum_column(EncounterStatus, "encounter_status"),
        nullable=False,
        default=EncounterStatus.IN_PROGRESS,
        comment="Current workflow status",
    )

    # Clinical content
    chief_complaint: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    hpi: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="History of present illness / narrative")
    ros: Mapped[Optional[str]] = mapped_column(Text, nullable=True, comment="Review of systems")
    physical_exam: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    assessment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    plan: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vitals: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    clinical_data: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Full form snapshot and additional clinical data",
    )
    icd_codes: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    cpt_codes: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    encounter_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last time the encounter was submitted for review",
    )

    # Lock / amendment state
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_amended: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="True while an amendment window is open on a locked encounter",
    )
    amendment_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    amended_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    def __init__(self, **kwargs: Any) -> None:
        # Column defaults only apply at flush; the state machine needs them before
        kwargs.setdefault("status", EncounterStatus.IN_PROGRESS)
        kwargs.setdefault("encounter_type", EncounterType.CLINICAL)
        kwargs.setdefault("is_amended", False)
        super().__init__(**kwargs)

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    @property
    def can_amend(self) -> bool:
        return self.is_locked

    @validates(*CLINICAL_FIELDS)
    def _guard_clinical_field(self, key: str, value: Any) -> Any:
        self.guard_against_locked(key)
        return value

    def guard_against_locked(self, field: Optional[str] = None) -> None:
        """Reject clinical writes to a locked encounter without an open amendment."""
        if self.is_locked and not self.is_amended:
            target = f" ({field})" if field else ""
            raise LifecycleViolation(
                f"Cannot modify locked encounter{target}. Use amendment process instead.",
                encounter_id=str(self.id) if self.id else None,
            )

    def apply_clinical_fields(self, values: dict[str, Any]) -> list[str]:
        """Assign clinical attributes, returning the names that changed."""
        changed = []
        for field, value in values.items():
            if field not in CLINICAL_FIELDS:
                raise ValueError(f"{field} is not a clinical field")
            # The guard applies even when the value is unchanged
            if getattr(self, field) != value:
                changed.append(field)
            setattr(self, field, value)
        return changed

    def transition_to(self, new_status: EncounterStatus) -> EncounterStatus:
        """
        Move the workflow status along the transition table.

        Returns:
            The previous status

        Raises:
            LifecycleViolation: If the transition is not allowed
            EncounterValidationError: If completing without a chief complaint
        """
        previous = self.status
        if new_status == previous:
            return previous

        if new_status not in STATUS_TRANSITIONS[previous]:
            allowed = ", ".join(sorted(s.value for s in STATUS_TRANSITIONS[previous])) or "none"
            raise LifecycleViolation(
                f"Cannot transition from {previous.value} to {new_status.value}. "
                f"Allowed transitions: {allowed}",
                encounter_id=str(self.id) if self.id else None,
            )

        if new_status == EncounterStatus.COMPLETE:
            self._require_completable()

        self.status = new_status
        return previous

    def lock(self, user_id: str) -> None:
        """
        Lock clinical content and complete the encounter.

        Locking a record with an open amendment closes the window, so each
        amendment permits exactly one write episode.

        Raises:
            LifecycleViolation: If already locked without an open amendment,
                or the encounter was cancelled / no-show
            EncounterValidationError: If the chief complaint is missing
        """
        if self.is_locked and not self.is_amended:
            raise LifecycleViolation(
                "Encounter is already locked",
                encounter_id=str(self.id) if self.id else None,
            )
        if self.status in (EncounterStatus.CANCELLED, EncounterStatus.NO_SHOW):
            raise LifecycleViolation(
                f"Cannot lock a {self.status.value} encounter",
                encounter_id=str(self.id) if self.id else None,
            )
        self._require_completable()

        self.locked_at = utcnow()
        self.locked_by = user_id
        self.status = EncounterStatus.COMPLETE
        self.is_amended = False

    def start_amendment(self, reason: str, user_id: str) -> None:
        """
        Open one additional write window on a locked encounter.

        Does not clear `locked_at`.

        Raises:
            LifecycleViolation: If never locked or an amendment is already open
            EncounterValidationError: If the reason is blank
        """
        if not self.can_amend:
            raise LifecycleViolation(
                "Encounter must be locked before it can be amended",
                encounter_id=str(self.id) if self.id else None,
            )
        if not reason or not reason.strip():
            raise EncounterValidationError(
                "Amendment reason is required",
                errors={"amendment_reason": "Amendment reason is required"},
            )
        if self.is_amended:
            raise LifecycleViolation(
                "An amendment is already open; lock the encounter to close it first",
                encounter_id=str(self.id) if self.id else None,
            )

        self.is_amended = True
        self.amendment_reason = reason.strip()
        self.amended_at = utcnow()
        self.amended_by = user_id

    def validate(self) -> dict[str, str]:
        """Entity-level consistency checks."""
        errors = {}
        if self.status == EncounterStatus.COMPLETE and not (self.chief_complaint or "").strip():
            errors["chief_complaint"] = "Chief complaint is required for completed encounters"
        return errors

    def _require_completable(self) -> None:
        if not (self.chief_complaint or "").strip():
            raise EncounterValidationError(
                "Cannot complete encounter without a chief complaint",
                errors={"chief_complaint": "Chief complaint is required for completed encounters"},
            )

    def __repr__(self) -> str:
        """String representation."""
        return f"<Encounter id={self.id} status={self.status.value} locked={self.is_locked}>"
