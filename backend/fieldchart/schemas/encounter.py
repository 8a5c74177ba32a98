"""Pydantic schemas for Encounter API."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from fieldchart.models.encounter import EncounterStatus, EncounterType


class EncounterResponse(BaseModel):
    """Server view of an encounter."""

    id: UUID = Field(..., description="Encounter ID")
    patient_id: Optional[str] = Field(None, description="Patient ID")
    provider_id: Optional[str] = Field(None, description="Lead provider ID")
    clinic_id: Optional[str] = Field(None, description="Clinic or field site")
    encounter_type: EncounterType
    status: EncounterStatus = Field(..., description="Workflow status")
    chief_complaint: Optional[str] = None
    hpi: Optional[str] = None
    ros: Optional[str] = None
    physical_exam: Optional[str] = None
    assessment: Optional[str] = None
    plan: Optional[str] = None
    vitals: list[dict[str, Any]] = Field(default_factory=list)
    clinical_data: dict[str, Any] = Field(default_factory=dict, description="Latest form snapshot")
    icd_codes: list[str] = Field(default_factory=list)
    cpt_codes: list[str] = Field(default_factory=list)
    encounter_date: datetime
    submitted_at: Optional[datetime] = None

    # Lock / amendment
    is_locked: bool = Field(..., description="Clinical content is frozen")
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    is_amended: bool = Field(..., description="An amendment window is open")
    amendment_reason: Optional[str] = None
    amended_at: Optional[datetime] = None
    amended_by: Optional[str] = None

    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    class Config:
        """Pydantic config."""

        from_attributes = True


class SubmitResponse(BaseModel):
    """Outcome of submitting an encounter for review."""

    success: bool = Field(..., description="Whether the encounter is now pending review")
    message: Optional[str] = Field(None, description="Summary for the user")
    errors: dict[str, str] = Field(default_factory=dict, description="Blocking errors keyed by field")
    status: Optional[EncounterStatus] = Field(None, description="Status after the call")


class StatusChangeRequest(BaseModel):
    status: EncounterStatus = Field(..., description="Target workflow status")


class AmendmentRequest(BaseModel):
    reason: str = Field(..., description="Why the locked record needs to change")
