"""Versioned encounter snapshot shared by the field client and the server.

The snapshot is the full payload of the encounter workspace. Unknown keys
are rejected; optional or site-specific clinical data goes into
`additional_clinical_data`.
"""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from fieldchart.models.encounter import EncounterType

SNAPSHOT_SCHEMA_VERSION = 1

FieldValue = Optional[Union[str, int, float]]


class SnapshotModel(BaseModel):
    """Base for snapshot sections."""

    class Config:
        """Pydantic config."""

        extra = "forbid"


class IncidentSection(SnapshotModel):
    """Where and when the encounter happened."""

    clinic_name: Optional[str] = None
    clinic_street_address: Optional[str] = None
    clinic_city: Optional[str] = None
    clinic_state: Optional[str] = None
    clinic_county: Optional[str] = None
    clinic_unit_number: Optional[str] = None
    patient_contact_time: Optional[str] = None
    cleared_clinic_time: Optional[str] = None
    location: Optional[str] = Field(None, description="Location of injury/illness")
    chief_complaint: Optional[str] = None
    nature_of_illness: Optional[str] = None
    mechanism_of_injury: Optional[str] = None
    injury_classification: Optional[str] = None
    injury_classified_by_name: Optional[str] = None
    mass_casualty: Optional[str] = None


class PatientSection(SnapshotModel):
    """Patient demographics captured in the field."""

    id: Optional[str] = Field(None, description="Existing patient ID, if known")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    dob: Optional[str] = None
    sex: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    county: Optional[str] = None
    employer: Optional[str] = None
    supervisor_name: Optional[str] = None
    supervisor_phone: Optional[str] = None
    medical_history: Optional[str] = None
    allergies: Optional[str] = None
    current_medications: Optional[str] = None
    opt_in_notifications: bool = Field(False, description="Phone and email become required when true")


class Provider(SnapshotModel):
    """Provider on the encounter; role 'lead' marks the lead provider."""

    id: Optional[str] = None
    name: str = ""
    role: str = ""


class Assessment(SnapshotModel):
    region: Optional[str] = Field(None, description="Body region or system")
    findings: list[str] = Field(default_factory=list)
    notes: Optional[str] = None


class VitalSet(SnapshotModel):
    time: FieldValue = None
    date: FieldValue = None
    avpu: FieldValue = None
    bp: FieldValue = None
    bp_taken: FieldValue = Field(None, description="BP method")
    pulse: FieldValue = None
    respiration: FieldValue = None
    gcs_total: FieldValue = None
    spo2: FieldValue = None
    temperature: FieldValue = None


class Treatment(SnapshotModel):
    intervention: Optional[str] = None
    time: Optional[str] = None
    notes: Optional[str] = None


class ObjectiveFindings(SnapshotModel):
    assessments: list[Assessment] = Field(default_factory=list)
    vitals: list[VitalSet] = Field(default_factory=list)
    treatments: list[Treatment] = Field(default_factory=list)


class DispositionSection(SnapshotModel):
    disposition: Optional[str] = None
    notes: Optional[str] = None


class SignaturesSection(SnapshotModel):
    disclosures: dict[str, bool] = Field(
        default_factory=dict,
        description="Disclosure acknowledgement flags keyed by disclosure name",
    )
    provider_signature: Optional[str] = Field(None, description="Reference to the captured signature")
    patient_signature: Optional[str] = Field(None, description="Reference to the captured signature")


class EncounterSnapshot(SnapshotModel):
    """Full form payload for one encounter."""

    schema_version: Literal[1] = SNAPSHOT_SCHEMA_VERSION
    encounter_type: EncounterType = EncounterType.CLINICAL
    incident: IncidentSection = Field(default_factory=IncidentSection)
    patient: PatientSection = Field(default_factory=PatientSection)
    providers: list[Provider] = Field(default_factory=list)
    objective_findings: ObjectiveFindings = Field(default_factory=ObjectiveFindings)
    narrative: Optional[str] = None
    disposition: DispositionSection = Field(default_factory=DispositionSection)
    signatures: SignaturesSection = Field(default_factory=SignaturesSection)
    additional_clinical_data: dict[str, Any] = Field(default_factory=dict)

    @property
    def chief_complaint(self) -> Optional[str]:
        return self.incident.chief_complaint

    @property
    def lead_provider(self) -> Optional[Provider]:
        for provider in self.providers:
            if provider.role == "lead" and provider.name.strip():
                return provider
        return None
