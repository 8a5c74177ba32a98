"""Validation gate for encounter submission.

Pure functions over an `EncounterSnapshot`: nothing here touches storage or
the network, and results are never cached. `validate` decides whether a
snapshot may leave the draft state; the helpers route the user to the
first tab that needs attention.
"""

import math
import re
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from fieldchart.schemas.snapshot import EncounterSnapshot

LOCAL_ID_PREFIX = "temp_"
MIN_NARRATIVE_LENGTH = 25

Predicate = Callable[[EncounterSnapshot], bool]


class FieldError(BaseModel):
    """One blocking error, addressed to the tab that owns the field."""

    field: str = Field(..., description="Required field name")
    label: str = Field(..., description="Human readable field label")
    message: str
    tab_id: str
    tab_name: str
    section: str = Field("", description="Section within the tab")
    path: str = Field(..., description="Location of the value in the snapshot")


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[FieldError] = Field(default_factory=list)
    completion_percentage: int = 100
    completed_fields: int = 0
    total_fields: int = 0


class TabValidationResult(ValidationResult):
    tab_id: str
    tab_name: str = ""


@dataclass(frozen=True)
class RequiredField:
    name: str
    label: str
    path: str
    is_completed: Predicate
    required_when: Optional[Predicate] = None

    def is_required(self, snapshot: EncounterSnapshot) -> bool:
        return self.required_when is None or self.required_when(snapshot)


@dataclass(frozen=True)
class TabSection:
    name: str
    fields: tuple[RequiredField, ...] = ()


@dataclass(frozen=True)
class Tab:
    tab_id: str
    tab_name: str
    sections: tuple[TabSection, ...] = ()


def has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def _has_lead_provider(snapshot: EncounterSnapshot) -> bool:
    return snapshot.lead_provider is not None


def _has_minimum_narrative(snapshot: EncounterSnapshot) -> bool:
    return len((snapshot.narrative or "").strip()) >= MIN_NARRATIVE_LENGTH


def _all_disclosures_acknowledged(snapshot: EncounterSnapshot) -> bool:
    disclosures = snapshot.signatures.disclosures
    return bool(disclosures) and all(value is True for value in disclosures.values())


def _opted_in(snapshot: EncounterSnapshot) -> bool:
    return snapshot.patient.opt_in_notifications is True


def _incident(attr: str, label: str) -> RequiredField:
    return RequiredField(
        name=attr,
        label=label,
        path=f"incident.{attr}",
        is_completed=lambda s: has_value(getattr(s.incident, attr)),
    )


def _patient(attr: str, label: str, required_when: Optional[Predicate] = None) -> RequiredField:
    return RequiredField(
        name=attr,
        label=label,
        path=f"patient.{attr}",
        is_completed=lambda s: has_value(getattr(s.patient, attr)),
        required_when=required_when,
    )


def _vital(attr: str, label: str) -> RequiredField:
    return RequiredField(
        name=attr,
        label=label,
        path=f"objective_findings.vitals[0].{attr}",
        is_completed=lambda s: any(has_value(getattr(v, attr)) for v in s.objective_findings.vitals),
    )


# Fixed tab order; get_first_invalid_tab walks this tuple front to back
TABS: tuple[Tab, ...] = (
    Tab(
        tab_id="incident",
        tab_name="Incident",
        sections=(
            TabSection("Clinic Information", (
                _incident("clinic_name", "Clinic Name"),
                _incident("clinic_street_address", "Street Address"),
                _incident("clinic_city", "City"),
                _incident("clinic_state", "State"),
            )),
            TabSection("Time Fields", (
                _incident("patient_contact_time", "Patient Contact Time"),
                _incident("cleared_clinic_time", "Cleared Clinic Time"),
            )),
            TabSection("Incident Details", (
                _incident("chief_complaint", "Chief Complaint"),
                _incident("location", "Location of Injury/Illness"),
                _incident("injury_classified_by_name", "Classified By (Name)"),
                _incident("injury_classification", "Classification"),
            )),
            TabSection("Provider Information", (
                RequiredField(
                    name="lead_provider",
                    label="Lead Provider (min 1)",
                    path="providers",
                    is_completed=_has_lead_provider,
                ),
            )),
        ),
    ),
    Tab(
        tab_id="patient",
        tab_name="Patient",
        sections=(
            TabSection("Demographics", (
                _patient("first_name", "First Name"),
                _patient("last_name", "Last Name"),
                _patient("dob", "Date of Birth"),
                _patient("phone", "Phone Number", required_when=_opted_in),
                _patient("email", "Email Address", required_when=_opted_in),
            )),
            TabSection("Home Address", (
                _patient("street_address", "Street Address"),
                _patient("city", "City"),
                _patient("state", "State"),
            )),
            TabSection("Employment", (
                _patient("employer", "Employer"),
                _patient("supervisor_name", "Supervisor Name"),
                _patient("supervisor_phone", "Supervisor Phone"),
            )),
            TabSection("Medical History", (
                _patient("medical_history", "Medical History"),
                _patient("allergies", "Allergies"),
                _patient("current_medications", "Current Medications"),
            )),
        ),
    ),
    Tab(
        tab_id="objectiveFindings",
        tab_name="Objective Findings",
        sections=(
            TabSection("Assessment Requirements", (
                RequiredField(
                    name="minimum_assessment",
                    label="Minimum 1 Assessment",
                    path="objective_findings.assessments",
                    is_completed=lambda s: len(s.objective_findings.assessments) >= 1,
                ),
            )),
            TabSection("Required Vitals (min 1 complete set)", (
                _vital("time", "Time"),
                _vital("date", "Date"),
                _vital("avpu", "AVPU"),
                _vital("bp", "Blood Pressure"),
                _vital("bp_taken", "BP Method"),
                _vital("pulse", "Pulse"),
                _vital("respiration", "Respiratory Rate"),
                _vital("gcs_total", "GCS"),
            )),
        ),
    ),
    Tab(
        tab_id="narrative",
        tab_name="Narrative",
        sections=(
            TabSection("Clinical Narrative", (
                RequiredField(
                    name="narrative",
                    label=f"Narrative (min {MIN_NARRATIVE_LENGTH} chars)",
                    path="narrative",
                    is_completed=_has_minimum_narrative,
                ),
            )),
        ),
    ),
    Tab(
        tab_id="disposition",
        tab_name="Disposition",
        sections=(TabSection("Disposition"),),
    ),
    Tab(
        tab_id="signatures",
        tab_name="Signatures",
        sections=(
            TabSection("Disclosures & Signatures", (
                RequiredField(
                    name="disclosures",
                    label="Disclosures Acknowledged",
                    path="signatures.disclosures",
                    is_completed=_all_disclosures_acknowledged,
                ),
            )),
        ),
    ),
)

TAB_ORDER = tuple(tab.tab_id for tab in TABS)
_TABS_BY_ID = {tab.tab_id: tab for tab in TABS}

# Top-level snapshot keys mapped to the tab that edits them
_SECTION_TABS = {
    "incident": "incident",
    "providers": "incident",
    "patient": "patient",
    "objective_findings": "objectiveFindings",
    "assessments": "objectiveFindings",
    "vitals": "objectiveFindings",
    "treatments": "objectiveFindings",
    "narrative": "narrative",
    "hpi": "narrative",
    "disposition": "disposition",
    "plan": "disposition",
    "signatures": "signatures",
}


def _percentage(completed: int, total: int) -> int:
    if total == 0:
        return 100
    # Round half up
    return int(math.floor(completed * 100 / total + 0.5))


def _check_tab(tab: Tab, snapshot: EncounterSnapshot) -> tuple[list[FieldError], int, int]:
    errors = []
    total = 0
    completed = 0
    for section in tab.sections:
        for required in section.fields:
            if not required.is_required(snapshot):
                continue
            total += 1
            if required.is_completed(snapshot):
                completed += 1
                continue
            errors.append(FieldError(
                field=required.name,
                label=required.label,
                message=f"{required.label} is required",
                tab_id=tab.tab_id,
                tab_name=tab.tab_name,
                section=section.name,
                path=required.path,
            ))
    return errors, completed, total


def validate(snapshot: EncounterSnapshot) -> ValidationResult:
    """Check every required field across all tabs."""
    errors: list[FieldError] = []
    completed = 0
    total = 0
    for tab in TABS:
        tab_errors, tab_completed, tab_total = _check_tab(tab, snapshot)
        errors.extend(tab_errors)
        completed += tab_completed
        total += tab_total

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        completion_percentage=_percentage(completed, total),
        completed_fields=completed,
        total_fields=total,
    )


def validate_tab(tab_id: str, snapshot: EncounterSnapshot) -> TabValidationResult:
    """Check a single tab. Unknown tabs have nothing to complete."""
    tab = _TABS_BY_ID.get(tab_id)
    if tab is None:
        return TabValidationResult(is_valid=True, tab_id=tab_id)

    errors, completed, total = _check_tab(tab, snapshot)
    return TabValidationResult(
        is_valid=not errors,
        errors=errors,
        completion_percentage=_percentage(completed, total),
        completed_fields=completed,
        total_fields=total,
        tab_id=tab_id,
        tab_name=tab.tab_name,
    )


def get_first_invalid_tab(snapshot: EncounterSnapshot) -> Optional[str]:
    for tab in TABS:
        if not validate_tab(tab.tab_id, snapshot).is_valid:
            return tab.tab_id
    return None


def first_tab_with_errors(errors: list[FieldError]) -> Optional[str]:
    tabs = tabs_with_errors(errors)
    return tabs[0] if tabs else None


def group_errors_by_tab(errors: list[FieldError]) -> dict[str, list[FieldError]]:
    grouped: dict[str, list[FieldError]] = {}
    for error in errors:
        grouped.setdefault(error.tab_id, []).append(error)
    return grouped


def tabs_with_errors(errors: list[FieldError]) -> list[str]:
    """Tab IDs that have at least one error, in tab order."""
    flagged = {error.tab_id for error in errors}
    extra = sorted(flagged.difference(TAB_ORDER))
    return [tab_id for tab_id in TAB_ORDER if tab_id in flagged] + extra


def summary_message(result: ValidationResult) -> str:
    if result.is_valid:
        return "All required fields are complete. Ready to submit."

    count = len(result.errors)
    if count == 1:
        return f"1 required field is missing ({result.completion_percentage}% complete)"
    return f"{count} required fields are missing ({result.completion_percentage}% complete)"


def _lookup_field(name: str) -> Optional[tuple[Tab, TabSection, RequiredField]]:
    for tab in TABS:
        for section in tab.sections:
            for required in section.fields:
                if name in (required.name, required.path):
                    return tab, section, required
    return None


def errors_from_server(server_errors: dict[str, str]) -> list[FieldError]:
    """
    Map server-reported `{field: message}` errors into `FieldError`s.

    Known field names and paths keep their tab; otherwise the first path
    segment picks the tab. Anything unrecognised lands on the incident tab.
    """
    errors = []
    for name, message in server_errors.items():
        match = _lookup_field(name)
        if match is not None:
            tab, section, required = match
            errors.append(FieldError(
                field=required.name,
                label=required.label,
                message=message,
                tab_id=tab.tab_id,
                tab_name=tab.tab_name,
                section=section.name,
                path=required.path,
            ))
            continue

        head = re.split(r"[.\[]", name, maxsplit=1)[0]
        tab = _TABS_BY_ID[_SECTION_TABS.get(head, "incident")]
        errors.append(FieldError(
            field=name,
            label=name.replace("_", " ").capitalize(),
            message=message,
            tab_id=tab.tab_id,
            tab_name=tab.tab_name,
            path=name,
        ))
    return errors


def errors_as_map(errors: list[FieldError]) -> dict[str, str]:
    """Flatten errors to the `{field: message}` wire shape."""
    return {error.field: error.message for error in errors}


def is_server_identifier(identifier: Optional[str]) -> bool:
    """False for empty, 'new' and locally generated (temp_) identifiers."""
    if not identifier or not isinstance(identifier, str):
        return False
    trimmed = identifier.strip()
    if not trimmed or trimmed.lower() == "new":
        return False
    return not trimmed.startswith(LOCAL_ID_PREFIX)


def new_local_id() -> str:
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4()}"
