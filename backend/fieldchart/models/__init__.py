"""Database models for FieldChart."""

from fieldchart.models.base import Base
from fieldchart.models.encounter import Encounter, EncounterStatus, EncounterType
from fieldchart.models.audit import AuditEvent

__all__ = [
    "Base",
    "Encounter",
    "EncounterStatus",
    "EncounterType",
    "AuditEvent",
]
