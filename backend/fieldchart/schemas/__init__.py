"""Pydantic schemas for request/response validation."""

from fieldchart.schemas.audit import AuditEventResponse, ChecksumMismatch, IntegrityReport
from fieldchart.schemas.encounter import (
    AmendmentRequest,
    EncounterResponse,
    StatusChangeRequest,
    SubmitResponse,
)
from fieldchart.schemas.snapshot import EncounterSnapshot

__all__ = [
    "EncounterSnapshot",
    "EncounterResponse",
    "SubmitResponse",
    "StatusChangeRequest",
    "AmendmentRequest",
    "AuditEventResponse",
    "ChecksumMismatch",
    "IntegrityReport",
]
