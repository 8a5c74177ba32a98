"""Pydantic schemas for the audit trail."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, computed_field


class AuditEventResponse(BaseModel):
    """A single audit event as stored."""

    id: UUID = Field(..., description="Event ID")
    user_id: Optional[str] = Field(None, description="Acting user (NULL for system events)")
    action: str
    category: str
    severity: str
    resource_type: str
    resource_id: str
    details: dict[str, Any] = Field(default_factory=dict, description="Sanitized payload")
    checksum: str
    created_at: datetime

    class Config:
        """Pydantic config."""

        from_attributes = True


class ChecksumMismatch(BaseModel):
    event_id: UUID
    expected: str = Field(..., description="Checksum recomputed from the stored fields")
    actual: Optional[str] = Field(None, description="Checksum stored with the event")


class IntegrityReport(BaseModel):
    """Result of recomputing every audit checksum."""

    checked: int = Field(..., description="Number of events verified")
    failures: list[ChecksumMismatch] = Field(default_factory=list)
    checked_at: datetime

    @computed_field
    @property
    def is_intact(self) -> bool:
        return not self.failures
