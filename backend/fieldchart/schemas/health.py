"""Health report schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # Encounters can be written but the audit trail is unavailable
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    """Result of probing one dependency."""

    status: HealthStatus
    latency_ms: Optional[float] = Field(None, description="Probe round trip in milliseconds")
    details: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = Field(None, description="Probe failure, when not healthy")


class HealthReport(BaseModel):
    """Health of the encounter service and the stores it depends on."""

    status: HealthStatus = Field(..., description="Worst status across components")
    checked_at: datetime
    version: str
    environment: str
    components: dict[str, ComponentHealth]

    class Config:
        """Pydantic config."""

        json_schema_extra = {
            "example": {
                "status": "healthy",
                "checked_at": "2026-03-14T08:30:00Z",
                "version": "1.0.0",
                "environment": "production",
                "components": {
                    "database": {"status": "healthy", "latency_ms": 3.2, "details": {"dialect": "postgresql"}},
                    "audit_trail": {
                        "status": "healthy",
                        "latency_ms": 1.7,
                        "details": {"events": 1842, "last_event_at": "2026-03-14T08:29:41Z"},
                    },
                },
            }
        }
