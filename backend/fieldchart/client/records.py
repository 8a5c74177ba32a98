"""Client-local encounter records and reconciler outcomes."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from fieldchart.schemas.snapshot import EncounterSnapshot
from fieldchart.services.validation_gate import FieldError


class OfflineStatus(str, Enum):
    """Sync state of a local record. Only ever advances."""

    DRAFT = "draft"
    PENDING_SUBMISSION = "pending_submission"
    SYNCED = "synced"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def advance_to(self, requested: "OfflineStatus") -> "OfflineStatus":
        """The later of the two statuses."""
        return requested if requested.rank > self.rank else self


_STATUS_RANK = {
    OfflineStatus.DRAFT: 0,
    OfflineStatus.PENDING_SUBMISSION: 1,
    OfflineStatus.SYNCED: 2,
}


class EncounterRecord(BaseModel):
    """
    Durability and retry ledger for one encounter on the device.

    Stored under `server_id` once the server has assigned one, otherwise
    under `local_id`.
    """

    local_id: str = Field(..., description="Stable identifier assigned on the device")
    server_id: Optional[str] = Field(None, description="Server identifier, set once")
    snapshot: EncounterSnapshot
    offline_status: OfflineStatus = OfflineStatus.DRAFT
    attempted_submit: bool = False
    saved_at: datetime
    submitted_at: Optional[datetime] = None
    server_synced_at: Optional[datetime] = None
    sync_attempts: int = Field(0, description="Failed remote attempts since the last success")
    last_error: Optional[str] = None

    @property
    def key(self) -> str:
        return self.server_id or self.local_id


Operation = Literal["save", "submit"]


class Ok(BaseModel):
    """The remote side accepted the operation."""

    kind: Literal["ok"] = "ok"
    operation: Operation
    record: EncounterRecord
    message: str


class SavedLocallyOnly(BaseModel):
    """Durably stored on the device; the server has not caught up yet."""

    kind: Literal["saved_locally"] = "saved_locally"
    operation: Operation
    record: EncounterRecord
    reason: Literal["offline", "network_error", "server_error"]
    message: str


class ValidationRejected(BaseModel):
    """Blocking field errors, from the local gate or the server."""

    kind: Literal["validation_rejected"] = "validation_rejected"
    operation: Operation = "submit"
    source: Literal["client", "server"]
    errors: list[FieldError]
    first_invalid_tab: Optional[str] = None
    message: str
    record: Optional[EncounterRecord] = Field(
        None,
        description="Stored record; None when rejected before the local write",
    )


SyncResult = Annotated[Union[Ok, SavedLocallyOnly, ValidationRejected], Field(discriminator="kind")]


class SyncSummary(BaseModel):
    """Totals from a retry pass over queued submissions."""

    total: int = 0
    synced: int = 0
    queued: int = 0
    rejected: int = 0
