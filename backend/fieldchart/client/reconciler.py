"""Sync reconciler - durable local write first, then reconcile with the server.

Save and submit always persist to the local store before any network
attempt. Remote failures never escape this module: they become a
`SavedLocallyOnly` outcome, because the local copy already guarantees that
nothing is lost. Lifecycle violations are not remote failures and are
raised as-is.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Optional, TypeVar

from fieldchart.client.connectivity import ConnectivitySignal
from fieldchart.client.records import (
    EncounterRecord,
    Ok,
    OfflineStatus,
    SavedLocallyOnly,
    SyncResult,
    SyncSummary,
    ValidationRejected,
)
from fieldchart.client.remote import EncounterRemoteAPI
from fieldchart.client.store import LocalEncounterStore
from fieldchart.core.config import settings
from fieldchart.core.exceptions import NetworkError, RemoteError, SubmissionInProgressError
from fieldchart.models.base import utcnow
from fieldchart.schemas.snapshot import EncounterSnapshot
from fieldchart.services import validation_gate

logger = logging.getLogger(__name__)

T = TypeVar("T")

MSG_SAVED = "Encounter saved"
MSG_SAVED_OFFLINE = "Saved locally. Will sync when online."
MSG_SAVED_RETRY = "Saved locally. Will retry when the server is reachable."
MSG_SUBMITTED = "Encounter submitted for review"
MSG_QUEUED_OFFLINE = "Queued for submission. Will sync when online."
MSG_QUEUED_RETRY = "Queued for submission. Will retry when the server is reachable."


class SyncReconciler:
    """
    Orchestrates write-then-sync for encounters edited on this device.

    Callers address an encounter by its `local_id`; once the server has
    assigned an identifier every remote call and local write uses it.
    Writes for one encounter are serialized, and at most one submit per
    encounter can be in flight.
    """

    def __init__(
        self,
        store: LocalEncounterStore,
        remote: EncounterRemoteAPI,
        connectivity: ConnectivitySignal,
        timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.remote = remote
        self.connectivity = connectivity
        self.timeout = timeout if timeout is not None else settings.REMOTE_TIMEOUT_SECONDS
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._in_flight: set[str] = set()

    def is_submitting(self, local_id: str) -> bool:
        return local_id in self._in_flight

    async def pending_count(self) -> int:
        return await self.store.count_pending()

    async def save(
        self,
        local_id: str,
        snapshot: EncounterSnapshot,
        actor_id: str,
        server_id: Optional[str] = None,
    ) -> SyncResult:
        """
        Save a draft locally, then push it to the server when online.

        `server_id` is only consulted when nothing is stored yet for
        `local_id` (an encounter opened from the server).
        """
        async with self._serialized(local_id):
            record = await self._write_local(
                local_id, snapshot, server_id, OfflineStatus.DRAFT, submitting=False,
            )

            if not self.connectivity.is_online:
                logger.info("Encounter saved offline", extra={"local_id": local_id, "key": record.key})
                return SavedLocallyOnly(
                    operation="save", record=record, reason="offline", message=MSG_SAVED_OFFLINE,
                )

            try:
                if record.server_id:
                    await self._call_remote(self.remote.update_encounter(record.server_id, snapshot, actor_id))
                else:
                    record = await self._create_remote(record, snapshot, actor_id)
            except RemoteError as exc:
                record = await self._record_failure(record, exc)
                return SavedLocallyOnly(
                    operation="save", record=record, reason=_reason(exc), message=MSG_SAVED_RETRY,
                )

            record = await self._record_success(record)
            logger.info("Encounter saved to server", extra={"local_id": local_id, "server_id": record.server_id})
            return Ok(operation="save", record=record, message=MSG_SAVED)

    async def submit(
        self,
        local_id: str,
        snapshot: EncounterSnapshot,
        actor_id: str,
        server_id: Optional[str] = None,
    ) -> SyncResult:
        """
        Validate, queue locally, then create (if needed) and submit for review.

        Raises:
            SubmissionInProgressError: A submit for this encounter has not finished
        """
        if local_id in self._in_flight:
            raise SubmissionInProgressError(local_id)
        self._in_flight.add(local_id)
        try:
            result = validation_gate.validate(snapshot)
            if not result.is_valid:
                logger.info(
                    "Submission blocked by validation",
                    extra={"local_id": local_id, "error_count": len(result.errors)},
                )
                return ValidationRejected(
                    source="client",
                    errors=result.errors,
                    first_invalid_tab=validation_gate.get_first_invalid_tab(snapshot),
                    message=validation_gate.summary_message(result),
                )

            async with self._serialized(local_id):
                record = await self._write_local(
                    local_id, snapshot, server_id, OfflineStatus.PENDING_SUBMISSION, submitting=True,
                )

                if not self.connectivity.is_online:
                    logger.info("Submission queued offline", extra={"local_id": local_id, "key": record.key})
                    return SavedLocallyOnly(
                        operation="submit", record=record, reason="offline",
                        message=MSG_QUEUED_OFFLINE if _is_queued(record) else MSG_SAVED_OFFLINE,
                    )

                return await self._push_submission(record, snapshot, actor_id)
        finally:
            self._in_flight.discard(local_id)

    async def sync_pending(self, actor_id: str) -> SyncSummary:
        """Retry every queued submission, oldest first."""
        pending = await self.store.list_pending()
        summary = SyncSummary(total=len(pending))
        if not self.connectivity.is_online:
            summary.queued = len(pending)
            return summary

        for record in pending:
            try:
                result = await self.submit(record.local_id, record.snapshot, actor_id)
            except SubmissionInProgressError:
                summary.queued += 1
                continue

            if isinstance(result, Ok):
                summary.synced += 1
            elif isinstance(result, ValidationRejected):
                summary.rejected += 1
            else:
                summary.queued += 1

        logger.info("Pending submissions retried", extra=summary.model_dump())
        return summary

    async def _push_submission(
        self,
        record: EncounterRecord,
        snapshot: EncounterSnapshot,
        actor_id: str,
    ) -> SyncResult:
        try:
            if not record.server_id:
                record = await self._create_remote(record, snapshot, actor_id)
            response = await self._call_remote(
                self.remote.submit_for_review(record.server_id, snapshot, actor_id)
            )
        except RemoteError as exc:
            record = await self._record_failure(record, exc)
            return SavedLocallyOnly(
                operation="submit", record=record, reason=_reason(exc),
                message=MSG_QUEUED_RETRY if _is_queued(record) else MSG_SAVED_RETRY,
            )

        if not response.success:
            errors = validation_gate.errors_from_server(response.errors)
            record = await self._put(record.model_copy(update={
                "sync_attempts": 0,
                "last_error": response.message,
            }))
            logger.info(
                "Submission rejected by server",
                extra={"local_id": record.local_id, "server_id": record.server_id, "error_count": len(errors)},
            )
            return ValidationRejected(
                source="server",
                errors=errors,
                first_invalid_tab=validation_gate.first_tab_with_errors(errors),
                message=response.message or "Submission rejected by server",
                record=record,
            )

        record = await self._put(record.model_copy(update={
            "offline_status": OfflineStatus.SYNCED,
            "server_synced_at": utcnow(),
            "sync_attempts": 0,
            "last_error": None,
        }))
        logger.info("Encounter submitted", extra={"local_id": record.local_id, "server_id": record.server_id})
        return Ok(operation="submit", record=record, message=response.message or MSG_SUBMITTED)

    async def _write_local(
        self,
        local_id: str,
        snapshot: EncounterSnapshot,
        server_id: Optional[str],
        status: OfflineStatus,
        submitting: bool,
    ) -> EncounterRecord:
        now = utcnow()
        existing = await self.store.find_by_local_id(local_id)
        if existing is None:
            record = EncounterRecord(
                local_id=local_id,
                server_id=server_id if validation_gate.is_server_identifier(server_id) else None,
                snapshot=snapshot,
                offline_status=status,
                attempted_submit=submitting,
                saved_at=now,
                submitted_at=now if submitting else None,
            )
        else:
            if server_id and existing.server_id is None and validation_gate.is_server_identifier(server_id):
                existing = await self.store.promote(local_id, server_id)
            update = {"snapshot": snapshot, "offline_status": status, "saved_at": now}
            if submitting:
                update.update(attempted_submit=True, submitted_at=now)
            record = existing.model_copy(update=update)
        return await self._put(record)

    async def _create_remote(
        self,
        record: EncounterRecord,
        snapshot: EncounterSnapshot,
        actor_id: str,
    ) -> EncounterRecord:
        server_id = await self._call_remote(self.remote.create_encounter(snapshot, actor_id))
        promoted = await self.store.promote(record.local_id, server_id)
        logger.info("Local encounter promoted", extra={"local_id": record.local_id, "server_id": server_id})
        return promoted

    async def _call_remote(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"Remote call timed out after {self.timeout}s") from exc

    async def _record_failure(self, record: EncounterRecord, exc: RemoteError) -> EncounterRecord:
        logger.warning(
            "Remote sync failed; keeping local copy",
            extra={"local_id": record.local_id, "key": record.key, "reason": _reason(exc), "error": str(exc)},
        )
        return await self._put(record.model_copy(update={
            "sync_attempts": record.sync_attempts + 1,
            "last_error": str(exc),
        }))

    async def _record_success(self, record: EncounterRecord) -> EncounterRecord:
        if record.sync_attempts == 0 and record.last_error is None:
            return record
        return await self._put(record.model_copy(update={"sync_attempts": 0, "last_error": None}))

    async def _put(self, record: EncounterRecord) -> EncounterRecord:
        return await self.store.put(record.key, record)

    @asynccontextmanager
    async def _serialized(self, local_id: str) -> AsyncIterator[None]:
        """Hold the per-encounter lock; the entry is dropped once nobody holds or awaits it."""
        lock = self._locks.get(local_id)
        if lock is None:
            lock = self._locks[local_id] = asyncio.Lock()
        self._lock_users[local_id] = self._lock_users.get(local_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[local_id] -= 1
            if not self._lock_users[local_id]:
                del self._lock_users[local_id]
                del self._locks[local_id]


def _is_queued(record: EncounterRecord) -> bool:
    # Synced records never fall back to pending, so sync_pending will not retry them
    return record.offline_status == OfflineStatus.PENDING_SUBMISSION


def _reason(exc: RemoteError) -> str:
    return "network_error" if isinstance(exc, NetworkError) else "server_error"
