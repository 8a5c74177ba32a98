"""Tests for the write-then-sync reconciler.

The remote side is an in-process fake; the local store is a real SQLite
file, so every assertion about durability reads back what was committed.
"""

import asyncio

import pytest

from fieldchart.client import (
    Ok,
    OfflineStatus,
    SavedLocallyOnly,
    SyncReconciler,
    ValidationRejected,
)
from fieldchart.client.reconciler import (
    MSG_QUEUED_OFFLINE,
    MSG_QUEUED_RETRY,
    MSG_SAVED,
    MSG_SAVED_OFFLINE,
    MSG_SAVED_RETRY,
)
from fieldchart.core.exceptions import NetworkError, ServerError, SubmissionInProgressError
from fieldchart.models.encounter import EncounterStatus
from fieldchart.schemas.encounter import SubmitResponse
from fieldchart.services.validation_gate import new_local_id

ACTOR = "7b1e2c3d-4f5a-4b6c-8d7e-9f0a1b2c3d4e"
SERVER_ID = "0d6f2c1e-8a4b-4f7e-b1c2-9e3d5a7f6b80"


@pytest.fixture
def local_id() -> str:
    return new_local_id()


# ============================================================================
# Core Scenarios
# ============================================================================

@pytest.mark.asyncio
async def test_offline_draft_save(reconciler, store, remote, network, empty_snapshot, local_id):
    """Scenario A: an offline draft is stored locally and nothing is sent."""
    network.set_online(False)

    result = await reconciler.save(local_id, empty_snapshot, ACTOR)

    assert isinstance(result, SavedLocallyOnly)
    assert result.reason == "offline"
    assert result.message == MSG_SAVED_OFFLINE
    assert remote.calls == []

    stored = await store.get(local_id)
    assert stored is not None, "Offline save must be durable"
    assert stored.offline_status == OfflineStatus.DRAFT
    assert stored.attempted_submit is False


@pytest.mark.asyncio
async def test_online_submit_creates_then_submits(reconciler, store, remote, valid_snapshot, local_id):
    """Scenario B: create, promote, submit, then mark synced."""
    result = await reconciler.submit(local_id, valid_snapshot, ACTOR)

    assert isinstance(result, Ok)
    assert result.operation == "submit"
    assert remote.calls == ["create", "submit"]

    server_id = remote.created_ids[0]
    assert result.record.server_id == server_id
    assert result.record.offline_status == OfflineStatus.SYNCED
    assert result.record.server_synced_at is not None

    assert await store.get(local_id) is None, "Local key must be replaced by the server id"
    stored = await store.get(server_id)
    assert stored.offline_status == OfflineStatus.SYNCED
    assert stored.attempted_submit is True
    assert await reconciler.pending_count() == 0


@pytest.mark.asyncio
async def test_server_rejection_routes_to_tab(reconciler, store, remote, valid_snapshot, local_id):
    """Scenario C: server-side validation keeps the record queued and names the tab."""
    remote.submit_response = SubmitResponse(
        success=False,
        message="1 required field is missing (97% complete)",
        errors={"narrative": "too short"},
        status=EncounterStatus.IN_PROGRESS,
    )

    result = await reconciler.submit(local_id, valid_snapshot, ACTOR)

    assert isinstance(result, ValidationRejected)
    assert result.source == "server"
    assert result.first_invalid_tab == "narrative"
    assert result.errors[0].message == "too short"
    assert remote.calls == ["create", "submit"]

    stored = await store.find_by_local_id(local_id)
    assert stored.server_id == remote.created_ids[0]
    assert stored.offline_status == OfflineStatus.PENDING_SUBMISSION
    assert stored.last_error == "1 required field is missing (97% complete)"
    assert result.record == stored


@pytest.mark.asyncio
async def test_offline_submit_is_queued(reconciler, store, remote, network, valid_snapshot, local_id):
    """Scenario D: an offline submit is queued and the user is told it will sync."""
    network.set_online(False)

    result = await reconciler.submit(local_id, valid_snapshot, ACTOR)

    assert isinstance(result, SavedLocallyOnly)
    assert result.operation == "submit"
    assert result.reason == "offline"
    assert result.message == MSG_QUEUED_OFFLINE
    assert remote.calls == []

    stored = await store.get(local_id)
    assert stored.offline_status == OfflineStatus.PENDING_SUBMISSION
    assert stored.attempted_submit is True
    assert stored.submitted_at is not None
    assert await network.refresh_pending(store) == 1
    assert network.pending_count == 1


# ============================================================================
# Validation Before Write
# ============================================================================

@pytest.mark.asyncio
async def test_invalid_submit_makes_no_write_or_call(reconciler, store, remote, valid_snapshot, local_id):
    valid_snapshot.narrative = "brief"
    valid_snapshot.signatures.disclosures = {}

    result = await reconciler.submit(local_id, valid_snapshot, ACTOR)

    assert isinstance(result, ValidationRejected)
    assert result.source == "client"
    assert result.first_invalid_tab == "narrative"
    assert result.record is None
    assert result.message == "2 required fields are missing (94% complete)"
    assert remote.calls == []
    assert await store.find_by_local_id(local_id) is None
    assert not reconciler.is_submitting(local_id)


@pytest.mark.asyncio
async def test_invalid_submit_keeps_existing_draft(reconciler, store, network, empty_snapshot, local_id):
    """A rejected submit does not advance a saved draft."""
    network.set_online(False)
    await reconciler.save(local_id, empty_snapshot, ACTOR)

    await reconciler.submit(local_id, empty_snapshot, ACTOR)

    stored = await store.get(local_id)
    assert stored.offline_status == OfflineStatus.DRAFT
    assert stored.attempted_submit is False


# ============================================================================
# Save
# ============================================================================

@pytest.mark.asyncio
async def test_online_save_creates_once_then_updates(reconciler, store, remote, empty_snapshot, local_id):
    first = await reconciler.save(local_id, empty_snapshot, ACTOR)
    assert isinstance(first, Ok)
    assert first.message == MSG_SAVED

    empty_snapshot.narrative = "Patient resting comfortably"
    second = await reconciler.save(local_id, empty_snapshot, ACTOR)

    assert isinstance(second, Ok)
    assert remote.calls == ["create", "update"]
    assert second.record.server_id == remote.created_ids[0]
    assert second.record.offline_status == OfflineStatus.DRAFT
    assert (await store.get(remote.created_ids[0])).snapshot.narrative == "Patient resting comfortably"


@pytest.mark.asyncio
async def test_save_of_server_encounter_uses_update(reconciler, store, remote, empty_snapshot, local_id):
    """An encounter opened from the server is never created again."""
    result = await reconciler.save(local_id, empty_snapshot, ACTOR, server_id=SERVER_ID)

    assert isinstance(result, Ok)
    assert remote.calls == ["update"]
    assert result.record.key == SERVER_ID


@pytest.mark.asyncio
async def test_save_ignores_local_style_server_id(reconciler, remote, empty_snapshot, local_id):
    result = await reconciler.save(local_id, empty_snapshot, ACTOR, server_id="new")

    assert result.record.server_id == remote.created_ids[0]
    assert remote.calls == ["create"]


@pytest.mark.asyncio
@pytest.mark.parametrize("error,reason", [
    (NetworkError("connection reset"), "network_error"),
    (ServerError("Internal server error", 500), "server_error"),
])
async def test_remote_failure_keeps_local_copy(reconciler, store, remote, empty_snapshot, local_id, error, reason):
    """Remote failures downgrade to a local-only save and are counted."""
    remote.create_error = error

    result = await reconciler.save(local_id, empty_snapshot, ACTOR)

    assert isinstance(result, SavedLocallyOnly)
    assert result.reason == reason
    assert result.message == MSG_SAVED_RETRY
    stored = await store.get(local_id)
    assert stored.sync_attempts == 1
    assert stored.last_error == str(error)

    remote.create_error = None
    retried = await reconciler.save(local_id, empty_snapshot, ACTOR)

    assert isinstance(retried, Ok)
    assert retried.record.sync_attempts == 0
    assert retried.record.last_error is None
    assert remote.count("create") == 2


@pytest.mark.asyncio
async def test_slow_remote_times_out(store, remote, network, empty_snapshot, local_id):
    """A remote call that outlives the timeout counts as a network failure."""
    reconciler = SyncReconciler(store, remote, network, timeout=0.05)
    remote.delay = 1.0

    result = await reconciler.save(local_id, empty_snapshot, ACTOR)

    assert isinstance(result, SavedLocallyOnly)
    assert result.reason == "network_error"
    assert "timed out" in (await store.get(local_id)).last_error


# ============================================================================
# Idempotence and Retries
# ============================================================================

@pytest.mark.asyncio
async def test_submit_retry_after_create_reuses_server_id(reconciler, store, remote, valid_snapshot, local_id):
    """Create succeeded, submit failed: the retry must not create a second encounter."""
    remote.submit_error = NetworkError("connection dropped")

    first = await reconciler.submit(local_id, valid_snapshot, ACTOR)
    assert isinstance(first, SavedLocallyOnly)
    assert first.message == MSG_QUEUED_RETRY
    assert first.record.server_id == remote.created_ids[0]
    assert first.record.offline_status == OfflineStatus.PENDING_SUBMISSION

    remote.submit_error = None
    second = await reconciler.submit(local_id, valid_snapshot, ACTOR)

    assert isinstance(second, Ok)
    assert remote.calls == ["create", "submit", "submit"]
    assert len(remote.created_ids) == 1


@pytest.mark.asyncio
async def test_resubmit_synced_record_never_creates(reconciler, store, remote, valid_snapshot, local_id):
    await reconciler.submit(local_id, valid_snapshot, ACTOR)

    again = await reconciler.submit(local_id, valid_snapshot, ACTOR)

    assert isinstance(again, Ok)
    assert remote.count("create") == 1
    assert remote.count("submit") == 2
    assert again.record.offline_status == OfflineStatus.SYNCED


@pytest.mark.asyncio
async def test_sync_pending_submits_queue(reconciler, store, remote, network, valid_snapshot):
    network.set_online(False)
    first_id, second_id = new_local_id(), new_local_id()
    await reconciler.submit(first_id, valid_snapshot, ACTOR)
    await reconciler.submit(second_id, valid_snapshot, ACTOR)

    offline_summary = await reconciler.sync_pending(ACTOR)
    assert offline_summary.total == offline_summary.queued == 2
    assert remote.calls == []

    network.set_online(True)
    summary = await reconciler.sync_pending(ACTOR)

    assert summary.total == 2
    assert summary.synced == 2
    assert summary.rejected == summary.queued == 0
    assert remote.count("create") == 2
    assert await store.count_pending() == 0


@pytest.mark.asyncio
async def test_sync_pending_counts_rejections_and_failures(reconciler, store, remote, network, valid_snapshot):
    network.set_online(False)
    await reconciler.submit(new_local_id(), valid_snapshot, ACTOR)
    network.set_online(True)

    remote.submit_response = SubmitResponse(success=False, message="Rejected", errors={"dob": "Invalid date"})
    rejected = await reconciler.sync_pending(ACTOR)
    assert rejected.rejected == 1

    remote.submit_error = NetworkError("unreachable")
    queued = await reconciler.sync_pending(ACTOR)
    assert queued.queued == 1
    assert await store.count_pending() == 1


# ============================================================================
# Concurrency
# ============================================================================

@pytest.mark.asyncio
async def test_second_submit_while_in_flight_is_refused(reconciler, remote, valid_snapshot, local_id):
    remote.gate = asyncio.Event()
    first = asyncio.create_task(reconciler.submit(local_id, valid_snapshot, ACTOR))
    await remote.submit_entered.wait()

    assert reconciler.is_submitting(local_id)
    with pytest.raises(SubmissionInProgressError):
        await reconciler.submit(local_id, valid_snapshot, ACTOR)

    remote.gate.set()
    result = await first

    assert isinstance(result, Ok)
    assert remote.count("submit") == 1
    assert not reconciler.is_submitting(local_id)


@pytest.mark.asyncio
async def test_cancelled_submit_keeps_local_write(reconciler, store, remote, valid_snapshot, local_id):
    """Cancellation propagates, and the queued record is not rolled back."""
    remote.gate = asyncio.Event()
    task = asyncio.create_task(reconciler.submit(local_id, valid_snapshot, ACTOR))
    await remote.submit_entered.wait()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    stored = await store.find_by_local_id(local_id)
    assert stored.offline_status == OfflineStatus.PENDING_SUBMISSION
    assert stored.attempted_submit is True
    assert not reconciler.is_submitting(local_id)


@pytest.mark.asyncio
async def test_concurrent_save_and_submit_serialize(reconciler, store, remote, valid_snapshot, local_id):
    """Racing save and submit on one encounter create it once and end synced."""
    remote.delay = 0.01

    saved, submitted = await asyncio.gather(
        reconciler.save(local_id, valid_snapshot, ACTOR),
        reconciler.submit(local_id, valid_snapshot, ACTOR),
    )

    assert isinstance(saved, Ok)
    assert isinstance(submitted, Ok)
    assert remote.count("create") == 1, "Only one server encounter may be created"

    stored = await store.find_by_local_id(local_id)
    assert stored.server_id == remote.created_ids[0]
    assert stored.offline_status == OfflineStatus.SYNCED
    assert stored.attempted_submit is True


@pytest.mark.asyncio
async def test_offline_save_racing_submit_never_reverts_to_draft(
    reconciler, store, network, valid_snapshot, local_id,
):
    network.set_online(False)

    await asyncio.gather(
        reconciler.submit(local_id, valid_snapshot, ACTOR),
        reconciler.save(local_id, valid_snapshot, ACTOR),
    )

    stored = await store.get(local_id)
    assert stored.offline_status == OfflineStatus.PENDING_SUBMISSION
    assert await store.count_pending() == 1


@pytest.mark.asyncio
async def test_repeated_offline_saves_are_always_found(reconciler, store, network, empty_snapshot, local_id):
    network.set_online(False)

    for attempt in range(5):
        empty_snapshot.narrative = f"Draft revision {attempt}"
        result = await reconciler.save(local_id, empty_snapshot, ACTOR)

        assert isinstance(result, SavedLocallyOnly)
        stored = await store.get(local_id)
        assert stored is not None, f"Save {attempt} must be readable"
        assert stored.snapshot.narrative == f"Draft revision {attempt}"

    await asyncio.gather(*(reconciler.save(local_id, empty_snapshot, ACTOR) for _ in range(5)))
    assert await store.get(local_id) is not None


@pytest.mark.asyncio
async def test_per_encounter_locks_are_released(reconciler, remote, valid_snapshot):
    remote.delay = 0.01
    local_ids = [new_local_id() for _ in range(3)]

    await asyncio.gather(*(reconciler.save(each, valid_snapshot, ACTOR) for each in local_ids))
    await asyncio.gather(*(reconciler.submit(each, valid_snapshot, ACTOR) for each in local_ids))

    assert reconciler._locks == {}
    assert reconciler._lock_users == {}


# ============================================================================
# Resubmitting Synced Records
# ============================================================================

@pytest.mark.asyncio
async def test_failed_resubmit_of_synced_record_is_not_reported_as_queued(
    reconciler, store, remote, valid_snapshot, local_id,
):
    """A synced record is never retried by sync_pending, so it must not claim to be queued."""
    first = await reconciler.submit(local_id, valid_snapshot, ACTOR)
    assert isinstance(first, Ok)

    remote.submit_error = NetworkError("connection dropped")
    again = await reconciler.submit(local_id, valid_snapshot, ACTOR)

    assert isinstance(again, SavedLocallyOnly)
    assert again.message == MSG_SAVED_RETRY
    assert again.record.offline_status == OfflineStatus.SYNCED
    assert await store.count_pending() == 0


@pytest.mark.asyncio
async def test_offline_resubmit_of_synced_record_is_saved_message(
    reconciler, remote, network, valid_snapshot, local_id,
):
    await reconciler.submit(local_id, valid_snapshot, ACTOR)
    network.set_online(False)

    result = await reconciler.submit(local_id, valid_snapshot, ACTOR)

    assert isinstance(result, SavedLocallyOnly)
    assert result.message == MSG_SAVED_OFFLINE
    assert result.record.offline_status == OfflineStatus.SYNCED
