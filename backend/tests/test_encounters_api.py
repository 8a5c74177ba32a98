"""Tests for the encounter HTTP API."""

from uuid import uuid4

import pytest


def _body(snapshot) -> dict:
    return snapshot.model_dump(mode="json")


async def _create(client, auth_headers, snapshot) -> dict:
    response = await client.post("/api/v1/encounters", json=_body(snapshot), headers=auth_headers)
    assert response.status_code == 201, response.text
    return response.json()


# ============================================================================
# Authentication
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.security
async def test_missing_token_is_rejected(client, valid_snapshot):
    response = await client.post("/api/v1/encounters", json=_body(valid_snapshot))

    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"


@pytest.mark.asyncio
@pytest.mark.security
async def test_malformed_token_is_rejected(client, valid_snapshot):
    response = await client.post(
        "/api/v1/encounters",
        json=_body(valid_snapshot),
        headers={"Authorization": "Bearer not-a-user-id"},
    )

    assert response.status_code == 401


# ============================================================================
# Create / Read / Update
# ============================================================================

@pytest.mark.asyncio
async def test_create_and_get_encounter(client, auth_headers, user_id, valid_snapshot):
    created = await _create(client, auth_headers, valid_snapshot)

    assert created["status"] == "in_progress"
    assert created["is_locked"] is False
    assert created["is_amended"] is False
    assert created["chief_complaint"] == "Laceration to left forearm"
    assert created["created_by"] == user_id

    response = await client.get(f"/api/v1/encounters/{created['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["id"] == created["id"]


@pytest.mark.asyncio
async def test_unknown_encounter_is_404(client, auth_headers):
    response = await client.get(f"/api/v1/encounters/{uuid4()}", headers=auth_headers)

    assert response.status_code == 404
    assert "not found" in response.json()["detail"]


@pytest.mark.asyncio
async def test_snapshot_with_unknown_field_is_rejected(client, auth_headers, valid_snapshot):
    body = _body(valid_snapshot)
    body["incident"]["shoe_size"] = "11"

    response = await client.post("/api/v1/encounters", json=body, headers=auth_headers)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_encounter(client, auth_headers, valid_snapshot):
    created = await _create(client, auth_headers, valid_snapshot)

    valid_snapshot.disposition.notes = "Follow up in 48 hours"
    response = await client.put(
        f"/api/v1/encounters/{created['id']}",
        json=_body(valid_snapshot),
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert response.json()["plan"] == "Follow up in 48 hours"


# ============================================================================
# Submit
# ============================================================================

@pytest.mark.asyncio
async def test_submit_valid_snapshot(client, auth_headers, valid_snapshot):
    created = await _create(client, auth_headers, valid_snapshot)

    response = await client.put(
        f"/api/v1/encounters/{created['id']}/submit",
        json=_body(valid_snapshot),
        headers=auth_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "pending_review"


@pytest.mark.asyncio
async def test_submit_invalid_snapshot_is_422(client, auth_headers, valid_snapshot):
    """Gate failures come back as {success: false, message, errors}."""
    created = await _create(client, auth_headers, valid_snapshot)

    valid_snapshot.narrative = "too short"
    response = await client.put(
        f"/api/v1/encounters/{created['id']}/submit",
        json=_body(valid_snapshot),
        headers=auth_headers,
    )

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["errors"] == {"narrative": "Narrative (min 25 chars) is required"}
    assert body["message"] == "1 required field is missing (97% complete)"
    assert body["status"] == "in_progress"


# ============================================================================
# Lock / Amend / Status
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.security
async def test_locked_encounter_update_is_409(client, auth_headers, valid_snapshot):
    created = await _create(client, auth_headers, valid_snapshot)
    encounter_url = f"/api/v1/encounters/{created['id']}"

    locked = await client.put(f"{encounter_url}/lock", headers=auth_headers)
    assert locked.status_code == 200
    assert locked.json()["is_locked"] is True
    assert locked.json()["status"] == "complete"

    valid_snapshot.incident.chief_complaint = "Changed after lock"
    response = await client.put(encounter_url, json=_body(valid_snapshot), headers=auth_headers)

    assert response.status_code == 409
    assert "Use amendment process instead" in response.json()["detail"]
    assert response.json()["encounter_id"] == created["id"]

    second_lock = await client.put(f"{encounter_url}/lock", headers=auth_headers)
    assert second_lock.status_code == 409
    assert second_lock.json()["detail"] == "Encounter is already locked"


@pytest.mark.asyncio
@pytest.mark.security
async def test_amendment_flow(client, auth_headers, valid_snapshot):
    created = await _create(client, auth_headers, valid_snapshot)
    encounter_url = f"/api/v1/encounters/{created['id']}"

    not_locked = await client.put(f"{encounter_url}/amend", json={"reason": "Typo"}, headers=auth_headers)
    assert not_locked.status_code == 409

    await client.put(f"{encounter_url}/lock", headers=auth_headers)

    blank = await client.put(f"{encounter_url}/amend", json={"reason": "  "}, headers=auth_headers)
    assert blank.status_code == 422
    assert "amendment_reason" in blank.json()["errors"]

    amended = await client.put(f"{encounter_url}/amend", json={"reason": "Wrong side"}, headers=auth_headers)
    assert amended.status_code == 200
    assert amended.json()["is_amended"] is True
    assert amended.json()["locked_at"] is not None, "Amendment must not clear the lock"

    valid_snapshot.incident.chief_complaint = "Laceration to right forearm"
    updated = await client.put(encounter_url, json=_body(valid_snapshot), headers=auth_headers)
    assert updated.status_code == 200
    assert updated.json()["chief_complaint"] == "Laceration to right forearm"

    audit = await client.get(f"{encounter_url}/audit", headers=auth_headers)
    assert audit.status_code == 200
    actions = [item["action"] for item in audit.json()]
    assert actions == ["create", "access_denied", "lock", "amend", "update"]


@pytest.mark.asyncio
async def test_status_change(client, auth_headers, valid_snapshot):
    created = await _create(client, auth_headers, valid_snapshot)
    encounter_url = f"/api/v1/encounters/{created['id']}"

    cancelled = await client.put(f"{encounter_url}/status", json={"status": "cancelled"}, headers=auth_headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    reopened = await client.put(f"{encounter_url}/status", json={"status": "in_progress"}, headers=auth_headers)
    assert reopened.status_code == 409


@pytest.mark.asyncio
async def test_audit_for_unknown_encounter_is_404(client, auth_headers):
    response = await client.get(f"/api/v1/encounters/{uuid4()}/audit", headers=auth_headers)

    assert response.status_code == 404


# ============================================================================
# Audit Integrity and Health
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.security
async def test_audit_integrity_endpoint(client, auth_headers, valid_snapshot):
    created = await _create(client, auth_headers, valid_snapshot)
    await client.put(f"/api/v1/encounters/{created['id']}/lock", headers=auth_headers)

    response = await client.get("/api/v1/audit/integrity", headers=auth_headers)

    assert response.status_code == 200
    report = response.json()
    assert report["checked"] == 2
    assert report["failures"] == []
    assert report["is_intact"] is True


@pytest.mark.asyncio
async def test_health_endpoints(client):
    root = await client.get("/health")
    assert root.status_code == 200
    assert root.json()["status"] == "healthy"

    live = await client.get("/api/v1/health/live")
    assert live.json() == {"status": "alive"}

    detailed = await client.get("/api/v1/health")
    assert detailed.status_code == 200
    report = detailed.json()
    assert report["status"] == "healthy"
    assert report["components"]["database"]["status"] == "healthy"
    assert report["components"]["audit_trail"]["details"]["events"] == 0

    ready = await client.get("/api/v1/health/ready")
    assert ready.status_code == 200
