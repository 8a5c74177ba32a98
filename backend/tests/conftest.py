"""Pytest configuration and fixtures for FieldChart tests."""

import asyncio
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fieldchart.client import LocalEncounterStore, NetworkState, SyncReconciler
from fieldchart.core.database import get_db
from fieldchart.main import app
from fieldchart.models import Base
from fieldchart.models.encounter import EncounterStatus
from fieldchart.schemas.encounter import SubmitResponse
from fieldchart.schemas.snapshot import (
    Assessment,
    EncounterSnapshot,
    IncidentSection,
    ObjectiveFindings,
    PatientSection,
    Provider,
    SignaturesSection,
    VitalSet,
)
from fieldchart.services.encounter_service import EncounterService


# ============================================================================
# Snapshot Fixtures
# ============================================================================

def build_valid_snapshot() -> EncounterSnapshot:
    """Snapshot with every required field filled in (34 required fields)."""
    return EncounterSnapshot(
        incident=IncidentSection(
            clinic_name="Ridge Mobile Clinic",
            clinic_street_address="12 Quarry Rd",
            clinic_city="Barre",
            clinic_state="VT",
            patient_contact_time="08:15",
            cleared_clinic_time="09:05",
            location="Loading dock",
            chief_complaint="Laceration to left forearm",
            injury_classified_by_name="Dana Reyes",
            injury_classification="First aid",
        ),
        patient=PatientSection(
            first_name="Sam",
            last_name="Okafor",
            dob="1988-04-02",
            street_address="4 Elm St",
            city="Barre",
            state="VT",
            employer="Granite Works",
            supervisor_name="Lee Park",
            supervisor_phone="802-555-0101",
            medical_history="None reported",
            allergies="NKDA",
            current_medications="None",
        ),
        providers=[Provider(id="prov-17", name="Dr. Ana Ruiz", role="lead")],
        objective_findings=ObjectiveFindings(
            assessments=[Assessment(region="Left forearm", findings=["3 cm laceration"])],
            vitals=[
                VitalSet(
                    time="08:20",
                    date="2026-03-14",
                    avpu="A",
                    bp="128/82",
                    bp_taken="Auto",
                    pulse=76,
                    respiration=16,
                    gcs_total=15,
                )
            ],
        ),
        narrative="Worker cut forearm on a sheet metal edge; wound irrigated and dressed.",
        signatures=SignaturesSection(disclosures={"privacy_notice": True, "consent_to_treat": True}),
    )


@pytest.fixture
def valid_snapshot() -> EncounterSnapshot:
    return build_valid_snapshot()


@pytest.fixture
def empty_snapshot() -> EncounterSnapshot:
    return EncounterSnapshot()


@pytest.fixture
def user_id() -> str:
    return str(uuid4())


# ============================================================================
# Database Engine and Session Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """SQLite database file per test with all server tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'server.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def encounter_service(db_session) -> EncounterService:
    return EncounterService(db_session, ip_address="10.0.0.8", user_agent="pytest")


# ============================================================================
# HTTP Client Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, backed by the per-test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user_id) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_id}"}


# ============================================================================
# Field Client Fixtures
# ============================================================================

class FakeRemote:
    """In-process stand-in for the encounter server."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.created_ids: list[str] = []
        self.create_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.submit_error: Optional[Exception] = None
        self.submit_response = SubmitResponse(
            success=True,
            message="Encounter submitted for review",
            status=EncounterStatus.PENDING_REVIEW,
        )
        self.delay = 0.0
        # Set `gate` to hold submit_for_review until the test releases it
        self.gate: Optional[asyncio.Event] = None
        self.submit_entered = asyncio.Event()

    def count(self, name: str) -> int:
        return self.calls.count(name)

    async def create_encounter(self, snapshot: EncounterSnapshot, actor_id: str) -> str:
        self.calls.append("create")
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.create_error is not None:
            raise self.create_error
        server_id = str(uuid4())
        self.created_ids.append(server_id)
        return server_id

    async def update_encounter(self, encounter_id: str, snapshot: EncounterSnapshot, actor_id: str) -> str:
        self.calls.append("update")
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.update_error is not None:
            raise self.update_error
        return encounter_id

    async def submit_for_review(
        self,
        encounter_id: str,
        snapshot: EncounterSnapshot,
        actor_id: str,
    ) -> SubmitResponse:
        self.calls.append("submit")
        self.submit_entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.submit_error is not None:
            raise self.submit_error
        return self.submit_response


@pytest_asyncio.fixture
async def store(tmp_path) -> AsyncGenerator[LocalEncounterStore, None]:
    local_store = LocalEncounterStore(f"sqlite+aiosqlite:///{tmp_path / 'device.db'}")
    await local_store.initialize()

    yield local_store

    await local_store.close()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def network() -> NetworkState:
    return NetworkState(online=True)


@pytest.fixture
def reconciler(store, remote, network) -> SyncReconciler:
    return SyncReconciler(store, remote, network, timeout=5.0)
