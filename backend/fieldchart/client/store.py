"""Local durable store - one row per encounter in an on-device SQLite file.

Every write runs in its own transaction, so a record is either fully
replaced or left untouched. The store has no network dependency.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, String, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from fieldchart.client.records import EncounterRecord, OfflineStatus
from fieldchart.core.config import settings
from fieldchart.core.database import build_engine
from fieldchart.core.exceptions import LifecycleViolation
from fieldchart.services.validation_gate import is_server_identifier

logger = logging.getLogger(__name__)


class LocalBase(DeclarativeBase):
    """Declarative base for on-device tables (kept apart from server models)."""

    pass


class LocalEncounterRow(LocalBase):
    __tablename__ = "local_encounters"

    key: Mapped[str] = mapped_column(String(64), primary_key=True, comment="server_id once assigned, else local_id")
    local_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    server_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    offline_status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, comment="Serialized EncounterRecord")
    saved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _merge(existing: EncounterRecord, incoming: EncounterRecord) -> EncounterRecord:
    """Apply per-key invariants: server_id set once, status never regresses."""
    if existing.server_id and incoming.server_id != existing.server_id:
        raise LifecycleViolation(
            f"Encounter {existing.local_id} already has server id {existing.server_id}",
            encounter_id=existing.server_id,
        )
    return incoming.model_copy(update={
        "offline_status": existing.offline_status.advance_to(incoming.offline_status),
        "attempted_submit": existing.attempted_submit or incoming.attempted_submit,
        "submitted_at": incoming.submitted_at or existing.submitted_at,
        "server_synced_at": incoming.server_synced_at or existing.server_synced_at,
    })


class LocalEncounterStore:
    """
    Key-value persistence for `EncounterRecord`s.

    Usage:
        store = LocalEncounterStore("sqlite+aiosqlite:///./fieldchart_local.db")
        await store.initialize()
        await store.put(record.key, record)
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[AsyncEngine] = None) -> None:
        self.engine = engine or build_engine(url or settings.LOCAL_STORE_URL)
        self._session_maker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def initialize(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(LocalBase.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    async def put(self, key: str, record: EncounterRecord) -> EncounterRecord:
        """
        Atomically overwrite the record stored under `key`.

        Returns the record as stored, which may carry a later offline status
        than the one passed in.

        Raises:
            ValueError: `key` is not the record's current key, or belongs to
                another encounter
            LifecycleViolation: The write would reassign the server id, or the
                record was already promoted to a server key
        """
        if key != record.key:
            raise ValueError(f"Record for {record.local_id} must be stored under {record.key}, not {key}")

        async with self._session_maker.begin() as session:
            row = await session.get(LocalEncounterRow, key)
            if row is None:
                promoted = await self._row_by_local_id(session, record.local_id)
                if promoted is not None:
                    raise LifecycleViolation(
                        f"Encounter {record.local_id} was promoted to {promoted.key}; "
                        "write under the server identifier",
                        encounter_id=promoted.server_id,
                    )
                stored = record
                session.add(LocalEncounterRow(
                    key=key,
                    local_id=stored.local_id,
                    server_id=stored.server_id,
                    offline_status=stored.offline_status.value,
                    payload=stored.model_dump(mode="json"),
                    saved_at=stored.saved_at,
                ))
            else:
                if row.local_id != record.local_id:
                    raise ValueError(f"Key {key} belongs to encounter {row.local_id}")
                stored = _merge(EncounterRecord.model_validate(row.payload), record)
                row.server_id = stored.server_id
                row.offline_status = stored.offline_status.value
                row.payload = stored.model_dump(mode="json")
                row.saved_at = stored.saved_at

        logger.debug("Local record written", extra={"key": key, "offline_status": stored.offline_status.value})
        return stored

    async def get(self, key: str) -> Optional[EncounterRecord]:
        async with self._session_maker() as session:
            row = await session.get(LocalEncounterRow, key)
            return EncounterRecord.model_validate(row.payload) if row is not None else None

    async def find_by_local_id(self, local_id: str) -> Optional[EncounterRecord]:
        async with self._session_maker() as session:
            row = await self._row_by_local_id(session, local_id)
            return EncounterRecord.model_validate(row.payload) if row is not None else None

    async def promote(self, local_id: str, server_id: str) -> EncounterRecord:
        """
        Rewrite the record's key from its local id to the server id.

        Promoting again to the same server id is a no-op.

        Raises:
            KeyError: No record with this local id
            ValueError: `server_id` is not a server identifier
            LifecycleViolation: The record already has a different server id,
                or another record holds that key
        """
        if not is_server_identifier(server_id):
            raise ValueError(f"{server_id!r} is not a server identifier")

        async with self._session_maker.begin() as session:
            row = await self._row_by_local_id(session, local_id)
            if row is None:
                raise KeyError(local_id)

            current = EncounterRecord.model_validate(row.payload)
            if current.server_id == server_id:
                return current
            if current.server_id is not None:
                raise LifecycleViolation(
                    f"Encounter {local_id} already has server id {current.server_id}",
                    encounter_id=current.server_id,
                )
            if await session.get(LocalEncounterRow, server_id) is not None:
                raise LifecycleViolation(
                    f"Server id {server_id} is already stored for another encounter",
                    encounter_id=server_id,
                )

            promoted = current.model_copy(update={"server_id": server_id})
            await session.execute(
                update(LocalEncounterRow)
                .where(LocalEncounterRow.local_id == local_id)
                .values(key=server_id, server_id=server_id, payload=promoted.model_dump(mode="json"))
                .execution_options(synchronize_session=False)
            )

        logger.info("Local record promoted", extra={"local_id": local_id, "server_id": server_id})
        return promoted

    async def list_pending(self) -> list[EncounterRecord]:
        """Records queued for submission, oldest save first."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(LocalEncounterRow)
                .where(LocalEncounterRow.offline_status == OfflineStatus.PENDING_SUBMISSION.value)
                .order_by(LocalEncounterRow.saved_at)
            )
            return [EncounterRecord.model_validate(row.payload) for row in result.scalars()]

    async def count_pending(self) -> int:
        async with self._session_maker() as session:
            result = await session.execute(
                select(func.count())
                .select_from(LocalEncounterRow)
                .where(LocalEncounterRow.offline_status == OfflineStatus.PENDING_SUBMISSION.value)
            )
            return result.scalar_one()

    async def delete(self, key: str) -> bool:
        """Discard a local record. Returns False if nothing was stored."""
        async with self._session_maker.begin() as session:
            result = await session.execute(delete(LocalEncounterRow).where(LocalEncounterRow.key == key))
            return result.rowcount > 0

    @staticmethod
    async def _row_by_local_id(session: AsyncSession, local_id: str) -> Optional[LocalEncounterRow]:
        result = await session.execute(select(LocalEncounterRow).where(LocalEncounterRow.local_id == local_id))
        return result.scalar_one_or_none()
