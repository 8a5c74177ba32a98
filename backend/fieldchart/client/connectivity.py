"""Network state as seen by the sync reconciler."""

import logging
from typing import Protocol

from fieldchart.client.store import LocalEncounterStore

logger = logging.getLogger(__name__)


class ConnectivitySignal(Protocol):
    """Supplied by the platform's network-state collaborator."""

    @property
    def is_online(self) -> bool: ...

    @property
    def pending_count(self) -> int: ...


class NetworkState:
    """Mutable connectivity signal fed by the host application."""

    def __init__(self, online: bool = True, pending_count: int = 0) -> None:
        self._online = online
        self._pending_count = pending_count

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def pending_count(self) -> int:
        return self._pending_count

    def set_online(self, online: bool) -> None:
        if online != self._online:
            logger.info("Connectivity changed", extra={"online": online})
        self._online = online

    async def refresh_pending(self, store: LocalEncounterStore) -> int:
        """Recount queued submissions from the local store."""
        self._pending_count = await store.count_pending()
        return self._pending_count
