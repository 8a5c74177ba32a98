"""Field client: local durable store and sync reconciler."""

from fieldchart.client.connectivity import ConnectivitySignal, NetworkState
from fieldchart.client.reconciler import SyncReconciler
from fieldchart.client.records import (
    EncounterRecord,
    OfflineStatus,
    Ok,
    SavedLocallyOnly,
    SyncResult,
    SyncSummary,
    ValidationRejected,
)
from fieldchart.client.remote import EncounterRemoteAPI, HttpEncounterAPI
from fieldchart.client.store import LocalEncounterStore

__all__ = [
    "ConnectivitySignal",
    "NetworkState",
    "SyncReconciler",
    "EncounterRecord",
    "OfflineStatus",
    "Ok",
    "SavedLocallyOnly",
    "SyncResult",
    "SyncSummary",
    "ValidationRejected",
    "EncounterRemoteAPI",
    "HttpEncounterAPI",
    "LocalEncounterStore",
]
