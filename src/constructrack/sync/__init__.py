"""Offline upload queue: durable store, connectivity monitor and sync engine."""

from constructrack.sync.connectivity import ConnectivityMonitor
from constructrack.sync.engine import QueueState, SyncEngine, SyncStatus
from constructrack.sync.store import QueueItem, QueueStore
from constructrack.sync.uploader import HttpUploader, Uploader, UploadResult

__all__ = [
    "ConnectivityMonitor",
    "HttpUploader",
    "QueueItem",
    "QueueState",
    "QueueStore",
    "SyncEngine",
    "SyncStatus",
    "UploadResult",
    "Uploader",
]
