"""Offline-first synchronization with the remote entry service."""

from stillmind.sync.connectivity import ConnectivityMonitor, QueuedRequest
from stillmind.sync.merge import MergeOutcome, merge_remote_entry
from stillmind.sync.protocol import BatchResult, PushItem, RemoteEntry, SyncAction
from stillmind.sync.remote import RemoteEntryClient
from stillmind.sync.scheduler import SyncScheduler
from stillmind.sync.sync_engine import SyncEngine, SyncReport, SyncState

__all__ = [
    "ConnectivityMonitor",
    "QueuedRequest",
    "MergeOutcome",
    "merge_remote_entry",
    "BatchResult",
    "PushItem",
    "RemoteEntry",
    "SyncAction",
    "RemoteEntryClient",
    "SyncScheduler",
    "SyncEngine",
    "SyncReport",
    "SyncState",
]
