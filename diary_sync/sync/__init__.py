"""Sync module - snapshot stores and the bridge that keeps a session in step."""

from .bridge import SyncBridge, SyncState, SyncStats
from .local_store import LocalSnapshotStore
from .protocols import (
    SchedulerProtocol,
    Snapshot,
    SnapshotStoreAuthError,
    SnapshotStoreError,
    SnapshotStoreProtocol,
    SubscriptionProtocol,
)
from .remote_store import PollingSubscription, RemoteSnapshotStore
from .retry import RetryConfig, retry_with_backoff

__all__ = [
    "SyncBridge",
    "SyncState",
    "SyncStats",
    "LocalSnapshotStore",
    "RemoteSnapshotStore",
    "PollingSubscription",
    "SchedulerProtocol",
    "Snapshot",
    "SnapshotStoreAuthError",
    "SnapshotStoreError",
    "SnapshotStoreProtocol",
    "SubscriptionProtocol",
    "RetryConfig",
    "retry_with_backoff",
]
