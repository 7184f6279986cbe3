"""Protocol types for SyncBridge dependencies.

Defines the interfaces that SyncBridge requires from its collaborators,
so the remote document store, the local key-value store and test fakes
are interchangeable.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable

__all__ = [
    "Snapshot",
    "SnapshotCallback",
    "ErrorCallback",
    "SubscriptionProtocol",
    "SnapshotStoreProtocol",
    "SchedulerProtocol",
    "SnapshotStoreError",
    "SnapshotStoreAuthError",
]


@dataclass
class Snapshot:
    """One delivery of a persisted per-user document."""

    exists: bool
    data: dict = field(default_factory=dict)
    revision: Optional[str] = None

    @property
    def activities(self) -> list:
        if not self.exists:
            return []
        return list(self.data.get("activities") or [])


SnapshotCallback = Callable[[Snapshot], None]
ErrorCallback = Callable[[Exception], None]


@runtime_checkable
class SubscriptionProtocol(Protocol):
    """Handle returned by ``subscribe``; tears the listener down."""

    @property
    def active(self) -> bool: ...

    def unsubscribe(self) -> None: ...


@runtime_checkable
class SnapshotStoreProtocol(Protocol):
    """Interface for a store holding one addressable snapshot per user."""

    def subscribe(
        self,
        key: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> SubscriptionProtocol: ...

    def write(self, key: str, data: dict, merge: bool = True) -> Optional[str]: ...


@runtime_checkable
class SchedulerProtocol(Protocol):
    """The part of APScheduler's scheduler API the sync layer uses."""

    def add_job(self, func: Callable, trigger: Any = None, **kwargs: Any) -> Any: ...

    def remove_job(self, job_id: str, jobstore: Optional[str] = None) -> None: ...


class SnapshotStoreError(Exception):
    """A snapshot store could not be read or written."""

    pass


class SnapshotStoreAuthError(SnapshotStoreError):
    """The store rejected our credentials."""

    pass
