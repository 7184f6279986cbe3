"""Sync bridge - keeps an ActivityStore in step with its persisted snapshot.

Flow for one session:

1. ``start`` subscribes to the user's document. Every delivered snapshot
   replaces the store contents with origin ``REMOTE_REPLACE``.
2. Once loaded, every ``LOCAL_EDIT`` transition (re)schedules one debounced
   write of the full snapshot. Rapid edits coalesce into a single write.
   Edits made before the first snapshot are never written; the snapshot
   replaces them.
3. ``REMOTE_REPLACE`` transitions never schedule a write, so applying a
   snapshot can't echo it back to the store.
4. ``stop`` cancels the pending write, unsubscribes and clears the store.

Write and subscription failures are logged and never roll back local state.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger

from ..config import DEFAULT_DEBOUNCE_MS
from ..diary.activity import Activity
from ..diary.errors import SyncSubscribeFailed, SyncWriteFailed
from ..diary.store import ActivityStore, Origin
from .protocols import (
    SchedulerProtocol,
    Snapshot,
    SnapshotStoreError,
    SnapshotStoreProtocol,
    SubscriptionProtocol,
)

__all__ = ["SyncBridge", "SyncState", "SyncStats"]

logger = logging.getLogger(__name__)


class SyncState(Enum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    SYNCED = "synced"
    DIRTY = "dirty"


@dataclass
class SyncStats:
    """Counters for one session."""

    snapshots_applied: int = 0
    writes_scheduled: int = 0
    writes_succeeded: int = 0
    writes_failed: int = 0
    writes_superseded: int = 0


class SyncBridge:
    """Reconciles one session's ActivityStore with a snapshot store."""

    def __init__(
        self,
        session,
        store: ActivityStore,
        snapshot_store: SnapshotStoreProtocol,
        scheduler: SchedulerProtocol,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    ):
        """Initialize the bridge.

        Args:
            session: Session context; its key addresses the snapshot
            store: The session's activity store
            snapshot_store: Remote or local snapshot store
            scheduler: Runs the debounced write job
            debounce_ms: Quiet period after the last local edit before writing
        """
        self.session = session
        self.store = store
        self.snapshot_store = snapshot_store
        self.scheduler = scheduler
        self.debounce = timedelta(milliseconds=debounce_ms)
        self.stats = SyncStats()

        self._lock = threading.RLock()
        self._state = SyncState.UNSUBSCRIBED
        self._subscription: Optional[SubscriptionProtocol] = None
        self._write_scheduled = False
        # Bumped by every local edit; a write only settles the state if no
        # edit happened while it was in flight.
        self._generation = 0
        # Local edits made before the first snapshot arrived; never written
        self._held_edits = 0
        self._last_write_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._first_snapshot = threading.Event()

    @property
    def key(self) -> str:
        return self.session.key

    @property
    def write_job_id(self) -> str:
        return f"diary-write:{self.key}"

    @property
    def state(self) -> SyncState:
        with self._lock:
            return self._state

    @property
    def loaded(self) -> bool:
        """True once the first snapshot has been applied."""
        with self._lock:
            return self._state in (SyncState.SYNCED, SyncState.DIRTY)

    @property
    def has_pending_write(self) -> bool:
        with self._lock:
            return self._write_scheduled

    # -- Lifecycle --------------------------------------------------------

    def start(self) -> None:
        """Subscribe to the session's snapshot."""
        with self._lock:
            if self._state is not SyncState.UNSUBSCRIBED:
                return
            self._state = SyncState.SUBSCRIBING
            self.store.add_listener(self._on_store_changed)

        logger.info(f"Subscribing to snapshot for {self.key}")
        try:
            subscription = self.snapshot_store.subscribe(
                self.key, self._on_remote_snapshot, self._on_subscribe_error
            )
        except SnapshotStoreError as e:
            self._on_subscribe_error(e)
            return

        with self._lock:
            if self._state is SyncState.UNSUBSCRIBED:
                # stopped while subscribing
                subscription.unsubscribe()
                return
            self._subscription = subscription

    def stop(self) -> None:
        """Tear the session down: cancel the pending write, unsubscribe, clear."""
        with self._lock:
            if self._state is SyncState.UNSUBSCRIBED:
                return
            self._cancel_write()
            subscription, self._subscription = self._subscription, None
            self._state = SyncState.UNSUBSCRIBED
            self._generation += 1
            self._held_edits = 0
            self.store.remove_listener(self._on_store_changed)
            self.store.clear()

        if subscription is not None:
            subscription.unsubscribe()
        logger.info(f"Sync stopped for {self.key}")

    def wait_for_snapshot(self, timeout: Optional[float] = None) -> bool:
        """Block until the first inbound snapshot was applied."""
        return self._first_snapshot.wait(timeout)

    # -- Inbound ----------------------------------------------------------

    def _on_remote_snapshot(self, snapshot: Snapshot) -> None:
        """Apply an inbound snapshot; never schedules a write."""
        with self._lock:
            if self._state is SyncState.UNSUBSCRIBED:
                return
            if self._write_scheduled:
                # The snapshot is newer than our unsent edits; it wins.
                logger.info(f"Inbound snapshot for {self.key} supersedes unsent local edits")
                self._cancel_write()
                self.stats.writes_superseded += 1
            if self._held_edits:
                logger.warning(
                    f"Discarding {self._held_edits} edit(s) made before the diary "
                    f"for {self.key} loaded"
                )
                self._held_edits = 0
            self._generation += 1
            applied = self.store.replace_from_documents(
                snapshot.activities, origin=Origin.REMOTE_REPLACE
            )
            self._state = SyncState.SYNCED
            self.stats.snapshots_applied += 1
            self._first_snapshot.set()

        logger.debug(
            f"Applied snapshot for {self.key}: "
            f"{len(applied)} activities (exists={snapshot.exists})"
        )

    def _on_subscribe_error(self, error: Exception) -> None:
        failure = SyncSubscribeFailed(f"Subscription to {self.key} failed: {error}")
        with self._lock:
            self._last_error = str(failure)
        logger.warning(str(failure))

    # -- Outbound ---------------------------------------------------------

    def _on_store_changed(self, origin: Origin, activities: tuple[Activity, ...]) -> None:
        if origin is not Origin.LOCAL_EDIT:
            return
        with self._lock:
            if self._state is SyncState.UNSUBSCRIBED:
                return
            if self._state is SyncState.SUBSCRIBING:
                # Writing now would replace the stored list with a partial one
                self._held_edits += 1
                logger.debug(f"Holding edit for {self.key} until the diary loads")
                return
            self._generation += 1
            self._state = SyncState.DIRTY
            self._schedule_write()

    def _schedule_write(self) -> None:
        """(Re)schedule the debounced write; replaces any pending one."""
        self.scheduler.add_job(
            self._write_pending,
            trigger=DateTrigger(run_date=datetime.now() + self.debounce),
            id=self.write_job_id,
            replace_existing=True,
        )
        self._write_scheduled = True
        self.stats.writes_scheduled += 1

    def _cancel_write(self) -> None:
        if not self._write_scheduled:
            return
        self._write_scheduled = False
        try:
            self.scheduler.remove_job(self.write_job_id)
        except JobLookupError:
            pass  # already fired

    def flush(self) -> bool:
        """Write a pending snapshot now instead of waiting for the debounce.

        Returns:
            True if a write was attempted
        """
        with self._lock:
            if not self._write_scheduled:
                return False
            self._cancel_write()
        self._write_pending(force=True)
        return True

    def _write_pending(self, force: bool = False) -> None:
        """Push the full current snapshot. Runs on the scheduler."""
        with self._lock:
            if not force and not self._write_scheduled:
                return
            self._write_scheduled = False
            if self._state is not SyncState.DIRTY:
                return
            generation = self._generation
            payload = {
                "activities": self.store.to_documents(),
                "lastUpdated": datetime.now(timezone.utc).isoformat(),
            }

        try:
            self.snapshot_store.write(self.key, payload, merge=True)
        except SnapshotStoreError as e:
            failure = SyncWriteFailed(f"Write for {self.key} failed: {e}")
            with self._lock:
                self._last_error = str(failure)
                self.stats.writes_failed += 1
            logger.warning(str(failure))
            return

        with self._lock:
            self.stats.writes_succeeded += 1
            self._last_write_at = datetime.now(timezone.utc)
            self._last_error = None
            if self._state is SyncState.DIRTY and generation == self._generation:
                self._state = SyncState.SYNCED

        logger.debug(f"Wrote {len(payload['activities'])} activities for {self.key}")

    # -- Status -----------------------------------------------------------

    def get_status(self) -> dict:
        """Get current sync status."""
        with self._lock:
            return {
                "user": self.key,
                "state": self._state.value,
                "pending_write": self._write_scheduled,
                "held_edits": self._held_edits,
                "activities": len(self.store),
                "last_write": self._last_write_at.isoformat() if self._last_write_at else None,
                "last_error": self._last_error,
            }
