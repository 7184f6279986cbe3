"""Local persistent snapshot store backed by SQLite.

The single-machine deployment: snapshots are JSON documents in a key-value
table. Like browser storage, a write is not echoed back to listeners in the
same process; ``reload`` re-delivers a document that changed underneath us.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from ..config import Config
from .protocols import (
    ErrorCallback,
    Snapshot,
    SnapshotCallback,
    SnapshotStoreError,
)

__all__ = ["LocalSnapshotStore", "LocalSubscription", "LEGACY_ENTRIES_KEY", "ALL_USERS_KEY"]

logger = logging.getLogger(__name__)

# Key of the single shared entry list written by the earliest version
LEGACY_ENTRIES_KEY = "diary_entries_v1"
# Key of the document mapping username -> {activities}
ALL_USERS_KEY = "allUsers"


class LocalSubscription:
    """Listener registration on a :class:`LocalSnapshotStore` key."""

    def __init__(
        self,
        store: "LocalSnapshotStore",
        key: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.store = store
        self.key = key
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def deliver(self, snapshot: Snapshot) -> None:
        if self._active:
            self.on_snapshot(snapshot)

    def fail(self, error: Exception) -> None:
        if self._active and self.on_error:
            self.on_error(error)

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self.store._forget(self)


class LocalSnapshotStore:
    """SQLite-based key-value store for snapshot documents."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        legacy_all_users: bool = False,
        legacy_entries: bool = False,
    ):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
            legacy_all_users: Keep every user's document nested under one
                ``allUsers`` map instead of one row per user
            legacy_entries: Seed a user without a document from the shared
                ``diary_entries_v1`` list
        """
        if db_path is None:
            db_path = Config.get_data_dir() / "diary.db"

        self.db_path = db_path
        self.legacy_all_users = legacy_all_users
        self.legacy_entries = legacy_entries
        self._local = threading.local()
        self._subscriptions: list[LocalSubscription] = []
        self._subs_lock = threading.Lock()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(str(self.db_path))
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    # -- Key-value API ----------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        """Get the serialized JSON stored under ``key``, or None."""
        with self._cursor() as cursor:
            cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        """Store serialized JSON under ``key``."""
        now = datetime.now(timezone.utc).isoformat()
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, now),
            )

    def delete(self, key: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            return cursor.rowcount > 0

    # -- Documents --------------------------------------------------------

    def _load_json(self, key: str):
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise SnapshotStoreError(f"Corrupt document under {key!r}: {e}") from e

    def read(self, key: str) -> Snapshot:
        """Read the snapshot for ``key``.

        Raises:
            SnapshotStoreError: If the database or document is unreadable
        """
        try:
            if self.legacy_all_users:
                all_users = self._load_json(ALL_USERS_KEY) or {}
                document = all_users.get(key) if isinstance(all_users, dict) else None
            else:
                document = self._load_json(key)
            if document is None and self.legacy_entries:
                document = self._load_json(LEGACY_ENTRIES_KEY)
        except sqlite3.Error as e:
            raise SnapshotStoreError(f"Failed to read {key!r}: {e}") from e

        if document is None:
            return Snapshot(exists=False)
        if isinstance(document, list):
            # Bare entry list from the first storage layout
            return Snapshot(exists=True, data={"activities": document})
        if not isinstance(document, dict):
            raise SnapshotStoreError(f"Document under {key!r} is not an object")
        return Snapshot(exists=True, data=document)

    def write(self, key: str, data: dict, merge: bool = True) -> Optional[str]:
        """Write the document for ``key``.

        Args:
            key: Session identifier
            data: Document body
            merge: Update fields of an existing document instead of replacing it

        Returns:
            None; local documents have no revisions

        Raises:
            SnapshotStoreError: If the database write fails
        """
        try:
            if self.legacy_all_users:
                all_users = self._load_json(ALL_USERS_KEY)
                if not isinstance(all_users, dict):
                    all_users = {}
                all_users[key] = _merged(all_users.get(key), data, merge)
                self.set(ALL_USERS_KEY, json.dumps(all_users))
            else:
                current = self._load_json(key) if merge else None
                self.set(key, json.dumps(_merged(current, data, merge)))
        except sqlite3.Error as e:
            raise SnapshotStoreError(f"Failed to write {key!r}: {e}") from e
        logger.debug(f"Wrote local document {key!r}")
        return None

    def subscribe(
        self,
        key: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> LocalSubscription:
        """Register a listener and deliver the current document to it."""
        subscription = LocalSubscription(self, key, on_snapshot, on_error)
        with self._subs_lock:
            self._subscriptions.append(subscription)
        self._deliver(subscription)
        return subscription

    def reload(self, key: str) -> None:
        """Re-deliver ``key`` to its listeners after an outside change."""
        with self._subs_lock:
            subscriptions = [s for s in self._subscriptions if s.key == key]
        for subscription in subscriptions:
            self._deliver(subscription)

    def _deliver(self, subscription: LocalSubscription) -> None:
        try:
            snapshot = self.read(subscription.key)
        except SnapshotStoreError as e:
            logger.warning(f"Failed to load local document {subscription.key!r}: {e}")
            subscription.fail(e)
            return
        subscription.deliver(snapshot)

    def _forget(self, subscription: LocalSubscription) -> None:
        with self._subs_lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection


def _merged(current, data: dict, merge: bool) -> dict:
    if merge and isinstance(current, dict):
        return {**current, **data}
    return dict(data)
