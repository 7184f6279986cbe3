"""Remote document store client - one JSON document per user.

Reads and writes go over HTTP. Realtime updates are delivered by polling the
document on the scheduler and comparing revisions (``ETag``), so a listener
only hears about a document when it actually changed.
"""

import hashlib
import json
import logging
import threading
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import quote

import requests
from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.interval import IntervalTrigger

from .. import __version__
from ..config import DEFAULT_API_URL, DEFAULT_POLL_INTERVAL
from .protocols import (
    ErrorCallback,
    SchedulerProtocol,
    Snapshot,
    SnapshotCallback,
    SnapshotStoreAuthError,
    SnapshotStoreError,
)
from .retry import RetryConfig, RetryExhausted, retry_with_backoff

__all__ = ["RemoteSnapshotStore", "PollingSubscription"]

logger = logging.getLogger(__name__)


class _TransientError(Exception):
    """Internal: Marks an error as transient/retryable."""

    pass


class PollingSubscription:
    """Cancellable listener on one remote document.

    ``poll`` runs on the scheduler; it fetches the document and calls
    ``on_snapshot`` when the revision differs from the last one seen. Once
    ``unsubscribe`` has been called no further callbacks are made, even for
    a poll that was already in flight.
    """

    def __init__(
        self,
        store: "RemoteSnapshotStore",
        key: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
        scheduler: Optional[SchedulerProtocol] = None,
        interval_seconds: int = DEFAULT_POLL_INTERVAL,
    ):
        self.store = store
        self.key = key
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._scheduler = scheduler
        self._interval = interval_seconds
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._etag: Optional[str] = None
        self._fingerprint: Optional[str] = None
        self._delivered = False
        # Hash of the activities we last wrote when the server gave no revision
        self._own_write: Optional[str] = None
        self._writes_noted = 0
        self.job_id = f"diary-poll:{key}:{id(self)}"

    @property
    def active(self) -> bool:
        return not self._cancelled.is_set()

    def start(self) -> None:
        """Schedule polling, first poll immediately."""
        if self._scheduler is None:
            return
        self._scheduler.add_job(
            self.poll,
            trigger=IntervalTrigger(seconds=self._interval),
            id=self.job_id,
            replace_existing=True,
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
        )
        logger.debug(f"Polling {self.key} every {self._interval}s")

    def poll(self) -> None:
        """Fetch the document once and deliver it if it changed."""
        if not self.active:
            return
        with self._lock:
            writes_noted = self._writes_noted
            etag = self._etag
        try:
            snapshot = self.store.fetch(
                self.key, if_none_match=etag, should_continue=lambda: self.active
            )
        except SnapshotStoreError as e:
            if self.active:
                logger.warning(f"Polling {self.key} failed: {e}")
                if self._on_error:
                    self._on_error(e)
            return

        if snapshot is None:
            return  # not modified

        with self._lock:
            if not self.active:
                return
            if self._writes_noted != writes_noted:
                # fetched before our own write landed; the next poll sees it
                return
            fingerprint = _fingerprint(snapshot)
            own_write, self._own_write = self._own_write, None
            echo = (
                own_write is not None
                and snapshot.exists
                and _activities_fingerprint(snapshot.activities) == own_write
            )
            unchanged = self._delivered and fingerprint == self._fingerprint
            self._etag = snapshot.revision
            self._fingerprint = fingerprint
            self._delivered = True
            if echo:
                logger.debug(f"Skipping echo of our own write to {self.key}")
                return
            if unchanged:
                return

        self._on_snapshot(snapshot)

    def note_own_write(self, revision: Optional[str], activities: Optional[list] = None) -> None:
        """Record our own write so the next poll doesn't deliver it back.

        With a revision the poll sends it as ``If-None-Match``. Without one,
        the written activities are hashed and a fetched document carrying
        the same activities is treated as the echo.
        """
        with self._lock:
            self._writes_noted += 1
            if revision:
                self._etag = revision
                self._fingerprint = f"etag:{revision}"
                self._delivered = True
                self._own_write = None
            elif activities is not None:
                self._own_write = _activities_fingerprint(activities)

    def unsubscribe(self) -> None:
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        if self._scheduler is not None:
            try:
                self._scheduler.remove_job(self.job_id)
            except JobLookupError:
                pass
        self.store._forget(self)
        logger.debug(f"Unsubscribed from {self.key}")


def _fingerprint(snapshot: Snapshot) -> str:
    """Identity of a snapshot: its revision, or a content hash without one."""
    if not snapshot.exists:
        return "missing"
    if snapshot.revision:
        return f"etag:{snapshot.revision}"
    payload = json.dumps(snapshot.data, sort_keys=True, default=str)
    return "sha256:" + hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _activities_fingerprint(activities: list) -> str:
    payload = json.dumps(activities, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class RemoteSnapshotStore:
    """HTTP client for per-user snapshot documents.

    Handles:
    - Session management and auth headers
    - Retry with exponential backoff (reads only)
    - Error classification
    - Polling subscriptions
    """

    DEFAULT_RETRY_CONFIG = RetryConfig(
        max_retries=2,
        base_delay=0.5,
        max_delay=10.0,
        exponential_base=2.0,
        jitter=True,
    )

    USER_AGENT = f"Diary-Sync/{__version__}"

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        scheduler: Optional[SchedulerProtocol] = None,
        token: Optional[str] = None,
        collection: str = "users",
        poll_interval: int = DEFAULT_POLL_INTERVAL,
        timeout: int = 15,
        retry_config: Optional[RetryConfig] = None,
        session: Optional[requests.Session] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """Initialize the client.

        Args:
            api_url: Document store base URL
            scheduler: Scheduler that runs subscription polls
            token: Bearer token for the store
            collection: Collection holding one document per user
            poll_interval: Seconds between subscription polls
            timeout: Request timeout in seconds
            retry_config: Backoff for reads
            session: Optional requests session (for dependency injection/testing)
            sleep: Optional sleep function used between read retries
        """
        self.api_url = api_url.rstrip("/")
        self.scheduler = scheduler
        self.token = token
        self.collection = collection
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.retry_config = retry_config or self.DEFAULT_RETRY_CONFIG
        self._sleep = sleep
        self._session = session or requests.Session()
        self._owns_session = session is None
        self._subscriptions: list[PollingSubscription] = []
        self._subs_lock = threading.Lock()

    def document_url(self, key: str) -> str:
        return f"{self.api_url}/{self.collection}/{quote(key, safe='')}"

    def _get_headers(self) -> dict:
        headers = {
            "Accept": "application/json",
            "User-Agent": self.USER_AGENT,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        """Send one request and classify failures."""
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.ConnectionError:
            raise _TransientError("Cannot connect to document store")
        except requests.exceptions.Timeout:
            raise _TransientError("Request timed out")

        if response.status_code == 401:
            raise SnapshotStoreAuthError("Invalid or expired store token")
        if response.status_code == 403:
            raise SnapshotStoreAuthError("Access to document denied")
        if response.status_code >= 500:
            raise _TransientError(f"Server error: {response.status_code}")
        return response

    def fetch(
        self,
        key: str,
        if_none_match: Optional[str] = None,
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> Optional[Snapshot]:
        """Read the document for ``key``.

        Returns:
            The snapshot, or None if the server reports it unchanged (304)

        Raises:
            SnapshotStoreAuthError: For 401/403 responses (not retried)
            SnapshotStoreError: For other failures, after retries
        """
        url = self.document_url(key)
        headers = self._get_headers()
        if if_none_match:
            headers["If-None-Match"] = if_none_match

        def do_fetch() -> Optional[Snapshot]:
            response = self._send("GET", url, headers=headers)
            if response.status_code == 304:
                return None
            if response.status_code == 404:
                return Snapshot(exists=False)
            try:
                response.raise_for_status()
            except requests.exceptions.HTTPError as e:
                raise SnapshotStoreError(
                    f"Fetch failed ({response.status_code}): {e}"
                ) from e
            try:
                data = response.json() if response.content else {}
            except ValueError as e:
                raise SnapshotStoreError(f"Invalid document for {key}: {e}") from e
            if not isinstance(data, dict):
                raise SnapshotStoreError(f"Invalid document for {key}: not an object")
            return Snapshot(exists=True, data=data, revision=response.headers.get("ETag"))

        kwargs = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        try:
            return retry_with_backoff(
                do_fetch,
                config=self.retry_config,
                retryable_exceptions=(_TransientError,),
                should_continue=should_continue,
                **kwargs,
            )
        except RetryExhausted as e:
            if e.last_error:
                raise SnapshotStoreError(str(e.last_error)) from e.last_error
            raise SnapshotStoreError("Fetch failed after retries") from e

    def write(self, key: str, data: dict, merge: bool = True) -> Optional[str]:
        """Write the document for ``key``. Not retried.

        Args:
            key: Session identifier
            data: Document body
            merge: PATCH (merge into existing fields) instead of PUT (overwrite)

        Returns:
            New document revision, if the server reports one

        Raises:
            SnapshotStoreError: On any failure
        """
        method = "PATCH" if merge else "PUT"
        try:
            response = self._send(
                method, self.document_url(key), headers=self._get_headers(), json=data
            )
            response.raise_for_status()
        except _TransientError as e:
            raise SnapshotStoreError(str(e)) from e
        except requests.exceptions.HTTPError as e:
            raise SnapshotStoreError(
                f"Write failed ({e.response.status_code}): {e}"
            ) from e

        revision = response.headers.get("ETag")
        with self._subs_lock:
            subscriptions = [s for s in self._subscriptions if s.key == key]
        for subscription in subscriptions:
            subscription.note_own_write(revision, data.get("activities"))
        return revision

    def subscribe(
        self,
        key: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> PollingSubscription:
        """Start polling the document for ``key``."""
        subscription = PollingSubscription(
            self,
            key,
            on_snapshot,
            on_error=on_error,
            scheduler=self.scheduler,
            interval_seconds=self.poll_interval,
        )
        with self._subs_lock:
            self._subscriptions.append(subscription)
        subscription.start()
        return subscription

    def _forget(self, subscription: PollingSubscription) -> None:
        with self._subs_lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def close(self) -> None:
        """Cancel subscriptions and close the session if we own it."""
        with self._subs_lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.unsubscribe()
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "RemoteSnapshotStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
