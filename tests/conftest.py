"""Shared fakes for sync tests."""

import pytest
from apscheduler.jobstores.base import ConflictingIdError, JobLookupError

from diary_sync.sync.protocols import Snapshot, SnapshotStoreError


class FakeScheduler:
    """Records jobs instead of running them; ``run`` fires one on demand."""

    def __init__(self):
        self.jobs = {}
        self.added = []

    def add_job(self, func, trigger=None, id=None, replace_existing=False, **kwargs):
        if id in self.jobs and not replace_existing:
            raise ConflictingIdError(id)
        self.jobs[id] = (func, trigger, kwargs)
        self.added.append(id)
        return id

    def remove_job(self, job_id, jobstore=None):
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        del self.jobs[job_id]

    def run(self, job_id):
        """Fire a one-shot job (removed afterwards, like a date trigger)."""
        func, _, _ = self.jobs.pop(job_id)
        func()


class FakeSubscription:
    def __init__(self, store, key, on_snapshot, on_error):
        self.store = store
        self.key = key
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.active = True

    def unsubscribe(self):
        self.active = False


class FakeSnapshotStore:
    """In-memory snapshot store that only delivers when told to."""

    def __init__(self):
        self.subscriptions = []
        self.writes = []
        self.fail_writes = False
        self.fail_subscribe = False

    def subscribe(self, key, on_snapshot, on_error=None):
        if self.fail_subscribe:
            raise SnapshotStoreError("subscribe refused")
        subscription = FakeSubscription(self, key, on_snapshot, on_error)
        self.subscriptions.append(subscription)
        return subscription

    def push(self, key, activities, exists=True):
        snapshot = Snapshot(exists=exists, data={"activities": activities} if exists else {})
        for subscription in list(self.subscriptions):
            if subscription.active and subscription.key == key:
                subscription.on_snapshot(snapshot)

    def fail(self, key, error):
        for subscription in self.subscriptions:
            if subscription.active and subscription.key == key and subscription.on_error:
                subscription.on_error(error)

    def write(self, key, data, merge=True):
        if self.fail_writes:
            raise SnapshotStoreError("write refused")
        self.writes.append((key, data, merge))
        return f"rev-{len(self.writes)}"


@pytest.fixture
def fake_scheduler():
    return FakeScheduler()


@pytest.fixture
def fake_snapshot_store():
    return FakeSnapshotStore()
