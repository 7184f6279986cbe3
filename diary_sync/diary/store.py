"""In-memory activity store for one session.

The store keeps its records sorted by ``(date, start)`` after every change
and guarantees that no two records on the same date overlap. Every change
is published to listeners tagged with its :class:`Origin`, which is how the
sync bridge tells user edits apart from snapshots it applied itself.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

from .activity import Activity, activities_from_documents, new_id
from .errors import NotFound, TimeConflict
from .time_range import TimeRange, overlaps

__all__ = [
    "ActivityStore",
    "Origin",
    "ALL_DATES",
    "sort_activities",
    "group_by_date",
    "filter_by_date",
    "unique_dates",
]

logger = logging.getLogger(__name__)

# Filter sentinel meaning "no date filter"
ALL_DATES = "all"


class Origin(Enum):
    """Where a store transition came from."""

    LOCAL_EDIT = "local_edit"
    REMOTE_REPLACE = "remote_replace"


StoreListener = Callable[[Origin, tuple[Activity, ...]], None]


def sort_activities(activities: Iterable[Activity]) -> list[Activity]:
    """Return activities sorted ascending by ``(date, start)``."""
    return sorted(activities, key=lambda a: a.sort_key)


def group_by_date(activities: Iterable[Activity]) -> dict[str, list[Activity]]:
    """Group activities by date.

    Group order follows the first time each date is seen; records keep
    their relative order inside a group. On a sorted input this yields
    ascending dates with ascending times.
    """
    grouped: dict[str, list[Activity]] = {}
    for activity in activities:
        grouped.setdefault(activity.date, []).append(activity)
    return grouped


def filter_by_date(activities: Iterable[Activity], selected: Optional[str] = ALL_DATES) -> list[Activity]:
    """Keep activities on ``selected`` date. ``ALL_DATES`` (or empty) keeps all."""
    if not selected or selected == ALL_DATES:
        return list(activities)
    return [a for a in activities if a.date == selected]


def unique_dates(activities: Iterable[Activity]) -> list[str]:
    """Distinct dates, ascending."""
    return sorted({a.date for a in activities})


class ActivityStore:
    """Ordered, conflict-free collection of one user's activities.

    Mutations run to completion under a lock and are never partially
    applied: validation and conflict checks happen before anything changes.
    Listeners are called after the lock is released.
    """

    def __init__(
        self,
        session=None,
        activities: Optional[Iterable[Activity]] = None,
        id_factory: Callable[[], str] = new_id,
    ):
        """Initialize the store.

        Args:
            session: Session context the records belong to
            activities: Initial records (sorted on load)
            id_factory: Generator for new activity ids
        """
        self.session = session
        self._id_factory = id_factory
        self._lock = threading.RLock()
        self._activities: list[Activity] = sort_activities(activities or [])
        self._listeners: list[StoreListener] = []

    # -- Listeners --------------------------------------------------------

    def add_listener(self, listener: StoreListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: StoreListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, origin: Origin, snapshot: tuple[Activity, ...]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(origin, snapshot)

    # -- Queries ----------------------------------------------------------

    @property
    def activities(self) -> tuple[Activity, ...]:
        """Current records in ``(date, start)`` order."""
        with self._lock:
            return tuple(self._activities)

    def __len__(self) -> int:
        with self._lock:
            return len(self._activities)

    def get(self, activity_id: str) -> Activity:
        """Look up an activity by id.

        Raises:
            NotFound: If no activity has this id
        """
        with self._lock:
            for activity in self._activities:
                if activity.id == activity_id:
                    return activity
        raise NotFound(activity_id)

    def find_conflict(
        self, date: str, time_range: TimeRange, exclude_id: Optional[str] = None
    ) -> Optional[Activity]:
        """Return the first activity on ``date`` overlapping ``time_range``.

        The activity with ``exclude_id`` is ignored, so a record never
        conflicts with its own previous version.
        """
        with self._lock:
            for activity in self._activities:
                if exclude_id is not None and activity.id == exclude_id:
                    continue
                if activity.date != date:
                    continue
                if overlaps(activity.range, time_range):
                    return activity
        return None

    def has_conflict(
        self, date: str, time_range: TimeRange, exclude_id: Optional[str] = None
    ) -> bool:
        return self.find_conflict(date, time_range, exclude_id) is not None

    def filtered(self, selected: Optional[str] = ALL_DATES) -> list[Activity]:
        return filter_by_date(self.activities, selected)

    def grouped(self, selected: Optional[str] = ALL_DATES) -> dict[str, list[Activity]]:
        return group_by_date(self.filtered(selected))

    def unique_dates(self) -> list[str]:
        return unique_dates(self.activities)

    def to_documents(self) -> list[dict]:
        """Records in persisted document form, in store order."""
        return [a.to_dict() for a in self.activities]

    # -- Mutations --------------------------------------------------------

    def add(self, date: str, start_time: str, end_time: str, description: str) -> Activity:
        """Validate and insert a new activity.

        Raises:
            ValidationFailed: If a field is empty or end is not after start
            TimeConflict: If the range overlaps an activity on the same date
        """
        with self._lock:
            activity = Activity.create(
                date, start_time, end_time, description, activity_id=self._id_factory()
            )
            conflict = self.find_conflict(activity.date, activity.range)
            if conflict is not None:
                logger.debug(f"Rejected add on {activity.date} {activity.range}: conflict")
                raise TimeConflict(conflict)
            self._activities = sort_activities([*self._activities, activity])
            snapshot = tuple(self._activities)

        logger.debug(f"Added activity {activity.id} on {activity.date} {activity.range}")
        self._notify(Origin.LOCAL_EDIT, snapshot)
        return activity

    def update(
        self,
        activity_id: str,
        date: str,
        start_time: str,
        end_time: str,
        description: str,
    ) -> Activity:
        """Replace an activity's fields, keeping its id.

        Raises:
            NotFound: If no activity has this id
            ValidationFailed: If a field is empty or end is not after start
            TimeConflict: If the range overlaps another activity on the same date
        """
        with self._lock:
            self.get(activity_id)
            activity = Activity.create(
                date, start_time, end_time, description, activity_id=activity_id
            )
            conflict = self.find_conflict(activity.date, activity.range, exclude_id=activity_id)
            if conflict is not None:
                logger.debug(f"Rejected update of {activity_id}: conflict")
                raise TimeConflict(conflict)
            self._activities = sort_activities(
                activity if a.id == activity_id else a for a in self._activities
            )
            snapshot = tuple(self._activities)

        logger.debug(f"Updated activity {activity_id}")
        self._notify(Origin.LOCAL_EDIT, snapshot)
        return activity

    def delete(self, activity_id: str) -> Activity:
        """Remove an activity by id.

        Confirmation is the caller's job; the store deletes unconditionally.

        Raises:
            NotFound: If no activity has this id
        """
        with self._lock:
            removed = self.get(activity_id)
            self._activities = [a for a in self._activities if a.id != activity_id]
            snapshot = tuple(self._activities)

        logger.debug(f"Deleted activity {activity_id}")
        self._notify(Origin.LOCAL_EDIT, snapshot)
        return removed

    def replace_all(
        self,
        activities: Sequence[Activity],
        origin: Origin = Origin.REMOTE_REPLACE,
    ) -> tuple[Activity, ...]:
        """Replace the whole contents, re-establishing sort order.

        Inbound snapshots are trusted as-is apart from ordering: the
        remote copy is the last writer.
        """
        with self._lock:
            self._activities = sort_activities(activities)
            snapshot = tuple(self._activities)

        self._notify(origin, snapshot)
        return snapshot

    def replace_from_documents(
        self, documents: Iterable[dict], origin: Origin = Origin.REMOTE_REPLACE
    ) -> tuple[Activity, ...]:
        """Replace contents from persisted documents (see :meth:`replace_all`)."""
        return self.replace_all(
            activities_from_documents(documents, id_factory=self._id_factory), origin
        )

    def clear(self) -> None:
        """Drop all records without notifying listeners (session teardown)."""
        with self._lock:
            self._activities = []
