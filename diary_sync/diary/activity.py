"""Activity records and their persisted document form."""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date as date_type
from typing import Callable, Iterable, Optional

from .errors import InvalidFormat, ValidationFailed
from .time_range import TimeRange

__all__ = ["Activity", "new_id", "parse_date", "activities_from_documents"]

logger = logging.getLogger(__name__)


def new_id() -> str:
    """Generate an opaque unique activity id."""
    return uuid.uuid4().hex


def parse_date(value: str) -> str:
    """Validate an ISO 8601 calendar date and return it normalized."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailed("Date is required")
    try:
        return date_type.fromisoformat(value.strip()).isoformat()
    except ValueError as e:
        raise InvalidFormat(f"Invalid date (expected YYYY-MM-DD): {value!r}") from e


@dataclass(frozen=True)
class Activity:
    """A dated, time-ranged diary entry."""

    id: str
    date: str
    range: TimeRange
    description: str

    @classmethod
    def create(
        cls,
        date: str,
        start_time: str,
        end_time: str,
        description: str,
        activity_id: Optional[str] = None,
    ) -> "Activity":
        """Validate user-entered fields and build an activity.

        Raises:
            ValidationFailed: If a field is empty or end is not after start
            InvalidFormat: If the date or a time is malformed
        """
        if not all(
            isinstance(v, str) and v.strip()
            for v in (date, start_time, end_time, description)
        ):
            raise ValidationFailed("Please fill all fields")
        return cls(
            id=activity_id or new_id(),
            date=parse_date(date),
            range=TimeRange.parse(start_time, end_time),
            description=description.strip(),
        )

    @property
    def start_time(self) -> str:
        return self.range.start_time

    @property
    def end_time(self) -> str:
        return self.range.end_time

    @property
    def sort_key(self) -> tuple[str, int]:
        return (self.date, self.range.start)

    def with_id(self, activity_id: str) -> "Activity":
        return replace(self, id=activity_id)

    def to_dict(self) -> dict:
        """Persisted document form."""
        return {
            "id": self.id,
            "date": self.date,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "description": self.description,
        }

    @classmethod
    def from_dict(
        cls, data: dict, id_factory: Callable[[], str] = new_id
    ) -> "Activity":
        """Build an activity from its persisted form.

        Accepts the older entry layout (``start``/``end``/``activity``) as
        well. Ids are kept as strings; entries without one get a fresh id.
        """
        if not isinstance(data, dict):
            raise InvalidFormat(f"Activity entry must be an object, got {type(data).__name__}")
        start = data.get("startTime", data.get("start", ""))
        end = data.get("endTime", data.get("end", ""))
        description = data.get("description", data.get("activity", ""))
        raw_id = data.get("id")
        activity_id = str(raw_id).strip() if raw_id is not None else ""
        return cls.create(
            date=data.get("date", ""),
            start_time=start,
            end_time=end,
            description=description,
            activity_id=activity_id or id_factory(),
        )


def activities_from_documents(
    documents: Iterable[dict], id_factory: Callable[[], str] = new_id
) -> list[Activity]:
    """Load persisted entries, skipping ones that fail validation.

    Duplicate ids are re-keyed so every record stays addressable.
    """
    activities: list[Activity] = []
    seen_ids: set[str] = set()
    for index, document in enumerate(documents or []):
        try:
            activity = Activity.from_dict(document, id_factory=id_factory)
        except ValidationFailed as e:
            logger.warning(f"Skipping invalid stored activity #{index}: {e}")
            continue
        if activity.id in seen_ids:
            activity = activity.with_id(id_factory())
        seen_ids.add(activity.id)
        activities.append(activity)
    return activities
