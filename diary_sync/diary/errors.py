"""Error kinds raised by the diary core."""

from typing import Optional

__all__ = [
    "DiaryError",
    "ValidationFailed",
    "InvalidFormat",
    "TimeConflict",
    "NotFound",
    "SyncError",
    "SyncWriteFailed",
    "SyncSubscribeFailed",
]


class DiaryError(Exception):
    """Base class for diary errors."""

    pass


class ValidationFailed(DiaryError):
    """A field is empty or the end time is not after the start time."""

    pass


class InvalidFormat(ValidationFailed):
    """A time or date string could not be parsed."""

    pass


class TimeConflict(DiaryError):
    """The time range overlaps another activity on the same date."""

    def __init__(self, conflicting=None, message: Optional[str] = None):
        self.conflicting = conflicting
        if message is None:
            if conflicting is not None:
                message = (
                    f"Time conflict with '{conflicting.description}' "
                    f"({conflicting.start_time}-{conflicting.end_time}) "
                    f"on {conflicting.date}"
                )
            else:
                message = "Time conflict with another activity"
        super().__init__(message)


class NotFound(DiaryError):
    """No activity with the given id exists."""

    def __init__(self, activity_id: str):
        self.activity_id = activity_id
        super().__init__(f"Activity not found: {activity_id}")


class SyncError(DiaryError):
    """Persistence or subscription failure. Never rolls back local state."""

    pass


class SyncWriteFailed(SyncError):
    """Outbound snapshot write failed."""

    pass


class SyncSubscribeFailed(SyncError):
    """Inbound snapshot subscription failed."""

    pass
