"""Diary module - time ranges, activity records and the in-memory store."""

from .activity import Activity, new_id
from .errors import (
    DiaryError,
    InvalidFormat,
    NotFound,
    SyncError,
    SyncSubscribeFailed,
    SyncWriteFailed,
    TimeConflict,
    ValidationFailed,
)
from .store import (
    ALL_DATES,
    ActivityStore,
    Origin,
    filter_by_date,
    group_by_date,
    sort_activities,
    unique_dates,
)
from .time_range import TimeRange, overlaps, parse_time

__all__ = [
    "Activity",
    "new_id",
    "DiaryError",
    "InvalidFormat",
    "NotFound",
    "SyncError",
    "SyncSubscribeFailed",
    "SyncWriteFailed",
    "TimeConflict",
    "ValidationFailed",
    "ALL_DATES",
    "ActivityStore",
    "Origin",
    "filter_by_date",
    "group_by_date",
    "sort_activities",
    "unique_dates",
    "TimeRange",
    "overlaps",
    "parse_time",
]
