"""Time ranges within a single day.

Times are naive wall-clock values stored as minutes since midnight. A range
is half-open, ``[start, end)``, so back-to-back activities (one ending at
10:00, the next starting at 10:00) do not overlap.
"""

import re
from dataclasses import dataclass

from .errors import InvalidFormat, ValidationFailed

__all__ = ["TimeRange", "parse_time", "format_time", "overlaps", "MINUTES_PER_DAY"]

MINUTES_PER_DAY = 24 * 60

_TIME_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def parse_time(value: str) -> int:
    """Parse an "HH:MM" string into minutes since midnight.

    Args:
        value: Time string such as "09:30"

    Returns:
        Minutes since midnight (0-1439)

    Raises:
        InvalidFormat: If the string is not a valid wall-clock time
    """
    if not isinstance(value, str):
        raise InvalidFormat(f"Invalid time: {value!r}")
    match = _TIME_PATTERN.match(value)
    if not match:
        raise InvalidFormat(f"Invalid time format (expected HH:MM): {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidFormat(f"Time out of range: {value!r}")
    return hours * 60 + minutes


def format_time(minutes: int) -> str:
    """Format minutes since midnight as zero-padded "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass(frozen=True, order=True)
class TimeRange:
    """Immutable ``[start, end)`` range in minutes since midnight.

    Ordering compares ``start`` first, then ``end``.
    """

    start: int
    end: int

    def __post_init__(self) -> None:
        for name in ("start", "end"):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value < MINUTES_PER_DAY:
                raise InvalidFormat(f"{name} must be minutes since midnight, got {value!r}")
        if self.start >= self.end:
            raise ValidationFailed("End time must be after start time")

    @classmethod
    def parse(cls, start: str, end: str) -> "TimeRange":
        """Build a range from user-entered "HH:MM" strings.

        Raises:
            InvalidFormat: If either string is malformed
            ValidationFailed: If start is not before end
        """
        return cls(parse_time(start), parse_time(end))

    @property
    def start_time(self) -> str:
        return format_time(self.start)

    @property
    def end_time(self) -> str:
        return format_time(self.end)

    @property
    def duration_minutes(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "TimeRange") -> bool:
        return overlaps(self, other)

    def __str__(self) -> str:
        return f"{self.start_time}-{self.end_time}"


def overlaps(a: TimeRange, b: TimeRange) -> bool:
    """Half-open intersection test. Touching endpoints do not overlap."""
    return a.start < b.end and b.start < a.end
