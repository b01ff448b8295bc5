"""Weekly window scheduling for blocking logic."""

import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def to_datetime(ms: int) -> datetime:
    """Convert epoch milliseconds to a naive local datetime."""
    return datetime.fromtimestamp(ms / 1000)


def to_ms(moment: datetime) -> int:
    """Convert a naive local datetime to epoch milliseconds."""
    return int(round(moment.timestamp() * 1000))


def weekday(moment: datetime) -> int:
    """Weekday of `moment` with 0 = Sunday .. 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def to_minutes(hhmm: str) -> int:
    """Parse "HH:MM" into minutes since midnight."""
    match = _HHMM.match(hhmm.strip()) if isinstance(hhmm, str) else None
    if not match:
        raise ValueError(f"Invalid time {hhmm!r}, expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time {hhmm!r}, expected HH:MM")
    return hours * 60 + minutes


@dataclass(frozen=True)
class BlockWindow:
    """
    One recurring weekly blocking interval.

    `start <= end` is the same-day interval [start, end). `start > end` is an
    overnight window, active on its weekday from midnight until `end` and from
    `start` until midnight.
    """

    day: int
    start: str
    end: str

    def __post_init__(self):
        if not isinstance(self.day, int) or not 0 <= self.day <= 6:
            raise ValueError(f"Invalid weekday {self.day!r}, expected 0-6")
        to_minutes(self.start)
        to_minutes(self.end)

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end)

    @property
    def overnight(self) -> bool:
        return self.start_minutes > self.end_minutes

    def contains(self, minutes: int) -> bool:
        start, end = self.start_minutes, self.end_minutes
        if start <= end:
            # Same-day window (e.g., 09:00-17:00)
            return start <= minutes < end
        # Overnight window (e.g., 23:00-01:00)
        return minutes >= start or minutes < end

    @classmethod
    def from_dict(cls, data: dict) -> "BlockWindow":
        return cls(day=data["day"], start=data["start"], end=data["end"])

    def to_dict(self) -> dict:
        return {"day": self.day, "start": self.start, "end": self.end}

    def __str__(self) -> str:
        suffix = " (overnight)" if self.overnight else ""
        return f"{DAY_NAMES[self.day]} {self.start} - {self.end}{suffix}"


DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def is_within_any_window(now: datetime, windows: Iterable[BlockWindow]) -> bool:
    """
    Check if `now` falls within any window for its local weekday.

    Returns:
        bool: True if blocking should be active by schedule.
    """
    day = weekday(now)
    minutes = now.hour * 60 + now.minute
    return any(w.day == day and w.contains(minutes) for w in windows)


def next_boundary_after(now: datetime, windows: Iterable[BlockWindow]) -> datetime:
    """
    Find the next instant after `now` at which the schedule can change.

    Looks at today and the following seven days. Every window contributes its
    start and end on its weekday; an overnight window also contributes the
    midnights that bracket its day, since it only applies on that weekday.
    Falls back to 24 hours from now when there are no windows.
    """
    windows = list(windows)
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    candidates = []

    for offset in range(8):
        midnight = today + timedelta(days=offset)
        day = weekday(midnight)
        for w in windows:
            if w.day != day:
                continue
            candidates.append(midnight + timedelta(minutes=w.start_minutes))
            candidates.append(midnight + timedelta(minutes=w.end_minutes))
            if w.overnight:
                candidates.append(midnight)
                candidates.append(midnight + timedelta(days=1))

    future = [c for c in candidates if c > now]
    if not future:
        return now + timedelta(days=1)
    return min(future)
