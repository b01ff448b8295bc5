"""
Pausable countdowns.

A countdown is exactly one of:
- Inactive: nothing is counting.
- Running(ends_at): counting down to an absolute epoch-millisecond instant.
- Paused(remaining): frozen with `remaining` milliseconds left.

Persisted records store a countdown as an (end, paused) field pair; use
`to_fields` / `from_fields` to cross that boundary so the two are never set
together.
"""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Inactive:
    def __str__(self) -> str:
        return "inactive"


@dataclass(frozen=True)
class Running:
    ends_at: int

    def remaining(self, now: int) -> int:
        return max(0, self.ends_at - now)

    def __str__(self) -> str:
        return f"running until {self.ends_at}"


@dataclass(frozen=True)
class Paused:
    remaining: int

    def __str__(self) -> str:
        return f"paused with {self.remaining}ms left"


Countdown = Union[Inactive, Running, Paused]

INACTIVE = Inactive()


def start(duration_ms: int, now: int) -> Running:
    return Running(ends_at=now + max(0, int(duration_ms)))


def pause(countdown: Countdown, now: int) -> Countdown:
    """Freeze a running countdown. Anything else is returned unchanged."""
    if isinstance(countdown, Running):
        return Paused(remaining=countdown.remaining(now))
    return countdown


def resume(countdown: Countdown, now: int) -> Countdown:
    """Restart a paused countdown from `now`. Anything else is returned unchanged."""
    if isinstance(countdown, Paused):
        return Running(ends_at=now + countdown.remaining)
    return countdown


def cancel(countdown: Countdown) -> Inactive:
    return INACTIVE


def is_active(countdown: Countdown) -> bool:
    return not isinstance(countdown, Inactive)


def is_expired(countdown: Countdown, now: int) -> bool:
    return isinstance(countdown, Running) and countdown.ends_at <= now


def remaining(countdown: Countdown, now: int) -> Optional[int]:
    if isinstance(countdown, Running):
        return countdown.remaining(now)
    if isinstance(countdown, Paused):
        return countdown.remaining
    return None


def _as_int(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def from_fields(data: dict, end_key: str, paused_key: str) -> Countdown:
    """Decode a countdown from a persisted end/paused pair. Paused wins if both are set."""
    paused = _as_int(data.get(paused_key))
    if paused is not None and paused > 0:
        return Paused(remaining=paused)
    ends_at = _as_int(data.get(end_key))
    if ends_at is not None:
        return Running(ends_at=ends_at)
    return INACTIVE


def to_fields(countdown: Countdown, end_key: str, paused_key: str) -> dict:
    return {
        end_key: countdown.ends_at if isinstance(countdown, Running) else None,
        paused_key: countdown.remaining if isinstance(countdown, Paused) else None,
    }
