"""
Clock Abstraction
=================

Every timestamp the subsystem persists comes from one injectable clock:

- run start times in run records (ISO-8601)
- meta policy generated_at (ISO-8601)
- history archive names for superseded Gold records (compact UTC stamp)

Tests swap in a SimulatedClock so those values are reproducible.
"""

from abc import abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, runtime_checkable

HISTORY_STAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"


@runtime_checkable
class Clock(Protocol):
    """Anything with a timezone-aware now()."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock, UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class SimulatedClock:
    """
    Manually driven clock.

    Example:
        >>> clock = SimulatedClock(datetime(2026, 7, 1, 9, 0, tzinfo=timezone.utc))
        >>> clock.advance(minutes=5)
        >>> compact_utc_stamp(clock.now())
        '20260701T090500000000Z'
    """

    def __init__(self, start_time: datetime):
        self._now = _require_aware(start_time)

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta: float) -> None:
        """Move forward by timedelta keyword arguments (seconds=, minutes=, ...)."""
        step = timedelta(**delta)
        if step < timedelta(0):
            raise ValueError(f"cannot move a simulated clock backwards ({step})")
        self._now += step

    def set_time(self, new_time: datetime) -> None:
        self._now = _require_aware(new_time)


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError(f"clock time must be timezone-aware, got naive {value!r}")
    return value


_clock: Clock = SystemClock()


def get_clock() -> Clock:
    return _clock


def set_clock(clock: Clock) -> None:
    """Replace the process-wide clock (tests, or once at startup)."""
    global _clock
    _clock = clock


def reset_clock() -> None:
    global _clock
    _clock = SystemClock()


def iso_now(clock: Optional[Clock] = None) -> str:
    """ISO-8601 time from the given clock (or the process-wide one)."""
    return (clock or _clock).now().isoformat()


def compact_utc_stamp(value: datetime) -> str:
    """Sortable, filename-safe UTC stamp, e.g. 20260701T090500000000Z."""
    return _require_aware(value).astimezone(timezone.utc).strftime(HISTORY_STAMP_FORMAT)
