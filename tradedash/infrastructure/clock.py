import time
from datetime import datetime, timezone, tzinfo
from typing import Optional, Protocol


class Clock(Protocol):
    """Source of wall-clock time in epoch seconds."""

    def now(self) -> float:
        ...


class SystemClock:
    def now(self) -> float:
        return time.time()


class FixedClock:
    """Deterministic clock for tests; moves only when told to."""

    def __init__(self, value: float) -> None:
        self.value = value

    def now(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def current_datetime(clock: Clock, tz: Optional[tzinfo] = None) -> datetime:
    """``clock.now()`` as an aware datetime in ``tz`` (UTC by default)."""

    return datetime.fromtimestamp(clock.now(), tz or timezone.utc)
