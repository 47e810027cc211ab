from dataclasses import dataclass
from typing import Tuple, Union


@dataclass(frozen=True)
class CycleSucceeded:
    pass


@dataclass(frozen=True)
class CycleFailed:
    error: BaseException


@dataclass(frozen=True)
class MembershipChanged:
    symbols: Tuple[str, ...]


QueueEvent = Union[CycleSucceeded, CycleFailed, MembershipChanged]


@dataclass(frozen=True)
class ScheduleCycle:
    """Arm the queue timer. When ``replace_pending`` is False an already pending timer wins."""

    delay: float
    replace_pending: bool = True


@dataclass(frozen=True)
class CancelTimer:
    pass


@dataclass(frozen=True)
class RateLimitChanged:
    rate_limited: bool


QueueEffect = Union[ScheduleCycle, CancelTimer, RateLimitChanged]
