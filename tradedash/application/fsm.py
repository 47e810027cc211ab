"""Per-queue refresh state machine.

Each refresh queue is a single-owner state object advanced by
``transition(state, event, policy, now) -> (state, effects)``. The function is
pure: the scheduler interprets the returned effects (arming or cancelling the
queue timer, publishing the rate-limited flag).
"""

from dataclasses import dataclass, replace
from typing import List, Tuple

from ..domain.errors import CircuitBreakerOpen, NetworkError, RateLimited, RequestRejected, ServerError
from ..domain.events import (
    CancelTimer,
    CycleFailed,
    CycleSucceeded,
    MembershipChanged,
    QueueEffect,
    QueueEvent,
    RateLimitChanged,
    ScheduleCycle,
)
from ..domain.models import QueueName
from ..infrastructure.signatures import membership_signature


@dataclass(frozen=True)
class BackoffPolicy:
    fast_floor: float = 15.0
    slow_floor: float = 60.0
    ceiling_multiplier: float = 4.0
    fast_error_multiplier: float = 2.0
    slow_error_multiplier: float = 1.5

    @property
    def ceiling(self) -> float:
        return self.slow_floor * self.ceiling_multiplier

    def floor(self, queue: QueueName) -> float:
        return self.fast_floor if queue is QueueName.FAST else self.slow_floor


@dataclass(frozen=True)
class QueueState:
    queue: QueueName
    backoff: float
    paused_until: float = 0.0
    consecutive_errors: int = 0
    rate_limited: bool = False
    membership: Tuple[str, ...] = ()

    @classmethod
    def initial(cls, queue: QueueName, policy: BackoffPolicy) -> "QueueState":
        return cls(queue=queue, backoff=policy.floor(queue))


def next_delay(state: QueueState, policy: BackoffPolicy, now: float) -> float:
    """Delay before the queue's next cycle may start."""

    delay = max(policy.floor(state.queue), state.backoff)
    if state.paused_until > now:
        delay = max(delay, state.paused_until - now)
    return delay


def transition(
    state: QueueState, event: QueueEvent, policy: BackoffPolicy, now: float
) -> Tuple[QueueState, List[QueueEffect]]:
    if isinstance(event, CycleSucceeded):
        return _on_success(state, policy, now)
    if isinstance(event, CycleFailed):
        return _on_failure(state, event.error, policy, now)
    if isinstance(event, MembershipChanged):
        return _on_membership(state, event.symbols, policy, now)
    raise TypeError(f"Unknown queue event {event!r}")


def _reschedule(state: QueueState, policy: BackoffPolicy, now: float) -> QueueEffect:
    if not state.membership:
        return CancelTimer()
    return ScheduleCycle(next_delay(state, policy, now))


def _on_success(state: QueueState, policy: BackoffPolicy, now: float) -> Tuple[QueueState, List[QueueEffect]]:
    effects: List[QueueEffect] = []
    if state.rate_limited:
        effects.append(RateLimitChanged(False))
    new_state = replace(
        state,
        backoff=policy.floor(state.queue),
        paused_until=0.0,
        consecutive_errors=0,
        rate_limited=False,
    )
    effects.append(_reschedule(new_state, policy, now))
    return new_state, effects


def _on_failure(
    state: QueueState, error: BaseException, policy: BackoffPolicy, now: float
) -> Tuple[QueueState, List[QueueEffect]]:
    if isinstance(error, CircuitBreakerOpen):
        return state, [_reschedule(state, policy, now)]

    effects: List[QueueEffect] = []
    errors = state.consecutive_errors + 1
    if state.queue is QueueName.FAST:
        if isinstance(error, RateLimited):
            hint = error.retry_after or policy.slow_floor
            backoff = min(policy.ceiling, max(policy.slow_floor, hint))
            new_state = replace(
                state,
                backoff=backoff,
                paused_until=now + backoff,
                consecutive_errors=errors,
                rate_limited=True,
            )
            if not state.rate_limited:
                effects.append(RateLimitChanged(True))
        elif isinstance(error, RequestRejected):
            new_state = replace(state, consecutive_errors=errors)
        elif isinstance(error, (ServerError, NetworkError)) or getattr(error, "status", None) is None:
            backoff = min(policy.ceiling, max(policy.fast_floor, state.backoff * policy.fast_error_multiplier))
            new_state = replace(state, backoff=backoff, paused_until=now + backoff, consecutive_errors=errors)
        else:
            new_state = replace(state, consecutive_errors=errors)
    else:
        backoff = min(policy.ceiling, max(policy.slow_floor, state.backoff * policy.slow_error_multiplier))
        new_state = replace(state, backoff=backoff, consecutive_errors=errors)

    effects.append(_reschedule(new_state, policy, now))
    return new_state, effects


def _on_membership(
    state: QueueState, symbols: Tuple[str, ...], policy: BackoffPolicy, now: float
) -> Tuple[QueueState, List[QueueEffect]]:
    if membership_signature(symbols) == membership_signature(state.membership):
        return state, []

    new_state = replace(state, membership=tuple(symbols))
    if not symbols:
        return new_state, [CancelTimer()]

    if state.queue is QueueName.FAST:
        backoff = max(policy.fast_floor, min(state.backoff, policy.ceiling))
        if state.rate_limited and state.paused_until > now:
            # a rate-limit pause outlives membership edits
            new_state = replace(new_state, backoff=backoff)
            return new_state, [ScheduleCycle(state.paused_until - now)]
        new_state = replace(new_state, backoff=backoff, paused_until=0.0)
        return new_state, [ScheduleCycle(0.0)]
    return new_state, [ScheduleCycle(next_delay(new_state, policy, now), replace_pending=False)]
