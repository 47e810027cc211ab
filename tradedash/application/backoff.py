from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..domain.events import (
    CycleFailed,
    CycleSucceeded,
    MembershipChanged,
    QueueEffect,
    QueueEvent,
    RateLimitChanged,
)
from ..domain.models import QueueName
from ..infrastructure.clock import Clock, SystemClock
from ..infrastructure.logging import get_logger
from .fsm import BackoffPolicy, QueueState, next_delay, transition

logger = get_logger(__name__)


class BackoffController:
    """Owns the fast and slow queue states and advances them on cycle outcomes."""

    def __init__(
        self,
        policy: Optional[BackoffPolicy] = None,
        clock: Optional[Clock] = None,
        on_rate_limit_change: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self.policy = policy or BackoffPolicy()
        self.clock = clock or SystemClock()
        self.on_rate_limit_change = on_rate_limit_change
        self._states: Dict[QueueName, QueueState] = {
            queue: QueueState.initial(queue, self.policy) for queue in QueueName
        }

    def state(self, queue: QueueName) -> QueueState:
        return self._states[queue]

    def members(self, queue: QueueName) -> Tuple[str, ...]:
        return self._states[queue].membership

    @property
    def rate_limited(self) -> bool:
        return self._states[QueueName.FAST].rate_limited

    def on_success(self, queue: QueueName) -> List[QueueEffect]:
        return self._apply(queue, CycleSucceeded())

    def on_error(self, queue: QueueName, error: BaseException) -> List[QueueEffect]:
        effects = self._apply(queue, CycleFailed(error))
        state = self._states[queue]
        logger.warning(
            "queue_backoff",
            queue=queue.value,
            error_type=type(error).__name__,
            status=getattr(error, "status", None),
            backoff_seconds=state.backoff,
            consecutive_errors=state.consecutive_errors,
            rate_limited=state.rate_limited,
        )
        return effects

    def on_membership(self, queue: QueueName, symbols: Iterable[str]) -> List[QueueEffect]:
        return self._apply(queue, MembershipChanged(tuple(symbols)))

    def next_delay(self, queue: QueueName) -> float:
        return next_delay(self._states[queue], self.policy, self.clock.now())

    def _apply(self, queue: QueueName, event: QueueEvent) -> List[QueueEffect]:
        new_state, effects = transition(self._states[queue], event, self.policy, self.clock.now())
        self._states[queue] = new_state
        for effect in effects:
            if isinstance(effect, RateLimitChanged):
                logger.info("fast_queue_rate_limit_changed", rate_limited=effect.rate_limited)
                if self.on_rate_limit_change:
                    self.on_rate_limit_change(effect.rate_limited)
        return effects
