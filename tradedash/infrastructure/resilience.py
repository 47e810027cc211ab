from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from ..domain.errors import CircuitBreakerOpen
from .clock import Clock, SystemClock

T = TypeVar("T")


class CircuitBreaker:
    """Circuit breaker to guard a failing upstream endpoint.

    Opens after ``max_failures`` consecutive counted failures and rejects
    calls with ``CircuitBreakerOpen`` until ``reset_timeout`` seconds have
    passed since the last failure, then closes again on its own. Exceptions
    listed in ``ignored`` (timeouts, typically) propagate without counting.
    """

    def __init__(
        self,
        max_failures: int = 5,
        reset_timeout: float = 30.0,
        clock: Optional[Clock] = None,
        ignored: Tuple[Type[BaseException], ...] = (),
        name: str = "upstream",
    ) -> None:
        self.max_failures = max_failures
        self.reset_timeout = reset_timeout
        self.clock = clock or SystemClock()
        self.ignored = ignored
        self.name = name
        self.failures = 0
        self.last_failure_at = 0.0

    @property
    def open(self) -> bool:
        if self.failures < self.max_failures:
            return False
        if self.clock.now() - self.last_failure_at >= self.reset_timeout:
            self.reset()
            return False
        return True

    def retry_after(self) -> float:
        return max(0.0, self.reset_timeout - (self.clock.now() - self.last_failure_at))

    def reset(self) -> None:
        self.failures = 0
        self.last_failure_at = 0.0

    def record_failure(self) -> None:
        self.failures += 1
        self.last_failure_at = self.clock.now()

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        if self.open:
            raise CircuitBreakerOpen(f"Circuit breaker open for {self.name}", retry_after=self.retry_after())
        try:
            result = await func()
        except self.ignored:
            raise
        except Exception:
            self.record_failure()
            raise
        self.reset()
        return result
