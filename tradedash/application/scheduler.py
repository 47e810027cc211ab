"""Dual-cadence refresh scheduler.

Trade-enabled symbols are refreshed on the fast queue, everything else on the
slow queue. Each queue runs one cycle at a time: a cycle walks its members in
small batches with a stagger pause between batches, reports the outcome to
the ``BackoffController`` and re-arms its own timer with the delay the
controller computes.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..domain.events import CancelTimer, QueueEffect, ScheduleCycle
from ..domain.models import QueueName, QueueStatus
from ..infrastructure.logging import ErrorLogDeduplicator, get_logger, log_handled_error
from .backoff import BackoffController
from .fetchers import FetchExecutors

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class CadenceSettings:
    fast_batch_size: int = 1
    slow_batch_size: int = 1
    fast_stagger: float = 1.0
    slow_stagger: float = 2.0
    full_refresh_every: int = 3


def partition(
    known_symbols: Iterable[str], trade_enabled: Mapping[str, bool]
) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
    """Split symbols into (fast, slow). Fast iff the trade flag is exactly True."""

    fast: List[str] = []
    slow: List[str] = []
    seen = set()
    for symbol in known_symbols:
        if not symbol or symbol in seen:
            continue
        seen.add(symbol)
        if trade_enabled.get(symbol) is True:
            fast.append(symbol)
        else:
            slow.append(symbol)
    return tuple(fast), tuple(slow)


class DualCadenceScheduler:
    def __init__(
        self,
        executors: FetchExecutors,
        backoff: BackoffController,
        dedup: ErrorLogDeduplicator,
        settings: Optional[CadenceSettings] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.executors = executors
        self.backoff = backoff
        self.dedup = dedup
        self.settings = settings or CadenceSettings()
        self._sleep = sleep
        self._timers: Dict[QueueName, Optional[asyncio.TimerHandle]] = {queue: None for queue in QueueName}
        self._timer_due: Dict[QueueName, Optional[float]] = {queue: None for queue in QueueName}
        self._in_flight: Dict[QueueName, bool] = {queue: False for queue in QueueName}
        self._tasks: Dict[QueueName, Optional[asyncio.Task]] = {queue: None for queue in QueueName}
        self._slow_cycles = 0
        self._account_timer: Optional[asyncio.TimerHandle] = None
        self._account_task: Optional[asyncio.Task] = None
        self._account_in_flight = False
        self._stopped = False

    def update_membership(self, known_symbols: Iterable[str], trade_enabled: Mapping[str, bool]) -> None:
        """Recompute queue membership and re-arm timers for queues whose members changed."""

        if self._stopped:
            return
        fast, slow = partition(known_symbols, trade_enabled)
        for queue, symbols in ((QueueName.FAST, fast), (QueueName.SLOW, slow)):
            effects = self.backoff.on_membership(queue, symbols)
            if effects:
                logger.info("queue_membership_changed", queue=queue.value, members=len(symbols))
                self._apply_effects(queue, effects)
            elif symbols and not self.is_pending(queue) and not self._in_flight[queue]:
                self._arm(queue, self.backoff.policy.floor(queue))
        self._sync_account_timer()

    def is_pending(self, queue: QueueName) -> bool:
        return self._timers[queue] is not None

    def in_flight(self, queue: QueueName) -> bool:
        return self._in_flight[queue]

    def next_run_in(self, queue: QueueName) -> Optional[float]:
        due = self._timer_due[queue]
        if due is None:
            return None
        return max(0.0, due - asyncio.get_running_loop().time())

    def status(self, queue: QueueName) -> QueueStatus:
        state = self.backoff.state(queue)
        next_run = None
        if self._timer_due[queue] is not None:
            try:
                next_run = self.next_run_in(queue)
            except RuntimeError:
                next_run = None
        return QueueStatus(
            queue=queue,
            backoff_seconds=state.backoff,
            rate_limited=state.rate_limited,
            consecutive_errors=state.consecutive_errors,
            paused_until=state.paused_until,
            members=state.membership,
            in_flight=self._in_flight[queue],
            next_run_in=next_run,
        )

    def stop(self) -> None:
        """Cancel every pending timer. Cycles already running finish on their own."""

        self._stopped = True
        for queue in QueueName:
            self._cancel(queue)
        self._cancel_account_timer()
        logger.info("scheduler_stopped")

    async def wait_idle(self) -> None:
        tasks = [task for task in (*self._tasks.values(), self._account_task) if task is not None and not task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def run_cycle(self, queue: QueueName) -> bool:
        """Run one cycle of ``queue`` unless one is already running. Returns whether it ran."""

        if self._stopped or self._in_flight[queue]:
            return False
        if not self.backoff.members(queue):
            self._cancel(queue)
            self._sync_account_timer()
            return False

        self._in_flight[queue] = True
        effects: List[QueueEffect]
        try:
            try:
                if queue is QueueName.FAST:
                    await self._fast_cycle()
                else:
                    await self._slow_cycle()
            except Exception as exc:
                effects = self.backoff.on_error(queue, exc)
                log_handled_error(logger, self.dedup, f"{queue.value}_queue", "cycle_failed", exc, queue=queue.value)
            else:
                effects = self.backoff.on_success(queue)
        finally:
            self._in_flight[queue] = False

        if not self._stopped:
            self._apply_effects(queue, effects)
            self._sync_account_timer()
        return True

    async def _fast_cycle(self) -> None:
        symbols = self.backoff.members(QueueName.FAST)
        try:
            await self.executors.fetch_top_of_market(symbols)
        except Exception as exc:
            log_handled_error(logger, self.dedup, "fast_queue:top_of_market", "top_of_market_failed", exc)
        logger.info("fast_cycle_started", symbols=len(symbols))
        await self._run_batches(symbols, self.settings.fast_batch_size, self.settings.fast_stagger)
        logger.info("fast_cycle_completed", symbols=len(symbols))

    async def _slow_cycle(self) -> None:
        symbols = self.backoff.members(QueueName.SLOW)
        cycle_number = await self._account_side_tasks(symbols)

        logger.info("slow_cycle_started", symbols=len(symbols), cycle=cycle_number)
        await self._run_batches(symbols, self.settings.slow_batch_size, self.settings.slow_stagger)
        logger.info("slow_cycle_completed", symbols=len(symbols), cycle=cycle_number)

    async def _account_side_tasks(self, symbols: Sequence[str]) -> int:
        """Refresh account data and market rows at slow cadence. Returns the cycle number."""

        cycle_number = self._slow_cycles
        self._slow_cycles += 1

        await self.executors.refresh_account()
        try:
            if cycle_number % self.settings.full_refresh_every == 0:
                logger.info("full_market_refresh", cycle=cycle_number)
                await self.executors.fetch_top_of_market(None)
            elif symbols:
                await self.executors.fetch_top_of_market(symbols)
        except Exception as exc:
            log_handled_error(logger, self.dedup, "slow_queue:top_of_market", "top_of_market_failed", exc)
        return cycle_number

    def account_refresh_pending(self) -> bool:
        return self._account_timer is not None

    def _sync_account_timer(self) -> None:
        # account data rides on the slow queue while it has members
        if self._stopped or self.backoff.members(QueueName.SLOW):
            self._cancel_account_timer()
            return
        if self._account_timer is None and not self._account_in_flight:
            delay = self.backoff.next_delay(QueueName.SLOW)
            self._account_timer = asyncio.get_running_loop().call_later(delay, self._fire_account)
            logger.debug("account_refresh_scheduled", delay_seconds=delay)

    def _cancel_account_timer(self) -> None:
        if self._account_timer is not None:
            self._account_timer.cancel()
        self._account_timer = None

    def _fire_account(self) -> None:
        self._account_timer = None
        self._account_task = asyncio.create_task(self._account_cycle())

    async def _account_cycle(self) -> None:
        if self._stopped or self._account_in_flight or self.backoff.members(QueueName.SLOW):
            return
        self._account_in_flight = True
        try:
            cycle_number = await self._account_side_tasks(())
            logger.info("account_refresh_completed", cycle=cycle_number)
        except Exception as exc:
            log_handled_error(logger, self.dedup, "account_refresh", "account_refresh_failed", exc)
        finally:
            self._account_in_flight = False
        self._sync_account_timer()

    async def _run_batches(self, symbols: Sequence[str], batch_size: int, stagger: float) -> None:
        size = max(1, batch_size)
        for start in range(0, len(symbols), size):
            batch = symbols[start:start + size]
            results = await asyncio.gather(
                *(self.executors.fetch_signals(symbol) for symbol in batch),
                return_exceptions=True,
            )
            failure = next((result for result in results if isinstance(result, BaseException)), None)
            if failure is not None:
                raise failure
            if start + size < len(symbols):
                await self._sleep(stagger)

    def _apply_effects(self, queue: QueueName, effects: Iterable[QueueEffect]) -> None:
        for effect in effects:
            if isinstance(effect, ScheduleCycle):
                if effect.replace_pending or not self.is_pending(queue):
                    self._arm(queue, effect.delay)
            elif isinstance(effect, CancelTimer):
                self._cancel(queue)

    def _arm(self, queue: QueueName, delay: float) -> None:
        self._cancel(queue)
        if self._stopped or not self.backoff.members(queue):
            return
        loop = asyncio.get_running_loop()
        self._timers[queue] = loop.call_later(delay, self._fire, queue)
        self._timer_due[queue] = loop.time() + delay
        logger.debug("cycle_scheduled", queue=queue.value, delay_seconds=delay)

    def _cancel(self, queue: QueueName) -> None:
        handle = self._timers[queue]
        if handle is not None:
            handle.cancel()
        self._timers[queue] = None
        self._timer_due[queue] = None

    def _fire(self, queue: QueueName) -> None:
        self._timers[queue] = None
        self._timer_due[queue] = None
        if self._in_flight[queue]:
            # the running cycle re-arms the timer when it finishes
            return
        self._tasks[queue] = asyncio.create_task(self.run_cycle(queue))
