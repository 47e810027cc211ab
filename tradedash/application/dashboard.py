from datetime import datetime, tzinfo
from typing import Iterable, List, Mapping, Optional

from ..domain.models import Fill, Freshness, MatchResult, PnlSummary, Period, Position, QueueName, QueueStatus
from ..infrastructure.clock import current_datetime
from ..infrastructure.logging import get_logger
from .aggregation import summarize_period
from .attribution import MatchPolicy, attribute, attribute_all
from .fetchers import FetchExecutors
from .reconciliation import reconcile
from .scheduler import DualCadenceScheduler
from .store import DashboardStore

logger = get_logger(__name__)


class DashboardSession:
    """Read side of the dashboard plus the lifecycle of its refresh loops."""

    def __init__(
        self,
        store: DashboardStore,
        executors: FetchExecutors,
        scheduler: DualCadenceScheduler,
        match_policy: Optional[MatchPolicy] = None,
        exclusive_matching: bool = False,
        stale_after: float = 180.0,
        tz: Optional[tzinfo] = None,
    ) -> None:
        self.store = store
        self.executors = executors
        self.scheduler = scheduler
        self.match_policy = match_policy or MatchPolicy()
        self.exclusive_matching = exclusive_matching
        self.stale_after = stale_after
        self.tz = tz

    async def start(self, known_symbols: Iterable[str], trade_enabled: Mapping[str, bool]) -> None:
        """Load account data once, then hand the watchlist to the scheduler."""

        await self.executors.refresh_account()
        self.update_watchlist(known_symbols, trade_enabled)
        logger.info("dashboard_session_started")

    def update_watchlist(self, known_symbols: Iterable[str], trade_enabled: Mapping[str, bool]) -> None:
        self.scheduler.update_membership(known_symbols, trade_enabled)

    async def shutdown(self) -> None:
        self.scheduler.stop()
        self.store.unmount()
        logger.info("dashboard_session_stopped")

    def get_positions(self) -> List[Position]:
        return reconcile(self.store.open_fills(), self.store.holdings())

    def _fills(self) -> List[Fill]:
        return list(self.store.history())

    def attribute_fill(self, fill_id: str) -> Optional[MatchResult]:
        fills = self._fills()
        if self.exclusive_matching:
            for result in attribute_all(fills, self.store.market_prices(), self.match_policy, exclusive=True):
                if result.fill_id == fill_id:
                    return result
            return None
        for fill in fills:
            if fill.id == fill_id:
                return attribute(fill, fills, self.store.market_prices(), self.match_policy)
        return None

    def get_period_pnl_summary(self, period: Period, reference_date: Optional[datetime] = None) -> PnlSummary:
        return summarize_period(
            period,
            reference_date or current_datetime(self.store.clock, self.tz),
            self._fills(),
            self.store.holdings(),
            self.store.market_prices(),
            self.match_policy,
            self.tz,
            self.exclusive_matching,
        )

    def scheduler_status(self) -> List[QueueStatus]:
        return [self.scheduler.status(queue) for queue in QueueName]

    @property
    def rate_limited(self) -> bool:
        """True while the fast queue runs at a degraded cadence."""

        return self.scheduler.backoff.rate_limited

    def freshness(self, kind: str) -> Freshness:
        age = self.store.age(kind)
        return Freshness(kind=kind, age_seconds=age, stale=age is None or age > self.stale_after)
