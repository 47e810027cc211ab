from collections import defaultdict, deque
from typing import DefaultDict, Deque, Dict, Iterable, List, Mapping, Optional, Tuple

from ...domain.models import Fill, Holding, MarketRow, OrderHistoryPage, SignalSnapshot
from ...ports.dashboard_api import DashboardApiPort


class InMemoryDashboardApi(DashboardApiPort):
    """Simulated upstream API backed by in-memory data.

    ``fail_next(operation, error)`` queues an exception that the next call to
    that operation raises instead of answering, so tests can script outages.
    """

    def __init__(
        self,
        signals: Optional[Dict[str, SignalSnapshot]] = None,
        market: Optional[List[MarketRow]] = None,
        open_fills: Optional[List[Fill]] = None,
        history: Optional[List[Fill]] = None,
        holdings: Optional[Dict[str, Holding]] = None,
    ) -> None:
        self.signals: Dict[str, SignalSnapshot] = dict(signals or {})
        self.market: List[MarketRow] = list(market or [])
        self.open_fills: List[Fill] = list(open_fills or [])
        self.history: List[Fill] = list(history or [])
        self.holdings: Dict[str, Holding] = dict(holdings or {})
        self.calls: List[Tuple[str, object]] = []
        self._failures: DefaultDict[str, Deque[BaseException]] = defaultdict(deque)

    def fail_next(self, operation: str, error: BaseException, times: int = 1) -> None:
        for _ in range(times):
            self._failures[operation].append(error)

    def _maybe_fail(self, operation: str, argument: object = None) -> None:
        self.calls.append((operation, argument))
        queue = self._failures.get(operation)
        if queue:
            raise queue.popleft()

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def fetch_signals(self, symbol: str, config: Optional[Mapping[str, float]] = None) -> SignalSnapshot:
        self._maybe_fail("fetch_signals", symbol)
        return self.signals.get(symbol, SignalSnapshot(symbol=symbol, price=None))

    async def fetch_top_of_market(self, filter_symbols: Optional[Iterable[str]] = None) -> List[MarketRow]:
        wanted = set(filter_symbols) if filter_symbols is not None else None
        self._maybe_fail("fetch_top_of_market", wanted)
        if wanted is None:
            return list(self.market)
        return [row for row in self.market if row.symbol in wanted]

    async def fetch_open_fills(self) -> List[Fill]:
        self._maybe_fail("fetch_open_fills")
        return list(self.open_fills)

    async def fetch_order_history(self, limit: int, offset: int) -> OrderHistoryPage:
        self._maybe_fail("fetch_order_history", offset)
        page = self.history[offset:offset + limit]
        return OrderHistoryPage(fills=page, has_more=offset + limit < len(self.history), total=len(self.history))

    async def fetch_holdings_snapshot(self) -> Dict[str, Holding]:
        self._maybe_fail("fetch_holdings_snapshot")
        return dict(self.holdings)
