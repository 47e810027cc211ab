from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Mapping, Optional

from ..domain.models import Fill, Holding, MarketRow, OrderHistoryPage, SignalSnapshot


class DashboardApiPort(ABC):
    """Abstract upstream trading-bot API.

    Implementations raise the ``FetchError`` subclasses from
    ``domain.errors`` (``NetworkError``, ``ServerError``, ``RateLimited``,
    ``CircuitBreakerOpen``, ``RequestRejected``).
    """

    @abstractmethod
    async def fetch_signals(self, symbol: str, config: Optional[Mapping[str, float]] = None) -> SignalSnapshot:
        raise NotImplementedError

    @abstractmethod
    async def fetch_top_of_market(self, filter_symbols: Optional[Iterable[str]] = None) -> List[MarketRow]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_open_fills(self) -> List[Fill]:
        raise NotImplementedError

    @abstractmethod
    async def fetch_order_history(self, limit: int, offset: int) -> OrderHistoryPage:
        raise NotImplementedError

    @abstractmethod
    async def fetch_holdings_snapshot(self) -> Dict[str, Holding]:
        raise NotImplementedError
