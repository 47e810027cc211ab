import asyncio
from typing import Iterable, List, Mapping, Optional

from ..domain.errors import CircuitBreakerOpen, FetchError
from ..domain.models import Fill, SignalSnapshot
from ..infrastructure.logging import ErrorLogDeduplicator, get_logger, log_handled_error
from ..ports.dashboard_api import DashboardApiPort
from .store import DashboardStore

logger = get_logger(__name__)


class FetchExecutors:
    """Fetch operations invoked by the scheduler; results land in the store."""

    def __init__(
        self,
        api: DashboardApiPort,
        store: DashboardStore,
        dedup: ErrorLogDeduplicator,
        signal_config: Optional[Mapping[str, float]] = None,
        history_page_size: int = 100,
        history_max_pages: int = 10,
    ) -> None:
        self.api = api
        self.store = store
        self.dedup = dedup
        self.signal_config = dict(signal_config or {})
        self.history_page_size = history_page_size
        self.history_max_pages = history_max_pages

    async def fetch_signals(self, symbol: str) -> Optional[SignalSnapshot]:
        """Refresh one symbol's signals. A tripped upstream breaker is a silent skip."""

        try:
            signal = await self.api.fetch_signals(symbol, self.signal_config or None)
        except CircuitBreakerOpen as exc:
            logger.debug("signals_circuit_open_skip", symbol=symbol, retry_after=exc.retry_after)
            return None
        except FetchError as exc:
            log_handled_error(logger, self.dedup, f"fetch_signals:{symbol}", "signals_fetch_failed", exc)
            raise

        if not self.store.mounted:
            return None
        if signal.price is None:
            fallback = self.store.price_for(signal.symbol)
            if fallback is not None:
                signal = SignalSnapshot(
                    symbol=signal.symbol,
                    price=fallback,
                    indicators=signal.indicators,
                    fetched_at=signal.fetched_at,
                )
            else:
                logger.debug("signal_without_price", symbol=symbol)
        else:
            self.store.update_market_price(signal.symbol, signal.price)
        self.store.apply_signal(signal)
        return signal

    async def fetch_top_of_market(self, filter_symbols: Optional[Iterable[str]] = None) -> int:
        symbols = list(filter_symbols) if filter_symbols is not None else None
        rows = await self.api.fetch_top_of_market(symbols)
        self.store.apply_market_rows(rows)
        logger.debug("top_of_market_refreshed", rows=len(rows), filtered=symbols is not None)
        return len(rows)

    async def fetch_open_fills(self) -> List[Fill]:
        fills = await self.api.fetch_open_fills()
        self.store.set_open_fills(fills)
        return fills

    async def fetch_holdings(self) -> int:
        holdings = await self.api.fetch_holdings_snapshot()
        self.store.set_holdings(holdings)
        return len(holdings)

    async def fetch_order_history(self) -> List[Fill]:
        """Page through the order history, keeping what arrived if a later page fails."""

        fills: List[Fill] = []
        offset = 0
        for page_number in range(self.history_max_pages):
            try:
                page = await self.api.fetch_order_history(self.history_page_size, offset)
            except FetchError as exc:
                if page_number == 0:
                    raise
                log_handled_error(
                    logger,
                    self.dedup,
                    "fetch_order_history:page",
                    "order_history_partial",
                    exc,
                    pages=page_number,
                    fills=len(fills),
                )
                break
            fills.extend(page.fills)
            offset += self.history_page_size
            if not page.has_more or not page.fills:
                break
        else:
            logger.warning("order_history_truncated", pages=self.history_max_pages, fills=len(fills))
        self.store.set_history(fills)
        return fills

    async def refresh_account(self) -> bool:
        """Refresh holdings, open fills and history; each part may fail on its own."""

        results = await asyncio.gather(
            self.fetch_holdings(),
            self.fetch_open_fills(),
            self.fetch_order_history(),
            return_exceptions=True,
        )
        ok = True
        for name, result in zip(("holdings", "open_fills", "order_history"), results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                ok = False
                log_handled_error(logger, self.dedup, f"refresh_account:{name}", "account_refresh_failed", result)
        return ok
