"""aiohttp client for the trading-bot REST API.

Status codes are mapped onto the ``FetchError`` hierarchy so the scheduler can
tell rate limiting (429) from server faults (5xx), rejected requests (other
4xx) and transport failures. The signals endpoint, the most frequently polled
one, is additionally guarded by a circuit breaker and a short tenacity retry.
"""

import asyncio
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

import aiohttp
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ...application.ingestion import parse_fills, parse_holdings, parse_market_rows, parse_signal
from ...domain.errors import (
    FetchError,
    NetworkError,
    RateLimited,
    RequestRejected,
    RequestTimeout,
    ServerError,
)
from ...domain.models import Fill, Holding, MarketRow, OrderHistoryPage, SignalSnapshot
from ...infrastructure.clock import Clock, SystemClock
from ...infrastructure.logging import get_logger
from ...infrastructure.resilience import CircuitBreaker
from ...ports.dashboard_api import DashboardApiPort

logger = get_logger(__name__)


@dataclass(frozen=True)
class EndpointTimeouts:
    signals: float = 15.0
    top_of_market: float = 60.0
    order_history: float = 60.0
    dashboard_state: float = 180.0
    default: float = 30.0


def parse_retry_after(value: Optional[str], now: float) -> Optional[float]:
    """Seconds to wait from a ``Retry-After`` header (delta-seconds or HTTP date)."""

    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, when.timestamp() - now)


class HttpDashboardApi(DashboardApiPort):
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        exchange: str = "CRYPTO_COM",
        timeouts: Optional[EndpointTimeouts] = None,
        breaker: Optional[CircuitBreaker] = None,
        retry_attempts: int = 2,
        retry_wait_min: float = 0.5,
        retry_wait_max: float = 4.0,
        clock: Optional[Clock] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.exchange = exchange
        self.timeouts = timeouts or EndpointTimeouts()
        self.clock = clock or SystemClock()
        self.breaker = breaker or CircuitBreaker(clock=self.clock, ignored=(RequestTimeout,), name="signals")
        self.retry_attempts = retry_attempts
        self.retry_wait_min = retry_wait_min
        self.retry_wait_max = retry_wait_max
        self._session = session
        self._owns_session = session is None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _get_json(self, path: str, timeout: float, params: Optional[Mapping[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        session = self._get_session()
        try:
            async with session.get(
                url,
                params=dict(params or {}),
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                if response.status == 429:
                    retry_after = parse_retry_after(response.headers.get("Retry-After"), self.clock.now())
                    raise RateLimited(f"429 from {path}", retry_after=retry_after)
                if response.status >= 500:
                    raise ServerError(f"{response.status} from {path}", status=response.status)
                if response.status >= 400:
                    raise RequestRejected(f"{response.status} from {path}", status=response.status)
                return await response.json(content_type=None)
        except FetchError:
            raise
        except asyncio.TimeoutError as exc:
            raise RequestTimeout(f"{path} timed out after {timeout}s") from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(f"{path} failed: {exc}") from exc
        except ValueError as exc:
            raise ServerError(f"{path} returned invalid JSON") from exc

    async def fetch_signals(self, symbol: str, config: Optional[Mapping[str, float]] = None) -> SignalSnapshot:
        params: Dict[str, Any] = {"exchange": self.exchange, "symbol": symbol}
        params.update({key: str(value) for key, value in (config or {}).items()})

        async def _request() -> Any:
            return await self._get_json("/signals", self.timeouts.signals, params)

        payload: Any = None
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type((NetworkError, ServerError)),
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait_min, min=self.retry_wait_min, max=self.retry_wait_max),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.debug("signals_retry", symbol=symbol, attempt=attempt.retry_state.attempt_number)
                payload = await self.breaker.call(_request)
        return parse_signal(symbol, payload if isinstance(payload, dict) else {}, self.clock.now())

    async def fetch_top_of_market(self, filter_symbols: Optional[Iterable[str]] = None) -> List[MarketRow]:
        payload = await self._get_json("/market/top-coins-data", self.timeouts.top_of_market)
        rows = parse_market_rows(payload.get("coins", []) if isinstance(payload, dict) else [])
        if filter_symbols is None:
            return rows
        wanted = {symbol.upper() for symbol in filter_symbols}
        return [row for row in rows if row.symbol in wanted]

    async def fetch_open_fills(self) -> List[Fill]:
        payload = await self._get_json("/orders/open", self.timeouts.default)
        return parse_fills(payload.get("orders", []) if isinstance(payload, dict) else [], self.clock.now())

    async def fetch_order_history(self, limit: int, offset: int) -> OrderHistoryPage:
        payload = await self._get_json(
            "/orders/history", self.timeouts.order_history, {"limit": limit, "offset": offset}
        )
        if not isinstance(payload, dict):
            return OrderHistoryPage(fills=[])
        fills = parse_fills(payload.get("orders", []), self.clock.now())
        total = payload.get("total")
        return OrderHistoryPage(
            fills=fills,
            has_more=bool(payload.get("has_more", False)),
            total=int(total) if total is not None else None,
        )

    async def fetch_holdings_snapshot(self) -> Dict[str, Holding]:
        payload = await self._get_json("/dashboard/state", self.timeouts.dashboard_state)
        if not isinstance(payload, dict):
            return {}
        portfolio = payload.get("portfolio") or {}
        assets = portfolio.get("assets") if isinstance(portfolio, dict) else None
        if not assets:
            assets = payload.get("balances") or []
        holdings = parse_holdings(assets)
        logger.debug("holdings_snapshot", assets=len(holdings))
        return holdings
