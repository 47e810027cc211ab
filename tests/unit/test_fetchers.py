import asyncio

import pytest
from structlog.testing import capture_logs

from tradedash.adapters.api.in_memory import InMemoryDashboardApi
from tradedash.application.fetchers import FetchExecutors
from tradedash.application.store import DashboardStore
from tradedash.domain.errors import NetworkError, RequestRejected, ServerError
from tradedash.domain.models import Fill, FillRole, Holding, MarketRow, SignalSnapshot
from tradedash.infrastructure.clock import FixedClock
from tradedash.infrastructure.logging import ErrorLogDeduplicator


def make_fill(index: int) -> Fill:
    return Fill(
        id=str(index),
        symbol="BTC_USDT",
        side="BUY",
        order_type="MARKET",
        role=FillRole.ENTRY,
        quantity=1.0,
        price=100.0,
        status="FILLED",
        created_at=float(index),
    )


class FlakyHistoryApi(InMemoryDashboardApi):
    """Fails every history page after the first."""

    async def fetch_order_history(self, limit, offset):
        if offset > 0:
            raise ServerError("page unavailable", status=503)
        return await super().fetch_order_history(limit, offset)


def _executors(api, clock=None, page_size=100, max_pages=10):
    clock = clock or FixedClock(500.0)
    store = DashboardStore(clock=clock)
    executors = FetchExecutors(
        api=api,
        store=store,
        dedup=ErrorLogDeduplicator(clock=clock),
        history_page_size=page_size,
        history_max_pages=max_pages,
    )
    return executors, store


def test_order_history_pages_until_exhausted():
    async def _run() -> None:
        api = InMemoryDashboardApi(history=[make_fill(i) for i in range(250)])
        executors, store = _executors(api)

        fills = await executors.fetch_order_history()

        assert len(fills) == 250
        assert [argument for name, argument in api.calls] == [0, 100, 200]
        assert len(store.history()) == 250

    asyncio.run(_run())


def test_order_history_warns_when_page_cap_cuts_it_short():
    async def _run() -> None:
        api = InMemoryDashboardApi(history=[make_fill(i) for i in range(250)])
        executors, store = _executors(api, max_pages=2)

        with capture_logs() as logs:
            fills = await executors.fetch_order_history()

        assert len(fills) == 200
        assert len(store.history()) == 200
        truncated = [entry for entry in logs if entry["event"] == "order_history_truncated"]
        assert truncated == [{"event": "order_history_truncated", "log_level": "warning", "pages": 2, "fills": 200}]

    asyncio.run(_run())


def test_order_history_exhausted_on_last_page_is_not_truncated():
    async def _run() -> None:
        api = InMemoryDashboardApi(history=[make_fill(i) for i in range(200)])
        executors, _ = _executors(api, max_pages=2)

        with capture_logs() as logs:
            fills = await executors.fetch_order_history()

        assert len(fills) == 200
        assert all(entry["event"] != "order_history_truncated" for entry in logs)

    asyncio.run(_run())


def test_order_history_keeps_partial_result_when_later_page_fails():
    async def _run() -> None:
        api = FlakyHistoryApi(history=[make_fill(i) for i in range(250)])
        executors, store = _executors(api)

        fills = await executors.fetch_order_history()

        assert len(fills) == 100
        assert len(store.history()) == 100

    asyncio.run(_run())


def test_order_history_first_page_failure_propagates():
    async def _run() -> None:
        api = InMemoryDashboardApi(history=[make_fill(1)])
        api.fail_next("fetch_order_history", NetworkError("reset"))
        executors, store = _executors(api)

        with pytest.raises(NetworkError):
            await executors.fetch_order_history()
        assert store.updated_at("history") is None

    asyncio.run(_run())


def test_signal_without_price_falls_back_to_market_price():
    async def _run() -> None:
        api = InMemoryDashboardApi(signals={"ETH_USDT": SignalSnapshot(symbol="ETH_USDT", price=None)})
        executors, store = _executors(api)
        store.apply_market_rows([MarketRow(symbol="ETH_USDT", price=2_900.0)])

        signal = await executors.fetch_signals("ETH_USDT")

        assert signal.price == 2_900.0
        assert store.signal("ETH_USDT").price == 2_900.0

    asyncio.run(_run())


def test_signal_price_updates_market_price():
    async def _run() -> None:
        api = InMemoryDashboardApi(signals={"BTC_USDT": SignalSnapshot(symbol="BTC_USDT", price=61_000.0)})
        executors, store = _executors(api)

        await executors.fetch_signals("BTC_USDT")

        assert store.price_for("BTC_USDT") == 61_000.0
        assert store.market_prices()["BTC"] == 61_000.0

    asyncio.run(_run())


def test_late_results_are_dropped_after_unmount():
    async def _run() -> None:
        api = InMemoryDashboardApi(signals={"BTC_USDT": SignalSnapshot(symbol="BTC_USDT", price=61_000.0)})
        executors, store = _executors(api)
        store.unmount()

        assert await executors.fetch_signals("BTC_USDT") is None
        assert store.signal("BTC_USDT") is None

    asyncio.run(_run())


def test_signal_fetch_errors_propagate():
    async def _run() -> None:
        api = InMemoryDashboardApi()
        api.fail_next("fetch_signals", RequestRejected("unknown symbol", status=404))
        executors, _ = _executors(api)

        with pytest.raises(RequestRejected):
            await executors.fetch_signals("NOPE_USDT")

    asyncio.run(_run())


def test_refresh_account_tolerates_partial_failure():
    async def _run() -> None:
        api = InMemoryDashboardApi(
            open_fills=[make_fill(1)],
            holdings={"BTC": Holding(asset="BTC", quantity=1.0, value_quote=60_000.0)},
        )
        api.fail_next("fetch_holdings_snapshot", ServerError("down", status=500))
        executors, store = _executors(api)

        assert await executors.refresh_account() is False
        assert len(store.open_fills()) == 1
        assert store.holdings() == {}

        assert await executors.refresh_account() is True
        assert "BTC" in store.holdings()

    asyncio.run(_run())
