import pytest

from tradedash.application.ingestion import (
    parse_fill,
    parse_fills,
    parse_holdings,
    parse_market_rows,
    parse_signal,
    parse_timestamp,
    resolve_role,
)
from tradedash.domain.errors import DataIntegrityError
from tradedash.domain.models import FillRole

NOW = 1_700_000_000.0


def test_parse_timestamp_formats():
    assert parse_timestamp(1_700_000_000) == 1_700_000_000.0
    assert parse_timestamp(1_700_000_000_123) == pytest.approx(1_700_000_000.123)
    assert parse_timestamp("1700000000") == 1_700_000_000.0
    assert parse_timestamp("2023-11-14T22:13:20Z") == 1_700_000_000.0
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None


def test_resolve_role_precedence():
    assert resolve_role("BUY", {"order_type": "TAKE_PROFIT"}) is FillRole.ENTRY
    assert resolve_role("SELL", {"order_type": "take_profit_limit"}) is FillRole.TAKE_PROFIT
    assert resolve_role("SELL", {"order_type": "LIMIT", "trigger_type": "STOP_LOSS"}) is FillRole.STOP_LOSS
    assert (
        resolve_role("SELL", {"order_type": "LIMIT", "trigger_type": "STOP_LOSS", "is_trigger": False})
        is FillRole.PLAIN_EXIT
    )
    assert resolve_role("SELL", {"metadata": {"order_role": "TAKE_PROFIT"}}) is FillRole.TAKE_PROFIT
    assert resolve_role("SELL", {"order_type": "MARKET"}) is FillRole.PLAIN_EXIT


def test_parse_fill_normalises_record():
    fill = parse_fill(
        {
            "order_id": 42,
            "instrument_name": "btc_usdt",
            "side": "sell",
            "order_type": "STOP_LIMIT",
            "trigger_type": "stop_loss",
            "status": "FILLED",
            "quantity": "0.5",
            "cumulative_value": "30000",
            "cumulative_quantity": "0.5",
            "create_time": 1_700_000_000_000,
            "update_time": 1_700_000_060_000,
            "client_oid": "bracket-7",
        },
        received_at=NOW,
    )

    assert fill.id == "42"
    assert fill.symbol == "BTC_USDT"
    assert fill.side == "SELL"
    assert fill.role is FillRole.STOP_LOSS
    assert fill.price == pytest.approx(60_000.0)
    assert fill.executed_at == pytest.approx(1_700_000_060.0)
    assert fill.client_group_id == "bracket-7"


def test_parse_fill_defaults_created_at_to_receipt_time():
    fill = parse_fill({"id": "x", "symbol": "ETH_USDT", "side": "BUY", "status": "ACTIVE", "quantity": 1}, NOW)
    assert fill.created_at == NOW
    assert fill.price is None


@pytest.mark.parametrize(
    "raw",
    [
        {"symbol": "BTC_USDT", "side": "BUY", "status": "FILLED", "price": 1},
        {"id": "1", "side": "BUY", "status": "FILLED", "price": 1},
        {"id": "1", "symbol": "BTC_USDT", "side": "HOLD", "status": "FILLED", "price": 1},
        {"id": "1", "symbol": "BTC_USDT", "side": "BUY", "status": "WEIRD", "price": 1},
        {"id": "1", "symbol": "BTC_USDT", "side": "BUY", "status": "FILLED", "quantity": -1, "price": 1},
        {"id": "1", "symbol": "BTC_USDT", "side": "BUY", "status": "FILLED", "quantity": 1},
    ],
)
def test_parse_fill_rejects_malformed_records(raw):
    with pytest.raises(DataIntegrityError):
        parse_fill(raw, NOW)


def test_parse_fills_skips_bad_records():
    fills = parse_fills(
        [
            {"id": "1", "symbol": "BTC_USDT", "side": "BUY", "status": "FILLED", "quantity": 1, "price": 100},
            {"id": "2", "symbol": "BTC_USDT", "side": "BUY", "status": "FILLED", "quantity": 1},
            {"id": "3", "symbol": "BTC_USDT", "side": "SELL", "status": "canceled", "quantity": 1},
        ],
        NOW,
    )
    assert [fill.id for fill in fills] == ["1", "3"]
    assert fills[1].status == "CANCELLED"


def test_parse_market_rows_and_holdings():
    rows = parse_market_rows(
        [
            {"instrument_name": "BTC_USDT", "current_price": "60000", "volume_24h": 123.0},
            {"instrument_name": "BAD_USDT", "current_price": 0},
        ]
    )
    assert [(row.symbol, row.price, row.volume_24h) for row in rows] == [("BTC_USDT", 60_000.0, 123.0)]

    holdings = parse_holdings([{"coin": "btc", "balance": "0.5", "value_usd": 30_000}, {"balance": 1}])
    assert list(holdings) == ["BTC"]
    assert holdings["BTC"].quantity == 0.5
    assert holdings["BTC"].value_quote == 30_000.0


def test_parse_signal_keeps_numeric_indicators():
    signal = parse_signal("eth_usdt", {"price": 3000, "rsi": 55.5, "trend": "up", "flag": True}, NOW)
    assert signal.symbol == "ETH_USDT"
    assert signal.price == 3000.0
    assert signal.indicators == {"rsi": 55.5}
    assert signal.fetched_at == NOW
