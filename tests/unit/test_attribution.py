import pytest

from tradedash.application.attribution import MatchPolicy, attribute, attribute_all
from tradedash.domain.models import Fill, FillRole, MatchResult, MatchType

T0 = 1_700_000_000.0


def make_fill(fill_id, side, quantity, price, created_at, symbol="BTC_USDT", status="FILLED"):
    return Fill(
        id=fill_id,
        symbol=symbol,
        side=side,
        order_type="MARKET",
        role=FillRole.ENTRY if side == "BUY" else FillRole.PLAIN_EXIT,
        quantity=quantity,
        price=price,
        status=status,
        created_at=created_at,
    )


def test_sell_paired_with_buy_inside_window():
    buy = make_fill("b1", "BUY", 10, 100.0, T0)
    sell = make_fill("s1", "SELL", 10, 110.0, T0 + 120)

    result = attribute(sell, [buy, sell])

    assert result.fill_id == "s1"
    assert result.matched_buy_fill_id == "b1"
    assert result.match_type is MatchType.PAIRED
    assert result.realized_pnl == pytest.approx(100.0)
    assert result.realized_pnl_percent == pytest.approx(10.0)
    assert result.is_realized is True


def test_pair_window_takes_priority_over_closer_volume():
    near_in_time = make_fill("b-near", "BUY", 7, 100.0, T0 + 100)
    same_volume = make_fill("b-volume", "BUY", 10, 90.0, T0 - 3_600)
    sell = make_fill("s1", "SELL", 10, 110.0, T0 + 200)

    result = attribute(sell, [same_volume, near_in_time, sell])

    assert result.matched_buy_fill_id == "b-near"
    assert result.match_type is MatchType.PAIRED
    assert result.realized_pnl == pytest.approx(100.0)


def test_closest_quantity_wins_inside_window():
    fills = [
        make_fill("b1", "BUY", 4, 100.0, T0),
        make_fill("b2", "BUY", 9, 101.0, T0 + 10),
        make_fill("s1", "SELL", 10, 110.0, T0 + 60),
    ]
    assert attribute(fills[2], fills).matched_buy_fill_id == "b2"


def test_similar_volume_boundary_is_inclusive():
    sell = make_fill("s1", "SELL", 10, 110.0, T0 + 86_400)
    edge = make_fill("b-edge", "BUY", 12, 100.0, T0)
    outside = make_fill("b-out", "BUY", 12.01, 100.0, T0 + 1_000)

    assert attribute(sell, [edge, sell]).matched_buy_fill_id == "b-edge"
    assert attribute(sell, [edge, sell]).match_type is MatchType.SIMILAR_VOLUME

    result = attribute(sell, [outside, sell])
    assert result.matched_buy_fill_id is None
    assert result.is_realized is False
    assert result.realized_pnl == 0.0


def test_similar_volume_prefers_latest_buy_before_sell():
    sell = make_fill("s1", "SELL", 10, 120.0, T0 + 10_000)
    fills = [
        make_fill("b-old", "BUY", 10, 90.0, T0),
        make_fill("b-recent", "BUY", 11, 100.0, T0 + 5_000),
        make_fill("b-after", "BUY", 10, 95.0, T0 + 20_000),
        sell,
    ]
    assert attribute(sell, fills).matched_buy_fill_id == "b-recent"

    only_after = [make_fill("b-late", "BUY", 10, 95.0, T0 + 30_000), make_fill("b-later", "BUY", 10, 96.0, T0 + 40_000), sell]
    assert attribute(sell, only_after).matched_buy_fill_id == "b-late"


def test_buy_reports_theoretical_pnl_from_live_price():
    buy = make_fill("b1", "BUY", 5, 50.0, T0)

    result = attribute(buy, [buy], market_prices={"BTC_USDT": 60.0})

    assert result.realized_pnl == pytest.approx(50.0)
    assert result.realized_pnl_percent == pytest.approx(20.0)
    assert result.is_realized is False
    assert result.matched_buy_fill_id is None


def test_no_false_realization():
    other_symbol = make_fill("b1", "BUY", 10, 100.0, T0, symbol="ETH_USDT")
    unfilled = make_fill("b2", "BUY", 10, 100.0, T0, status="CANCELLED")
    sell = make_fill("s1", "SELL", 10, 110.0, T0 + 60)

    result = attribute(sell, [other_symbol, unfilled, sell])
    assert result.is_realized is False
    assert result.realized_pnl == 0.0

    pending_sell = make_fill("s2", "SELL", 10, 110.0, T0 + 60, status="ACTIVE")
    assert attribute(pending_sell, [make_fill("b3", "BUY", 10, 100.0, T0), pending_sell]).is_realized is False

    assert attribute(make_fill("b4", "BUY", 1, 10.0, T0), []).realized_pnl == 0.0


def test_attribute_all_empty_input():
    assert attribute_all([]) == []


def test_shared_buy_backs_both_sells_by_default():
    buy = make_fill("b1", "BUY", 10, 100.0, T0)
    first = make_fill("s1", "SELL", 10, 110.0, T0 + 60)
    second = make_fill("s2", "SELL", 10, 120.0, T0 + 120)

    results = attribute_all([buy, first, second], policy=MatchPolicy())

    assert [r.matched_buy_fill_id for r in results[1:]] == ["b1", "b1"]


def test_exclusive_matching_consumes_buys():
    buy = make_fill("b1", "BUY", 10, 100.0, T0)
    first = make_fill("s1", "SELL", 10, 110.0, T0 + 60)
    second = make_fill("s2", "SELL", 10, 120.0, T0 + 120)

    results = attribute_all([second, buy, first], exclusive=True)

    by_id = {r.fill_id: r for r in results}
    assert [r.fill_id for r in results] == ["s2", "b1", "s1"]
    assert by_id["s1"].matched_buy_fill_id == "b1"
    assert by_id["s2"].matched_buy_fill_id is None
    assert by_id["s2"].is_realized is False


def test_sell_with_empty_history_is_zero():
    result = attribute(make_fill("s9", "SELL", 10, 110.0, T0), [])

    assert result == MatchResult.zero("s9")
    assert result.is_realized is False
