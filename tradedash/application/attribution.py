"""Realized and theoretical P/L per fill.

Exit fills carry no link to the entry they close, so each SELL is matched to a
BUY heuristically:

1. paired: a FILLED BUY of the same symbol created within ``pair_window``
   seconds of the SELL, closest quantity first;
2. similar volume: a FILLED BUY whose quantity is within ``volume_tolerance``
   of the SELL's, preferring the most recent one executed before the SELL,
   else the earliest one after it.

Matching is evaluated per SELL, so one BUY can back several SELLs unless
``attribute_all(..., exclusive=True)`` is used.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Collection, Iterable, List, Mapping, Optional, Set

from ..domain.models import Fill, MatchResult, MatchType
from ..infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MatchPolicy:
    pair_window: float = 300.0
    volume_tolerance: float = 0.20


def _is_priced(fill: Fill) -> bool:
    return fill.has_price and fill.quantity > 0


def _within_tolerance(buy_quantity: float, sell_quantity: float, tolerance: float) -> bool:
    diff = abs(buy_quantity - sell_quantity)
    limit = tolerance * sell_quantity
    return diff <= limit or math.isclose(diff, limit, rel_tol=1e-12)


def buy_candidates(sell: Fill, fills: Iterable[Fill], exclude: Collection[str] = ()) -> List[Fill]:
    return [
        fill
        for fill in fills
        if fill.symbol == sell.symbol and fill.side == "BUY" and fill.is_filled and fill.id not in exclude
    ]


def find_paired(sell: Fill, candidates: List[Fill], policy: MatchPolicy) -> Optional[Fill]:
    best: Optional[Fill] = None
    for buy in candidates:
        if abs(sell.created_at - buy.created_at) > policy.pair_window:
            continue
        if best is None or abs(buy.quantity - sell.quantity) < abs(best.quantity - sell.quantity):
            best = buy
    return best


def find_similar_volume(sell: Fill, candidates: List[Fill], policy: MatchPolicy) -> Optional[Fill]:
    similar = [
        buy
        for buy in candidates
        if buy.quantity > 0 and _within_tolerance(buy.quantity, sell.quantity, policy.volume_tolerance)
    ]
    sell_time = sell.executed_at
    before = [buy for buy in similar if buy.executed_at < sell_time]
    if before:
        return max(before, key=lambda buy: buy.executed_at)
    after = [buy for buy in similar if buy.executed_at >= sell_time]
    if after:
        return min(after, key=lambda buy: buy.executed_at)
    return None


def _pnl(fill_id: str, buy_id: Optional[str], match_type: MatchType, exit_price: float,
         entry_price: float, quantity: float, realized: bool) -> MatchResult:
    return MatchResult(
        fill_id=fill_id,
        matched_buy_fill_id=buy_id,
        match_type=match_type,
        realized_pnl=(exit_price - entry_price) * quantity,
        realized_pnl_percent=(exit_price - entry_price) / entry_price * 100.0,
        is_realized=realized,
    )


def attribute(
    fill: Fill,
    all_fills: Iterable[Fill],
    market_prices: Optional[Mapping[str, float]] = None,
    policy: Optional[MatchPolicy] = None,
    exclude: Collection[str] = (),
) -> MatchResult:
    """P/L for one fill: realized for a matched SELL, theoretical for an open BUY."""

    policy = policy or MatchPolicy()
    if not fill.is_filled or not _is_priced(fill):
        return MatchResult.zero(fill.id)

    if fill.side == "BUY":
        live_price = (market_prices or {}).get(fill.symbol)
        if live_price is None or live_price <= 0:
            return MatchResult.zero(fill.id)
        return _pnl(fill.id, None, MatchType.NONE, live_price, fill.price, fill.quantity, realized=False)  # type: ignore[arg-type]

    candidates = buy_candidates(fill, all_fills, exclude)
    match_type = MatchType.PAIRED
    buy = find_paired(fill, candidates, policy)
    if buy is None:
        match_type = MatchType.SIMILAR_VOLUME
        buy = find_similar_volume(fill, candidates, policy)
    if buy is None or not _is_priced(buy):
        return MatchResult.zero(fill.id)

    result = _pnl(fill.id, buy.id, match_type, fill.price, buy.price, fill.quantity, realized=True)  # type: ignore[arg-type]
    logger.debug(
        "sell_attributed",
        symbol=fill.symbol,
        sell_fill_id=fill.id,
        buy_fill_id=buy.id,
        match_type=match_type.value,
        pnl=round(result.realized_pnl, 8),
    )
    return result


def attribute_all(
    fills: Iterable[Fill],
    market_prices: Optional[Mapping[str, float]] = None,
    policy: Optional[MatchPolicy] = None,
    exclusive: bool = False,
) -> List[MatchResult]:
    """Attribute every fill in ``fills``.

    With ``exclusive`` the SELL fills are matched in execution order and a BUY
    backs at most one SELL; results are still returned in input order.
    """

    fills = list(fills)
    if not exclusive:
        return [attribute(fill, fills, market_prices, policy) for fill in fills]

    results = {}
    consumed: Set[str] = set()
    for fill in sorted(fills, key=lambda f: (f.side != "SELL", f.executed_at)):
        result = attribute(fill, fills, market_prices, policy, exclude=consumed)
        if result.matched_buy_fill_id is not None:
            consumed.add(result.matched_buy_fill_id)
        results[fill.id] = result
    return [results[fill.id] for fill in fills]
