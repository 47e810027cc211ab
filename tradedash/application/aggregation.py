"""Period P/L summaries (daily, weekly, monthly, yearly)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable, List, Mapping, Optional, Tuple

from ..domain.models import Fill, Holding, PnlSummary, Period, base_asset
from ..infrastructure.logging import get_logger
from .attribution import MatchPolicy, attribute, attribute_all

logger = get_logger(__name__)


def period_bounds(period: Period, reference: datetime, tz: Optional[tzinfo] = None) -> Tuple[float, float]:
    """Inclusive epoch-second bounds of the period containing ``reference``.

    Weeks start on Monday. Naive references are interpreted in ``tz`` (UTC by default).
    """

    tz = tz or timezone.utc
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=tz)
    else:
        reference = reference.astimezone(tz)
    day = reference.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == "daily":
        start, end = day, day + timedelta(days=1)
    elif period == "weekly":
        start = day - timedelta(days=day.weekday())
        end = start + timedelta(days=7)
    elif period == "monthly":
        start = day.replace(day=1)
        end = start.replace(year=start.year + 1, month=1) if start.month == 12 else start.replace(month=start.month + 1)
    elif period == "yearly":
        start = day.replace(month=1, day=1)
        end = start.replace(year=start.year + 1)
    else:
        raise ValueError(f"Unknown period {period!r}")
    return start.timestamp(), end.timestamp() - 1e-6


def realized_pnl(
    fills: List[Fill],
    start: float,
    end: float,
    market_prices: Optional[Mapping[str, float]] = None,
    policy: Optional[MatchPolicy] = None,
    exclusive: bool = False,
) -> float:
    exclusive_results = (
        {result.fill_id: result for result in attribute_all(fills, market_prices, policy, exclusive=True)}
        if exclusive
        else {}
    )
    total = 0.0
    for fill in fills:
        if fill.side != "SELL" or not fill.is_filled:
            continue
        if not start <= fill.executed_at <= end:
            continue
        try:
            result = exclusive_results.get(fill.id) or attribute(fill, fills, market_prices, policy)
        except (TypeError, ValueError, ZeroDivisionError) as exc:
            logger.warning("realized_pnl_skipped", fill_id=fill.id, symbol=fill.symbol, error=str(exc))
            continue
        if result.is_realized:
            total += result.realized_pnl
    return total


def _same_asset(fill: Fill, asset: str) -> bool:
    return fill.symbol == asset or base_asset(fill.symbol) == base_asset(asset)


def potential_pnl(
    fills: List[Fill],
    holdings: Mapping[str, Holding],
    market_prices: Mapping[str, float],
) -> float:
    """Unrealized P/L of every open holding, regardless of period."""

    total = 0.0
    for holding in holdings.values():
        if holding.quantity <= 0:
            continue
        asset = holding.asset.upper()
        price = market_prices.get(asset) or market_prices.get(base_asset(asset))
        if not price or price <= 0:
            logger.debug("potential_pnl_no_price", asset=asset)
            continue

        bought = 0.0
        cost = 0.0
        sold = 0.0
        for fill in fills:
            if not fill.is_filled or not _same_asset(fill, asset):
                continue
            if fill.side == "BUY":
                if fill.has_price and fill.quantity > 0:
                    bought += fill.quantity
                    cost += fill.quantity * fill.price  # type: ignore[operator]
            else:
                sold += fill.quantity
        if bought <= 0:
            logger.debug("potential_pnl_no_entries", asset=asset)
            continue
        if sold >= bought:
            continue

        entry_price = cost / bought
        remaining = min(holding.quantity, bought - sold)
        total += (price - entry_price) * remaining
    return total


def summarize_period(
    period: Period,
    reference: datetime,
    fills: Iterable[Fill],
    holdings: Optional[Mapping[str, Holding]] = None,
    market_prices: Optional[Mapping[str, float]] = None,
    policy: Optional[MatchPolicy] = None,
    tz: Optional[tzinfo] = None,
    exclusive: bool = False,
) -> PnlSummary:
    fills = list(fills)
    start, end = period_bounds(period, reference, tz)
    realized = realized_pnl(fills, start, end, market_prices, policy, exclusive)
    potential = potential_pnl(fills, holdings or {}, market_prices or {})
    logger.info("period_pnl", period=period, realized=round(realized, 8), potential=round(potential, 8))
    return PnlSummary(realized=realized, potential=potential)
