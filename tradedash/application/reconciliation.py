"""Groups exit fills into positions.

``reconcile`` is a pure projection: every call rebuilds the positions from the
fills (and optional holdings snapshot) it is given.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from ..domain.models import ChildFill, Fill, FillRole, Holding, Position, base_asset
from ..infrastructure.logging import get_logger
from ..infrastructure.signatures import standalone_group_key

logger = get_logger(__name__)


def group_exit_fills(fills: Iterable[Fill]) -> Dict[str, List[Fill]]:
    """SELL fills keyed by bracket id, or by a per-fill key when ungrouped."""

    groups: Dict[str, List[Fill]] = {}
    for fill in fills:
        if fill.side != "SELL":
            continue
        key = fill.client_group_id or standalone_group_key(fill.id)
        groups.setdefault(key, []).append(fill)
    return groups


def find_holding(symbol: str, holdings: Optional[Mapping[str, Holding]]) -> Optional[Holding]:
    """Holding for ``symbol`` matched by full symbol or by its base asset."""

    if not holdings:
        return None
    symbol = symbol.upper()
    for key in (symbol, base_asset(symbol)):
        holding = holdings.get(key)
        if holding is not None:
            return holding
    return None


def _volume_weighted_price(fills: List[Fill]) -> Optional[float]:
    quantity = 0.0
    value = 0.0
    for fill in fills:
        if not fill.has_price or fill.quantity <= 0:
            logger.debug("fill_excluded_from_average", fill_id=fill.id, symbol=fill.symbol)
            continue
        quantity += fill.quantity
        value += fill.quantity * fill.price  # type: ignore[operator]
    if quantity <= 0:
        return None
    return value / quantity


def _protective_prices(fills: List[Fill]) -> List[float]:
    return [fill.price for fill in fills if fill.has_price]  # type: ignore[misc]


def build_position(key: str, fills: List[Fill], holdings: Optional[Mapping[str, Holding]] = None) -> Position:
    symbol = fills[0].symbol
    total_quantity = sum(fill.quantity for fill in fills)
    average_price = _volume_weighted_price(fills)

    take_profits = [fill for fill in fills if fill.role is FillRole.TAKE_PROFIT]
    stop_losses = [fill for fill in fills if fill.role is FillRole.STOP_LOSS]
    tp_prices = _protective_prices(take_profits)
    sl_prices = _protective_prices(stop_losses)
    take_profit_price = max(tp_prices) if tp_prices else None
    stop_loss_price = min(sl_prices) if sl_prices else None

    entry_price = average_price
    entry_quantity = total_quantity
    holding = find_holding(symbol, holdings)
    if holding is not None and holding.quantity > 0 and holding.value_quote > 0:
        entry_price = holding.value_quote / holding.quantity
        entry_quantity = holding.quantity

    take_profit_pnl = None
    stop_loss_pnl = None
    if entry_price is not None and entry_quantity > 0:
        if take_profit_price is not None:
            take_profit_pnl = (take_profit_price - entry_price) * entry_quantity
        if stop_loss_price is not None:
            stop_loss_pnl = (stop_loss_price - entry_price) * entry_quantity

    created = [fill.created_at for fill in fills if fill.created_at]
    return Position(
        symbol=symbol,
        base_order_id=fills[0].id if key == standalone_group_key(fills[0].id) else key,
        base_quantity=entry_quantity,
        base_price=entry_price,
        base_total=entry_price * entry_quantity if entry_price is not None and entry_quantity > 0 else None,
        base_created_at=min(created) if created else None,
        child_fills=tuple(
            ChildFill(
                fill_id=fill.id,
                role=fill.role,
                quantity=fill.quantity,
                price=fill.price,
                created_at=fill.created_at,
            )
            for fill in fills
        ),
        take_profit_count=len(take_profits),
        stop_loss_count=len(stop_losses),
        take_profit_price=take_profit_price,
        stop_loss_price=stop_loss_price,
        take_profit_pnl=take_profit_pnl,
        stop_loss_pnl=stop_loss_pnl,
    )


def reconcile(fills: Iterable[Fill], holdings: Optional[Mapping[str, Holding]] = None) -> List[Position]:
    """Project exit fills (and an optional holdings snapshot) into positions."""

    positions: List[Position] = []
    for key, group in group_exit_fills(fills).items():
        positions.append(build_position(key, group, holdings))
    return positions
