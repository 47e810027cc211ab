"""Turns raw upstream records into domain objects.

Raw order payloads arrive in several shapes (open-order summaries, history
rows, dashboard-state rows) with loosely typed tags. Everything is normalised
here once, including the ``FillRole`` classification, so downstream code only
sees ``Fill`` / ``MarketRow`` / ``Holding`` / ``SignalSnapshot``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..domain.errors import DataIntegrityError
from ..domain.models import Fill, FillRole, Holding, MarketRow, SignalSnapshot
from ..infrastructure.logging import get_logger

logger = get_logger(__name__)

FILL_STATUSES = {
    "NEW",
    "ACTIVE",
    "PARTIALLY_FILLED",
    "FILLED",
    "CANCELLED",
    "REJECTED",
    "EXPIRED",
    "PENDING",
}
STATUS_ALIASES = {"CANCELED": "CANCELLED", "OPEN": "ACTIVE"}

TAKE_PROFIT_TYPES = {"TAKE_PROFIT", "TAKE_PROFIT_LIMIT"}
STOP_LOSS_TYPES = {"STOP_LOSS", "STOP_LOSS_LIMIT"}

# epoch values above this are milliseconds
_MILLISECONDS_THRESHOLD = 1e11


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _positive(value: Any) -> Optional[float]:
    number = _to_float(value)
    if number is None or number <= 0:
        return None
    return number


def parse_timestamp(value: Any) -> Optional[float]:
    """Epoch seconds from epoch seconds, epoch milliseconds or an ISO-8601 string."""

    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number / 1000.0 if number > _MILLISECONDS_THRESHOLD else number
    if isinstance(value, str):
        number = _to_float(value)
        if number is not None:
            return parse_timestamp(number)
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    return None


def resolve_role(side: str, raw: Mapping[str, Any]) -> FillRole:
    """Classify a fill by order-type tag, then trigger-type tag, then order-role hint."""

    if side == "BUY":
        return FillRole.ENTRY

    order_type = str(raw.get("order_type") or "").upper()
    if order_type in TAKE_PROFIT_TYPES:
        return FillRole.TAKE_PROFIT
    if order_type in STOP_LOSS_TYPES:
        return FillRole.STOP_LOSS

    trigger_type = str(raw.get("trigger_type") or "").upper()
    if trigger_type and raw.get("is_trigger", True):
        if trigger_type in TAKE_PROFIT_TYPES:
            return FillRole.TAKE_PROFIT
        if trigger_type in STOP_LOSS_TYPES:
            return FillRole.STOP_LOSS

    metadata = raw.get("metadata") if isinstance(raw.get("metadata"), Mapping) else {}
    order_role = str(raw.get("order_role") or metadata.get("order_role") or "").upper()
    if order_role in TAKE_PROFIT_TYPES:
        return FillRole.TAKE_PROFIT
    if order_role in STOP_LOSS_TYPES:
        return FillRole.STOP_LOSS
    return FillRole.PLAIN_EXIT


def resolve_price(raw: Mapping[str, Any]) -> Optional[float]:
    explicit = _positive(_first(raw, "price", "avg_price", "filled_price"))
    if explicit is not None:
        return explicit
    cumulative_value = _positive(raw.get("cumulative_value"))
    cumulative_quantity = _positive(raw.get("cumulative_quantity"))
    if cumulative_value is not None and cumulative_quantity is not None:
        return cumulative_value / cumulative_quantity
    return None


def parse_fill(raw: Mapping[str, Any], received_at: float) -> Fill:
    fill_id = _first(raw, "order_id", "exchange_order_id", "id")
    if fill_id is None:
        raise DataIntegrityError("order record without id")
    symbol = _first(raw, "instrument_name", "symbol")
    if not symbol:
        raise DataIntegrityError(f"order {fill_id} has no symbol")

    side = str(raw.get("side") or "").upper()
    if side not in ("BUY", "SELL"):
        raise DataIntegrityError(f"order {fill_id} has unknown side {raw.get('side')!r}")

    status = str(raw.get("status") or "").upper()
    status = STATUS_ALIASES.get(status, status)
    if status not in FILL_STATUSES:
        raise DataIntegrityError(f"order {fill_id} has unknown status {raw.get('status')!r}")

    quantity = _to_float(_first(raw, "quantity", "filled_quantity", "cumulative_quantity"))
    if quantity is None:
        quantity = 0.0
    if quantity < 0:
        raise DataIntegrityError(f"order {fill_id} has negative quantity {quantity}")

    price = resolve_price(raw)
    if status == "FILLED" and price is None:
        raise DataIntegrityError(f"filled order {fill_id} has no resolvable price")

    created_at = parse_timestamp(_first(raw, "create_time", "created_at", "create_datetime"))
    updated_at = parse_timestamp(_first(raw, "update_time", "updated_at"))
    if created_at is None:
        created_at = updated_at if updated_at is not None else received_at

    client_group_id = _first(raw, "client_oid", "client_group_id")
    trigger_type = raw.get("trigger_type")
    return Fill(
        id=str(fill_id),
        symbol=str(symbol).upper(),
        side=side,  # type: ignore[arg-type]
        order_type=str(raw.get("order_type") or "LIMIT").upper(),
        role=resolve_role(side, raw),
        quantity=quantity,
        price=price,
        status=status,  # type: ignore[arg-type]
        created_at=created_at,
        updated_at=updated_at,
        client_group_id=str(client_group_id) if client_group_id is not None else None,
        trigger_type=str(trigger_type).upper() if trigger_type else None,
    )


def parse_fills(records: Iterable[Mapping[str, Any]], received_at: float) -> List[Fill]:
    """Parse every record, skipping (and logging) the malformed ones."""

    fills: List[Fill] = []
    for raw in records:
        try:
            fills.append(parse_fill(raw, received_at))
        except DataIntegrityError as exc:
            logger.warning("fill_record_skipped", reason=str(exc))
    return fills


def parse_market_rows(records: Iterable[Mapping[str, Any]]) -> List[MarketRow]:
    rows: List[MarketRow] = []
    for raw in records:
        symbol = _first(raw, "instrument_name", "symbol")
        price = _positive(_first(raw, "current_price", "price"))
        if not symbol or price is None:
            logger.debug("market_row_skipped", symbol=symbol)
            continue
        rows.append(
            MarketRow(
                symbol=str(symbol).upper(),
                price=price,
                volume_24h=_to_float(raw.get("volume_24h")) or 0.0,
                updated_at=parse_timestamp(raw.get("updated_at")),
            )
        )
    return rows


def parse_holdings(records: Iterable[Mapping[str, Any]]) -> Dict[str, Holding]:
    holdings: Dict[str, Holding] = {}
    for raw in records:
        asset = _first(raw, "coin", "asset", "currency")
        if not asset:
            logger.debug("holding_skipped", reason="no asset")
            continue
        quantity = _to_float(_first(raw, "balance", "total", "quantity")) or 0.0
        value = _to_float(_first(raw, "value_usd", "usd_value", "market_value")) or 0.0
        key = str(asset).upper()
        holdings[key] = Holding(asset=key, quantity=quantity, value_quote=value)
    return holdings


def parse_signal(symbol: str, raw: Mapping[str, Any], received_at: float) -> SignalSnapshot:
    indicators = {
        key: float(value)
        for key, value in raw.items()
        if key != "price" and isinstance(value, (int, float)) and not isinstance(value, bool)
    }
    return SignalSnapshot(
        symbol=symbol.upper(),
        price=_positive(raw.get("price")),
        indicators=indicators,
        fetched_at=received_at,
    )
