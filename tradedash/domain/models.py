from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple


OrderSide = Literal["BUY", "SELL"]
FillStatus = Literal[
    "NEW",
    "ACTIVE",
    "PARTIALLY_FILLED",
    "FILLED",
    "CANCELLED",
    "REJECTED",
    "EXPIRED",
    "PENDING",
]
Period = Literal["daily", "weekly", "monthly", "yearly"]


class FillRole(str, Enum):
    """Closed classification of a fill, resolved once at ingestion."""

    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"
    PLAIN_EXIT = "SELL"
    ENTRY = "BUY"


class MatchType(str, Enum):
    PAIRED = "paired"
    SIMILAR_VOLUME = "similar-volume"
    NONE = "none"


class QueueName(str, Enum):
    FAST = "fast"
    SLOW = "slow"


@dataclass(frozen=True)
class Fill:
    """A single broker-reported order/execution record."""

    id: str
    symbol: str
    side: OrderSide
    order_type: str
    role: FillRole
    quantity: float
    price: Optional[float]
    status: FillStatus
    created_at: float
    updated_at: Optional[float] = None
    client_group_id: Optional[str] = None
    trigger_type: Optional[str] = None

    @property
    def executed_at(self) -> float:
        return self.updated_at if self.updated_at else self.created_at

    @property
    def has_price(self) -> bool:
        return self.price is not None and self.price > 0

    @property
    def is_filled(self) -> bool:
        return self.status == "FILLED"


@dataclass(frozen=True)
class ChildFill:
    """Protective exit linked to a position."""

    fill_id: str
    role: FillRole
    quantity: float
    price: Optional[float]
    created_at: float


@dataclass(frozen=True)
class Position:
    """Projection of one entry (or proxy) and its linked exit fills."""

    symbol: str
    base_order_id: str
    base_quantity: float
    base_price: Optional[float]
    base_total: Optional[float]
    base_created_at: Optional[float]
    child_fills: Tuple[ChildFill, ...]
    take_profit_count: int
    stop_loss_count: int
    take_profit_price: Optional[float]
    stop_loss_price: Optional[float]
    take_profit_pnl: Optional[float]
    stop_loss_pnl: Optional[float]
    base_side: OrderSide = "BUY"


@dataclass(frozen=True)
class MatchResult:
    """Outcome of attributing P/L to one fill."""

    fill_id: str
    matched_buy_fill_id: Optional[str]
    match_type: MatchType
    realized_pnl: float
    realized_pnl_percent: float
    is_realized: bool

    @classmethod
    def zero(cls, fill_id: str) -> "MatchResult":
        return cls(
            fill_id=fill_id,
            matched_buy_fill_id=None,
            match_type=MatchType.NONE,
            realized_pnl=0.0,
            realized_pnl_percent=0.0,
            is_realized=False,
        )


@dataclass(frozen=True)
class MarketRow:
    """Top-of-market row for one instrument."""

    symbol: str
    price: float
    volume_24h: float = 0.0
    updated_at: Optional[float] = None


@dataclass(frozen=True)
class Holding:
    """Current balance of one asset in the account."""

    asset: str
    quantity: float
    value_quote: float


@dataclass(frozen=True)
class SignalSnapshot:
    symbol: str
    price: Optional[float]
    indicators: Dict[str, float] = field(default_factory=dict)
    fetched_at: Optional[float] = None


@dataclass(frozen=True)
class OrderHistoryPage:
    fills: List[Fill]
    has_more: bool = False
    total: Optional[int] = None


@dataclass(frozen=True)
class PnlSummary:
    realized: float
    potential: float

    @property
    def total(self) -> float:
        return self.realized + self.potential


def base_asset(symbol: str) -> str:
    """Return the base currency of a pair such as ``BTC_USDT``."""

    return symbol.upper().split("_")[0]


@dataclass(frozen=True)
class QueueStatus:
    """Scheduler status signal for one refresh queue."""

    queue: QueueName
    backoff_seconds: float
    rate_limited: bool
    consecutive_errors: int
    paused_until: float
    members: Tuple[str, ...]
    in_flight: bool = False
    next_run_in: Optional[float] = None


@dataclass(frozen=True)
class Freshness:
    """Age of one kind of dashboard data; ``stale`` once it outlives the threshold."""

    kind: str
    age_seconds: Optional[float]
    stale: bool
