"""Last-good dashboard data shared by the scheduler and the read side."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from ..domain.models import Fill, Holding, MarketRow, SignalSnapshot, base_asset
from ..infrastructure.clock import Clock, SystemClock


class DashboardStore:
    """Holds the latest fetched data and when each kind was last refreshed.

    Writers are the fetch executors; everything else only reads. Once the
    session is torn down the store is unmounted and late results from fetches
    still in flight are dropped instead of applied.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()
        self.mounted = True
        self._signals: Dict[str, SignalSnapshot] = {}
        self._market: Dict[str, MarketRow] = {}
        self._open_fills: List[Fill] = []
        self._history: List[Fill] = []
        self._holdings: Dict[str, Holding] = {}
        self._updated_at: Dict[str, float] = {}

    def unmount(self) -> None:
        self.mounted = False

    def _touch(self, kind: str) -> None:
        self._updated_at[kind] = self.clock.now()

    def apply_signal(self, signal: SignalSnapshot) -> bool:
        if not self.mounted:
            return False
        self._signals[signal.symbol] = signal
        self._touch(f"signals:{signal.symbol}")
        self._touch("signals")
        return True

    def apply_market_rows(self, rows: Iterable[MarketRow]) -> bool:
        """Merge top-of-market rows; symbols absent from ``rows`` keep their last value."""

        if not self.mounted:
            return False
        for row in rows:
            self._market[row.symbol] = row
        self._touch("market")
        return True

    def update_market_price(self, symbol: str, price: float) -> bool:
        if not self.mounted:
            return False
        previous = self._market.get(symbol)
        volume = previous.volume_24h if previous else 0.0
        self._market[symbol] = MarketRow(symbol=symbol, price=price, volume_24h=volume, updated_at=self.clock.now())
        return True

    def set_open_fills(self, fills: Iterable[Fill]) -> bool:
        if not self.mounted:
            return False
        self._open_fills = list(fills)
        self._touch("open_fills")
        return True

    def set_history(self, fills: Iterable[Fill]) -> bool:
        if not self.mounted:
            return False
        self._history = list(fills)
        self._touch("history")
        return True

    def set_holdings(self, holdings: Dict[str, Holding]) -> bool:
        if not self.mounted:
            return False
        self._holdings = dict(holdings)
        self._touch("holdings")
        return True

    def signal(self, symbol: str) -> Optional[SignalSnapshot]:
        return self._signals.get(symbol)

    def open_fills(self) -> Tuple[Fill, ...]:
        return tuple(self._open_fills)

    def history(self) -> Tuple[Fill, ...]:
        return tuple(self._history)

    def holdings(self) -> Dict[str, Holding]:
        return dict(self._holdings)

    def market_rows(self) -> Tuple[MarketRow, ...]:
        return tuple(self._market.values())

    def market_prices(self) -> Dict[str, float]:
        """Latest price per symbol, plus per base asset (first listed pair wins)."""

        prices = {symbol: row.price for symbol, row in self._market.items()}
        for symbol, row in self._market.items():
            prices.setdefault(base_asset(symbol), row.price)
        return prices

    def price_for(self, symbol: str) -> Optional[float]:
        row = self._market.get(symbol)
        return row.price if row else None

    def updated_at(self, kind: str) -> Optional[float]:
        return self._updated_at.get(kind)

    def age(self, kind: str) -> Optional[float]:
        """Seconds since ``kind`` was last refreshed, None when never."""

        updated = self._updated_at.get(kind)
        if updated is None:
            return None
        return max(0.0, self.clock.now() - updated)
