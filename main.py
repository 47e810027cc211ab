import asyncio
import os
from typing import Optional

from tradedash import config
from tradedash.application.dashboard import DashboardSession
from tradedash.infrastructure.logging import configure_logging, get_logger

logger = get_logger(__name__)


def _run_seconds() -> Optional[float]:
    value = os.environ.get("TRADEDASH_RUN_SECONDS")
    return float(value) if value else None


async def run() -> None:
    settings = config.load_settings()
    configure_logging(settings.logging.level, settings.logging.json)
    components = config.build_components(settings)
    session: DashboardSession = components["session"]
    api = components["api"]

    watchlist = settings.watchlist
    trade_enabled = {symbol: symbol in watchlist.trade_enabled for symbol in watchlist.symbols}
    await session.start(watchlist.symbols, trade_enabled)

    duration = _run_seconds()
    try:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        for position in session.get_positions():
            logger.info(
                "position",
                symbol=position.symbol,
                quantity=position.base_quantity,
                entry_price=position.base_price,
                take_profit_pnl=position.take_profit_pnl,
                stop_loss_pnl=position.stop_loss_pnl,
            )
        for period in ("daily", "weekly", "monthly", "yearly"):
            summary = session.get_period_pnl_summary(period)
            logger.info("pnl_summary", period=period, realized=summary.realized, potential=summary.potential)
        await session.shutdown()
        close = getattr(api, "close", None)
        if close is not None:
            await close()


if __name__ == "__main__":
    asyncio.run(run())
