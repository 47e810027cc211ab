import os
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import tomllib

from .adapters.api.http import EndpointTimeouts, HttpDashboardApi
from .adapters.api.in_memory import InMemoryDashboardApi
from .application.attribution import MatchPolicy
from .application.backoff import BackoffController
from .application.dashboard import DashboardSession
from .application.fetchers import FetchExecutors
from .application.fsm import BackoffPolicy
from .application.scheduler import CadenceSettings, DualCadenceScheduler
from .application.store import DashboardStore
from .domain.errors import RequestTimeout
from .infrastructure.clock import SystemClock
from .infrastructure.logging import ErrorLogDeduplicator
from .infrastructure.resilience import CircuitBreaker
from .ports.dashboard_api import DashboardApiPort


@dataclass
class ApiSettings:
    mode: str
    base_url: str
    api_key: str
    exchange: str
    retry_attempts: int
    timeouts: EndpointTimeouts


@dataclass
class SchedulerSettings:
    fast_floor: float
    slow_floor: float
    ceiling_multiplier: float
    fast_stagger: float
    slow_stagger: float
    fast_batch_size: int
    slow_batch_size: int
    full_refresh_every: int
    history_page_size: int
    history_max_pages: int


@dataclass
class CircuitBreakerSettings:
    max_failures: int
    reset_timeout: float


@dataclass
class PnlSettings:
    pair_window: float
    volume_tolerance: float
    exclusive_matching: bool
    timezone: str


@dataclass
class LoggingSettings:
    level: str
    json: bool
    suppression_window: float


@dataclass
class WatchlistSettings:
    symbols: List[str] = field(default_factory=list)
    trade_enabled: List[str] = field(default_factory=list)
    stale_after: float = 180.0


@dataclass
class Settings:
    api: ApiSettings
    scheduler: SchedulerSettings
    circuit_breaker: CircuitBreakerSettings
    pnl: PnlSettings
    logging: LoggingSettings
    watchlist: WatchlistSettings


def load_settings(settings_path: Optional[Path] = None) -> Settings:
    """Load configuration from environment with optional config file defaults."""

    file_settings = _load_file_settings(settings_path or Path("config/settings.toml"))

    return Settings(
        api=ApiSettings(
            mode=_config_value("TRADEDASH_API_MODE", file_settings, "api", "mode", "memory").lower(),
            base_url=_config_value("TRADEDASH_API_BASE_URL", file_settings, "api", "base_url", "http://localhost:8002/api"),
            api_key=_config_value("TRADEDASH_API_KEY", file_settings, "api", "api_key", ""),
            exchange=_config_value("TRADEDASH_EXCHANGE", file_settings, "api", "exchange", "CRYPTO_COM"),
            retry_attempts=int(_config_value("TRADEDASH_API_RETRY_ATTEMPTS", file_settings, "api", "retry_attempts", "2")),
            timeouts=EndpointTimeouts(
                signals=float(_config_value("TRADEDASH_TIMEOUT_SIGNALS", file_settings, "api", "timeout_signals", "15")),
                top_of_market=float(
                    _config_value("TRADEDASH_TIMEOUT_TOP_OF_MARKET", file_settings, "api", "timeout_top_of_market", "60")
                ),
                order_history=float(
                    _config_value("TRADEDASH_TIMEOUT_ORDER_HISTORY", file_settings, "api", "timeout_order_history", "60")
                ),
                dashboard_state=float(
                    _config_value(
                        "TRADEDASH_TIMEOUT_DASHBOARD_STATE", file_settings, "api", "timeout_dashboard_state", "180"
                    )
                ),
                default=float(_config_value("TRADEDASH_TIMEOUT_DEFAULT", file_settings, "api", "timeout_default", "30")),
            ),
        ),
        scheduler=SchedulerSettings(
            fast_floor=float(_config_value("TRADEDASH_FAST_FLOOR", file_settings, "scheduler", "fast_floor", "15")),
            slow_floor=float(_config_value("TRADEDASH_SLOW_FLOOR", file_settings, "scheduler", "slow_floor", "60")),
            ceiling_multiplier=float(
                _config_value("TRADEDASH_CEILING_MULTIPLIER", file_settings, "scheduler", "ceiling_multiplier", "4")
            ),
            fast_stagger=float(_config_value("TRADEDASH_FAST_STAGGER", file_settings, "scheduler", "fast_stagger", "1")),
            slow_stagger=float(_config_value("TRADEDASH_SLOW_STAGGER", file_settings, "scheduler", "slow_stagger", "2")),
            fast_batch_size=int(
                _config_value("TRADEDASH_FAST_BATCH_SIZE", file_settings, "scheduler", "fast_batch_size", "1")
            ),
            slow_batch_size=int(
                _config_value("TRADEDASH_SLOW_BATCH_SIZE", file_settings, "scheduler", "slow_batch_size", "1")
            ),
            full_refresh_every=int(
                _config_value("TRADEDASH_FULL_REFRESH_EVERY", file_settings, "scheduler", "full_refresh_every", "3")
            ),
            history_page_size=int(
                _config_value("TRADEDASH_HISTORY_PAGE_SIZE", file_settings, "scheduler", "history_page_size", "100")
            ),
            history_max_pages=int(
                _config_value("TRADEDASH_HISTORY_MAX_PAGES", file_settings, "scheduler", "history_max_pages", "10")
            ),
        ),
        circuit_breaker=CircuitBreakerSettings(
            max_failures=int(
                _config_value("TRADEDASH_BREAKER_MAX_FAILURES", file_settings, "circuit_breaker", "max_failures", "5")
            ),
            reset_timeout=float(
                _config_value("TRADEDASH_BREAKER_RESET_TIMEOUT", file_settings, "circuit_breaker", "reset_timeout", "30")
            ),
        ),
        pnl=PnlSettings(
            pair_window=float(_config_value("TRADEDASH_PAIR_WINDOW", file_settings, "pnl", "pair_window", "300")),
            volume_tolerance=float(
                _config_value("TRADEDASH_VOLUME_TOLERANCE", file_settings, "pnl", "volume_tolerance", "0.2")
            ),
            exclusive_matching=_as_bool(
                _config_value("TRADEDASH_EXCLUSIVE_MATCHING", file_settings, "pnl", "exclusive_matching", "false")
            ),
            timezone=_config_value("TRADEDASH_TIMEZONE", file_settings, "pnl", "timezone", "UTC"),
        ),
        logging=LoggingSettings(
            level=_config_value("TRADEDASH_LOG_LEVEL", file_settings, "logging", "level", "INFO"),
            json=_as_bool(_config_value("TRADEDASH_LOG_JSON", file_settings, "logging", "json", "false")),
            suppression_window=float(
                _config_value("TRADEDASH_LOG_SUPPRESSION_WINDOW", file_settings, "logging", "suppression_window", "30")
            ),
        ),
        watchlist=WatchlistSettings(
            symbols=_as_list(_config_value("TRADEDASH_WATCHLIST", file_settings, "watchlist", "symbols", "")),
            trade_enabled=_as_list(
                _config_value("TRADEDASH_TRADE_ENABLED", file_settings, "watchlist", "trade_enabled", "")
            ),
            stale_after=float(_config_value("TRADEDASH_STALE_AFTER", file_settings, "watchlist", "stale_after", "180")),
        ),
    )


def _load_file_settings(settings_path: Path) -> Dict[str, Any]:
    if not settings_path.exists():
        return {}

    with settings_path.open("rb") as settings_file:
        return tomllib.load(settings_file)


def _config_value(
    env_key: str, settings: Dict[str, Any], section: str, key: str, default: str
) -> str:
    if env_key in os.environ:
        return os.environ[env_key]

    section_data = settings.get(section, {})
    value = section_data.get(key, default)
    if isinstance(value, list):
        return ",".join(str(item) for item in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _as_list(value: str) -> List[str]:
    return [item.strip().upper() for item in value.split(",") if item.strip()]


def _timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def build_api(settings: Settings, breaker: CircuitBreaker) -> DashboardApiPort:
    if settings.api.mode == "http":
        return HttpDashboardApi(
            base_url=settings.api.base_url,
            api_key=settings.api.api_key,
            exchange=settings.api.exchange,
            timeouts=settings.api.timeouts,
            breaker=breaker,
            retry_attempts=settings.api.retry_attempts,
        )
    if settings.api.mode == "memory":
        return InMemoryDashboardApi()
    raise ValueError(f"Unknown api mode {settings.api.mode!r}")


def build_components(settings: Optional[Settings] = None, api: Optional[DashboardApiPort] = None) -> dict:
    """Construct all dashboard components for wiring in main.py."""

    settings = settings or load_settings()
    clock = SystemClock()
    dedup = ErrorLogDeduplicator(window=settings.logging.suppression_window, clock=clock)
    breaker = CircuitBreaker(
        max_failures=settings.circuit_breaker.max_failures,
        reset_timeout=settings.circuit_breaker.reset_timeout,
        clock=clock,
        ignored=(RequestTimeout,),
        name="signals",
    )
    api = api or build_api(settings, breaker)
    store = DashboardStore(clock=clock)
    executors = FetchExecutors(
        api=api,
        store=store,
        dedup=dedup,
        history_page_size=settings.scheduler.history_page_size,
        history_max_pages=settings.scheduler.history_max_pages,
    )
    backoff = BackoffController(
        policy=BackoffPolicy(
            fast_floor=settings.scheduler.fast_floor,
            slow_floor=settings.scheduler.slow_floor,
            ceiling_multiplier=settings.scheduler.ceiling_multiplier,
        ),
        clock=clock,
    )
    scheduler = DualCadenceScheduler(
        executors=executors,
        backoff=backoff,
        dedup=dedup,
        settings=CadenceSettings(
            fast_batch_size=settings.scheduler.fast_batch_size,
            slow_batch_size=settings.scheduler.slow_batch_size,
            fast_stagger=settings.scheduler.fast_stagger,
            slow_stagger=settings.scheduler.slow_stagger,
            full_refresh_every=settings.scheduler.full_refresh_every,
        ),
    )
    session = DashboardSession(
        store=store,
        executors=executors,
        scheduler=scheduler,
        match_policy=MatchPolicy(
            pair_window=settings.pnl.pair_window,
            volume_tolerance=settings.pnl.volume_tolerance,
        ),
        exclusive_matching=settings.pnl.exclusive_matching,
        stale_after=settings.watchlist.stale_after,
        tz=_timezone(settings.pnl.timezone),
    )
    return {
        "settings": settings,
        "api": api,
        "store": store,
        "executors": executors,
        "backoff": backoff,
        "scheduler": scheduler,
        "session": session,
        "breaker": breaker,
    }
