import logging
from typing import Any, Dict, Optional

import structlog
from structlog.stdlib import BoundLogger

from .clock import Clock, SystemClock

HANDLED_ERROR_SUPPRESSION_SECONDS = 30.0


def get_logger(name: str) -> BoundLogger:
    """Return a structlog bound logger for the given module name."""

    return structlog.get_logger(name)


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Install the process-wide structlog pipeline."""

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
    )


class ErrorLogDeduplicator:
    """Lets an error context through at most once per suppression window.

    Scoped to one dashboard session; keys are usually ``"<operation>:<symbol>"``
    or ``"<queue>_queue"`` so a sustained outage produces one line per context
    instead of one per cycle.
    """

    def __init__(self, window: float = HANDLED_ERROR_SUPPRESSION_SECONDS, clock: Optional[Clock] = None) -> None:
        self.window = window
        self.clock = clock or SystemClock()
        self._last_logged: Dict[str, float] = {}

    def should_log(self, key: str) -> bool:
        now = self.clock.now()
        last = self._last_logged.get(key)
        if last is not None and now - last < self.window:
            return False
        self._last_logged[key] = now
        return True

    def reset(self) -> None:
        self._last_logged.clear()


def log_handled_error(
    logger: Any,
    dedup: ErrorLogDeduplicator,
    key: str,
    event: str,
    error: BaseException,
    level: str = "warning",
    **fields: Any,
) -> bool:
    """Log a recovered error unless the same context was logged recently."""

    if not dedup.should_log(key):
        return False
    getattr(logger, level)(
        event,
        key=key,
        error=str(error),
        error_type=type(error).__name__,
        **fields,
    )
    return True
