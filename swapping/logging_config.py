"""
Logging setup shared by the API process and the background jobs.

Every line looks like:
    2026-01-06T14:05:52Z [scheduler] INFO Detection run finished: 3 cycles saved

Environment Variables:
    LOG_LEVEL: "INFO" (default), "DEBUG" or "TRACE"
               - TRACE additionally prints per-edge graph decisions

Usage:
    from swapping.logging_config import configure_logging, get_logger

    configure_logging(source="api")
    logger = get_logger(__name__)
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import UTC, datetime

# Below DEBUG; used for per-edge and per-branch diagnostics
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def _trace(self: logging.Logger, message: object, *args: object, **kw: object) -> None:
    """Log a message at TRACE level (5)."""
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kw)  # type: ignore[arg-type]


logging.Logger.trace = _trace  # type: ignore[attr-defined]

# Third-party loggers that are only useful when something is already wrong
_QUIET_LOGGERS = ("httpx", "httpcore", "urllib3")

_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


class ISO8601Formatter(logging.Formatter):
    """Formats records as ``<UTC timestamp> [source] LEVEL message``."""

    def __init__(self, source: str = "swapping"):
        self.source = source
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return f"{timestamp} [{self.source}] {record.levelname} {message}"


class HealthCheckFilter(logging.Filter):
    """Drops access-log lines for health probes unless running at DEBUG.

    Load balancers poll the health endpoints every few seconds, which
    would otherwise bury the detection and lifecycle logs.
    """

    HEALTH_PATHS = {"/health", "/api/health", "/api/cycles/health"}

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno <= logging.DEBUG:
            return True
        message = record.getMessage()
        for path in self.HEALTH_PATHS:
            if path in message and ("GET" in message or "200" in message):
                return False
        return True


def resolve_level(level: int | None = None, debug: bool | None = None) -> int:
    """Pick the effective level: explicit argument, then LOG_LEVEL, then INFO."""
    if level is not None:
        return level
    env_level = os.getenv("LOG_LEVEL", "").upper()
    if env_level == "TRACE":
        return TRACE
    if env_level == "DEBUG" or debug:
        return logging.DEBUG
    return logging.INFO


def configure_logging(
    source: str = "swapping",
    level: int | None = None,
    debug: bool | None = None,
) -> logging.Logger:
    """Configure the root logger for one process.

    Args:
        source: Tag printed in brackets (e.g., "api", "scheduler", "detector")
        level: Explicit level; overrides LOG_LEVEL
        debug: Shortcut for DEBUG when LOG_LEVEL is unset

    Returns:
        The configured root logger
    """
    effective = resolve_level(level, debug)

    root_logger = logging.getLogger()
    root_logger.setLevel(effective)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(effective)
    handler.setFormatter(ISO8601Formatter(source=source))
    handler.addFilter(HealthCheckFilter())
    root_logger.addHandler(handler)

    # Uvicorn installs its own handlers; route them through ours
    for name in _UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.addHandler(handler)
        uvicorn_logger.setLevel(effective)
        uvicorn_logger.propagate = False

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Return the module logger (``get_logger(__name__)``)."""
    return logging.getLogger(name)
