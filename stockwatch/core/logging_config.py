"""
structlog setup for stockwatch.

STOCKWATCH_ENV=production renders one JSON object per line; anything else gets
the console renderer. STOCKWATCH_LOG_LEVEL sets the threshold (default INFO).

    logger = get_logger(__name__)
    logger.info("Backend call failed", backend_id="costco", operation="check_availability")
"""

import logging
import os
import sys
from typing import Any

import structlog

IS_PRODUCTION = os.getenv("STOCKWATCH_ENV", "").lower() == "production"
IS_TEST = "pytest" in sys.modules
LOG_LEVEL = logging.getLevelName(os.getenv("STOCKWATCH_LOG_LEVEL", "INFO").upper())

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "apscheduler")


def configure_logging(level: Any = LOG_LEVEL) -> None:
    if not isinstance(level, int):
        level = logging.INFO

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if IS_PRODUCTION:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=not IS_TEST))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        # Cached loggers bypass structlog.testing.capture_logs
        cache_logger_on_first_use=not IS_TEST,
    )

    # Breaker, store and engine log through stdlib logging
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
