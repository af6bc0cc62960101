"""
Error reporting for background jobs.

capture_exception always writes a structured log line carrying the bound
context (poll cycle id, job name) and forwards to Sentry once init_sentry has
run with a DSN.
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.logging import LoggingIntegration

from stockwatch.core.logging_config import get_logger

logger = get_logger(__name__)

_sentry_initialized: bool = False


def init_sentry(dsn: str, environment: str = "production", release: Optional[str] = None) -> bool:
    """Initialize the Sentry SDK. Returns False when disabled or when init fails."""
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=release,
            traces_sample_rate=0.0,
            integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False

    _sentry_initialized = True
    logger.info("Sentry initialized", environment=environment)
    return True


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
) -> Optional[str]:
    """Log an exception and send it to Sentry. Returns the Sentry event id, if any."""
    extra = {
        **structlog.contextvars.get_contextvars(),
        "error_type": type(exc).__name__,
        **(context or {}),
    }
    logger.error("Exception captured", exc_info=exc, **extra)

    if not _sentry_initialized:
        return None

    with sentry_sdk.new_scope() as scope:
        scope.set_level(level)
        for key, value in extra.items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(exc)
