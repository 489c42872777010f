"""
Structured logging for the marketplace core.

structlog on top of the stdlib logging module, writing to stderr so CLI
output stays clean. Every line carries a correlation id; party identifiers
and money amounts are redacted by a processor before rendering, so no call
site can leak them by accident.
"""

import contextvars
import logging
import os
import secrets
import sys
import time
from typing import Any

import structlog

from marketplace_core.kernel.errors import MarketError

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

REDACTED = "***REDACTED***"

# Party identifiers and money never reach the logs in clear
REDACTED_FIELDS = frozenset(
    {
        "actor_id",
        "vendor_id",
        "supplier_id",
        "party_id",
        "amount",
        "price",
        "password",
        "token",
        "secret",
        "api_key",
    }
)


def get_correlation_id() -> str:
    """Correlation id of the current context (created on first use)"""
    cid = correlation_id_var.get()
    if not cid:
        cid = secrets.token_urlsafe(16)
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """
    Copy of a log context with sensitive values masked.

    Example:
        >>> redact_context({"vendor_id": "v-1", "operation": "place_bid"})
        {"vendor_id": "***REDACTED***", "operation": "place_bid"}
    """
    return {k: REDACTED if k in REDACTED_FIELDS else v for k, v in context.items()}


def _add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


def _redact(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    return redact_context(event_dict)


def is_production() -> bool:
    """True when ENVIRONMENT=production (JSON logs, no stack traces)"""
    return os.getenv("ENVIRONMENT", "development").lower() == "production"


def configure_logging(*, json_output: bool = False, log_level: str = "INFO") -> None:
    """
    Configure structlog for the process.

    Args:
        json_output: One JSON object per line instead of console rendering
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)
    logging.getLogger("werkzeug").setLevel(max(level, logging.WARNING))

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_correlation_id,
        _redact,
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors += [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LogOperation:
    """
    Times one gateway operation and logs its outcome.

    Domain rejections (MarketError) are routine and log at info level;
    anything else is a failure and logs at error level.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger, operation: str, **context: Any):
        self.logger = logger.bind(operation=operation, **context)
        self.operation = operation
        self.start_time = 0.0

    def _elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.start_time) * 1000, 2)

    def __enter__(self) -> "LogOperation":
        self.start_time = time.perf_counter()
        self.logger.debug(f"{self.operation} started")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if exc_type is None:
            self.logger.info(f"{self.operation} completed", duration_ms=self._elapsed_ms())
        elif issubclass(exc_type, MarketError):
            self.logger.info(
                f"{self.operation} rejected",
                duration_ms=self._elapsed_ms(),
                error_type=exc_type.__name__,
                error=str(exc_val),
            )
        else:
            self.logger.error(
                f"{self.operation} failed",
                duration_ms=self._elapsed_ms(),
                error_type=exc_type.__name__,
                exc_info=not is_production(),
            )
