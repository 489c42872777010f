"""
Backoff for SQLite writer contention

Several gateways (CLI invocations, the sweep, the API process) may share one
database file. SQLite lets a single writer in at a time; the others see
"database is locked" / "database is busy" and are retried here with
exponential backoff. Every other OperationalError, every domain error and
every Conflict goes straight back to the caller.
"""

import sqlite3
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from marketplace_core.kernel.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

CONTENTION_MARKERS = ("locked", "busy")


def is_writer_contention(error: BaseException) -> bool:
    """True for the OperationalErrors SQLite raises while another writer holds the lock"""
    if not isinstance(error, sqlite3.OperationalError):
        return False
    message = str(error).lower()
    return any(marker in message for marker in CONTENTION_MARKERS)


def _log_contention(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "SQLite writer contention, backing off",
        call=getattr(retry_state.fn, "__qualname__", None),
        attempt=retry_state.attempt_number,
        error=str(error) if error else None,
    )


def retry_on_sqlite_lock(
    max_attempts: int = 3,
    min_wait_ms: int = 100,
    max_wait_ms: int = 1000,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator: retry a store operation while another writer holds the database

    Args:
        max_attempts: Attempts before the OperationalError is re-raised
        min_wait_ms: First backoff
        max_wait_ms: Backoff ceiling
    """
    return retry(
        retry=retry_if_exception(is_writer_contention),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait_ms / 1000, max=max_wait_ms / 1000),
        before_sleep=_log_contention,
        reraise=True,
    )
