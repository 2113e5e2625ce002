"""
Retry logic with exponential backoff for SQLite lock contention.

Several proposers, voters and sweep workers may write to the same database.
SQLite serializes writers and occasionally answers "database is locked" even
with a busy timeout; these writes are safe to retry because every write is a
single atomic statement guarded by constraints.
"""

import sqlite3
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from governance_engine.kernel.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _is_lock_error(exc: BaseException) -> bool:
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def retry_on_sqlite_lock(
    max_attempts: int = 5,
    min_wait_ms: int = 50,
    max_wait_ms: int = 1000,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator for SQLite lock contention.

    Only "database is locked"/"busy" operational errors are retried; schema or
    syntax errors propagate immediately. Integrity errors are never retried,
    they carry the uniqueness and guard decisions.

    Args:
        max_attempts: Maximum number of attempts (default: 5)
        min_wait_ms: Minimum wait time in milliseconds (default: 50)
        max_wait_ms: Maximum wait time in milliseconds (default: 1000)

    Example:
        @retry_on_sqlite_lock()
        def insert_vote(...):
            conn.execute(...)
    """
    return retry(
        retry=retry_if_exception(_is_lock_error),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=min_wait_ms / 1000.0,
            max=max_wait_ms / 1000.0,
        ),
        before_sleep=lambda retry_state: logger.warning(
            "SQLite lock detected, retrying",
            attempt=retry_state.attempt_number,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        ),
        reraise=True,
    )
