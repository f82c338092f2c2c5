"""Retry for record-store operations that hit transient database errors.

``db_retry`` wraps a store method that opens its own session and
transaction, so a failed attempt leaves nothing behind and the whole method
can run again.  Lost connections, deadlocks, serialization failures and
SQLite busy locks are retried with exponential backoff; constraint
violations and everything else propagate on the first attempt.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 4
DEFAULT_BASE_DELAY = 0.1
DEFAULT_MAX_DELAY = 2.0

_TRANSIENT_MARKERS = (
    "database is locked",
    "deadlock",
    "could not serialize access",
    "connection refused",
    "connection reset",
    "connection lost",
    "server closed",
    "broken pipe",
    "timeout",
)


def is_transient_error(exc: Exception) -> bool:
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, (OperationalError, DBAPIError)):
        text = str(exc).lower()
        return any(marker in text for marker in _TRANSIENT_MARKERS)
    return False


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number *attempt* (0-based): doubles each time, capped."""
    return min(base_delay * 2**attempt, max_delay)


def db_retry(
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> Callable:
    """Decorator: run the wrapped coroutine up to *attempts* times.

    Usage::

        class GrantStore:
            @db_retry()
            async def append(self, grant):
                async with self._factory() as session:
                    ...
    """

    def decorator(
        func: Callable[..., Coroutine[Any, Any, T]],
    ) -> Callable[..., Coroutine[Any, Any, T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except DBAPIError as exc:
                    if not is_transient_error(exc) or attempt == attempts - 1:
                        if attempt:
                            logger.error(
                                "%s failed after %d attempts: %s", func.__qualname__, attempt + 1, exc
                            )
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay)
                    logger.warning(
                        "Transient record-store error in %s (attempt %d/%d), retrying in %.2fs: %s",
                        func.__qualname__,
                        attempt + 1,
                        attempts,
                        delay,
                        exc,
                    )
                    await asyncio.sleep(delay)
            raise AssertionError("unreachable")

        return wrapper

    return decorator
