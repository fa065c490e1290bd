"""Boundary error-handling policies

Search is a best-effort feature: upstream failures degrade to "no results".
Writes and ingestion are not: silent data loss is worse than a visible failure.
The two policies are kept as separate decorators so each boundary states which
one it follows.
"""

import functools
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from src.services.errors import ClientError, StoreError, UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def best_effort(
    operation: str,
) -> Callable[[Callable[..., Awaitable[list[T]]]], Callable[..., Awaitable[list[T]]]]:
    """
    Convert upstream failures of a list-returning coroutine into an empty list

    Client errors are re-raised untouched so callers can report them.

    Args:
        operation: Name used in the diagnostic log line
    """

    def decorator(func: Callable[..., Awaitable[list[T]]]) -> Callable[..., Awaitable[list[T]]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> list[T]:
            try:
                return await func(*args, **kwargs)
            except ClientError:
                raise
            except UpstreamError as e:
                logger.error(
                    f"{operation} degraded to empty results: {type(e).__name__}: {e}"
                )
                return []

        return wrapper

    return decorator


def fail_loudly(
    operation: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Log and propagate every failure of a write coroutine

    Raw SQLite errors are wrapped in StoreError so callers only deal with the
    subsystem's own exception types.

    Args:
        operation: Name used in the diagnostic log line
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except ClientError as e:
                logger.warning(f"{operation} rejected: {e}")
                raise
            except UpstreamError as e:
                logger.error(f"{operation} failed: {type(e).__name__}: {e}")
                raise
            except sqlite3.Error as e:
                logger.error(f"{operation} failed in document store: {e}", exc_info=True)
                raise StoreError(f"{operation} failed: {e}") from e

        return wrapper

    return decorator
