"""
Time, id and retry helpers shared across blogflow.

Supabase stores every timestamp as ``TIMESTAMPTZ``; the helpers here keep
all in-process datetimes aware and in UTC so values round-trip unchanged
through PostgREST.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar, Union

from blogflow.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ===========================================================================
# TIMESTAMPS
# ===========================================================================


def utc_now() -> datetime:
    """Current time, aware and in UTC."""
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """New primary key for a row (UUID4 string)."""
    return str(uuid.uuid4())


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime, or convert an aware one to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a timestamp column value into an aware UTC datetime.

    PostgREST returns ``TIMESTAMPTZ`` values as ISO-8601 strings, sometimes
    with a trailing ``Z``.  ``datetime`` values pass through ``ensure_utc``.

    Args:
        value: ISO-8601 string, datetime, or ``None``.

    Returns:
        Aware UTC datetime, or ``None`` when *value* is empty.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


# ===========================================================================
# RETRY
# ===========================================================================


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    operation_name: Optional[str] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Retry an async call with exponential backoff.

    The delay before retry *n* is ``base_delay * 2 ** (n - 1)``.  Exceptions
    outside *retryable_exceptions* propagate on the first failure.

    Args:
        max_attempts: Total attempts, including the first.
        base_delay: Seconds to wait before the first retry.
        retryable_exceptions: Exception types worth another attempt.
        operation_name: Name used in log lines and in the final error;
            defaults to the wrapped function's ``__name__``.

    Raises:
        RetryExhaustedError: After the last attempt fails, chained to the
            last error.

    Usage::

        @with_retry(max_attempts=3, retryable_exceptions=(httpx.HTTPError,))
        async def send(payload: dict) -> dict:
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        op_name = operation_name or func.__name__

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Optional[Exception] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_error = e
                    if attempt == max_attempts:
                        break
                    delay = base_delay * (2 ** (attempt - 1))
                    logger.warning(
                        "[RETRY] %s attempt %d/%d failed: %s. Retrying in %.1fs",
                        op_name, attempt, max_attempts, e, delay,
                    )
                    await asyncio.sleep(delay)

            logger.error(
                "[RETRY] %s gave up after %d attempts: %s", op_name, max_attempts, last_error
            )
            raise RetryExhaustedError(op_name, max_attempts, last_error) from last_error

        return wrapper

    return decorator


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "utc_now",
    "generate_id",
    "ensure_utc",
    "parse_timestamp",
    "with_retry",
]
