"""Database utility functions."""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar('T')

TRANSIENT_MESSAGES = (
    "connection refused",
    "connection reset",
    "connection closed",
    "server closed",
    "timeout",
    "too many clients",
    "database is locked",
)


def is_transient(error: Exception) -> bool:
    """Whether a database error is worth retrying."""
    text = str(error).lower()
    return any(msg in text for msg in TRANSIENT_MESSAGES)


async def retry_transient(operation: Callable[[], Awaitable[T]], attempts: int = 3, base_delay: float = 0.1) -> T:
    """Run an alert query, retrying connection-level failures.

    A database that is briefly unreachable or saturated should not turn
    into a source-error notification on the first hiccup.

    Args:
        operation: Coroutine function to call
        attempts: Total number of tries
        base_delay: Delay before the second try, doubled for each one after

    Raises:
        The last error once every try failed, or the first non-transient one
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except (OperationalError, InterfaceError) as e:
            if not is_transient(e) or attempt == attempts:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(f"Transient database error ({e.__class__.__name__}), retry {attempt}/{attempts - 1} in {delay}s")
            await asyncio.sleep(delay)
