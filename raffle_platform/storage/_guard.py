import functools
import logging

import aiosqlite

from raffle_platform.errors import StoreUnavailable

logger = logging.getLogger("storage")


def guarded(func):
    """Surface SQLite faults as StoreUnavailable; constraint errors pass through."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except aiosqlite.IntegrityError:
            raise
        except aiosqlite.Error as exc:
            logger.error("Storage failure in %s: %s", func.__qualname__, exc)
            raise StoreUnavailable(
                f"Storage unavailable during {func.__name__.replace('_', ' ')}"
            ) from exc

    return wrapper
