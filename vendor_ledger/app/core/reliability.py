"""
Reliability utilities for the ledger store.

Bounded timeouts on every store call, and bounded retries with exponential
backoff for writes that are safe to repeat.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from vendor_ledger.app.core.exceptions import StoreUnavailableError

logger = logging.getLogger("vendor_ledger.reliability")


async def bounded(operation: str, awaitable: Awaitable[Any], timeout: float) -> Any:
    """
    Await a store call with a hard timeout.

    Timeouts and transient driver errors surface as StoreUnavailableError.
    Integrity violations are not transient and propagate unchanged.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise StoreUnavailableError(operation, f"Store call '{operation}' timed out after {timeout}s")
    except IntegrityError:
        raise
    except (OperationalError, DBAPIError) as e:
        raise StoreUnavailableError(operation, f"Store call '{operation}' failed: {e.__class__.__name__}")


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    attempts: int = 3,
    base_delay: float = 0.2,
) -> Any:
    """
    Retry a coroutine factory on StoreUnavailableError.

    Delay doubles after every failed attempt. Any other exception propagates
    immediately; after the last attempt the StoreUnavailableError is re-raised.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func()
        except StoreUnavailableError as e:
            if attempt >= attempts:
                logger.error("Giving up on %s after %d attempts", e.operation, attempt)
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning("Retrying %s in %.2fs (attempt %d/%d)", e.operation, delay, attempt + 1, attempts)
            await asyncio.sleep(delay)
