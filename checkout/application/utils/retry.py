from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from checkout.application.exceptions import NetworkUnavailable

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def retry_read(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    backoff_seconds: float = 0.5,
    description: str = "read",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Retry an idempotent read on NetworkUnavailable with exponential backoff.

    Only for reads; creation calls must never go through here.
    """
    attempts = max(1, attempts)
    attempt = 0
    while True:
        try:
            return await operation()
        except NetworkUnavailable as e:
            attempt += 1
            if attempt >= attempts:
                logger.error("%s failed after %s attempts", description, attempts, extra={"reason": str(e)})
                raise
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.warning(
                "%s attempt %s/%s failed, retrying in %ss",
                description,
                attempt,
                attempts,
                delay,
                extra={"reason": str(e)},
            )
            await sleep(delay)
