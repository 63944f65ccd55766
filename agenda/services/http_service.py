"""HTTP retry helper for idempotent backend reads."""

from __future__ import annotations

import logging
import random
from typing import Awaitable, Callable

import anyio
import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff with up to 50% jitter. Zero base means no wait."""
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay += random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    method: str = "GET",
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: frozenset[int] | set[int] | None = None,
) -> httpx.Response:
    """
    Execute a request, retrying transient failures for idempotent methods.

    Writes get exactly one attempt: a retried create could book the same
    slot twice. Retry on a write is always a fresh user action.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES
    attempts = max_attempts if method.upper() in IDEMPOTENT_METHODS else 1

    for attempt in range(attempts):
        last_attempt = attempt >= attempts - 1
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if last_attempt:
                raise
            logger.warning("%s request failed, retrying", method, exc_info=exc)
            delay = backoff_delay(attempt, base_delay, max_delay)
            if delay:
                await anyio.sleep(delay)
            continue

        if response.status_code in statuses and not last_attempt:
            logger.warning("%s request returned %s, retrying", method, response.status_code)
            delay = backoff_delay(attempt, base_delay, max_delay)
            if delay:
                await anyio.sleep(delay)
            continue

        return response

    return response
