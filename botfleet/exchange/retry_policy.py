from __future__ import annotations

import asyncio

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential, wait_random

# The exchange client never retries on its own. Callers opt in, and only for idempotent reads:
# an order or leverage change that timed out may still have been applied by the exchange.
RETRYABLE = (TimeoutError, asyncio.TimeoutError, httpx.TransportError)


def read_retry(attempts: int = 3, max_wait_sec: float = 2.0):
    return retry(
        reraise=True,
        stop=stop_after_attempt(max(1, attempts)),
        # 0.2s, 0.4s, ... up to max_wait_sec, plus up to 0.1s of jitter
        wait=wait_exponential(multiplier=0.1, max=max_wait_sec) + wait_random(0, min(0.1, max_wait_sec)),
        retry=retry_if_exception_type(RETRYABLE),
    )


def error_backoff_sec(consecutive_failures: int, poll_sec: float, max_sec: float) -> float:
    """Delay before the next tick after `consecutive_failures` failed ticks in a row."""
    if consecutive_failures <= 1:
        return poll_sec
    return min(max_sec, poll_sec * (2 ** (consecutive_failures - 1)))
