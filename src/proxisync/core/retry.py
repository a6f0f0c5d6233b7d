"""
Bounded retry with exponential backoff.

Used by the location store for transient I/O failures. Delays double per attempt and
are capped, so no call retries forever.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from proxisync.config.settings import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, *, base_delay_seconds: float, max_delay_seconds: float) -> float:
    """Delay before retry number `attempt` (0-based)."""
    return min(max_delay_seconds, base_delay_seconds * (2**attempt))


def call_with_retry(
    fn: Callable[[], T],
    *,
    retry: RetrySettings,
    retry_on: tuple[type[BaseException], ...],
    what: str = "operation",
) -> T:
    """Call `fn`, retrying on `retry_on` exceptions up to `retry.max_attempts` extra times.

    Raises:
        The last exception once attempts are exhausted, or immediately for exceptions
        outside `retry_on`.
    """
    max_attempts = int(retry.max_attempts)
    for attempt in range(max_attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt >= max_attempts:
                raise
            delay = backoff_delay(
                attempt,
                base_delay_seconds=float(retry.base_delay_seconds),
                max_delay_seconds=float(retry.max_delay_seconds),
            )
            logger.warning(
                "%s failed (%s); retrying in %.2fs (attempt %s/%s)",
                what,
                exc,
                delay,
                attempt + 1,
                max_attempts,
            )
            time.sleep(delay)
    raise RuntimeError(f"{what} failed without an exception (unexpected).")
