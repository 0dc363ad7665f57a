"""Retry helper for calls to external services.

Single Responsibility: retry a callable with exponential backoff when the
failure looks transient (rate limits, 5xx, timeouts). Everything else is
raised on the first attempt.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_MARKERS = ("429", "500", "502", "503", "504", "rate limit", "timeout", "timed out", "connection")


def is_transient_error(exc: BaseException) -> bool:
    """Heuristic: does this exception look like a temporary upstream problem?"""
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status == 429 or status >= 500
    msg = str(exc).lower()
    return any(marker in msg for marker in _RETRYABLE_MARKERS)


def retry_with_backoff(
    func: Callable[..., T],
    *args,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    is_retryable: Callable[[BaseException], bool] = is_transient_error,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs,
) -> T:
    """Call func(*args, **kwargs), retrying transient errors with exponential backoff."""
    attempts = max(1, int(max_attempts))
    for attempt in range(attempts):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not is_retryable(e) or attempt == attempts - 1:
                raise

            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.info(
                "Transient error in %s (attempt %d/%d), retrying in %.1fs: %s",
                getattr(func, "__name__", "call"),
                attempt + 1,
                attempts,
                delay,
                e,
            )
            sleep(delay)

    raise RuntimeError("Max retries exceeded")
