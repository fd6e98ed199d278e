"""Retry with jittered exponential backoff for idempotent provider calls."""
import logging
import random
import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


def backoff_delay(base: float, factor: float, attempt: int, cap: float) -> float:
    delay = min(base * (factor ** attempt), cap)
    jitter = random.uniform(0, delay * 0.25)
    return delay + jitter


def retry_on(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    base: float = 0.2,
    factor: float = 2.0,
    cap: float = 2.0,
    is_retryable: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call `fn` up to `attempts` times.

    Exceptions rejected by `is_retryable` propagate immediately; the last
    retryable exception is re-raised once attempts run out.
    """
    attempts = max(1, attempts)
    last_exc: Optional[Exception] = None
    for i in range(attempts):
        try:
            return fn()
        except Exception as e:
            if is_retryable and not is_retryable(e):
                raise
            last_exc = e
            if i == attempts - 1:
                break
            sleep_s = backoff_delay(base, factor, i, cap)
            if on_retry:
                on_retry(i + 1, e, sleep_s)
            else:
                logger.warning("retry #%s in %.2fs due to %r", i + 1, sleep_s, e)
            sleep(sleep_s)
    raise last_exc
