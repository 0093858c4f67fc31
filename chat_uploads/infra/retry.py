# chat_uploads/infra/retry.py
import random
import time
import logging
from typing import Callable, TypeVar, Optional

T = TypeVar("T")
logger = logging.getLogger(__name__)


def backoff_delay(base: float, factor: float, attempt: int, cap: float) -> float:
    # exponential backoff met jitter
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
    """Run ``fn`` and retry it on retryable exceptions; the last error is re-raised."""
    attempts = max(1, attempts)
    for i in range(attempts):
        try:
            return fn()
        except Exception as e:
            if is_retryable and not is_retryable(e):
                raise
            if i == attempts - 1:
                raise
            sleep_s = backoff_delay(base, factor, i, cap)
            if on_retry:
                on_retry(i + 1, e, sleep_s)
            else:
                logger.warning("retry #%s in %.2fs due to %s", i + 1, sleep_s, repr(e))
            sleep(sleep_s)
    raise AssertionError("unreachable")
