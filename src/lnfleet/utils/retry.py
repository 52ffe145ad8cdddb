# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import functools
import time
from typing import Callable, Iterator, Optional


class RetryError(RuntimeError):
    pass


def backoff_delays(initial: float, maximum: float, factor: float = 2.0) -> Iterator[float]:
    """Yield initial, initial*factor, ... capped at maximum, forever."""
    delay = initial
    while True:
        yield min(delay, maximum)
        delay *= factor


def retry(
    *,
    retries: int,
    delay: float,
    backoff: float = 1.0,
    max_delay: Optional[float] = None,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Retry decorator for idempotent operations.

    retries: number of attempts
    delay: seconds before the second attempt
    backoff: multiplier applied to delay after every failed attempt
    max_delay: upper bound for the delay
    retry_on: exception types to retry
    on_retry: callback(attempt, exception)
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            last_exc = None
            delays = backoff_delays(delay, max_delay if max_delay is not None else float("inf"), backoff)
            for attempt in range(1, retries + 1):
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    last_exc = exc
                    if on_retry:
                        on_retry(attempt, exc)
                    if attempt == retries:
                        break
                    sleep(next(delays))
            raise RetryError(f"{fn.__name__} failed after {retries} attempts") from last_exc
        return wrapper
    return decorator
