"""Retry utilities with bounded attempts and exponential or fixed backoff."""
from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default exceptions to retry on
DEFAULT_RETRY_EXCEPTIONS: tuple[type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry policy.

    Args:
        max_attempts: Total number of attempts, including the first (>= 1)
        base_delay: Delay before the second attempt, in seconds
        max_delay: Upper bound for any single delay, in seconds
        exponential_base: Growth factor per attempt (1.0 gives a fixed delay)
        jitter: Whether to add +/-25% random jitter to each delay
        sleep: Sleeper used between attempts; tests inject a fake
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = False
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    @classmethod
    def fixed(
        cls,
        attempts: int,
        delay: float,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, int(attempts)),
            base_delay=delay,
            max_delay=delay,
            exponential_base=1.0,
            jitter=False,
            sleep=sleep,
        )

    @classmethod
    def deadline(
        cls,
        wait_seconds: float,
        poll_seconds: float,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "RetryPolicy":
        """Poll every ``poll_seconds`` until ``wait_seconds`` have been spent."""
        poll = max(float(poll_seconds), 0.001)
        attempts = int(float(wait_seconds) // poll) + 1
        return cls.fixed(attempts, poll, sleep=sleep)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (zero-based) failed attempt."""
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            delay = delay * (0.75 + random.random() * 0.5)
        return delay

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        retry_on: tuple[type[Exception], ...] | None = None,
        on_retry: Callable[[Exception, int, float], None] | None = None,
        **kwargs: Any,
    ) -> T:
        """Call ``func`` until it returns or the attempts are exhausted."""
        exceptions_to_catch = retry_on or DEFAULT_RETRY_EXCEPTIONS
        name = getattr(func, "__name__", repr(func))

        for attempt in range(self.max_attempts):
            try:
                return func(*args, **kwargs)
            except exceptions_to_catch as e:
                if attempt + 1 >= self.max_attempts:
                    logger.error(f"[retry] {name} failed after {self.max_attempts} attempts: {e}")
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    f"[retry] {name} attempt {attempt + 1}/{self.max_attempts} "
                    f"failed: {e}. Retrying in {delay:.2f}s"
                )
                if on_retry:
                    on_retry(e, attempt + 1, delay)
                self.sleep(delay)

        raise RuntimeError("Unexpected retry loop exit")
