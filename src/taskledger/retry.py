"""Bounded exponential backoff with jitter for transient commit failures.

Only the commit step of the task store runs under a retry policy: a batch
is never rebuilt by a retry, so a stale precondition can never be
replayed. The same delay schedule paces polling for the commit lock.
"""

import random
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, TypeVar

from taskledger.errors import TaskLedgerError
from taskledger.logging import Loggers

logger = Loggers.store()

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including the first try)
        base_delay: Delay before the first retry in seconds
        max_delay: Upper bound for a single delay in seconds
        jitter: Fraction of each delay randomly added or removed (0..1)
        exponential_base: Growth factor between consecutive delays
    """

    max_attempts: int = 5
    base_delay: float = 0.05
    max_delay: float = 1.0
    jitter: float = 0.1
    exponential_base: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter,
        )

    def delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-indexed), jitter applied."""
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(delay, 0.0)

    def delays(self) -> Iterator[float]:
        """Endless delay schedule; the cap keeps it bounded per step."""
        attempt = 0
        while True:
            yield self.delay(attempt)
            attempt += 1

    @staticmethod
    def is_retryable(error: Exception) -> bool:
        return isinstance(error, TaskLedgerError) and error.transient

    def call(self, operation: Callable[[], T], description: str = "operation") -> T:
        """Run ``operation``, retrying transient failures.

        Non-transient errors propagate immediately. When the attempts are
        exhausted, the last transient error is raised.
        """
        attempt = 0
        while True:
            try:
                return operation()
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                if attempt >= self.max_attempts - 1:
                    logger.error(
                        "retry_exhausted",
                        operation=description,
                        attempts=attempt + 1,
                        error=str(e),
                    )
                    raise
                delay = self.delay(attempt)
                logger.warning(
                    "retrying_after_error",
                    operation=description,
                    attempt=attempt + 1,
                    max_attempts=self.max_attempts,
                    delay=round(delay, 4),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                self.sleep(delay)
                attempt += 1
