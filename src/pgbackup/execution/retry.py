"""Retry strategies with exponential backoff and jitter.

Used by the upload stage: each artifact gets a bounded number of extra
attempts after a failed remote copy.

Example:
    >>> from pgbackup.execution.retry import ExponentialBackoff, RetryContext
    >>>
    >>> ctx = RetryContext(ExponentialBackoff(max_retries=2, base_delay=5.0))
    >>> ctx.run(client.copy, path, "gdrive_backups:")
"""

from __future__ import annotations

import random
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pgbackup.core.errors import is_retryable

T = TypeVar("T")


class RetryCancelled(Exception):
    """Raised when a cancel event interrupts a retry wait."""


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0-based)."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Whether another attempt is allowed after ``attempt`` failures."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) +/- jitter

    Only errors flagged retryable (see ``pgbackup.core.errors``) are
    retried unless ``retry_all`` is set.
    """

    max_retries: int = 2
    base_delay: float = 5.0
    max_delay: float = 120.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    retry_all: bool = False

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_retries:
            return False
        if error is not None and not self.retry_all:
            return is_retryable(error)
        return True


@dataclass
class NoRetry(RetryStrategy):
    """Fail on the first error."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        return False


@dataclass
class RetryContext:
    """Runs a callable under a retry strategy and records each failure.

    ``cancel`` interrupts the wait between attempts; ``sleep`` is injectable
    so tests do not wait on real backoff.
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], None] | None = None
    cancel: threading.Event | None = None
    sleep: Callable[[float], Any] = time.sleep
    attempt: int = field(default=0, init=False)
    errors: list[Exception] = field(default_factory=list, init=False)

    @property
    def last_error(self) -> Exception | None:
        return self.errors[-1] if self.errors else None

    def _wait(self, delay: float) -> None:
        if self.cancel is not None:
            if self.cancel.wait(delay):
                raise RetryCancelled("retry cancelled")
        else:
            self.sleep(delay)

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it succeeds or the strategy gives up.

        Raises:
            The last exception once retries are exhausted.
        """
        while True:
            if self.cancel is not None and self.cancel.is_set():
                raise RetryCancelled("retry cancelled")
            self.attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.errors.append(e)
                if not self.strategy.should_retry(self.attempt - 1, e):
                    raise
                delay = self.strategy.next_delay(self.attempt - 1)
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                self._wait(delay)
