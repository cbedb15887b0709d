"""Run-level deadline.

A ``Deadline`` bounds a whole backup run. Every external process started
during the run receives ``deadline.cap(own_timeout)`` as its timeout, so a
run never outlives the deadline by more than the kill grace period.

Examples:
    >>> deadline = Deadline.after(4 * 3600)
    >>> deadline.cap(6 * 3600) <= 4 * 3600   # the shorter of the two
    True
    >>> Deadline.never().cap(30.0)
    30.0
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline."""

    def __init__(self, timeout: float, elapsed: float | None = None, operation: str = "operation"):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"
        super().__init__(msg)


@dataclass
class Deadline:
    """Absolute deadline on the monotonic clock.

    Attributes:
        deadline: Monotonic timestamp; ``math.inf`` for no deadline
        timeout_seconds: Original timeout value
        start_time: When the deadline started
    """

    deadline: float
    timeout_seconds: float
    start_time: float = field(default_factory=time.monotonic)

    @classmethod
    def after(cls, seconds: float) -> Deadline:
        now = time.monotonic()
        return cls(deadline=now + seconds, timeout_seconds=seconds, start_time=now)

    @classmethod
    def never(cls) -> Deadline:
        return cls(deadline=math.inf, timeout_seconds=math.inf)

    def remaining(self) -> float:
        """Seconds left; negative once expired."""
        return self.deadline - time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    def is_expired(self) -> bool:
        return time.monotonic() >= self.deadline

    def cap(self, timeout: float) -> float:
        """Return ``timeout`` shortened to the remaining time, never below 0."""
        return max(0.0, min(timeout, self.remaining()))

    def check(self, operation: str = "run") -> None:
        """Raise ``TimeoutExpired`` if the deadline has passed."""
        if self.is_expired():
            raise TimeoutExpired(self.timeout_seconds, self.elapsed, operation)
