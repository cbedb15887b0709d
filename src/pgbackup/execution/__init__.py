"""Execution primitives: external processes, retry with backoff, run deadlines."""

from pgbackup.execution.process import ProcessResult, run_process
from pgbackup.execution.retry import ExponentialBackoff, NoRetry, RetryCancelled, RetryContext, RetryStrategy
from pgbackup.execution.timeout import Deadline, TimeoutExpired

__all__ = [
    "Deadline",
    "ExponentialBackoff",
    "NoRetry",
    "ProcessResult",
    "RetryCancelled",
    "RetryContext",
    "RetryStrategy",
    "TimeoutExpired",
    "run_process",
]
