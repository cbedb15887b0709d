"""Upload stage.

Pushes every artifact of a run to remote storage. Each artifact is
independent: it has its own retry budget, and its failure never prevents
the others from being attempted. Uploads run on a small thread pool;
outcomes are collected under a lock and returned in input order, one per
artifact.

Local files are never touched here, whatever the outcome.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from pgbackup.core.logging import get_logger
from pgbackup.core.models import Artifact, RunContext, UploadOutcome, UploadStatus
from pgbackup.execution.retry import ExponentialBackoff, RetryCancelled, RetryContext
from pgbackup.upload.sync import SyncClient

logger = get_logger(__name__)

MAX_CONCURRENCY = 4


class _OutcomeCollector:
    """Thread-safe, index-addressed outcome store."""

    def __init__(self, size: int):
        self._lock = threading.Lock()
        self._outcomes: list[UploadOutcome | None] = [None] * size

    def put(self, index: int, outcome: UploadOutcome) -> None:
        with self._lock:
            self._outcomes[index] = outcome

    def results(self) -> list[UploadOutcome]:
        with self._lock:
            missing = [i for i, o in enumerate(self._outcomes) if o is None]
            if missing:
                raise RuntimeError(f"upload outcomes missing for indexes {missing}")
            return list(self._outcomes)  # type: ignore[arg-type]


class UploadStage:
    """Uploads artifacts with bounded retry and bounded parallelism.

    Args:
        client: Remote sync client
        max_retries: Extra attempts per artifact after the first failure
        backoff: Base delay in seconds, doubled for each retry
        concurrency: Concurrent uploads, capped at ``MAX_CONCURRENCY``
        timeout: Per-attempt timeout in seconds
        sleep: Injectable sleep used between attempts when no cancel
            event is given
    """

    def __init__(
        self,
        client: SyncClient,
        *,
        max_retries: int = 2,
        backoff: float = 5.0,
        concurrency: int = 2,
        timeout: float = 3600.0,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.client = client
        self.max_retries = max_retries
        self.backoff = backoff
        self.concurrency = max(1, min(concurrency, MAX_CONCURRENCY))
        self.timeout = timeout
        self._sleep = sleep

    def upload_all(
        self,
        artifacts: Sequence[Artifact],
        ctx: RunContext,
        cancel: threading.Event | None = None,
    ) -> list[UploadOutcome]:
        """Upload each artifact; returns one outcome per artifact, same order."""
        if not artifacts:
            return []

        collector = _OutcomeCollector(len(artifacts))

        def work(index: int, artifact: Artifact) -> None:
            collector.put(index, self.upload_one(artifact, ctx, cancel))

        workers = min(len(artifacts), self.concurrency)
        logger.info("upload.started", artifacts=len(artifacts), remote=ctx.remote, workers=workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="upload") as pool:
            futures = [pool.submit(work, i, a) for i, a in enumerate(artifacts)]
            for future in futures:
                future.result()

        outcomes = collector.results()
        failed = sum(1 for o in outcomes if not o.succeeded)
        logger.info("upload.completed", succeeded=len(outcomes) - failed, failed=failed)
        return outcomes

    def upload_one(
        self,
        artifact: Artifact,
        ctx: RunContext,
        cancel: threading.Event | None = None,
    ) -> UploadOutcome:
        """Upload a single artifact under the retry policy. Never raises."""
        log = logger.bind(artifact=artifact.name, remote=ctx.remote)

        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            log.warning("upload.retrying", attempt=attempt, error=str(error), delay=round(delay, 2))

        retry = RetryContext(
            strategy=ExponentialBackoff(max_retries=self.max_retries, base_delay=self.backoff),
            on_retry=on_retry,
            cancel=cancel,
            sleep=self._sleep,
        )
        try:
            retry.run(self.client.copy, artifact.path, ctx.remote, timeout=self.timeout, cancel=cancel)
        except RetryCancelled:
            log.error("upload.cancelled", attempts=retry.attempt)
            return UploadOutcome(artifact, UploadStatus.FAILED, attempts=retry.attempt, error="upload cancelled")
        except Exception as exc:
            log.error("upload.failed", attempts=retry.attempt, error=str(exc))
            return UploadOutcome(artifact, UploadStatus.FAILED, attempts=retry.attempt, error=str(exc))

        log.info("upload.succeeded", attempts=retry.attempt, size_bytes=artifact.size_bytes)
        return UploadOutcome(artifact, UploadStatus.SUCCEEDED, attempts=retry.attempt)
