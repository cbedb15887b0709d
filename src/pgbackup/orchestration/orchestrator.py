"""
Orchestrator: owns the lifecycle of one backup run.

State machine::

    PREFLIGHT ─► RUNNING_TASKS ─► UPLOADING ─► NOTIFYING ─► SWEEPING ─► DONE
        │              │                           ▲  │
        │              └── first fatal failure ────┤  ├─► DONE     (UPLOAD_FAILURE)
        └────── probe failed or lock held ─────────┘  └─► ABORTED  (PREFLIGHT/BACKUP_FAILURE)

- ``PREFLIGHT``: run lock, then readiness probe. Failure skips every task
  and the upload (verdict PREFLIGHT_FAILURE).
- ``RUNNING_TASKS``: tasks strictly in declared order. The first failed
  fatal task stops the pipeline (verdict BACKUP_FAILURE), as does a run in
  which no task produced an artifact. Cancellation and the run deadline end
  here too.
- ``UPLOADING``: only after every fatal task succeeded. Any failed upload
  gives UPLOAD_FAILURE; local artifacts stay in place.
- ``NOTIFYING``: exactly once per run, whatever happened before. Notifier
  errors are logged and never change the verdict.
- ``SWEEPING``: only for SUCCESS. Sweep errors are logged only.
- ``ABORTED``: terminal state of runs that stopped in PREFLIGHT or
  RUNNING_TASKS; entered after their notification.

The orchestrator holds no process-wide state: every run builds its own
outcome lists and freezes them into a single RunReport.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Protocol

from pgbackup.alerts.notifier import build_notifier
from pgbackup.core.errors import LockError
from pgbackup.core.lock import RunLock
from pgbackup.core.logging import bind_run, clear_run, get_logger, read_log_tail
from pgbackup.core.models import (
    Artifact,
    RunContext,
    RunReport,
    TaskOutcome,
    TaskSpec,
    UploadOutcome,
    UploadStatus,
    Verdict,
)
from pgbackup.core.retention import SweepResult, sweep
from pgbackup.core.settings import BackupSettings
from pgbackup.execution.timeout import Deadline, TimeoutExpired
from pgbackup.preflight import PgIsReadyProbe, ReadinessProbe
from pgbackup.tasks.pipeline import default_pipeline
from pgbackup.tasks.runner import TaskRunner
from pgbackup.upload.stage import UploadStage
from pgbackup.upload.sync import RcloneClient

logger = get_logger(__name__)


class RunState(str, Enum):
    PREFLIGHT = "preflight"
    RUNNING_TASKS = "running_tasks"
    UPLOADING = "uploading"
    NOTIFYING = "notifying"
    SWEEPING = "sweeping"
    DONE = "done"
    ABORTED = "aborted"


class Runner(Protocol):
    def execute(
        self,
        spec: TaskSpec,
        ctx: RunContext,
        cancel: threading.Event | None = None,
        deadline: Deadline | None = None,
    ) -> TaskOutcome: ...


class Uploader(Protocol):
    def upload_all(
        self, artifacts: Sequence[Artifact], ctx: RunContext, cancel: threading.Event | None = None
    ) -> list[UploadOutcome]: ...


class ReportNotifier(Protocol):
    def notify(self, report: RunReport, ctx: RunContext) -> object: ...


Sweeper = Callable[[Path, int], SweepResult]


class Orchestrator:
    """Runs one backup: preflight, tasks, upload, notification, sweep.

    Args:
        ctx: Immutable run configuration
        tasks: Ordered pipeline
        probe: Readiness probe for PREFLIGHT
        runner: Executes one TaskSpec
        uploader: Uploads the produced artifacts
        notifier: Receives the RunReport exactly once
        sweeper: Retention sweep, called only after SUCCESS
        lock: Optional backup-directory lock held for the whole run
        cancel: Set by signal handlers to abort the run
        deadline: Run-level deadline applied to preflight and tasks
        probe_timeout: Readiness probe timeout in seconds
        log_tail_lines: Lines of the run log attached to the report
    """

    def __init__(
        self,
        ctx: RunContext,
        tasks: Sequence[TaskSpec],
        *,
        probe: ReadinessProbe,
        runner: Runner,
        uploader: Uploader,
        notifier: ReportNotifier,
        sweeper: Sweeper = sweep,
        lock: RunLock | None = None,
        cancel: threading.Event | None = None,
        deadline: Deadline | None = None,
        probe_timeout: float = 10.0,
        log_tail_lines: int = 15,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.ctx = ctx
        self.tasks = tuple(tasks)
        self.probe = probe
        self.runner = runner
        self.uploader = uploader
        self.notifier = notifier
        self.sweeper = sweeper
        self.lock = lock
        self.cancel = cancel or threading.Event()
        self.deadline = deadline or Deadline.never()
        self.probe_timeout = probe_timeout
        self.log_tail_lines = log_tail_lines
        self.clock = clock
        self.states: list[RunState] = []
        self.sweep_result: SweepResult | None = None
        self._report: RunReport | None = None

    @property
    def state(self) -> RunState | None:
        return self.states[-1] if self.states else None

    @property
    def report(self) -> RunReport | None:
        return self._report

    def _enter(self, state: RunState) -> None:
        self.states.append(state)
        logger.debug("run.state", state=state.value)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def run(self) -> RunReport:
        """Execute the run and return its single RunReport."""
        if self._report is not None:
            raise RuntimeError("an Orchestrator instance runs exactly once")

        started_at = self.clock()
        bind_run(self.ctx.run_id, database=self.ctx.database)
        logger.info(
            "run.started",
            host=self.ctx.host,
            port=self.ctx.port,
            timestamp=self.ctx.timestamp,
            tasks=[t.name for t in self.tasks],
        )
        locked = False
        try:
            task_outcomes: list[TaskOutcome] = []
            upload_outcomes: list[UploadOutcome] = []

            self._enter(RunState.PREFLIGHT)
            verdict, reason = self._preflight()
            locked = verdict is None

            if verdict is None:
                self._enter(RunState.RUNNING_TASKS)
                verdict, reason = self._run_tasks(task_outcomes)

            if verdict is None:
                self._enter(RunState.UPLOADING)
                verdict, reason = self._upload(task_outcomes, upload_outcomes)

            self._enter(RunState.NOTIFYING)
            report = self._build_report(verdict, reason, started_at, task_outcomes, upload_outcomes)
            self._report = report
            self._notify(report)

            if report.verdict is Verdict.SUCCESS:
                self._enter(RunState.SWEEPING)
                self._sweep()
            aborted = report.verdict in (Verdict.PREFLIGHT_FAILURE, Verdict.BACKUP_FAILURE)
            self._enter(RunState.ABORTED if aborted else RunState.DONE)

            logger.info(
                "run.completed",
                verdict=report.verdict.value,
                exit_code=report.exit_code,
                duration_seconds=round(report.duration_seconds, 2),
            )
            return report
        finally:
            if locked and self.lock is not None:
                self.lock.release()
            clear_run()

    # ── Stages ───────────────────────────────────────────────────────────

    def _preflight(self) -> tuple[Verdict | None, str | None]:
        if self.lock is not None:
            try:
                self.lock.acquire()
            except LockError as exc:
                logger.error("preflight.locked", error=exc.message, lock=str(self.lock.path))
                return Verdict.PREFLIGHT_FAILURE, exc.message
            except Exception as exc:
                logger.exception("preflight.lock_crashed", lock=str(self.lock.path))
                return Verdict.PREFLIGHT_FAILURE, f"cannot take run lock: {exc}"

        try:
            result = self.probe.check(self.ctx, self.deadline.cap(self.probe_timeout), self.cancel)
        except Exception as exc:
            logger.exception("preflight.probe_crashed")
            result_reachable, detail = False, f"readiness probe failed: {exc}"
        else:
            result_reachable, detail = result.reachable, result.detail

        if not result_reachable:
            if self.lock is not None:
                self.lock.release()
            logger.error("preflight.failed", detail=detail)
            return Verdict.PREFLIGHT_FAILURE, f"database unreachable: {detail}"
        logger.info("preflight.passed", detail=detail)
        return None, None

    def _run_tasks(self, outcomes: list[TaskOutcome]) -> tuple[Verdict | None, str | None]:
        for spec in self.tasks:
            if self.cancel.is_set():
                logger.error("run.cancelled", before_task=spec.name)
                return Verdict.BACKUP_FAILURE, f"run cancelled before task {spec.name}"
            try:
                self.deadline.check("backup run")
            except TimeoutExpired as exc:
                logger.error("run.deadline_expired", before_task=spec.name)
                return Verdict.BACKUP_FAILURE, f"{exc} before task {spec.name}"

            try:
                outcome = self.runner.execute(spec, self.ctx, self.cancel, self.deadline)
            except Exception as exc:
                logger.exception("task.crashed", task=spec.name)
                outcome = TaskOutcome.fail(spec.name, f"unexpected error: {exc}")
            outcomes.append(outcome)

            if outcome.succeeded:
                continue
            if spec.fatal:
                reason = f"task {spec.name} failed: {outcome.error}"
                if self.cancel.is_set():
                    reason = f"run cancelled during task {spec.name}: {outcome.error}"
                return Verdict.BACKUP_FAILURE, reason
            logger.warning("task.failed_non_fatal", task=spec.name, error=outcome.error)

        if not any(o.artifacts for o in outcomes):
            logger.error("run.no_artifacts", tasks=[o.name for o in outcomes])
            return Verdict.BACKUP_FAILURE, "no task produced an artifact"
        return None, None

    def _upload(
        self, task_outcomes: list[TaskOutcome], upload_outcomes: list[UploadOutcome]
    ) -> tuple[Verdict, str | None]:
        artifacts = [a for o in task_outcomes for a in o.artifacts]
        try:
            upload_outcomes.extend(self.uploader.upload_all(artifacts, self.ctx, self.cancel))
        except Exception as exc:
            logger.exception("upload.crashed")
            upload_outcomes.extend(
                UploadOutcome(a, UploadStatus.FAILED, attempts=0, error=f"upload stage error: {exc}")
                for a in artifacts
            )

        failed = [u for u in upload_outcomes if not u.succeeded]
        if failed:
            names = ", ".join(u.artifact.name for u in failed)
            return Verdict.UPLOAD_FAILURE, f"{len(failed)} of {len(upload_outcomes)} uploads failed: {names}"
        return Verdict.SUCCESS, None

    def _notify(self, report: RunReport) -> None:
        try:
            self.notifier.notify(report, self.ctx)
        except Exception as exc:
            logger.error("notify.failed", error=str(exc))

    def _sweep(self) -> None:
        try:
            self.sweep_result = self.sweeper(self.ctx.output_dir, self.ctx.retention_days)
        except Exception as exc:
            logger.error("sweep.failed", error=str(exc))
            return
        if not self.sweep_result.success:
            logger.warning("sweep.partial", errors=self.sweep_result.errors)

    # ── Report ───────────────────────────────────────────────────────────

    def _log_tail(self, task_outcomes: list[TaskOutcome]) -> tuple[str, ...]:
        tail = read_log_tail(self.ctx.log_file, self.log_tail_lines)
        if tail:
            return tuple(tail)
        for outcome in reversed(task_outcomes):
            if not outcome.succeeded and outcome.diagnostic_tail:
                return outcome.diagnostic_tail[-self.log_tail_lines :]
        return ()

    def _build_report(
        self,
        verdict: Verdict,
        reason: str | None,
        started_at: datetime,
        task_outcomes: list[TaskOutcome],
        upload_outcomes: list[UploadOutcome],
    ) -> RunReport:
        if verdict is Verdict.SUCCESS:
            logger.info("run.succeeded", artifacts=len([a for o in task_outcomes for a in o.artifacts]))
        else:
            logger.error("run.failed", verdict=verdict.value, reason=reason)
        return RunReport(
            run_id=self.ctx.run_id,
            verdict=verdict,
            started_at=started_at,
            finished_at=self.clock(),
            task_outcomes=tuple(task_outcomes),
            upload_outcomes=tuple(upload_outcomes),
            reason=reason,
            log_tail=self._log_tail(task_outcomes),
            states=tuple(s.value for s in self.states),
        )


def build_orchestrator(
    settings: BackupSettings,
    *,
    cancel: threading.Event | None = None,
    now: datetime | None = None,
) -> Orchestrator:
    """Wire the production collaborators from ``settings``."""
    deadline = Deadline.after(settings.run_timeout) if settings.run_timeout else Deadline.never()
    return Orchestrator(
        settings.to_run_context(now),
        default_pipeline(settings),
        probe=PgIsReadyProbe(settings.pg_isready_bin),
        runner=TaskRunner(tail_lines=settings.log_tail_lines, kill_grace=settings.kill_grace),
        uploader=UploadStage(
            RcloneClient(settings.rclone_bin, kill_grace=settings.kill_grace),
            max_retries=settings.upload_retries,
            backoff=settings.upload_backoff,
            concurrency=settings.upload_concurrency,
            timeout=settings.upload_timeout,
        ),
        notifier=build_notifier(settings),
        lock=RunLock(settings.resolved_lock_file),
        cancel=cancel,
        deadline=deadline,
        probe_timeout=settings.probe_timeout,
        log_tail_lines=settings.log_tail_lines,
    )
