"""
Task runner: executes one TaskSpec and returns a TaskOutcome.

The runner is the boundary between the orchestrator and the external
producers. It never raises: a non-zero exit, a timeout, a cancellation, a
producer that cannot be started, and a producer that reports success but
leaves a missing or empty file all become a FAILED outcome carrying the
last lines of the producer's diagnostic output.

A failed task removes whatever partial output it wrote, so nothing left in
the backup directory can be mistaken for a complete artifact. Existing
files are never overwritten: if the output path already exists the
producer is not started.

Producer output is forwarded line by line to the run log, so the log tail
attached to failure notifications shows what the producer said.
"""

from __future__ import annotations

import shutil
import threading
import time
from pathlib import Path

from pgbackup.core.errors import TaskError
from pgbackup.core.logging import get_logger
from pgbackup.core.models import (
    Artifact,
    ArtifactKind,
    OutputMode,
    RunContext,
    TaskOutcome,
    TaskSpec,
)
from pgbackup.execution.process import DEFAULT_TAIL_LINES, ProcessResult, run_process
from pgbackup.execution.timeout import Deadline

logger = get_logger(__name__)

BASE_ARCHIVE = "base.tar.gz"
WAL_ARCHIVE = "pg_wal.tar.gz"


def verify_output(path: Path, kind: ArtifactKind) -> Artifact:
    """Return an Artifact for ``path`` or raise TaskError if missing/empty."""
    if not path.is_file():
        raise TaskError(f"expected output {path.name} was not produced").with_context(path=str(path))
    size = path.stat().st_size
    if size == 0:
        raise TaskError(f"output {path.name} is empty").with_context(path=str(path))
    return Artifact(path=path, kind=kind, size_bytes=size)


class TaskRunner:
    """Runs backup producers as external processes.

    Args:
        tail_lines: Diagnostic lines kept per task
        kill_grace: Seconds between SIGTERM and SIGKILL on timeout/cancel
    """

    def __init__(self, *, tail_lines: int = DEFAULT_TAIL_LINES, kill_grace: float = 10.0):
        self.tail_lines = tail_lines
        self.kill_grace = kill_grace

    def execute(
        self,
        spec: TaskSpec,
        ctx: RunContext,
        cancel: threading.Event | None = None,
        deadline: Deadline | None = None,
    ) -> TaskOutcome:
        log = logger.bind(task=spec.name)
        started = time.monotonic()

        output = spec.output_path(ctx)
        wal = spec.wal_path(ctx)
        existing = [p for p in (output, wal) if p is not None and p.exists()]
        if existing:
            log.error("task.output_exists", path=str(existing[0]))
            return TaskOutcome.fail(spec.name, f"refusing to overwrite existing artifact {existing[0].name}")

        try:
            return self._run(spec, ctx, cancel, deadline, log, started)
        except Exception as exc:
            log.exception("task.crashed")
            self._discard(spec, ctx)
            return TaskOutcome.fail(
                spec.name,
                f"unexpected error: {exc}",
                duration_seconds=time.monotonic() - started,
            )

    def _run(self, spec, ctx, cancel, deadline, log, started) -> TaskOutcome:
        timeout = spec.timeout_seconds if deadline is None else deadline.cap(spec.timeout_seconds)
        if timeout <= 0:
            log.error("task.deadline_expired")
            return TaskOutcome.fail(spec.name, "run deadline expired before the task started")
        if cancel is not None and cancel.is_set():
            return TaskOutcome.fail(spec.name, "run cancelled before the task started")

        ctx.output_dir.mkdir(parents=True, exist_ok=True)
        if spec.output_mode is OutputMode.DIRECTORY:
            spec.staging_path(ctx).mkdir(parents=True, exist_ok=True)

        argv = spec.render_command(ctx)
        log.info("task.started", command=Path(argv[0]).name, output=str(spec.output_path(ctx)))

        try:
            result = run_process(
                argv,
                timeout=timeout,
                stdout_path=spec.output_path(ctx) if spec.output_mode is OutputMode.STDOUT else None,
                env=ctx.credentials.env(),
                cancel=cancel,
                tail_lines=self.tail_lines,
                kill_grace=self.kill_grace,
                on_line=lambda line: log.info("task.output", line=line),
            )
        except OSError as exc:
            self._discard(spec, ctx)
            log.error("task.start_failed", command=argv[0], error=str(exc))
            return TaskOutcome.fail(
                spec.name,
                f"cannot start {argv[0]}: {exc}",
                duration_seconds=time.monotonic() - started,
            )

        if not result.ok:
            return self._failed(spec, ctx, result, result.describe(), log)

        try:
            artifacts = self._collect(spec, ctx)
        except TaskError as exc:
            return self._failed(spec, ctx, result, exc.message, log)

        outcome = TaskOutcome.ok(
            spec.name,
            artifacts,
            duration_seconds=time.monotonic() - started,
            diagnostic_tail=result.tail,
            exit_code=result.exit_code,
        )
        log.info(
            "task.succeeded",
            artifacts=[a.name for a in artifacts],
            size_bytes=outcome.size_bytes,
            duration_seconds=round(outcome.duration_seconds, 2),
        )
        return outcome

    def _failed(self, spec, ctx, result: ProcessResult, error: str, log) -> TaskOutcome:
        self._discard(spec, ctx)
        log.error("task.failed", error=error, exit_code=result.exit_code)
        return TaskOutcome.fail(
            spec.name,
            error,
            duration_seconds=result.duration_seconds,
            diagnostic_tail=result.tail,
            exit_code=result.exit_code,
        )

    def _collect(self, spec: TaskSpec, ctx: RunContext) -> list[Artifact]:
        output = spec.output_path(ctx)
        if spec.output_mode is not OutputMode.DIRECTORY:
            return [verify_output(output, spec.kind)]

        staging = spec.staging_path(ctx)
        base = verify_output(staging / BASE_ARCHIVE, spec.kind)
        moves: list[tuple[Path, Path, ArtifactKind]] = [(base.path, output, spec.kind)]

        wal_source = staging / WAL_ARCHIVE
        wal_target = spec.wal_path(ctx)
        if wal_target is not None and wal_source.is_file() and wal_source.stat().st_size > 0:
            moves.append((wal_source, wal_target, ArtifactKind.WAL))

        # tablespace archives are named <oid>.tar.gz
        for extra in sorted(staging.glob("*.tar.gz")):
            if extra.name in (BASE_ARCHIVE, WAL_ARCHIVE):
                continue
            oid = extra.name.removesuffix(".tar.gz")
            target = output.with_name(output.name.replace(".tar.gz", f"_{oid}.tar.gz"))
            moves.append((extra, target, spec.kind))

        artifacts = []
        for source, target, kind in moves:
            if target.exists():
                raise TaskError(f"refusing to overwrite existing artifact {target.name}")
            source.rename(target)
            artifacts.append(verify_output(target, kind))
        shutil.rmtree(staging, ignore_errors=True)
        return artifacts

    def _discard(self, spec: TaskSpec, ctx: RunContext) -> None:
        """Remove partial output of a failed task."""
        for path in (spec.output_path(ctx), spec.wal_path(ctx)):
            if path is not None:
                path.unlink(missing_ok=True)
        if spec.output_mode is OutputMode.DIRECTORY:
            output = spec.output_path(ctx)
            for extra in ctx.output_dir.glob(output.name.replace(".tar.gz", "_*.tar.gz")):
                extra.unlink(missing_ok=True)
            shutil.rmtree(spec.staging_path(ctx), ignore_errors=True)
