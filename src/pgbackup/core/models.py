"""
Run data model.

Immutable values exchanged between the orchestrator and its stages:

- ``RunContext`` is built once per invocation and only read afterwards.
- ``TaskSpec`` declares one pipeline step.
- ``TaskOutcome`` / ``UploadOutcome`` are produced by the task runner and
  upload stage.
- ``RunReport`` is the single terminal summary of a run.

STDLIB ONLY - NO PYDANTIC. Settings validation lives in
``pgbackup.core.settings``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M%S"


def make_timestamp(now: datetime | None = None) -> str:
    """Return the run timestamp token, e.g. ``2024-01-01-020000``."""
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


class ArtifactKind(str, Enum):
    """Logical kind of a produced backup file."""

    LOGICAL = "logical"
    PHYSICAL = "physical"
    WAL = "wal"


class OutputMode(str, Enum):
    """How a producer delivers its artifact."""

    FILE = "file"  # producer writes {output} itself
    STDOUT = "stdout"  # runner writes producer stdout to {output}
    DIRECTORY = "directory"  # producer writes tar files into {staging}


class TaskStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class UploadStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Verdict(str, Enum):
    """
    Overall outcome of a run.

    The exit code of each verdict is part of the CLI contract and must not
    change between releases.
    """

    SUCCESS = "success"
    PREFLIGHT_FAILURE = "preflight_failure"
    BACKUP_FAILURE = "backup_failure"
    UPLOAD_FAILURE = "upload_failure"

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self]

    @property
    def ok(self) -> bool:
        return self is Verdict.SUCCESS


EXIT_CODES: dict[Verdict, int] = {
    Verdict.SUCCESS: 0,
    Verdict.PREFLIGHT_FAILURE: 1,
    Verdict.BACKUP_FAILURE: 2,
    Verdict.UPLOAD_FAILURE: 3,
}


@dataclass(frozen=True)
class Credentials:
    """Reference to database credentials.

    The password is never held here; producers read it from ``passfile``
    (exported as ``PGPASSFILE``) or from the environment.
    """

    user: str
    passfile: Path | None = None

    def env(self) -> dict[str, str]:
        if self.passfile is None:
            return {}
        return {"PGPASSFILE": str(self.passfile)}


@dataclass(frozen=True)
class RunContext:
    """Read-only configuration for one backup run."""

    host: str
    port: int
    database: str
    credentials: Credentials
    output_dir: Path
    timestamp: str
    retention_days: int
    recipients: tuple[str, ...]
    remote: str
    log_file: Path | None = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @classmethod
    def create(
        cls,
        *,
        host: str,
        port: int,
        database: str,
        user: str,
        output_dir: Path | str,
        retention_days: int = 7,
        recipients: list[str] | tuple[str, ...] = (),
        remote: str = "",
        passfile: Path | str | None = None,
        log_file: Path | str | None = None,
        now: datetime | None = None,
    ) -> RunContext:
        """Build a context, generating the timestamp token from ``now``."""
        return cls(
            host=host,
            port=port,
            database=database,
            credentials=Credentials(user=user, passfile=Path(passfile) if passfile else None),
            output_dir=Path(output_dir),
            timestamp=make_timestamp(now),
            retention_days=retention_days,
            recipients=tuple(recipients),
            remote=remote,
            log_file=Path(log_file) if log_file else None,
        )

    def template_values(self) -> dict[str, Any]:
        """Values available to command and filename templates."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.credentials.user,
            "timestamp": self.timestamp,
            "output_dir": str(self.output_dir),
        }


@dataclass(frozen=True)
class TaskSpec:
    """
    Declarative description of one backup task.

    Attributes:
        name: Task name used in logs and reports
        kind: Kind of the primary artifact
        command: argv template; ``{output}`` and ``{staging}`` are filled by
            the runner, the rest from ``RunContext.template_values()``
        filename: Output file name template, relative to ``output_dir``
        output_mode: How the producer delivers its artifact
        fatal: Whether a failure aborts the remaining pipeline
        timeout_seconds: Upper bound for the producer's run time
        wal_filename: DIRECTORY mode only, name for a separate WAL archive
    """

    name: str
    kind: ArtifactKind
    command: tuple[str, ...]
    filename: str
    output_mode: OutputMode = OutputMode.FILE
    fatal: bool = True
    timeout_seconds: float = 6 * 3600
    wal_filename: str | None = None

    def output_path(self, ctx: RunContext) -> Path:
        return ctx.output_dir / self.filename.format(**ctx.template_values())

    def wal_path(self, ctx: RunContext) -> Path | None:
        if self.wal_filename is None:
            return None
        return ctx.output_dir / self.wal_filename.format(**ctx.template_values())

    def staging_path(self, ctx: RunContext) -> Path:
        return ctx.output_dir / f".{self.name}_{ctx.timestamp}.partial"

    def render_command(self, ctx: RunContext) -> list[str]:
        values = ctx.template_values()
        values["output"] = str(self.output_path(ctx))
        values["staging"] = str(self.staging_path(ctx))
        return [part.format(**values) for part in self.command]


@dataclass(frozen=True)
class Artifact:
    """A produced backup file."""

    path: Path
    kind: ArtifactKind
    size_bytes: int

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class TaskOutcome:
    """Result of executing one TaskSpec."""

    name: str
    status: TaskStatus
    artifacts: tuple[Artifact, ...] = ()
    size_bytes: int = 0
    duration_seconds: float = 0.0
    diagnostic_tail: tuple[str, ...] = ()
    exit_code: int | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is TaskStatus.SUCCEEDED

    @classmethod
    def ok(
        cls,
        name: str,
        artifacts: list[Artifact],
        *,
        duration_seconds: float,
        diagnostic_tail: list[str] | tuple[str, ...] = (),
        exit_code: int | None = 0,
    ) -> TaskOutcome:
        return cls(
            name=name,
            status=TaskStatus.SUCCEEDED,
            artifacts=tuple(artifacts),
            size_bytes=sum(a.size_bytes for a in artifacts),
            duration_seconds=duration_seconds,
            diagnostic_tail=tuple(diagnostic_tail),
            exit_code=exit_code,
        )

    @classmethod
    def fail(
        cls,
        name: str,
        error: str,
        *,
        duration_seconds: float = 0.0,
        diagnostic_tail: list[str] | tuple[str, ...] = (),
        exit_code: int | None = None,
    ) -> TaskOutcome:
        return cls(
            name=name,
            status=TaskStatus.FAILED,
            duration_seconds=duration_seconds,
            diagnostic_tail=tuple(diagnostic_tail),
            exit_code=exit_code,
            error=error,
        )


@dataclass(frozen=True)
class UploadOutcome:
    """Per-artifact upload result."""

    artifact: Artifact
    status: UploadStatus
    attempts: int = 1
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is UploadStatus.SUCCEEDED


@dataclass(frozen=True)
class RunReport:
    """Terminal summary of a run; the sole input of the notifier."""

    run_id: str
    verdict: Verdict
    started_at: datetime
    finished_at: datetime
    task_outcomes: tuple[TaskOutcome, ...] = ()
    upload_outcomes: tuple[UploadOutcome, ...] = ()
    reason: str | None = None
    log_tail: tuple[str, ...] = ()
    states: tuple[str, ...] = ()

    @property
    def exit_code(self) -> int:
        return self.verdict.exit_code

    @property
    def artifacts(self) -> list[Artifact]:
        return [a for outcome in self.task_outcomes for a in outcome.artifacts]

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "verdict": self.verdict.value,
            "exit_code": self.exit_code,
            "reason": self.reason,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "tasks": [
                {
                    "name": o.name,
                    "status": o.status.value,
                    "size_bytes": o.size_bytes,
                    "duration_seconds": round(o.duration_seconds, 3),
                    "artifacts": [str(a.path) for a in o.artifacts],
                    "error": o.error,
                }
                for o in self.task_outcomes
            ],
            "uploads": [
                {
                    "artifact": str(u.artifact.path),
                    "status": u.status.value,
                    "attempts": u.attempts,
                    "error": u.error,
                }
                for u in self.upload_outcomes
            ],
        }
