"""
Shared pytest fixtures for pgbackup tests.

This module provides:
- Isolation from the developer's environment (PGBACKUP_* variables, .env)
- A deterministic RunContext rooted in a temporary directory
- Producer scripts run with the current interpreter instead of pg_dump
- A logging fixture that writes the run log into the temp directory

Producer commands go through ``str.format`` when rendered, so scripts
passed to ``python_task`` must not contain braces.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Generator
from datetime import datetime
from pathlib import Path

import pytest

from pgbackup.core import logging as pg_logging
from pgbackup.core.models import (
    Artifact,
    ArtifactKind,
    OutputMode,
    RunContext,
    RunReport,
    TaskOutcome,
    TaskSpec,
    UploadOutcome,
    Verdict,
)
from pgbackup.core.settings import clear_settings_cache

FIXED_NOW = datetime(2024, 1, 1, 2, 0, 0)


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Strip PGBACKUP_* variables, run from an empty cwd, reset the settings cache."""
    for key in list(os.environ):
        if key.startswith("PGBACKUP_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture()
def backup_dir(tmp_path: Path) -> Path:
    path = tmp_path / "backups"
    path.mkdir()
    return path


@pytest.fixture()
def log_file(tmp_path: Path) -> Path:
    return tmp_path / "logs" / "pg_backup.log"


@pytest.fixture()
def run_ctx(backup_dir: Path, log_file: Path) -> RunContext:
    return RunContext.create(
        host="db.example.com",
        port=5432,
        database="production_db",
        user="backup_user",
        output_dir=backup_dir,
        retention_days=7,
        recipients=["dba-alerts@yourcompany.com"],
        remote="gdrive_backups:",
        log_file=log_file,
        now=FIXED_NOW,
    )


@pytest.fixture()
def file_logging(log_file: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Configure structlog with the run log file; tear the handlers down afterwards."""
    monkeypatch.setattr(pg_logging, "_configured", False)
    pg_logging.configure_logging(level="INFO", log_file=log_file, force=True)
    yield log_file
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    monkeypatch.setattr(pg_logging, "_file_handler", None)


def python_task(
    name: str,
    script: str,
    *,
    args: tuple[str, ...] = ("{output}",),
    filename: str = "{database}_{timestamp}.dump",
    kind: ArtifactKind = ArtifactKind.LOGICAL,
    output_mode: OutputMode = OutputMode.FILE,
    fatal: bool = True,
    timeout_seconds: float = 30.0,
    wal_filename: str | None = None,
) -> TaskSpec:
    """TaskSpec whose producer is ``python -c script``."""
    return TaskSpec(
        name=name,
        kind=kind,
        command=(sys.executable, "-c", script, *args),
        filename=filename,
        output_mode=output_mode,
        fatal=fatal,
        timeout_seconds=timeout_seconds,
        wal_filename=wal_filename,
    )


WRITE_OUTPUT = "import sys; open(sys.argv[1], 'wb').write(b'PGDMP' * 100)"
WRITE_STDOUT = "import sys; sys.stdout.buffer.write(b'tar-stream' * 100)"


def make_artifact(directory: Path, name: str, kind: ArtifactKind = ArtifactKind.LOGICAL, size: int = 512) -> Artifact:
    path = directory / name
    path.write_bytes(b"x" * size)
    return Artifact(path=path, kind=kind, size_bytes=size)


def make_report(
    verdict: Verdict = Verdict.SUCCESS,
    *,
    tasks: tuple[TaskOutcome, ...] = (),
    uploads: tuple[UploadOutcome, ...] = (),
    reason: str | None = None,
    log_tail: tuple[str, ...] = (),
) -> RunReport:
    return RunReport(
        run_id="abc123def456",
        verdict=verdict,
        started_at=FIXED_NOW,
        finished_at=datetime(2024, 1, 1, 2, 5, 30),
        task_outcomes=tasks,
        upload_outcomes=uploads,
        reason=reason,
        log_tail=log_tail,
    )
