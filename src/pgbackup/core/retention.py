"""Retention sweep for local backup artifacts.

Deletes backup files older than the retention window from the backup
directory. Only regular files directly under the directory whose names
end in one of ``ARTIFACT_SUFFIXES`` are considered; subdirectories,
staging directories and the lock file are never touched.

File modification time is the only age signal: a file is eligible when
``mtime < now - days``. Running the sweep twice in a row deletes nothing
the second time.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path

from pgbackup.core.errors import SweepError
from pgbackup.core.logging import get_logger

logger = get_logger(__name__)

ARTIFACT_SUFFIXES: tuple[str, ...] = (".dump", ".tar.gz")

SECONDS_PER_DAY = 86400


@dataclass
class SweepResult:
    """Result of a sweep."""

    directory: Path
    cutoff: float
    deleted: list[Path] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0


def compute_cutoff(days: int, now: float | None = None) -> float:
    """Compute the epoch cutoff for retention.

    Parameters
    ----------
    days
        Number of days to retain. Files older than this are eligible.
    now
        Reference epoch time; defaults to ``time.time()``.
    """
    reference = time.time() if now is None else now
    return reference - days * SECONDS_PER_DAY


def is_artifact_name(name: str) -> bool:
    return name.endswith(ARTIFACT_SUFFIXES) and not name.startswith(".")


def find_expired(directory: Path, older_than_days: int, now: float | None = None) -> list[Path]:
    """List artifacts in ``directory`` older than the retention window."""
    cutoff = compute_cutoff(older_than_days, now)
    expired = []
    for entry in sorted(directory.iterdir()):
        if not is_artifact_name(entry.name):
            continue
        try:
            st = entry.lstat()
        except FileNotFoundError:
            continue
        if not entry.is_file() or entry.is_symlink():
            continue
        if st.st_mtime < cutoff:
            expired.append(entry)
    return expired


def sweep(directory: Path, older_than_days: int, now: float | None = None) -> SweepResult:
    """Delete expired artifacts under ``directory``.

    Parameters
    ----------
    directory
        Backup directory to scan (not recursive).
    older_than_days
        Retention window in days.
    now
        Reference epoch time, fixed once for the whole sweep.

    Returns
    -------
    SweepResult
        Deleted paths and per-file errors. Per-file errors do not stop the
        sweep.

    Raises
    ------
    SweepError
        If the directory does not exist or cannot be listed.
    """
    directory = Path(directory)
    if older_than_days < 0:
        raise SweepError(f"retention window must be >= 0 days, got {older_than_days}")
    reference = time.time() if now is None else now
    result = SweepResult(directory=directory, cutoff=compute_cutoff(older_than_days, reference))

    try:
        expired = find_expired(directory, older_than_days, reference)
    except OSError as exc:
        raise SweepError(f"cannot scan {directory}: {exc}", cause=exc).with_context(
            path=str(directory)
        ) from exc

    for path in expired:
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            result.errors[str(path)] = str(exc)
            logger.error("sweep.delete_failed", path=str(path), error=str(exc))
            continue
        result.deleted.append(path)
        logger.info("sweep.deleted", path=str(path))

    logger.info(
        "sweep.completed",
        directory=str(directory),
        older_than_days=older_than_days,
        deleted=result.deleted_count,
        errors=len(result.errors),
    )
    return result
