"""Run lock: one backup run per backup directory.

Two overlapping scheduled invocations against the same directory would
race on artifact names, uploads and the retention sweep. ``RunLock`` takes
an exclusive, non-blocking ``flock`` on a lock file before preflight and
drops it on every exit path. The kernel releases the lock if the process
dies, so a crashed run never leaves a stale lock behind.

Example::

    lock = RunLock(Path("/srv/backups/.pgbackup.lock"))
    with lock:
        run_pipeline()
"""

from __future__ import annotations

import fcntl
import os
from pathlib import Path

from pgbackup.core.errors import LockError
from pgbackup.core.logging import get_logger

logger = get_logger(__name__)


class RunLock:
    """Exclusive file lock guarding a backup directory."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """Take the lock or raise ``LockError`` if another run holds it."""
        if self._fd is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as exc:
            raise LockError(f"cannot open lock file {self.path}: {exc}", cause=exc).with_context(
                path=str(self.path)
            ) from exc

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            os.close(fd)
            raise LockError("another backup run holds the lock", cause=exc).with_context(
                path=str(self.path)
            ) from exc
        except OSError as exc:
            # ENOLCK / EOPNOTSUPP on some network filesystems
            os.close(fd)
            raise LockError(f"cannot lock {self.path}: {exc}", cause=exc).with_context(
                path=str(self.path)
            ) from exc

        try:
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n".encode())
        except OSError as exc:
            try:
                fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)
            raise LockError(f"cannot write lock file {self.path}: {exc}", cause=exc).with_context(
                path=str(self.path)
            ) from exc
        self._fd = fd
        logger.debug("lock.acquired", path=str(self.path))

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("lock.released", path=str(self.path))

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
