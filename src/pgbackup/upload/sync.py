"""Remote sync clients.

A ``SyncClient`` copies one local file to a remote destination and raises
``UploadError`` on failure. ``RcloneClient`` shells out to ``rclone copy``;
the destination is any rclone remote such as ``gdrive_backups:`` or
``s3:bucket/pg``.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from pgbackup.core.errors import UploadError
from pgbackup.core.logging import get_logger
from pgbackup.execution.process import run_process

logger = get_logger(__name__)


@runtime_checkable
class SyncClient(Protocol):
    """Copies a local file to remote storage."""

    def copy(
        self, path: Path, remote: str, *, timeout: float, cancel: threading.Event | None = None
    ) -> None: ...


class RcloneClient:
    """``rclone copy <path> <remote>``.

    rclone's own ``--retries`` is pinned to 1 so retry policy stays in the
    upload stage.
    """

    def __init__(
        self,
        binary: str = "rclone",
        *,
        extra_args: Sequence[str] = (),
        kill_grace: float = 10.0,
    ):
        self.binary = binary
        self.extra_args = tuple(extra_args)
        self.kill_grace = kill_grace

    def command(self, path: Path, remote: str) -> list[str]:
        return [self.binary, "copy", str(path), remote, "--retries", "1", *self.extra_args]

    def copy(self, path: Path, remote: str, *, timeout: float, cancel: threading.Event | None = None) -> None:
        argv = self.command(path, remote)
        try:
            result = run_process(
                argv,
                timeout=timeout,
                cancel=cancel,
                kill_grace=self.kill_grace,
                on_line=lambda line: logger.info("upload.output", artifact=path.name, line=line),
            )
        except OSError as exc:
            raise UploadError(f"cannot run {self.binary}: {exc}", retryable=False, cause=exc).with_context(
                path=str(path), remote=remote
            ) from exc

        if result.ok:
            return
        message = result.describe()
        if result.tail:
            message = f"{message}: {result.tail[-1]}"
        raise UploadError(message, retryable=not result.cancelled).with_context(
            path=str(path), remote=remote, exit_code=result.exit_code
        )
