"""External process execution with timeout, cancellation and a bounded log tail.

Every collaborator (pg_dump, pg_basebackup, pg_isready, rclone, sendmail)
runs through ``run_process``. The function never hangs: the process is
polled until it exits, the timeout elapses, or the cancel event is set.
On timeout or cancellation the whole process group gets SIGTERM, then
SIGKILL after ``kill_grace`` seconds.

Output handling:

- ``stdout_path`` given: stdout is written to that file (created
  exclusively, never overwritten) and only stderr is captured.
- otherwise stdout and stderr are merged and captured.

Captured lines are forwarded to ``on_line`` and the last ``tail_lines``
are kept in the result. Memory stays bounded regardless of how chatty the
producer is.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO

DEFAULT_TAIL_LINES = 15


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one external process run."""

    argv: tuple[str, ...]
    exit_code: int | None
    tail: tuple[str, ...]
    duration_seconds: float
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled

    def describe(self) -> str:
        """One-line summary suitable for an error message."""
        name = Path(self.argv[0]).name if self.argv else "process"
        if self.cancelled:
            return f"{name} cancelled after {self.duration_seconds:.1f}s"
        if self.timed_out:
            return f"{name} timed out after {self.duration_seconds:.1f}s"
        return f"{name} exited with code {self.exit_code}"


def _pump(stream: IO[bytes], tail: deque[str], on_line: Callable[[str], None] | None) -> None:
    with stream:
        for raw in iter(stream.readline, b""):
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            tail.append(line)
            if on_line is not None:
                on_line(line)


def _terminate(proc: subprocess.Popen, kill_grace: float) -> None:
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except (ProcessLookupError, PermissionError):
        proc.terminate()
    try:
        proc.wait(timeout=kill_grace)
        return
    except subprocess.TimeoutExpired:
        pass
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()
    proc.wait()


def run_process(
    argv: Sequence[str],
    *,
    timeout: float,
    stdout_path: Path | None = None,
    stdin_data: bytes | None = None,
    env: Mapping[str, str] | None = None,
    cancel: threading.Event | None = None,
    tail_lines: int = DEFAULT_TAIL_LINES,
    kill_grace: float = 10.0,
    on_line: Callable[[str], None] | None = None,
    poll_interval: float = 0.1,
) -> ProcessResult:
    """Run ``argv`` to completion or until timeout/cancellation.

    Args:
        argv: Command and arguments; no shell is involved
        timeout: Seconds before the process is terminated
        stdout_path: Write stdout to this new file instead of capturing it
        stdin_data: Bytes fed to the process on stdin
        env: Variables overlaid on the current environment
        cancel: Event that aborts the process when set
        tail_lines: Number of diagnostic lines to keep
        kill_grace: Seconds between SIGTERM and SIGKILL
        on_line: Callback for every captured output line

    Raises:
        OSError: The executable could not be started, or ``stdout_path``
            already exists.
    """
    full_env = dict(os.environ)
    if env:
        full_env.update(env)

    tail: deque[str] = deque(maxlen=tail_lines)
    stdout_file = stdout_path.open("xb") if stdout_path is not None else None
    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            list(argv),
            stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
            stdout=stdout_file if stdout_file is not None else subprocess.PIPE,
            stderr=subprocess.PIPE if stdout_file is not None else subprocess.STDOUT,
            env=full_env,
            start_new_session=True,
        )
    except OSError:
        if stdout_file is not None:
            stdout_file.close()
            stdout_path.unlink(missing_ok=True)
        raise

    stream = proc.stderr if stdout_file is not None else proc.stdout
    reader = threading.Thread(target=_pump, args=(stream, tail, on_line), daemon=True)
    reader.start()

    if stdin_data is not None and proc.stdin is not None:
        try:
            proc.stdin.write(stdin_data)
        except BrokenPipeError:
            pass
        finally:
            proc.stdin.close()

    timed_out = cancelled = False
    limit = started + timeout
    try:
        while True:
            try:
                proc.wait(timeout=poll_interval)
                break
            except subprocess.TimeoutExpired:
                pass
            if cancel is not None and cancel.is_set():
                cancelled = True
                _terminate(proc, kill_grace)
                break
            if time.monotonic() >= limit:
                timed_out = True
                _terminate(proc, kill_grace)
                break
    finally:
        if stdout_file is not None:
            stdout_file.close()

    reader.join(timeout=max(kill_grace, 1.0))
    return ProcessResult(
        argv=tuple(argv),
        exit_code=proc.returncode,
        tail=tuple(tail),
        duration_seconds=time.monotonic() - started,
        timed_out=timed_out,
        cancelled=cancelled,
    )
