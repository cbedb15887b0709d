"""Readiness probe for the target database.

``pg_isready`` exits 0 when the server accepts connections, 1 when it
rejects them (e.g. during startup), 2 when there is no response and 3 for
bad parameters. Anything but 0 is treated as unreachable.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from pgbackup.core.logging import get_logger
from pgbackup.core.models import RunContext
from pgbackup.execution.process import run_process

logger = get_logger(__name__)

PG_ISREADY_STATUS = {
    0: "accepting connections",
    1: "rejecting connections",
    2: "no response",
    3: "no attempt made (invalid parameters)",
}


@dataclass(frozen=True)
class ProbeResult:
    reachable: bool
    detail: str


@runtime_checkable
class ReadinessProbe(Protocol):
    """Answers whether the target database is reachable."""

    def check(
        self, ctx: RunContext, timeout: float, cancel: threading.Event | None = None
    ) -> ProbeResult: ...


class PgIsReadyProbe:
    """Readiness probe backed by ``pg_isready``."""

    def __init__(self, binary: str = "pg_isready", *, kill_grace: float = 2.0):
        self.binary = binary
        self.kill_grace = kill_grace

    def command(self, ctx: RunContext, timeout: float) -> list[str]:
        return [
            self.binary,
            "-h",
            ctx.host,
            "-p",
            str(ctx.port),
            "-U",
            ctx.credentials.user,
            "-d",
            ctx.database,
            "-t",
            str(max(1, int(timeout))),
        ]

    def check(self, ctx: RunContext, timeout: float, cancel: threading.Event | None = None) -> ProbeResult:
        argv = self.command(ctx, timeout)
        try:
            # pg_isready's own -t covers the connection; the extra second
            # covers process startup
            result = run_process(
                argv,
                timeout=timeout + 1.0,
                env=ctx.credentials.env(),
                cancel=cancel,
                kill_grace=self.kill_grace,
            )
        except OSError as exc:
            logger.error("preflight.probe_unavailable", command=self.binary, error=str(exc))
            return ProbeResult(False, f"cannot run {self.binary}: {exc}")

        if result.ok:
            return ProbeResult(True, f"{ctx.host}:{ctx.port} accepting connections")
        if result.timed_out or result.cancelled:
            return ProbeResult(False, result.describe())
        status = PG_ISREADY_STATUS.get(result.exit_code, f"exit code {result.exit_code}")
        detail = f"{ctx.host}:{ctx.port} {status}"
        if result.tail:
            detail = f"{detail}: {result.tail[-1]}"
        return ProbeResult(False, detail)
