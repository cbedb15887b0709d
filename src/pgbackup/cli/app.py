"""
Root Typer application for the pgbackup CLI.

``pgbackup`` without a sub-command runs a full backup, so a crontab entry
stays a single word. The process exit code is the run verdict's code:
0 success, 1 preflight failure, 2 backup failure, 3 upload failure.
"""

from __future__ import annotations

import json
import signal
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.markup import escape

from pgbackup import __version__
from pgbackup.cli.utils import console, err_console, load_settings, print_report, print_settings, settings_dict
from pgbackup.core.errors import SweepError
from pgbackup.core.logging import configure_logging, get_logger
from pgbackup.core.retention import find_expired, sweep
from pgbackup.core.settings import BackupSettings
from pgbackup.orchestration.orchestrator import build_orchestrator
from pgbackup.preflight import PgIsReadyProbe
from pgbackup.tasks.pipeline import default_pipeline
from pgbackup.upload.sync import RcloneClient

logger = get_logger(__name__)

app = typer.Typer(
    name="pgbackup",
    help="pgbackup: scheduled PostgreSQL logical and physical backups with remote upload.",
    invoke_without_command=True,
    rich_markup_mode="rich",
)


@dataclass
class CliState:
    env_file: Path | None = None
    log_level: str | None = None
    dry_run: bool = False


# ── Helpers ──────────────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("pgbackup")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"pgbackup {v}")
        raise typer.Exit()


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj if isinstance(ctx.obj, CliState) else CliState()


def _setup(state: CliState) -> BackupSettings:
    settings = load_settings(state.env_file)
    configure_logging(
        level=state.log_level or settings.log_level,
        format=settings.log_format,
        log_file=None if state.dry_run else settings.log_file,
        force=True,
    )
    return settings


def install_signal_handlers(cancel: threading.Event) -> Callable[[], None]:
    """Set ``cancel`` on SIGINT/SIGTERM; returns a function restoring the old handlers."""

    def handler(signum: int, frame: object) -> None:
        logger.warning("run.signal_received", signal=signal.Signals(signum).name)
        cancel.set()

    previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}

    def restore() -> None:
        for sig, old in previous.items():
            signal.signal(sig, old)

    return restore


def _print_plan(settings: BackupSettings) -> None:
    ctx = settings.to_run_context()
    console.print(f"[bold]Dry run[/bold] for {ctx.database}@{ctx.host}:{ctx.port} (timestamp {ctx.timestamp})")
    probe = PgIsReadyProbe(settings.pg_isready_bin)
    console.print(f"  [cyan]preflight[/cyan]: {escape(' '.join(probe.command(ctx, settings.probe_timeout)))}")
    rclone = RcloneClient(settings.rclone_bin)
    for spec in default_pipeline(settings):
        console.print(f"  [cyan]{spec.name}[/cyan]: {escape(' '.join(spec.render_command(ctx)))}")
        console.print(f"    [dim]upload:[/dim] {escape(' '.join(rclone.command(spec.output_path(ctx), ctx.remote)))}")
    console.print(f"  [cyan]sweep[/cyan]: {ctx.output_dir} older than {ctx.retention_days} days")


def _run_backup(state: CliState, *, as_json: bool = False) -> None:
    settings = _setup(state)
    if state.dry_run:
        _print_plan(settings)
        return

    cancel = threading.Event()
    restore = install_signal_handlers(cancel)
    try:
        report = build_orchestrator(settings, cancel=cancel).run()
    finally:
        restore()

    print_report(report, as_json=as_json)
    raise typer.Exit(code=report.exit_code)


# ── Root command ─────────────────────────────────────────────────────────


@app.callback()
def main(
    ctx: typer.Context,
    env_file: Path | None = typer.Option(
        None, "--env-file", "-e", help="Read settings from this env file.", exists=True, dir_okay=False
    ),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Override PGBACKUP_LOG_LEVEL."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would run without running it."),
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Back up PostgreSQL. Without a sub-command, runs a full backup."""
    state = CliState(env_file=env_file, log_level=log_level, dry_run=dry_run)
    ctx.obj = state
    if ctx.invoked_subcommand is None:
        _run_backup(state)


# ── Sub-commands ─────────────────────────────────────────────────────────


@app.command("run")
def run_command(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="Print the run report as JSON."),
) -> None:
    """Run a full backup: preflight, dumps, upload, notification, sweep."""
    _run_backup(_state(ctx), as_json=json_out)


@app.command("preflight")
def preflight_command(ctx: typer.Context) -> None:
    """Check that the database accepts connections."""
    state = _state(ctx)
    settings = _setup(state)
    run_ctx = settings.to_run_context()
    probe = PgIsReadyProbe(settings.pg_isready_bin, kill_grace=settings.kill_grace)
    if state.dry_run:
        console.print(escape(" ".join(probe.command(run_ctx, settings.probe_timeout))))
        return

    result = probe.check(run_ctx, settings.probe_timeout)
    if result.reachable:
        console.print(f"[green]reachable[/green]: {escape(result.detail)}")
        return
    err_console.print(f"[bold red]unreachable[/bold red]: {escape(result.detail)}")
    raise typer.Exit(code=1)


@app.command("sweep")
def sweep_command(
    ctx: typer.Context,
    days: int | None = typer.Option(None, "--days", "-d", min=0, help="Override PGBACKUP_RETENTION_DAYS."),
) -> None:
    """Delete local backup files older than the retention window."""
    state = _state(ctx)
    settings = _setup(state)
    retention = settings.retention_days if days is None else days

    try:
        if state.dry_run:
            expired = find_expired(settings.backup_dir, retention)
            for path in expired:
                console.print(f"would delete {path}")
            console.print(f"[dim]{len(expired)} file(s) older than {retention} days[/dim]")
            return
        result = sweep(settings.backup_dir, retention)
    except (SweepError, OSError) as e:
        err_console.print(f"[bold red]Sweep failed[/bold red]: {escape(str(e))}")
        raise typer.Exit(code=1) from e

    for path in result.deleted:
        console.print(f"deleted {path}")
    for path, error in result.errors.items():
        err_console.print(f"[red]failed[/red] {path}: {escape(error)}")
    console.print(f"[dim]{result.deleted_count} file(s) deleted[/dim]")
    if not result.success:
        raise typer.Exit(code=1)


@app.command("config")
def config_command(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json"),
) -> None:
    """Show the resolved configuration."""
    settings = load_settings(_state(ctx).env_file)
    if format == "json":
        console.print_json(json.dumps(settings_dict(settings)))
        return
    print_settings(settings)
