"""
CLI utility helpers: consoles, settings loading and report output.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from pgbackup.alerts.render import format_size
from pgbackup.core.errors import ConfigError
from pgbackup.core.models import RunReport, Verdict
from pgbackup.core.settings import BackupSettings, get_settings

console = Console()
err_console = Console(stderr=True)

CONFIG_ERROR_EXIT_CODE = 1

_SECRET_FIELDS = ("smtp_password",)

_VERDICT_STYLE = {
    Verdict.SUCCESS: "bold green",
    Verdict.PREFLIGHT_FAILURE: "bold yellow",
    Verdict.BACKUP_FAILURE: "bold red",
    Verdict.UPLOAD_FAILURE: "bold red",
}


def load_settings(env_file: Path | None = None) -> BackupSettings:
    """Load settings or exit with a readable error."""
    try:
        return get_settings(env_file)
    except ConfigError as e:
        err_console.print(f"[bold red]Configuration error[/bold red]: {escape(e.message)}")
        raise typer.Exit(code=CONFIG_ERROR_EXIT_CODE) from e


def settings_dict(settings: BackupSettings) -> dict[str, Any]:
    """Settings as plain JSON-able values with secrets masked."""
    data = json.loads(settings.model_dump_json())
    for key in _SECRET_FIELDS:
        if data.get(key):
            data[key] = "********"
    return data


def print_settings(settings: BackupSettings) -> None:
    table = Table(title="pgbackup settings", show_lines=False, pad_edge=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", overflow="fold")
    for key, value in sorted(settings_dict(settings).items()):
        table.add_row(key, str(value))
    table.add_row("lock_file (resolved)", str(settings.resolved_lock_file))
    table.add_row("fallback_dir (resolved)", str(settings.resolved_fallback_dir))
    console.print(table)


def print_report(report: RunReport, *, as_json: bool = False) -> None:
    """Render a RunReport to the terminal."""
    if as_json:
        console.print_json(json.dumps(report.to_dict(), default=str))
        return

    style = _VERDICT_STYLE[report.verdict]
    console.print(
        f"[{style}]{report.verdict.name}[/{style}] run {report.run_id} "
        f"({report.duration_seconds:.1f}s, exit code {report.exit_code})"
    )
    if report.reason:
        console.print(f"  [dim]reason:[/dim] {escape(report.reason)}")

    if report.task_outcomes:
        table = Table(show_lines=False, pad_edge=False)
        table.add_column("Task")
        table.add_column("Status")
        table.add_column("Size", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Detail", overflow="fold")
        for o in report.task_outcomes:
            detail = ", ".join(a.name for a in o.artifacts) if o.succeeded else escape(o.error or "")
            table.add_row(o.name, o.status.value, format_size(o.size_bytes), f"{o.duration_seconds:.1f}s", detail)
        console.print(table)

    for u in report.upload_outcomes:
        mark = "[green]uploaded[/green]" if u.succeeded else f"[red]failed[/red] {escape(u.error or '')}"
        console.print(f"  {u.artifact.name}: {mark} ({u.attempts} attempt(s))")
