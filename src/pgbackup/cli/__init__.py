"""
CLI layer for pgbackup.

Provides a Typer application that loads settings, wires the orchestrator
and maps the run verdict to the process exit code.

Entry point::

    pgbackup --help
"""

from pgbackup.cli.app import app

__all__ = ["app"]
