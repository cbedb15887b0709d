"""
Structured logging for pgbackup.

structlog renders every event twice through stdlib handlers:

- stderr: colored console output (or JSON for log shippers)
- the run log file: plain, append-only lines that accumulate across runs
  and are tailed into failure notifications

Usage:
    from pgbackup.core.logging import configure_logging, get_logger

    configure_logging(level="INFO", log_file=Path("/var/log/pg_backup.log"))
    log = get_logger(__name__)
    log.info("task.started", task="logical")

The log file is never rotated here; leave that to logrotate.
"""

from __future__ import annotations

import logging
import sys
from collections import deque
from pathlib import Path
from typing import Any

import structlog
from structlog.types import Processor

FILE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False
_file_handler: logging.Handler | None = None


def configure_logging(
    level: str = "INFO",
    format: str = "console",
    log_file: Path | None = None,
    force: bool = False,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Subsequent calls are no-ops unless ``force=True``.

    Args:
        level: DEBUG | INFO | WARNING | ERROR
        format: ``console`` or ``json`` for the stderr handler
        log_file: Append-only run log; skipped if the file cannot be opened
        force: Reconfigure even if already configured
    """
    global _configured, _file_handler

    if _configured and not force:
        return

    log_level = getattr(logging, level.upper(), logging.INFO)

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=FILE_TIMESTAMP_FORMAT, utc=False),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if format == "json":
        stream_renderer: Processor = structlog.processors.JSONRenderer()
        stream_chain: list[Processor] = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            stream_renderer,
        ]
    else:
        stream_chain = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processors=stream_chain, foreign_pre_chain=shared)
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler is _file_handler:
            handler.close()
    _file_handler = None

    root.addHandler(stream_handler)
    root.setLevel(log_level)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        except OSError as exc:
            structlog.get_logger(__name__).warning(
                "logging.file_unavailable", log_file=str(log_file), error=str(exc)
            )
        else:
            file_handler.setFormatter(
                structlog.stdlib.ProcessorFormatter(
                    processors=[
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        structlog.processors.format_exc_info,
                        _plain_line,
                    ],
                    foreign_pre_chain=shared,
                )
            )
            root.addHandler(file_handler)
            _file_handler = file_handler

    _configured = True


def _plain_line(logger: Any, method_name: str, event_dict: dict[str, Any]) -> str:
    """Render ``[timestamp] level event key=value ...`` without colors."""
    timestamp = event_dict.pop("timestamp", "")
    level = event_dict.pop("level", method_name)
    event = event_dict.pop("event", "")
    event_dict.pop("logger", None)
    exc = event_dict.pop("exception", None)
    fields = " ".join(f"{key}={value}" for key, value in sorted(event_dict.items()))
    line = f"[{timestamp}] {level.upper():<7} {event}"
    if fields:
        line = f"{line} {fields}"
    if exc:
        line = f"{line}\n{exc}"
    return line


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to ``name``."""
    return structlog.get_logger(name)


def bind_run(run_id: str, **kwargs: Any) -> None:
    """Attach the run id (and extras) to every subsequent log event."""
    structlog.contextvars.bind_contextvars(run_id=run_id, **kwargs)


def clear_run() -> None:
    structlog.contextvars.clear_contextvars()


def read_log_tail(path: Path | None, lines: int = 15) -> list[str]:
    """Return the last ``lines`` lines of ``path``; empty if unreadable."""
    if path is None:
        return []
    try:
        with path.open("r", encoding="utf-8", errors="replace") as fh:
            return [line.rstrip("\n") for line in deque(fh, maxlen=lines)]
    except OSError:
        return []


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured
