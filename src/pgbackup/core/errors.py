"""
Structured error types for pgbackup.

Every failure the engine knows about is a ``BackupError`` subclass that
carries a category, an explicit retry flag, optional context and the
underlying cause. The category doubles as the run-level failure taxonomy:

::

    BackupError
      ├── PreflightError   target database unreachable (fatal)
      ├── TaskError        producer failed or produced nothing (fatal)
      ├── UploadError      artifact did not reach remote storage (retryable)
      ├── NotifyError      every transport and the fallback file failed
      ├── SweepError       retention sweep could not run
      ├── ConfigError      invalid settings
      └── LockError        another run owns the backup directory

Only ``PreflightError`` and ``TaskError`` short-circuit a run. Notify and
sweep errors are logged and never change the verdict.

Usage:
    from pgbackup.core.errors import UploadError

    try:
        client.copy(path, remote)
    except UploadError as e:
        if e.retryable:
            ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for routing, logging and retry decisions."""

    PREFLIGHT = "PREFLIGHT"
    TASK = "TASK"
    UPLOAD = "UPLOAD"
    NOTIFY = "NOTIFY"
    SWEEP = "SWEEP"
    CONFIG = "CONFIG"
    LOCK = "LOCK"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error."""

    task: str | None = None
    path: str | None = None
    remote: str | None = None
    command: list[str] | None = None
    exit_code: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result = {k: v for k, v in self.__dict__.items() if v is not None and k != "extra"}
        if self.extra:
            result.update(self.extra)
        return result


class BackupError(Exception):
    """
    Base exception for all pgbackup errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can
    be overridden per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> BackupError:
        """
        Add context to this error (fluent API).

        Usage:
            raise UploadError("rclone failed").with_context(path=str(path))
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "extra":
                setattr(self.context, key, value)
            else:
                self.context.extra[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


class PreflightError(BackupError):
    """Target database did not answer the readiness probe."""

    default_category = ErrorCategory.PREFLIGHT


class TaskError(BackupError):
    """A backup producer exited non-zero, timed out, or wrote no output."""

    default_category = ErrorCategory.TASK


class UploadError(BackupError):
    """An artifact could not be copied to remote storage."""

    default_category = ErrorCategory.UPLOAD
    default_retryable = True


class NotifyError(BackupError):
    """No transport delivered the report and the fallback file failed too."""

    default_category = ErrorCategory.NOTIFY


class SweepError(BackupError):
    """The retention sweep could not scan the backup directory."""

    default_category = ErrorCategory.SWEEP


class ConfigError(BackupError):
    """Invalid or missing configuration."""

    default_category = ErrorCategory.CONFIG


class LockError(BackupError):
    """The backup directory lock is held by another run."""

    default_category = ErrorCategory.LOCK


def is_retryable(error: Exception) -> bool:
    """Return True when ``error`` is a BackupError flagged as retryable."""
    if isinstance(error, BackupError):
        return error.retryable
    return False
