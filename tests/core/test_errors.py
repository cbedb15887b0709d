"""Tests for pgbackup.core.errors module."""

import pytest

from pgbackup.core.errors import (
    BackupError,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    LockError,
    NotifyError,
    PreflightError,
    SweepError,
    TaskError,
    UploadError,
    is_retryable,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_create_empty_context(self):
        ctx = ErrorContext()
        assert ctx.task is None
        assert ctx.path is None
        assert ctx.extra == {}

    def test_to_dict_includes_set_fields(self):
        """to_dict includes only non-None fields, with extras flattened."""
        ctx = ErrorContext(task="logical", exit_code=1, extra={"attempt": 2})
        d = ctx.to_dict()
        assert d == {"task": "logical", "exit_code": 1, "attempt": 2}


class TestBackupError:
    def test_defaults(self):
        err = BackupError("boom")
        assert err.message == "boom"
        assert err.category == ErrorCategory.INTERNAL
        assert err.retryable is False
        assert str(err) == "boom"

    def test_cause_is_chained(self):
        cause = OSError("disk full")
        err = TaskError("dump failed", cause=cause)
        assert err.cause is cause
        assert err.__cause__ is cause

    def test_with_context_sets_known_fields_and_extras(self):
        err = UploadError("rclone failed").with_context(path="/b/x.dump", remote="gdrive:", attempt=3)
        assert err.context.path == "/b/x.dump"
        assert err.context.remote == "gdrive:"
        assert err.context.extra == {"attempt": 3}

    def test_to_dict(self):
        err = TaskError("no output", cause=ValueError("x")).with_context(task="physical")
        d = err.to_dict()
        assert d["error_type"] == "TaskError"
        assert d["category"] == "TASK"
        assert d["retryable"] is False
        assert d["context"] == {"task": "physical"}
        assert d["cause"] == "ValueError: x"

    def test_retryable_override(self):
        err = UploadError("binary missing", retryable=False)
        assert err.retryable is False


class TestSubclasses:
    @pytest.mark.parametrize(
        ("cls", "category", "retryable"),
        [
            (PreflightError, ErrorCategory.PREFLIGHT, False),
            (TaskError, ErrorCategory.TASK, False),
            (UploadError, ErrorCategory.UPLOAD, True),
            (NotifyError, ErrorCategory.NOTIFY, False),
            (SweepError, ErrorCategory.SWEEP, False),
            (ConfigError, ErrorCategory.CONFIG, False),
            (LockError, ErrorCategory.LOCK, False),
        ],
    )
    def test_category_and_retry_defaults(self, cls, category, retryable):
        err = cls("x")
        assert isinstance(err, BackupError)
        assert err.category == category
        assert err.retryable is retryable


class TestIsRetryable:
    def test_upload_error_is_retryable(self):
        assert is_retryable(UploadError("timeout")) is True

    def test_task_error_is_not(self):
        assert is_retryable(TaskError("exit 1")) is False

    def test_foreign_exceptions_are_not(self):
        assert is_retryable(ValueError("x")) is False
