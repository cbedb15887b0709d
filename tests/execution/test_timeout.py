"""Tests for the run-level deadline."""

import math
import time

import pytest

from pgbackup.execution.timeout import Deadline, TimeoutExpired


class TestDeadline:
    def test_never(self):
        deadline = Deadline.never()
        assert deadline.remaining() == math.inf
        assert not deadline.is_expired()
        assert deadline.cap(30.0) == 30.0
        deadline.check()

    def test_after(self):
        deadline = Deadline.after(100.0)
        assert 99.0 < deadline.remaining() <= 100.0
        assert deadline.timeout_seconds == 100.0
        assert not deadline.is_expired()

    def test_cap_takes_the_shorter(self):
        deadline = Deadline.after(10.0)
        assert deadline.cap(5.0) == 5.0
        assert 9.0 < deadline.cap(3600.0) <= 10.0

    def test_expired(self):
        deadline = Deadline.after(0.0)
        time.sleep(0.01)
        assert deadline.is_expired()
        assert deadline.remaining() < 0
        assert deadline.cap(30.0) == 0.0

    def test_check_raises(self):
        deadline = Deadline.after(0.0)
        time.sleep(0.01)
        with pytest.raises(TimeoutExpired) as exc_info:
            deadline.check("backup run")
        assert exc_info.value.operation == "backup run"
        assert "backup run" in str(exc_info.value)

    def test_elapsed(self):
        deadline = Deadline.after(10.0)
        time.sleep(0.01)
        assert deadline.elapsed >= 0.01


class TestTimeoutExpired:
    def test_message(self):
        err = TimeoutExpired(5.0, elapsed=5.25, operation="pg_dump")
        assert str(err) == "Operation 'pg_dump' timed out after 5.0s (ran for 5.25s)"
        assert isinstance(err, TimeoutError)
