"""Tests for the upload stage."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from conftest import make_artifact
from pgbackup.core.errors import UploadError
from pgbackup.core.models import ArtifactKind, UploadStatus
from pgbackup.upload.stage import MAX_CONCURRENCY, UploadStage


class FakeClient:
    """Sync client failing for chosen file names."""

    def __init__(self, failures: dict[str, int] | None = None, delay: float = 0.0):
        # name -> number of failing attempts before success (-1 = always)
        self.failures = dict(failures or {})
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0

    def copy(self, path: Path, remote: str, *, timeout: float, cancel=None) -> None:
        with self._lock:
            self.calls.append((path.name, remote))
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            remaining = self.failures.get(path.name, 0)
            if remaining:
                if remaining > 0:
                    self.failures[path.name] = remaining - 1
                raise UploadError(f"failed to copy {path.name}: quota exceeded")
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture()
def artifacts(backup_dir):
    return [
        make_artifact(backup_dir, "production_db_2024-01-01-020000.dump"),
        make_artifact(backup_dir, "pg_base_backup_2024-01-01-020000.tar.gz", ArtifactKind.PHYSICAL),
        make_artifact(backup_dir, "pg_wal_2024-01-01-020000.tar.gz", ArtifactKind.WAL),
    ]


class TestUploadAll:
    def test_all_succeed(self, artifacts, run_ctx):
        client = FakeClient()
        stage = UploadStage(client, sleep=MagicMock())

        outcomes = stage.upload_all(artifacts, run_ctx)

        assert [o.status for o in outcomes] == [UploadStatus.SUCCEEDED] * 3
        assert [o.attempts for o in outcomes] == [1, 1, 1]
        assert sorted(c[0] for c in client.calls) == sorted(a.name for a in artifacts)
        assert {c[1] for c in client.calls} == {"gdrive_backups:"}

    def test_one_failure_does_not_block_the_others(self, artifacts, run_ctx):
        client = FakeClient({"pg_base_backup_2024-01-01-020000.tar.gz": -1})
        stage = UploadStage(client, max_retries=2, sleep=MagicMock())

        outcomes = stage.upload_all(artifacts, run_ctx)

        assert [o.artifact for o in outcomes] == artifacts
        assert [o.status for o in outcomes] == [
            UploadStatus.SUCCEEDED,
            UploadStatus.FAILED,
            UploadStatus.SUCCEEDED,
        ]
        failed = outcomes[1]
        assert failed.attempts == 3
        assert "quota exceeded" in failed.error

    def test_transient_failure_is_retried(self, artifacts, run_ctx):
        sleep = MagicMock()
        client = FakeClient({"production_db_2024-01-01-020000.dump": 1})
        stage = UploadStage(client, max_retries=2, backoff=5.0, sleep=sleep)

        outcomes = stage.upload_all(artifacts[:1], run_ctx)

        assert outcomes[0].succeeded
        assert outcomes[0].attempts == 2
        sleep.assert_called_once()

    def test_no_retries(self, artifacts, run_ctx):
        client = FakeClient({"production_db_2024-01-01-020000.dump": -1})
        outcomes = UploadStage(client, max_retries=0, sleep=MagicMock()).upload_all(artifacts[:1], run_ctx)
        assert outcomes[0].attempts == 1
        assert not outcomes[0].succeeded

    def test_local_files_are_kept_on_failure(self, artifacts, run_ctx):
        client = FakeClient({a.name: -1 for a in artifacts})
        UploadStage(client, max_retries=1, sleep=MagicMock()).upload_all(artifacts, run_ctx)
        assert all(a.path.exists() for a in artifacts)

    def test_empty(self, run_ctx):
        client = FakeClient()
        assert UploadStage(client).upload_all([], run_ctx) == []
        assert client.calls == []

    def test_concurrency_is_bounded(self, backup_dir, run_ctx):
        many = [make_artifact(backup_dir, f"db_{i}.dump") for i in range(8)]
        client = FakeClient(delay=0.05)

        outcomes = UploadStage(client, concurrency=2, sleep=MagicMock()).upload_all(many, run_ctx)

        assert all(o.succeeded for o in outcomes)
        assert 1 <= client.peak <= 2

    def test_concurrency_is_capped(self):
        assert UploadStage(FakeClient(), concurrency=64).concurrency == MAX_CONCURRENCY
        assert UploadStage(FakeClient(), concurrency=0).concurrency == 1

    def test_cancelled_before_start(self, artifacts, run_ctx):
        cancel = threading.Event()
        cancel.set()
        client = FakeClient()

        outcomes = UploadStage(client).upload_all(artifacts, run_ctx, cancel)

        assert all(o.status is UploadStatus.FAILED for o in outcomes)
        assert {o.error for o in outcomes} == {"upload cancelled"}
        assert client.calls == []


class TestUploadOne:
    def test_unexpected_client_error_is_an_outcome(self, artifacts, run_ctx):
        client = MagicMock()
        client.copy.side_effect = RuntimeError("socket closed")
        outcome = UploadStage(client, sleep=MagicMock()).upload_one(artifacts[0], run_ctx)
        assert outcome.status is UploadStatus.FAILED
        assert outcome.attempts == 1
        assert outcome.error == "socket closed"

    def test_passes_timeout_to_client(self, artifacts, run_ctx):
        client = MagicMock()
        UploadStage(client, timeout=120.0).upload_one(artifacts[0], run_ctx)
        client.copy.assert_called_once_with(artifacts[0].path, "gdrive_backups:", timeout=120.0, cancel=None)
