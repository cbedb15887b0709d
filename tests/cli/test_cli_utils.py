"""Tests for CLI output helpers."""

from __future__ import annotations

import pytest
import typer

from conftest import make_artifact, make_report
from pgbackup.cli.utils import CONFIG_ERROR_EXIT_CODE, load_settings, print_report, settings_dict
from pgbackup.core.models import TaskOutcome, UploadOutcome, UploadStatus, Verdict
from pgbackup.core.settings import BackupSettings


def test_settings_dict_masks_only_set_secrets():
    assert settings_dict(BackupSettings())["smtp_password"] is None
    assert settings_dict(BackupSettings(smtp_password="s3cret"))["smtp_password"] == "********"


def test_settings_dict_is_json_friendly(tmp_path):
    data = settings_dict(BackupSettings(backup_dir=tmp_path))
    assert data["backup_dir"] == str(tmp_path)
    assert data["transports"] == ["sendmail", "mail"]


def test_load_settings_exits_on_invalid(monkeypatch):
    monkeypatch.setenv("PGBACKUP_DB_PORT", "not-a-port")
    with pytest.raises(typer.Exit) as exc_info:
        load_settings()
    assert exc_info.value.exit_code == CONFIG_ERROR_EXIT_CODE


def test_print_report_tables(capsys, backup_dir):
    dump = make_artifact(backup_dir, "production_db_2024-01-01-020000.dump")
    report = make_report(
        Verdict.UPLOAD_FAILURE,
        tasks=(TaskOutcome.ok("logical", [dump], duration_seconds=3.0), TaskOutcome.fail("physical", "[oops]")),
        uploads=(UploadOutcome(dump, UploadStatus.FAILED, attempts=3, error="over [quota]"),),
        reason="1 of 1 uploads failed",
    )

    print_report(report)

    out = capsys.readouterr().out
    assert "UPLOAD_FAILURE" in out
    assert "exit code 3" in out
    assert "logical" in out and "physical" in out
    assert "[oops]" in out
    assert "over [quota]" in out
    assert "3 attempt(s)" in out
