"""Tests for pgbackup.core.settings.

Covers:
- Defaults taken from the cron deployment
- PGBACKUP_* environment overrides and .env files
- List parsing (comma separated and JSON)
- Validation errors surfacing as ConfigError
- RunContext construction and caching
"""

from pathlib import Path

import pytest

from conftest import FIXED_NOW
from pgbackup.core.errors import ConfigError
from pgbackup.core.settings import BackupSettings, clear_settings_cache, get_settings


class TestDefaults:
    def test_database_target(self):
        s = BackupSettings()
        assert s.db_host == "localhost"
        assert s.db_port == 5432
        assert s.db_name == "production_db"
        assert s.db_user == "backup_user"
        assert s.db_passfile is None

    def test_storage(self):
        s = BackupSettings()
        assert s.retention_days == 7
        assert s.remote == "gdrive_backups:"
        assert s.log_file == Path("/var/log/pg_backup.log")

    def test_notification(self):
        s = BackupSettings()
        assert s.recipients == ["dba-alerts@yourcompany.com"]
        assert s.transports == ["sendmail", "mail"]
        assert s.log_tail_lines == 15

    def test_upload_policy(self):
        s = BackupSettings()
        assert s.upload_retries == 2
        assert s.upload_concurrency == 2

    def test_resolved_paths_follow_backup_dir(self, tmp_path):
        s = BackupSettings(backup_dir=tmp_path)
        assert s.resolved_lock_file == tmp_path / ".pgbackup.lock"
        assert s.resolved_fallback_dir == tmp_path


class TestEnvOverride:
    def test_scalar_fields(self, monkeypatch):
        monkeypatch.setenv("PGBACKUP_DB_HOST", "db.internal")
        monkeypatch.setenv("PGBACKUP_DB_PORT", "6432")
        monkeypatch.setenv("PGBACKUP_RETENTION_DAYS", "14")
        s = BackupSettings()
        assert s.db_host == "db.internal"
        assert s.db_port == 6432
        assert s.retention_days == 14

    def test_recipients_comma_separated(self, monkeypatch):
        monkeypatch.setenv("PGBACKUP_RECIPIENTS", "a@example.com, b@example.com,")
        assert BackupSettings().recipients == ["a@example.com", "b@example.com"]

    def test_recipients_json_list(self, monkeypatch):
        monkeypatch.setenv("PGBACKUP_RECIPIENTS", '["a@example.com", "b@example.com"]')
        assert BackupSettings().recipients == ["a@example.com", "b@example.com"]

    def test_log_level_is_upper_cased(self, monkeypatch):
        monkeypatch.setenv("PGBACKUP_LOG_LEVEL", "debug")
        assert BackupSettings().log_level == "DEBUG"

    def test_env_file(self, tmp_path):
        env_file = tmp_path / "backup.env"
        env_file.write_text("PGBACKUP_DB_NAME=analytics\nPGBACKUP_TRANSPORTS=smtp\n")
        s = get_settings(env_file)
        assert s.db_name == "analytics"
        assert s.transports == ["smtp"]

    def test_dotenv_in_cwd(self, tmp_path):
        (tmp_path / ".env").write_text("PGBACKUP_REMOTE=s3:bucket/pg\n")
        assert BackupSettings().remote == "s3:bucket/pg"


class TestValidation:
    def test_unknown_transport(self, monkeypatch):
        monkeypatch.setenv("PGBACKUP_TRANSPORTS", "sendmail,pigeon")
        with pytest.raises(ConfigError, match="pigeon"):
            get_settings()

    def test_negative_retention(self, monkeypatch):
        monkeypatch.setenv("PGBACKUP_RETENTION_DAYS", "-1")
        with pytest.raises(ConfigError):
            get_settings()

    def test_bad_wal_method(self, monkeypatch):
        monkeypatch.setenv("PGBACKUP_BASEBACKUP_WAL_METHOD", "symlink")
        with pytest.raises(ConfigError):
            get_settings()


class TestRunContext:
    def test_to_run_context(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PGBACKUP_BACKUP_DIR", str(tmp_path))
        monkeypatch.setenv("PGBACKUP_DB_PASSFILE", str(tmp_path / ".pgpass"))
        ctx = BackupSettings().to_run_context(FIXED_NOW)
        assert ctx.output_dir == tmp_path
        assert ctx.timestamp == "2024-01-01-020000"
        assert ctx.credentials.env() == {"PGPASSFILE": str(tmp_path / ".pgpass")}
        assert ctx.recipients == ("dba-alerts@yourcompany.com",)
        assert ctx.retention_days == 7


class TestCaching:
    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("PGBACKUP_DB_NAME", "other")
        assert get_settings() is first
        assert get_settings(_force_reload=True).db_name == "other"

    def test_clear_cache(self):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
