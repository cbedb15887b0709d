"""
Centralized settings for pgbackup.

``BackupSettings`` is the single, validated source of configuration for a
run. Values come from ``PGBACKUP_*`` environment variables and an optional
``.env`` file; the CLI may point at another env file with ``--env-file``.

Example ``.env``::

    PGBACKUP_DB_NAME=production_db
    PGBACKUP_DB_USER=backup_user
    PGBACKUP_BACKUP_DIR=/srv/backups/pg
    PGBACKUP_RECIPIENTS=dba-alerts@yourcompany.com,oncall@yourcompany.com
    PGBACKUP_REMOTE=gdrive_backups:

Tags:
    pgbackup, configuration, settings, pydantic, caching
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from pgbackup.core.errors import ConfigError
from pgbackup.core.models import RunContext

TRANSPORTS = ("sendmail", "mail", "smtp")


class BackupSettings(BaseSettings):
    """pgbackup configuration.

    All fields can be set via ``PGBACKUP_*`` environment variables, e.g.
    ``PGBACKUP_RETENTION_DAYS=14``.
    """

    model_config = SettingsConfigDict(
        env_prefix="PGBACKUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Target database ──────────────────────────────────────────
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432, ge=1, le=65535)
    db_name: str = Field(default="production_db")
    db_user: str = Field(default="backup_user")
    db_passfile: Path | None = Field(default=None, description="Exported as PGPASSFILE")

    # ── Storage ──────────────────────────────────────────────────
    backup_dir: Path = Field(default=Path("/var/backups/postgresql"))
    log_file: Path | None = Field(default=Path("/var/log/pg_backup.log"))
    lock_file: Path | None = Field(default=None, description="Defaults to <backup_dir>/.pgbackup.lock")
    retention_days: int = Field(default=7, ge=0)
    remote: str = Field(default="gdrive_backups:")

    # ── External binaries ────────────────────────────────────────
    pg_dump_bin: str = Field(default="pg_dump")
    pg_basebackup_bin: str = Field(default="pg_basebackup")
    pg_isready_bin: str = Field(default="pg_isready")
    rclone_bin: str = Field(default="rclone")
    sendmail_bin: str = Field(default="sendmail")
    mail_bin: str = Field(default="mail")

    # ── Physical backup ──────────────────────────────────────────
    basebackup_compression: int = Field(default=9, ge=0, le=9)
    basebackup_wal_method: str = Field(default="stream", pattern="^(none|fetch|stream)$")

    # ── Timeouts (seconds) ───────────────────────────────────────
    probe_timeout: float = Field(default=10.0, gt=0)
    task_timeout: float = Field(default=6 * 3600.0, gt=0)
    upload_timeout: float = Field(default=3600.0, gt=0)
    notify_timeout: float = Field(default=30.0, gt=0)
    run_timeout: float | None = Field(default=None, gt=0)
    kill_grace: float = Field(default=10.0, ge=0)

    # ── Upload policy ────────────────────────────────────────────
    upload_retries: int = Field(default=2, ge=0, le=10)
    upload_backoff: float = Field(default=5.0, ge=0)
    upload_concurrency: int = Field(default=2, ge=1, le=8)

    # ── Notification ─────────────────────────────────────────────
    recipients: Annotated[list[str], NoDecode] = Field(default=["dba-alerts@yourcompany.com"])
    mail_from: str = Field(default="pgbackup@localhost")
    transports: Annotated[list[str], NoDecode] = Field(default=["sendmail", "mail"])
    smtp_host: str | None = Field(default=None)
    smtp_port: int = Field(default=587)
    smtp_user: str | None = Field(default=None)
    smtp_password: str | None = Field(default=None)
    smtp_tls: bool = Field(default=True)
    fallback_dir: Path | None = Field(default=None, description="Defaults to backup_dir")
    log_tail_lines: int = Field(default=15, ge=1)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console", pattern="^(console|json)$")

    @field_validator("recipients", "transports", mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("["):
                return json.loads(value)
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("transports")
    @classmethod
    def _known_transports(cls, value: list[str]) -> list[str]:
        unknown = [t for t in value if t not in TRANSPORTS]
        if unknown:
            raise ValueError(f"unknown transports: {', '.join(unknown)}")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    # ── Derived ──────────────────────────────────────────────────

    @property
    def resolved_lock_file(self) -> Path:
        return self.lock_file or self.backup_dir / ".pgbackup.lock"

    @property
    def resolved_fallback_dir(self) -> Path:
        return self.fallback_dir or self.backup_dir

    def to_run_context(self, now: datetime | None = None) -> RunContext:
        """Build the immutable RunContext for one invocation."""
        return RunContext.create(
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
            user=self.db_user,
            passfile=self.db_passfile,
            output_dir=self.backup_dir,
            retention_days=self.retention_days,
            recipients=self.recipients,
            remote=self.remote,
            log_file=self.log_file,
            now=now,
        )


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, BackupSettings] = {}


def get_settings(env_file: Path | str | None = None, *, _force_reload: bool = False) -> BackupSettings:
    """Load, validate, and cache settings.

    Raises ``ConfigError`` when validation fails so the CLI can report it
    without a pydantic traceback.
    """
    cache_key = str(env_file or "")
    if not _force_reload and cache_key in _settings_cache:
        return _settings_cache[cache_key]

    try:
        if env_file is not None:
            settings = BackupSettings(_env_file=env_file)  # type: ignore[call-arg]
        else:
            settings = BackupSettings()
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}", cause=exc) from exc

    _settings_cache[cache_key] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()
