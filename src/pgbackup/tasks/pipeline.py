"""The fixed backup pipeline.

Order matters: the logical dump runs first, then the physical base backup.
Both tasks are fatal. With ``basebackup_wal_method=stream`` pg_basebackup
writes ``base.tar.gz`` and ``pg_wal.tar.gz`` into a staging directory and
the runner records a separate WAL artifact; with ``fetch`` or ``none`` the
base backup is a single tar stream on stdout.
"""

from __future__ import annotations

from pgbackup.core.models import ArtifactKind, OutputMode, TaskSpec
from pgbackup.core.settings import BackupSettings

LOGICAL_FILENAME = "{database}_{timestamp}.dump"
PHYSICAL_FILENAME = "pg_base_backup_{timestamp}.tar.gz"
WAL_FILENAME = "pg_wal_{timestamp}.tar.gz"

_CONNECTION_ARGS = ("-h", "{host}", "-p", "{port}", "-U", "{user}", "-w")


def logical_task(settings: BackupSettings) -> TaskSpec:
    return TaskSpec(
        name="logical",
        kind=ArtifactKind.LOGICAL,
        command=(settings.pg_dump_bin, *_CONNECTION_ARGS, "-Fc", "-f", "{output}", "{database}"),
        filename=LOGICAL_FILENAME,
        output_mode=OutputMode.FILE,
        timeout_seconds=settings.task_timeout,
    )


def physical_task(settings: BackupSettings) -> TaskSpec:
    compression = ("-z", "-Z", str(settings.basebackup_compression))
    if settings.basebackup_wal_method == "stream":
        return TaskSpec(
            name="physical",
            kind=ArtifactKind.PHYSICAL,
            command=(
                settings.pg_basebackup_bin,
                *_CONNECTION_ARGS,
                "-D",
                "{staging}",
                "-Ft",
                *compression,
                "-X",
                "stream",
            ),
            filename=PHYSICAL_FILENAME,
            output_mode=OutputMode.DIRECTORY,
            timeout_seconds=settings.task_timeout,
            wal_filename=WAL_FILENAME,
        )
    # pg_basebackup only writes a single tar to stdout with -X fetch/none
    return TaskSpec(
        name="physical",
        kind=ArtifactKind.PHYSICAL,
        command=(
            settings.pg_basebackup_bin,
            *_CONNECTION_ARGS,
            "-D",
            "-",
            "-Ft",
            *compression,
            "-X",
            settings.basebackup_wal_method,
        ),
        filename=PHYSICAL_FILENAME,
        output_mode=OutputMode.STDOUT,
        timeout_seconds=settings.task_timeout,
    )


def default_pipeline(settings: BackupSettings) -> tuple[TaskSpec, ...]:
    """Logical backup, then physical backup."""
    return (logical_task(settings), physical_task(settings))
