"""
pgbackup - scheduled PostgreSQL backups.

One invocation takes a logical dump and a physical base backup of a
single database, uploads the artifacts to remote storage, mails a report
and prunes old local backups:

- pgbackup.core: data model, settings, errors, logging, lock, retention
- pgbackup.execution: external processes, retry, deadlines
- pgbackup.tasks: the backup pipeline and its runner
- pgbackup.upload: remote sync and the upload stage
- pgbackup.alerts: report rendering and mail transports
- pgbackup.orchestration: the run state machine
- pgbackup.cli: the ``pgbackup`` command
"""

__version__ = "0.1.0"
