"""Backup tasks: the fixed pipeline and the runner that executes it."""

from pgbackup.tasks.pipeline import default_pipeline, logical_task, physical_task
from pgbackup.tasks.runner import TaskRunner, verify_output

__all__ = ["TaskRunner", "default_pipeline", "logical_task", "physical_task", "verify_output"]
