"""Run orchestration: the state machine driving one backup run."""

from pgbackup.orchestration.orchestrator import Orchestrator, RunState, build_orchestrator

__all__ = ["Orchestrator", "RunState", "build_orchestrator"]
