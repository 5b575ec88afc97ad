"""Remote synchronization and workflow orchestration for quikim projects."""

from __future__ import annotations

from quikim.sync.client import ArtifactAPIClient, client_from_project
from quikim.sync.engine import SyncEngine
from quikim.sync.graph import build_artifact_graph
from quikim.sync.orchestrator import WorkflowContext, get_next_instruction, record_progress

__all__ = [
    "ArtifactAPIClient",
    "SyncEngine",
    "WorkflowContext",
    "build_artifact_graph",
    "client_from_project",
    "get_next_instruction",
    "record_progress",
]
