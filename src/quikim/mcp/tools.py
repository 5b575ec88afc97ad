"""MCP tool registrations for Quikim: artifact sync and workflow guidance."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

from pydantic import Field

from quikim.core.artifacts import ArtifactFilters, ArtifactType
from quikim.core.workflow import ProgressPayload
from quikim.errors import QuikimError
from quikim.mcp.server import mcp
from quikim.storage.artifacts import ArtifactStore
from quikim.storage.fs import QUIKIM_DIR, find_root
from quikim.storage.metadata import MetadataIndex
from quikim.storage.project import (
    artifacts_dir,
    load_project_config,
    locks_dir,
)
from quikim.sync.client import client_from_project
from quikim.sync.engine import SyncEngine
from quikim.sync.orchestrator import WorkflowContext, get_next_instruction, record_progress

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _find_root(quikim_root: str | None = None) -> Path:
    """Resolve the project root (the directory containing .quikim/)."""
    if quikim_root:
        root = Path(quikim_root)
        if not (root / QUIKIM_DIR).is_dir():
            raise ValueError(f"No {QUIKIM_DIR}/ directory found at {root}")
        return root

    try:
        root = find_root()
    except QuikimError as e:
        raise ValueError(str(e)) from e
    if root is None:
        raise ValueError(f"No {QUIKIM_DIR}/ directory found. Run 'quikim init' first.")
    return root


def _build_client(root: Path):  # noqa: ANN202
    """Create the API client for *root*. Tests replace this with a fake."""
    return client_from_project(root)


def _close(client: object) -> None:
    close = getattr(client, "close", None)
    if callable(close):
        close()


def _artifact_type(value: str) -> ArtifactType:
    try:
        return ArtifactType(value)
    except ValueError:
        valid = ", ".join(t.value for t in ArtifactType)
        raise ValueError(f"Invalid artifact type: '{value}'. Valid types: {valid}.") from None


def _filters(
    spec_name: str | None, artifact_type: str | None, artifact_name: str | None
) -> ArtifactFilters:
    return ArtifactFilters(
        spec_name=spec_name or None,
        artifact_type=_artifact_type(artifact_type) if artifact_type else None,
        artifact_name=artifact_name or None,
    )


def _engine(root: Path, client: object) -> SyncEngine:
    return SyncEngine.from_root(root, client)


def _run_batch(
    operation: str,
    quikim_root: str | None,
    spec_name: str | None,
    artifact_type: str | None,
    artifact_name: str | None,
    dry_run: bool,
    force: bool,
) -> dict:
    root = _find_root(quikim_root)
    filters = _filters(spec_name, artifact_type, artifact_name)
    try:
        client = _build_client(root)
    except QuikimError as e:
        raise ValueError(str(e)) from e
    try:
        engine = _engine(root, client)
        result = getattr(engine, operation)(filters, dry_run=dry_run, force=force)
    except QuikimError as e:
        raise ValueError(str(e)) from e
    finally:
        _close(client)
    return result.to_dict()


# ---------------------------------------------------------------------------
# Sync tools
# ---------------------------------------------------------------------------

_SpecArg = Annotated[str | None, Field(description="Only artifacts in this spec")]
_TypeArg = Annotated[
    str | None, Field(description="Only this artifact type (e.g. requirement, hld, tasks)")
]
_NameArg = Annotated[str | None, Field(description="Only the artifact with this name or key")]
_RootArg = Annotated[
    str | None, Field(description="Path to project directory containing .quikim/")
]


@mcp.tool()
def quikim_push(
    spec_name: _SpecArg = None,
    artifact_type: _TypeArg = None,
    artifact_name: _NameArg = None,
    dry_run: Annotated[bool, Field(description="Report what would be pushed")] = False,
    force: Annotated[bool, Field(description="Push even unchanged artifacts")] = False,
    quikim_root: _RootArg = None,
) -> dict:
    """Push changed local artifacts to the server. Returns counts, versions and errors."""
    return _run_batch("push", quikim_root, spec_name, artifact_type, artifact_name, dry_run, force)


@mcp.tool()
def quikim_pull(
    spec_name: _SpecArg = None,
    artifact_type: _TypeArg = None,
    artifact_name: _NameArg = None,
    dry_run: Annotated[bool, Field(description="Report what would be written")] = False,
    force: Annotated[bool, Field(description="Overwrite local files even when equal")] = False,
    quikim_root: _RootArg = None,
) -> dict:
    """Pull the latest server artifacts into local files."""
    return _run_batch("pull", quikim_root, spec_name, artifact_type, artifact_name, dry_run, force)


@mcp.tool()
def quikim_status(
    spec_name: _SpecArg = None,
    artifact_type: _TypeArg = None,
    artifact_name: _NameArg = None,
    quikim_root: _RootArg = None,
) -> list[dict]:
    """List local artifacts and whether each changed since its last sync."""
    root = _find_root(quikim_root)
    engine = SyncEngine(
        ArtifactStore(artifacts_dir(root)),
        MetadataIndex(artifacts_dir(root), locks_dir(root)),
        client=None,
    )
    try:
        return engine.status(_filters(spec_name, artifact_type, artifact_name))
    except QuikimError as e:
        raise ValueError(str(e)) from e


# ---------------------------------------------------------------------------
# Workflow tools
# ---------------------------------------------------------------------------


@mcp.tool()
def quikim_next_instruction(
    user_intent: Annotated[
        str | None, Field(description="What the user asked for, in their own words")
    ] = None,
    source: Annotated[str, Field(description="Calling agent (claude, cursor, cli)")] = "claude",
    quikim_root: _RootArg = None,
) -> dict:
    """Decide the next artifact to work on and return a ready-to-use instruction."""
    root = _find_root(quikim_root)
    try:
        project = load_project_config(root)
        client = _build_client(root)
    except QuikimError as e:
        raise ValueError(str(e)) from e
    try:
        ctx = WorkflowContext.from_root(root, client, source=source)
        instruction = get_next_instruction(ctx, project["projectId"], user_intent)
    except QuikimError as e:
        raise ValueError(str(e)) from e
    finally:
        _close(client)
    return instruction.to_dict()


@mcp.tool()
def quikim_record_progress(
    artifact_type: Annotated[str, Field(description="Type of the artifact that was created")],
    pending_instruction_id: Annotated[
        str, Field(description="Id of the instruction this work completes")
    ],
    spec_name: Annotated[str, Field(description="Spec the artifact belongs to")] = "default",
    artifact_name: Annotated[str | None, Field(description="Name of the artifact")] = None,
    artifact_id: Annotated[str | None, Field(description="Server id of the artifact")] = None,
    quikim_root: _RootArg = None,
) -> dict:
    """Acknowledge a completed instruction and advance the workflow."""
    root = _find_root(quikim_root)
    artifact_type = _artifact_type(artifact_type).value
    try:
        project = load_project_config(root)
        ctx = WorkflowContext.from_root(root, client=None)
        outcome = record_progress(
            ctx,
            ProgressPayload(
                project_id=project["projectId"],
                artifact_type=artifact_type,
                spec_name=spec_name,
                artifact_name=artifact_name,
                artifact_id=artifact_id,
                pending_instruction_id=pending_instruction_id,
            ),
        )
    except QuikimError as e:
        raise ValueError(str(e)) from e
    if not outcome["success"]:
        raise ValueError(outcome.get("error", "Progress not recorded"))
    return outcome
