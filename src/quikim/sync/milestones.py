"""Sync ``tasks`` artifacts through the server's milestone and task endpoints."""

from __future__ import annotations

import logging

from pydantic import ValidationError as PydanticValidationError

from quikim.core.artifacts import (
    DEFAULT_SPEC,
    ArtifactFilters,
    ArtifactType,
    LocalArtifact,
    ServerArtifact,
)
from quikim.core.tasks import find_duplicate_task, parse_tasks_markdown, render_tasks_markdown

logger = logging.getLogger(__name__)


def milestone_artifact(milestone: dict, tasks: list[dict], spec_name: str) -> ServerArtifact:
    """Present a milestone and its tasks as one ``tasks`` artifact (always version 1)."""
    name = str(milestone.get("name") or "")
    return ServerArtifact.model_validate(
        {
            "artifactId": milestone.get("id"),
            "specName": spec_name,
            "artifactType": ArtifactType.TASKS.value,
            "artifactName": name,
            "content": render_tasks_markdown(name, milestone.get("description"), tasks),
            "version": 1,
            "createdAt": milestone.get("createdAt"),
            "updatedAt": milestone.get("updatedAt"),
        }
    )


def fetch_milestone_artifacts(
    client, filters: ArtifactFilters | None = None
) -> list[ServerArtifact]:
    """Rebuild every milestone matching *filters* as a ``tasks`` artifact.

    A milestone's spec is its own ``specName``, else its first task's, else
    ``default``. Milestones that do not form a valid artifact are skipped.
    """
    filters = filters or ArtifactFilters()
    if filters.artifact_type not in (None, ArtifactType.TASKS):
        return []

    artifacts = []
    for milestone in client.list_milestones(filters.spec_name):
        milestone_id = milestone.get("id")
        if not milestone_id:
            continue
        tasks = client.list_tasks(str(milestone_id), filters.spec_name)
        spec_name = milestone.get("specName") or next(
            (t["specName"] for t in tasks if t.get("specName")), DEFAULT_SPEC
        )
        try:
            artifact = milestone_artifact(milestone, tasks, spec_name)
        except PydanticValidationError as exc:
            logger.warning("Skipping unrecognised milestone: %s", exc.errors()[0]["msg"])
            continue
        if filters.spec_name and artifact.spec_name != filters.spec_name:
            continue
        if filters.artifact_name and filters.artifact_name not in (
            artifact.artifact_name,
            artifact.artifact_id,
        ):
            continue
        artifacts.append(artifact)
    return artifacts


def push_tasks_milestone(
    client,
    local: LocalArtifact,
    *,
    known_name: str | None = None,
    known_id: str | None = None,
) -> tuple[ServerArtifact, int]:
    """Push a tasks file as a milestone plus one task per checklist item.

    The milestone is found by id (when the file was synced before) or by
    name, and created otherwise. Tasks already on the server are skipped by
    normalized description. Returns the milestone as an artifact and the
    number of tasks created.
    """
    parsed = parse_tasks_markdown(local.content, known_name or local.artifact_name)

    milestones = client.list_milestones(local.spec_name)
    milestone = next((m for m in milestones if known_id and m.get("id") == known_id), None)
    if milestone is None:
        milestone = next((m for m in milestones if m.get("name") == parsed.name), None)
    if milestone is None:
        milestone = client.create_milestone(local.spec_name, parsed.name, parsed.description)
        logger.debug("created milestone %s for %s", milestone["id"], local.label)
    milestone_id = str(milestone["id"])

    existing = client.list_tasks(milestone_id, local.spec_name)
    created = 0
    for task in parsed.tasks:
        if find_duplicate_task(task, existing) is not None:
            continue
        existing.append(client.create_task(milestone_id, local.spec_name, task))
        created += 1

    return milestone_artifact(milestone, existing, local.spec_name), created
