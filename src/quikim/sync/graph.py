"""Build the read-only artifact graph the resolver works from."""

from __future__ import annotations

import logging

from quikim.core.artifacts import ArtifactFilters, ServerArtifact, select_latest
from quikim.core.workflow import ArtifactGraphSnapshot, ArtifactLinkRecord, ArtifactSummary
from quikim.sync.milestones import fetch_milestone_artifacts

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token, rounded up."""
    return (len(text) + 3) // 4


def _summary(artifact: ServerArtifact, is_latest: bool) -> ArtifactSummary:
    return ArtifactSummary(
        id=artifact.artifact_id,
        root_id=artifact.chain_id,
        artifact_type=artifact.artifact_type,
        spec_name=artifact.spec_name,
        artifact_name=artifact.artifact_name,
        version=artifact.version,
        is_latest=is_latest,
        is_llm_context=artifact.is_llm_context,
        updated_at=artifact.updated_at.isoformat() if artifact.updated_at else None,
        token_estimate=estimate_tokens(artifact.content),
    )


def _link(raw: dict) -> ArtifactLinkRecord | None:
    from_id = raw.get("fromId") or raw.get("sourceId") or raw.get("from_id")
    to_id = raw.get("toId") or raw.get("targetId") or raw.get("to_id")
    if not from_id or not to_id:
        return None
    link_type = raw.get("type") or raw.get("linkType")
    return ArtifactLinkRecord(from_id=str(from_id), to_id=str(to_id), type=link_type)


def build_artifact_graph(client, *, include_milestones: bool = False) -> ArtifactGraphSnapshot:
    """Fetch every artifact and link once and return a frozen snapshot.

    Each version chain contributes all of its versions; only the highest is
    flagged ``is_latest``. Links with missing endpoints are dropped. With
    *include_milestones*, milestones count as ``tasks`` artifacts.
    """
    artifacts = client.list_artifacts(ArtifactFilters())
    if include_milestones:
        artifacts.extend(fetch_milestone_artifacts(client))
    latest_ids = {a.artifact_id for a in select_latest(artifacts)}
    summaries = tuple(_summary(a, a.artifact_id in latest_ids) for a in artifacts)

    links = []
    for raw in client.list_links():
        link = _link(raw)
        if link is None:
            logger.debug("Dropping malformed artifact link: %r", raw)
            continue
        links.append(link)

    return ArtifactGraphSnapshot(artifacts=summaries, links=tuple(links))
