"""Workflow vocabulary, persisted workflow state, and instruction acknowledgement.

Pure data and pure functions: no filesystem or network access happens here.
The orchestrator loads and saves ``WorkflowState``; the resolver decides
what comes next.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

from quikim.core.artifacts import DEFAULT_SPEC, ArtifactType
from quikim.core.ids import utc_now
from quikim.errors import StateConflictError

VALID_SOURCES = ("claude", "cli", "api")


class WorkflowAction(str, Enum):
    GENERATE = "GENERATE"
    UPDATE = "UPDATE"
    LINK_ONLY = "LINK_ONLY"
    WAIT_FOR_INPUT = "WAIT_FOR_INPUT"
    NO_OP = "NO_OP"


# ---------------------------------------------------------------------------
# Definition
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NodeDef:
    node_id: str
    artifact_type: ArtifactType
    dependencies: tuple[str, ...] = ()
    label: str = ""
    aliases: tuple[str, ...] = ()

    def names(self) -> tuple[str, ...]:
        """All lowercase words that refer to this node in free-text intent."""
        words = {self.node_id.lower(), self.artifact_type.value.lower()}
        words.update(alias.lower() for alias in self.aliases)
        return tuple(sorted(words))


@dataclass(frozen=True)
class WorkflowDefinition:
    """Ordered workflow nodes. Order is topological and is the tie-breaker."""

    nodes: tuple[NodeDef, ...]

    @property
    def node_ids(self) -> list[str]:
        return [n.node_id for n in self.nodes]

    def get(self, node_id: str | None) -> NodeDef | None:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        return None

    def node_for_artifact_type(self, artifact_type: ArtifactType | str) -> NodeDef | None:
        """Return the first node producing *artifact_type*, or ``None``."""
        try:
            wanted = ArtifactType(artifact_type)
        except ValueError:
            return None
        for node in self.nodes:
            if node.artifact_type == wanted:
                return node
        return None


DEFAULT_NODES: tuple[NodeDef, ...] = (
    NodeDef(
        "requirements",
        ArtifactType.REQUIREMENT,
        (),
        "Requirements",
        ("requirement", "reqs", "prd"),
    ),
    NodeDef(
        "hld",
        ArtifactType.HLD,
        ("requirements",),
        "High-level design",
        ("architecture", "high-level", "high level design"),
    ),
    NodeDef(
        "wireframes",
        ArtifactType.WIREFRAME_FILES,
        ("requirements",),
        "Wireframes",
        ("wireframe", "mockups", "screens"),
    ),
    NodeDef(
        "flow_diagram",
        ArtifactType.FLOW_DIAGRAM,
        ("requirements",),
        "Flow diagram",
        ("flow", "flowchart", "flow diagram"),
    ),
    NodeDef(
        "er_diagram",
        ArtifactType.ER_DIAGRAM,
        ("requirements",),
        "ER diagram",
        ("er", "erd", "schema", "er diagram"),
    ),
    NodeDef(
        "lld",
        ArtifactType.LLD,
        ("requirements",),
        "Low-level design",
        ("low-level", "low level design"),
    ),
    NodeDef(
        "tasks",
        ArtifactType.TASKS,
        ("requirements",),
        "Tasks",
        ("task", "milestones"),
    ),
)


def default_definition() -> WorkflowDefinition:
    return WorkflowDefinition(DEFAULT_NODES)


def definition_from_config(nodes: list[dict] | None) -> WorkflowDefinition:
    """Build a definition from ``config.json``'s ``workflow.nodes``.

    Falls back to the default vocabulary when *nodes* is empty or missing.

    Raises:
        ValueError: On duplicate ids, unknown artifact types, or a dependency
            that does not name an earlier node.
    """
    if not nodes:
        return default_definition()

    seen: list[str] = []
    built: list[NodeDef] = []
    for raw in nodes:
        node_id = raw.get("node_id")
        if not isinstance(node_id, str) or not node_id:
            raise ValueError("Workflow node is missing 'node_id'")
        if node_id in seen:
            raise ValueError(f"Duplicate workflow node: '{node_id}'")
        try:
            artifact_type = ArtifactType(raw.get("artifact_type"))
        except ValueError:
            raise ValueError(
                f"Workflow node '{node_id}' has unknown artifact type: {raw.get('artifact_type')!r}"
            ) from None
        dependencies = tuple(raw.get("dependencies", []))
        for dep in dependencies:
            if dep not in seen:
                raise ValueError(
                    f"Workflow node '{node_id}' depends on '{dep}', which is not an earlier node"
                )
        built.append(
            NodeDef(
                node_id=node_id,
                artifact_type=artifact_type,
                dependencies=dependencies,
                label=raw.get("label", node_id),
                aliases=tuple(raw.get("aliases", [])),
            )
        )
        seen.append(node_id)
    return WorkflowDefinition(tuple(built))


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@dataclass
class WorkflowState:
    project_id: str
    current_node: str | None = None
    completed_nodes: list[str] = field(default_factory=list)
    blocked_nodes: list[str] = field(default_factory=list)
    skipped_nodes: list[str] = field(default_factory=list)
    inferred_nodes: list[str] = field(default_factory=list)
    pending_instruction_id: str | None = None
    pending_node: str | None = None
    last_decision_reason: str | None = None
    last_user_intent: str | None = None
    source: str = "claude"
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        data: dict = {
            "projectId": self.project_id,
            "currentNode": self.current_node,
            "completedNodes": list(self.completed_nodes),
            "blockedNodes": list(self.blocked_nodes),
            "skippedNodes": list(self.skipped_nodes),
            "inferredNodes": list(self.inferred_nodes),
            "source": self.source,
            "updatedAt": self.updated_at,
        }
        optional = {
            "pendingInstructionId": self.pending_instruction_id,
            "pendingNode": self.pending_node,
            "lastDecisionReason": self.last_decision_reason,
            "lastUserIntent": self.last_user_intent,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict) -> WorkflowState:
        source = data.get("source", "claude")
        return cls(
            project_id=str(data["projectId"]),
            current_node=data.get("currentNode"),
            completed_nodes=list(data.get("completedNodes", [])),
            blocked_nodes=list(data.get("blockedNodes", [])),
            skipped_nodes=list(data.get("skippedNodes", [])),
            inferred_nodes=list(data.get("inferredNodes", [])),
            pending_instruction_id=data.get("pendingInstructionId"),
            pending_node=data.get("pendingNode"),
            last_decision_reason=data.get("lastDecisionReason"),
            last_user_intent=data.get("lastUserIntent"),
            source=source if source in VALID_SOURCES else "claude",
            updated_at=data.get("updatedAt") or utc_now(),
        )


def default_state(project_id: str, source: str = "claude") -> WorkflowState:
    return WorkflowState(project_id=project_id, source=source)


def _dedupe_known(nodes: list[str], known: set[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for node in nodes:
        if node in known and node not in seen:
            seen.add(node)
            result.append(node)
    return result


def normalize_state(state: WorkflowState, definition: WorkflowDefinition) -> WorkflowState:
    """Return a copy of *state* restricted to known nodes with disjoint sets.

    Completed wins over skipped, and skipped wins over blocked. An unknown
    ``current_node`` or ``pending_node`` becomes ``None``.
    """
    known = set(definition.node_ids)
    completed = _dedupe_known(state.completed_nodes, known)
    skipped = [n for n in _dedupe_known(state.skipped_nodes, known) if n not in completed]
    blocked = [
        n
        for n in _dedupe_known(state.blocked_nodes, known)
        if n not in completed and n not in skipped
    ]
    return replace(
        state,
        current_node=state.current_node if state.current_node in known else None,
        completed_nodes=completed,
        skipped_nodes=skipped,
        blocked_nodes=blocked,
        inferred_nodes=_dedupe_known(state.inferred_nodes, known),
        pending_node=state.pending_node if state.pending_node in known else None,
    )


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProgressPayload:
    project_id: str
    artifact_type: str
    spec_name: str = DEFAULT_SPEC
    artifact_name: str | None = None
    artifact_id: str | None = None
    pending_instruction_id: str | None = None


@dataclass(frozen=True)
class ProgressOutcome:
    acknowledged: bool
    current_node: str | None
    completed_nodes: list[str]
    reason: str | None = None

    def to_dict(self) -> dict:
        data: dict = {
            "success": True,
            "acknowledged": self.acknowledged,
            "currentNode": self.current_node,
            "completedNodes": list(self.completed_nodes),
        }
        if self.reason:
            data["reason"] = self.reason
        return data


def acknowledge_instruction(state: WorkflowState, pending_instruction_id: str | None) -> None:
    """Check that *pending_instruction_id* is the instruction *state* is waiting on.

    Raises:
        StateConflictError: If nothing is pending, no id was reported, or the
            ids differ.
    """
    expected = state.pending_instruction_id
    if expected is None:
        raise StateConflictError(
            "No instruction is pending", expected=None, received=pending_instruction_id
        )
    if pending_instruction_id is None:
        raise StateConflictError(
            "Progress report carries no instruction id", expected=expected, received=None
        )
    if pending_instruction_id != expected:
        raise StateConflictError(
            f"Instruction '{pending_instruction_id}' is not pending (expected '{expected}')",
            expected=expected,
            received=pending_instruction_id,
        )


# ---------------------------------------------------------------------------
# Graph snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArtifactSummary:
    id: str
    artifact_type: ArtifactType
    spec_name: str
    artifact_name: str
    root_id: str | None = None
    version: int = 1
    is_latest: bool = True
    is_llm_context: bool = False
    updated_at: str | None = None
    token_estimate: int = 0

    @property
    def chain_id(self) -> str:
        return self.root_id or self.id

    @property
    def mention(self) -> str:
        return f"@{self.artifact_type.value}.{self.spec_name}.{self.artifact_name}"

    def to_ref(self) -> dict:
        return {
            "artifactType": self.artifact_type.value,
            "specName": self.spec_name,
            "artifactName": self.artifact_name,
        }


@dataclass(frozen=True)
class ArtifactLinkRecord:
    from_id: str
    to_id: str
    type: str | None = None


@dataclass(frozen=True)
class ArtifactGraphSnapshot:
    artifacts: tuple[ArtifactSummary, ...] = ()
    links: tuple[ArtifactLinkRecord, ...] = ()

    def latest(
        self, artifact_type: ArtifactType | None = None, spec_name: str | None = None
    ) -> list[ArtifactSummary]:
        """Latest artifacts, optionally restricted to a type and spec."""
        return [
            a
            for a in self.artifacts
            if a.is_latest
            and (artifact_type is None or a.artifact_type == artifact_type)
            and (spec_name is None or a.spec_name == spec_name)
        ]

    def find(self, artifact_id: str) -> ArtifactSummary | None:
        """Return the latest artifact whose id or chain id is *artifact_id*."""
        for artifact in self.artifacts:
            if artifact.is_latest and artifact_id in (artifact.id, artifact.chain_id):
                return artifact
        return None

    def is_linked(self, source: ArtifactSummary, target: ArtifactSummary) -> bool:
        """Return ``True`` if any link joins the two artifacts (either version id)."""
        source_ids = {source.id, source.chain_id}
        target_ids = {target.id, target.chain_id}
        return any(
            link.from_id in source_ids and link.to_id in target_ids for link in self.links
        )


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

CONTEXT_CATEGORIES = (
    "currentNodeDependencies",
    "directParents",
    "LLMContextArtifacts",
    "recentArtifacts",
)


@dataclass(frozen=True)
class ContextPolicy:
    max_artifacts: int = 8
    max_tokens: int = 32000
    priority_order: tuple[str, ...] = CONTEXT_CATEGORIES
    fallback: str = "summarize"


@dataclass(frozen=True)
class ResolverPolicy:
    spec_name: str = DEFAULT_SPEC
    enforce_links: bool = False
    context: ContextPolicy = field(default_factory=ContextPolicy)


def policy_from_config(config: dict) -> ResolverPolicy:
    """Build a ``ResolverPolicy`` from a merged config dict.

    Raises:
        ValueError: If the context priority order names an unknown category.
    """
    workflow = config.get("workflow", {})
    ctx = config.get("context_policy", {})
    order = tuple(ctx.get("priority_order", CONTEXT_CATEGORIES))
    unknown = [c for c in order if c not in CONTEXT_CATEGORIES]
    if unknown:
        raise ValueError(f"Unknown context categories: {', '.join(unknown)}")
    return ResolverPolicy(
        spec_name=workflow.get("spec_name", DEFAULT_SPEC),
        enforce_links=bool(workflow.get("enforce_links", False)),
        context=ContextPolicy(
            max_artifacts=int(ctx.get("max_artifacts", 8)),
            max_tokens=int(ctx.get("max_tokens", 32000)),
            priority_order=order,
            fallback=ctx.get("fallback", "summarize"),
        ),
    )
