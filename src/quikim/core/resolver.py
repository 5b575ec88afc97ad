"""Pure workflow resolution: given state, artifacts, and intent, pick the next action.

This is pure logic, with no filesystem or network I/O. The same inputs always
produce the same ``ResolvedWorkflowState`` and ``DecisionTrace``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace

from quikim.core.ids import utc_now
from quikim.core.workflow import (
    ArtifactGraphSnapshot,
    ArtifactSummary,
    NodeDef,
    ProgressOutcome,
    ProgressPayload,
    ResolverPolicy,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowState,
    acknowledge_instruction,
    default_definition,
    normalize_state,
)
from quikim.errors import StateConflictError

UPDATE_VERBS = frozenset({"update", "revise", "change", "modify", "edit", "fix", "refine"})
REGENERATE_VERBS = frozenset({"regenerate", "redo", "recreate", "rewrite"})
CREATE_VERBS = frozenset({"generate", "create", "write", "draft", "start"})
HOLD_WORDS = frozenset({"wait", "stop", "pause", "hold"})

_WORD_RE = re.compile(r"[a-z0-9_\-]+")


@dataclass(frozen=True)
class ResolvedWorkflowState:
    current_node: str | None
    next_candidates: list[str]
    blocked_nodes: list[str]
    completed_nodes: list[str]
    recommended_action: WorkflowAction
    reasoning: list[str]
    inferred_nodes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "currentNode": self.current_node,
            "nextCandidates": list(self.next_candidates),
            "blockedNodes": list(self.blocked_nodes),
            "completedNodes": list(self.completed_nodes),
            "inferredNodes": list(self.inferred_nodes),
            "recommendedAction": self.recommended_action.value,
            "reasoning": list(self.reasoning),
        }


@dataclass
class DecisionTrace:
    detected_state: str
    reasoning: list[str] = field(default_factory=list)
    rules_applied: list[str] = field(default_factory=list)
    llm_used: bool = False

    def to_dict(self) -> dict:
        return {
            "detectedState": self.detected_state,
            "reasoning": list(self.reasoning),
            "rulesApplied": list(self.rules_applied),
            "llmUsed": self.llm_used,
        }


@dataclass(frozen=True)
class ParsedIntent:
    verb: str | None  # "update", "regenerate", "create", or None
    hold: bool
    targets: tuple[str, ...]


# ---------------------------------------------------------------------------
# Intent parsing
# ---------------------------------------------------------------------------


def _mentions(text: str, phrase: str) -> bool:
    return re.search(rf"(?<![a-z0-9_\-]){re.escape(phrase)}(?![a-z0-9_\-])", text) is not None


def parse_intent(user_intent: str | None, definition: WorkflowDefinition) -> ParsedIntent:
    """Extract the verb, hold words, and node mentions from free-text intent."""
    if not user_intent:
        return ParsedIntent(verb=None, hold=False, targets=())

    text = user_intent.lower()
    words = set(_WORD_RE.findall(text))

    verb = None
    if words & REGENERATE_VERBS:
        verb = "regenerate"
    elif words & UPDATE_VERBS:
        verb = "update"
    elif words & CREATE_VERBS:
        verb = "create"

    targets = tuple(
        node.node_id
        for node in definition.nodes
        if any(_mentions(text, name) for name in node.names())
    )
    return ParsedIntent(verb=verb, hold=bool(words & HOLD_WORDS), targets=targets)


# ---------------------------------------------------------------------------
# Node classification
# ---------------------------------------------------------------------------


def nodes_with_artifacts(
    snapshot: ArtifactGraphSnapshot, definition: WorkflowDefinition, spec_name: str
) -> list[str]:
    """Node ids whose artifact type has a latest artifact in *spec_name*."""
    present = {a.artifact_type for a in snapshot.latest(spec_name=spec_name)}
    return [n.node_id for n in definition.nodes if n.artifact_type in present]


def classify_nodes(
    definition: WorkflowDefinition, completed: list[str], skipped: list[str]
) -> tuple[list[str], list[str]]:
    """Split the remaining nodes into ``(blocked, open)``, both in definition order.

    A node is blocked when any dependency is neither completed nor skipped.
    """
    satisfied = set(completed) | set(skipped)
    blocked: list[str] = []
    open_nodes: list[str] = []
    for node in definition.nodes:
        if node.node_id in satisfied:
            continue
        if all(dep in satisfied for dep in node.dependencies):
            open_nodes.append(node.node_id)
        else:
            blocked.append(node.node_id)
    return blocked, open_nodes


def _missing_link(
    node: NodeDef,
    definition: WorkflowDefinition,
    snapshot: ArtifactGraphSnapshot,
    spec_name: str,
) -> tuple[ArtifactSummary, ArtifactSummary] | None:
    for source in snapshot.latest(node.artifact_type, spec_name):
        for dep_id in node.dependencies:
            dep = definition.get(dep_id)
            if dep is None:
                continue
            for target in snapshot.latest(dep.artifact_type, spec_name):
                if not snapshot.is_linked(source, target):
                    return source, target
    return None


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve(
    state: WorkflowState,
    snapshot: ArtifactGraphSnapshot,
    *,
    user_intent: str | None = None,
    policy: ResolverPolicy | None = None,
    definition: WorkflowDefinition | None = None,
) -> tuple[ResolvedWorkflowState, DecisionTrace]:
    """Resolve the current node and recommended action.

    Algorithm:
    1. **Completed:** nodes with a latest artifact of their type in the active
       spec, plus every node already completed in *state* (never regresses).
    2. **Blocked:** remaining nodes with a dependency neither completed nor
       skipped.
    3. **Current:** first remaining node in definition order that is not
       blocked. Nothing left → ``NO_OP``; only blocked nodes left →
       ``WAIT_FOR_INPUT``.
    4. **Links:** with ``enforce_links``, a completed node whose latest
       artifact lacks a link to a dependency's latest artifact → ``LINK_ONLY``.
    5. **Intent:** an explicit update/regenerate/create request for exactly
       one node overrides the default progression; ambiguous or conflicting
       requests yield ``WAIT_FOR_INPUT``.
    """
    definition = definition or default_definition()
    policy = policy or ResolverPolicy()
    state = normalize_state(state, definition)
    spec_name = policy.spec_name

    reasoning: list[str] = []
    rules: list[str] = []

    with_artifacts = nodes_with_artifacts(snapshot, definition, spec_name)
    completed_set = set(with_artifacts) | set(state.completed_nodes)
    completed = [n for n in definition.node_ids if n in completed_set]
    # Nodes done only because an artifact exists; progress reports clear them.
    inferred = [
        n
        for n in completed
        if n in with_artifacts
        and (n not in state.completed_nodes or n in state.inferred_nodes)
    ]
    skipped = [n for n in state.skipped_nodes if n not in completed_set]
    rules.append("completed_from_artifacts")
    reasoning.append(
        f"Completed in spec '{spec_name}': {', '.join(completed)}"
        if completed
        else f"No completed nodes in spec '{spec_name}'"
    )

    blocked, open_nodes = classify_nodes(definition, completed, skipped)
    rules.append("dependency_blocking")
    if blocked:
        reasoning.append(f"Blocked by unmet dependencies: {', '.join(blocked)}")

    current: str | None = open_nodes[0] if open_nodes else None
    if current is not None:
        action = WorkflowAction.GENERATE
        reasoning.append(f"Next node in order: {current}")
    elif blocked:
        action = WorkflowAction.WAIT_FOR_INPUT
        reasoning.append("Every remaining node is blocked")
    else:
        action = WorkflowAction.NO_OP
        reasoning.append("Workflow complete")
    rules.append("first_open_node")

    if policy.enforce_links:
        rules.append("enforce_links")
        for node_id in completed:
            node = definition.get(node_id)
            missing = _missing_link(node, definition, snapshot, spec_name) if node else None
            if missing:
                source, target = missing
                current = node_id
                action = WorkflowAction.LINK_ONLY
                reasoning.append(f"{source.mention} is not linked to {target.mention}")
                break

    intent = parse_intent(user_intent, definition)
    if user_intent:
        rules.append("user_intent")
        current, action = _apply_intent(
            intent, current, action, completed, blocked, with_artifacts, reasoning
        )

    candidates = list(open_nodes)
    if current is not None and current not in candidates:
        candidates.insert(0, current)

    resolved = ResolvedWorkflowState(
        current_node=current,
        next_candidates=candidates,
        blocked_nodes=blocked,
        completed_nodes=completed,
        recommended_action=action,
        reasoning=reasoning,
        inferred_nodes=inferred,
    )
    trace = DecisionTrace(
        detected_state=current or ("complete" if action == WorkflowAction.NO_OP else "none"),
        reasoning=list(reasoning),
        rules_applied=rules,
    )
    return resolved, trace


def _apply_intent(
    intent: ParsedIntent,
    current: str | None,
    action: WorkflowAction,
    completed: list[str],
    blocked: list[str],
    with_artifacts: list[str],
    reasoning: list[str],
) -> tuple[str | None, WorkflowAction]:
    changing = intent.verb in ("update", "regenerate")

    if intent.hold and intent.verb:
        reasoning.append("Intent both asks to hold and to change artifacts")
        return current, WorkflowAction.WAIT_FOR_INPUT
    if intent.hold:
        reasoning.append("Intent asks to hold")
        return current, WorkflowAction.WAIT_FOR_INPUT
    if intent.verb is None:
        reasoning.append("Intent names no action; following workflow order")
        return current, action

    if len(intent.targets) != 1:
        if changing:
            what = "no node" if not intent.targets else ", ".join(intent.targets)
            reasoning.append(f"Change request is ambiguous (targets: {what})")
            return current, WorkflowAction.WAIT_FOR_INPUT
        reasoning.append("Create request names no single node; following workflow order")
        return current, action

    target = intent.targets[0]
    if target in blocked:
        reasoning.append(f"Requested node {target} is blocked by unmet dependencies")
        return target, WorkflowAction.WAIT_FOR_INPUT

    if changing:
        if target in with_artifacts:
            reasoning.append(f"Intent requests {intent.verb} of existing {target}")
            return target, WorkflowAction.UPDATE
        reasoning.append(f"Intent requests {intent.verb} of {target}, which has no artifact yet")
        return target, WorkflowAction.GENERATE

    if target in completed:
        reasoning.append(f"Requested node {target} is already completed; use update to change it")
        return current, action
    reasoning.append(f"Intent requests generation of {target}")
    return target, WorkflowAction.GENERATE


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


def _progress_node(
    state: WorkflowState, payload: ProgressPayload, definition: WorkflowDefinition
) -> str | None:
    pending = definition.get(state.pending_node)
    if pending is not None and pending.artifact_type.value == payload.artifact_type:
        return pending.node_id
    node = definition.node_for_artifact_type(payload.artifact_type)
    if node is not None:
        return node.node_id
    return state.pending_node


def record_progress(
    state: WorkflowState,
    payload: ProgressPayload,
    *,
    definition: WorkflowDefinition | None = None,
) -> tuple[WorkflowState, ProgressOutcome]:
    """Apply a progress report to *state*.

    A report whose ``pending_instruction_id`` does not match the pending
    instruction is a no-op: the unchanged state comes back with
    ``acknowledged=False``. This makes repeated reports idempotent.
    """
    definition = definition or default_definition()
    state = normalize_state(state, definition)
    try:
        acknowledge_instruction(state, payload.pending_instruction_id)
    except StateConflictError as exc:
        return state, ProgressOutcome(
            acknowledged=False,
            current_node=state.current_node,
            completed_nodes=list(state.completed_nodes),
            reason=str(exc),
        )

    node_id = _progress_node(state, payload, definition)
    completed_set = set(state.completed_nodes)
    if node_id is not None:
        completed_set.add(node_id)
    completed = [n for n in definition.node_ids if n in completed_set]
    skipped = [n for n in state.skipped_nodes if n not in completed_set]
    blocked, open_nodes = classify_nodes(definition, completed, skipped)

    new_state = replace(
        state,
        current_node=open_nodes[0] if open_nodes else None,
        completed_nodes=completed,
        skipped_nodes=skipped,
        blocked_nodes=blocked,
        inferred_nodes=[n for n in state.inferred_nodes if n != node_id],
        pending_instruction_id=None,
        pending_node=None,
        updated_at=utc_now(),
    )
    return new_state, ProgressOutcome(
        acknowledged=True,
        current_node=new_state.current_node,
        completed_nodes=list(new_state.completed_nodes),
    )
