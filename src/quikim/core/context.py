"""Context assembly, instruction compilation, and the pre-return guard.

Pure logic: everything here operates on an ``ArtifactGraphSnapshot`` that the
caller has already built.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace

from quikim.core.resolver import DecisionTrace
from quikim.core.workflow import (
    ArtifactGraphSnapshot,
    ArtifactSummary,
    ContextPolicy,
    NodeDef,
    WorkflowAction,
    WorkflowDefinition,
)

BASE_RULES = (
    "Embed dependencies using @ mentions in the format @artifact_type.specName.artifactName.",
    "Output ONLY the artifact content; do not add meta-commentary.",
)
FORBIDDEN_ACTIONS = ("create_duplicate", "skip_mentions")

_NAME_NORM_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ContextSelection:
    artifacts: list[ArtifactSummary]
    elided: list[ArtifactSummary] = field(default_factory=list)
    fallback: str | None = None


@dataclass
class NextInstruction:
    action: WorkflowAction
    decision_trace: DecisionTrace
    node_id: str | None = None
    artifact_type: str | None = None
    spec_name: str | None = None
    artifact_name: str | None = None
    current_state: str | None = None
    next_candidates: list[str] = field(default_factory=list)
    context_artifacts: list[dict] = field(default_factory=list)
    context_elided: bool = False
    fallback: str | None = None
    prompt: str = ""
    rules: list[str] = field(default_factory=list)
    expected_outcome: dict | None = None
    pending_instruction_id: str | None = None

    def to_dict(self) -> dict:
        data: dict = {
            "action": self.action.value,
            "nodeId": self.node_id,
            "artifactType": self.artifact_type,
            "specName": self.spec_name,
            "artifactName": self.artifact_name,
            "currentState": self.current_state,
            "nextCandidates": list(self.next_candidates),
            "contextArtifacts": list(self.context_artifacts),
            "contextElided": self.context_elided,
            "prompt": self.prompt,
            "rules": list(self.rules),
            "decisionTrace": self.decision_trace.to_dict(),
        }
        if self.fallback:
            data["fallback"] = self.fallback
        if self.expected_outcome is not None:
            data["expectedOutcome"] = self.expected_outcome
        if self.pending_instruction_id:
            data["pendingInstructionId"] = self.pending_instruction_id
        return data


def _normalize_name(name: str) -> str:
    return _NAME_NORM_RE.sub("-", name.strip().lower())


def _by_recency(artifacts: list[ArtifactSummary]) -> list[ArtifactSummary]:
    # ISO timestamps sort lexically; undated artifacts go last.
    return sorted(artifacts, key=lambda a: a.updated_at or "", reverse=True)


# ---------------------------------------------------------------------------
# Context assembly
# ---------------------------------------------------------------------------


def _category_candidates(
    category: str,
    node: NodeDef | None,
    snapshot: ArtifactGraphSnapshot,
    definition: WorkflowDefinition,
    spec_name: str,
) -> list[ArtifactSummary]:
    if category == "currentNodeDependencies":
        if node is None:
            return []
        result = []
        for dep_id in node.dependencies:
            dep = definition.get(dep_id)
            if dep is not None:
                result.extend(_by_recency(snapshot.latest(dep.artifact_type, spec_name)))
        return result

    if category == "directParents":
        if node is None:
            return []
        sources = list(snapshot.latest(node.artifact_type, spec_name))
        for dep_id in node.dependencies:
            dep = definition.get(dep_id)
            if dep is not None:
                sources.extend(snapshot.latest(dep.artifact_type, spec_name))
        source_ids = {i for a in sources for i in (a.id, a.chain_id)}
        result = []
        for link in snapshot.links:
            if link.from_id in source_ids:
                target = snapshot.find(link.to_id)
                if target is not None:
                    result.append(target)
        return result

    if category == "LLMContextArtifacts":
        return _by_recency([a for a in snapshot.latest() if a.is_llm_context])

    if category == "recentArtifacts":
        return _by_recency(snapshot.latest())

    return []


def assemble_context(
    current_node: str | None,
    snapshot: ArtifactGraphSnapshot,
    *,
    policy: ContextPolicy,
    definition: WorkflowDefinition,
    spec_name: str,
) -> ContextSelection:
    """Pick the artifacts an agent should read before acting on *current_node*.

    Categories are visited in ``policy.priority_order``. Only latest
    artifacts are considered and each appears at most once. When the next
    candidate would exceed ``max_artifacts`` or ``max_tokens``, the rest of
    that category is elided whole (never truncated) and the selection's
    ``fallback`` is set to the policy fallback.
    """
    node = definition.get(current_node)
    selected: list[ArtifactSummary] = []
    elided: list[ArtifactSummary] = []
    seen: set[str] = set()
    tokens = 0
    fallback: str | None = None

    for category in policy.priority_order:
        candidates = [
            a
            for a in _category_candidates(category, node, snapshot, definition, spec_name)
            if a.is_latest
        ]
        for index, artifact in enumerate(candidates):
            if artifact.id in seen:
                continue
            over_count = len(selected) >= policy.max_artifacts
            over_tokens = tokens + artifact.token_estimate > policy.max_tokens
            if over_count or over_tokens:
                for rest in candidates[index:]:
                    if rest.id not in seen:
                        seen.add(rest.id)
                        elided.append(rest)
                fallback = policy.fallback
                break
            seen.add(artifact.id)
            selected.append(artifact)
            tokens += artifact.token_estimate

    return ContextSelection(artifacts=selected, elided=elided, fallback=fallback)


# ---------------------------------------------------------------------------
# Instruction compilation
# ---------------------------------------------------------------------------


def compile_instruction(
    action: WorkflowAction,
    node: NodeDef | None,
    *,
    spec_name: str,
    artifact_name: str | None,
    context: ContextSelection,
    reasoning: list[str] | None = None,
    link_targets: list[ArtifactSummary] | None = None,
) -> tuple[str, list[str], dict | None]:
    """Render the agent prompt, rules, and expected outcome for *action*.

    Returns ``(prompt, rules, expected_outcome)``. ``expected_outcome`` is
    ``None`` for actions that must not change anything.
    """
    rules = list(BASE_RULES)
    mentions = ", ".join(a.mention for a in context.artifacts)

    if node is None or action == WorkflowAction.NO_OP:
        return "All workflow nodes are complete. Nothing to do.", rules, None

    ref = {
        "artifactType": node.artifact_type.value,
        "specName": spec_name,
        "artifactName": artifact_name or node.node_id,
    }
    label = node.label or node.node_id
    own_mention = f"@{ref['artifactType']}.{ref['specName']}.{ref['artifactName']}"

    if action == WorkflowAction.WAIT_FOR_INPUT:
        why = reasoning[-1] if reasoning else "The request is ambiguous."
        prompt = (
            f"Do not create or modify artifacts yet. Ask the user to clarify how to "
            f"proceed with {label}. Reason: {why}"
        )
        return prompt, rules, None

    lines: list[str] = []
    if action == WorkflowAction.GENERATE:
        lines.append(
            f"Generate the {label} artifact ({ref['artifactType']}) named "
            f"'{ref['artifactName']}' in spec '{spec_name}' (workflow node {node.node_id})."
        )
    elif action == WorkflowAction.UPDATE:
        lines.append(
            f"Update the existing {label} artifact {own_mention}. Keep what still "
            f"applies and revise the rest; this creates a new version."
        )
    elif action == WorkflowAction.LINK_ONLY:
        targets = ", ".join(t.mention for t in link_targets or [])
        lines.append(
            f"Do not change the content of {own_mention}. Add links from it to its "
            f"dependencies: {targets or 'its dependency artifacts'}."
        )
    if mentions:
        lines.append(f"Context artifacts to reference: {mentions}.")
    if context.fallback:
        lines.append(
            f"Some context artifacts were left out to stay within limits; "
            f"{context.fallback} them from their titles if needed."
        )
    lines.extend(rules)
    prompt = "\n\n".join(lines)

    must_link = [
        {"from": ref, "to": a.to_ref(), "type": "depends_on"}
        for a in (link_targets if action == WorkflowAction.LINK_ONLY else context.artifacts)
        or []
    ]
    expected: dict = {"mustLink": must_link, "forbiddenActions": list(FORBIDDEN_ACTIONS)}
    if action in (WorkflowAction.GENERATE, WorkflowAction.UPDATE):
        expected["mustCreate"] = [ref]
    return prompt, rules, expected


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------


def guard_instruction(
    instruction: NextInstruction, snapshot: ArtifactGraphSnapshot
) -> NextInstruction:
    """Downgrade a ``GENERATE`` whose target artifact already exists to ``NO_OP``."""
    if instruction.action != WorkflowAction.GENERATE:
        return instruction
    if not (instruction.artifact_type and instruction.spec_name and instruction.artifact_name):
        return instruction

    wanted = _normalize_name(instruction.artifact_name)
    exists = any(
        a.artifact_type.value == instruction.artifact_type
        and a.spec_name == instruction.spec_name
        and _normalize_name(a.artifact_name) == wanted
        for a in snapshot.latest()
    )
    if not exists:
        return instruction

    reason = "Artifact already exists; use UPDATE or skip."
    trace = replace(
        instruction.decision_trace,
        reasoning=[*instruction.decision_trace.reasoning, reason],
        rules_applied=[*instruction.decision_trace.rules_applied, "guard_existing_artifact"],
    )
    return replace(
        instruction,
        action=WorkflowAction.NO_OP,
        prompt="",
        expected_outcome=None,
        decision_trace=trace,
    )
