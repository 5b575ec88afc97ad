"""Workflow orchestration: load state, build the graph, resolve, compile, guard, persist."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path

from quikim.core.context import (
    NextInstruction,
    assemble_context,
    compile_instruction,
    guard_instruction,
)
from quikim.core.ids import generate_instruction_id, utc_now
from quikim.core.resolver import record_progress as apply_progress
from quikim.core.resolver import resolve
from quikim.core.workflow import (
    ArtifactGraphSnapshot,
    ArtifactSummary,
    NodeDef,
    ProgressPayload,
    ResolverPolicy,
    WorkflowAction,
    WorkflowDefinition,
    default_definition,
    default_state,
    definition_from_config,
    policy_from_config,
)
from quikim.storage.project import WorkflowStateStore, load_quikim_config
from quikim.sync.graph import build_artifact_graph

logger = logging.getLogger(__name__)

ACTIONABLE = (WorkflowAction.GENERATE, WorkflowAction.UPDATE, WorkflowAction.LINK_ONLY)


@dataclass
class WorkflowContext:
    """Everything the orchestrator needs, passed explicitly instead of held globally."""

    root: Path
    client: object
    definition: WorkflowDefinition = field(default_factory=default_definition)
    policy: ResolverPolicy = field(default_factory=ResolverPolicy)
    source: str = "claude"
    tasks_as_milestones: bool = False
    store: WorkflowStateStore = field(init=False)

    def __post_init__(self) -> None:
        self.store = WorkflowStateStore(self.root)

    @classmethod
    def from_root(cls, root: Path, client: object, source: str = "claude") -> WorkflowContext:
        """Build a context using the workflow and context settings in ``config.json``."""
        config = load_quikim_config(root)
        workflow = config.get("workflow", {})
        return cls(
            root=root,
            client=client,
            definition=definition_from_config(workflow.get("nodes")),
            policy=policy_from_config(config),
            source=source,
            tasks_as_milestones=bool(config.get("sync", {}).get("tasks_as_milestones", True)),
        )


def _latest_of(
    node: NodeDef, snapshot: ArtifactGraphSnapshot, spec_name: str
) -> ArtifactSummary | None:
    candidates = snapshot.latest(node.artifact_type, spec_name)
    if not candidates:
        return None
    return max(candidates, key=lambda a: a.updated_at or "")


def _unlinked_dependencies(
    node: NodeDef,
    ctx: WorkflowContext,
    snapshot: ArtifactGraphSnapshot,
    spec_name: str,
) -> list[ArtifactSummary]:
    source = _latest_of(node, snapshot, spec_name)
    if source is None:
        return []
    missing = []
    for dep_id in node.dependencies:
        dep = ctx.definition.get(dep_id)
        if dep is None:
            continue
        for target in snapshot.latest(dep.artifact_type, spec_name):
            if not snapshot.is_linked(source, target):
                missing.append(target)
    return missing


def get_next_instruction(
    ctx: WorkflowContext,
    project_id: str,
    user_intent: str | None = None,
) -> NextInstruction:
    """Resolve and persist the next workflow instruction for *project_id*.

    A still-pending instruction for the same node is reissued with the same
    ``pending_instruction_id``.
    """
    spec_name = ctx.policy.spec_name
    with ctx.store.lock(project_id):
        state = ctx.store.load(project_id) or default_state(project_id, ctx.source)
        snapshot = build_artifact_graph(
            ctx.client, include_milestones=ctx.tasks_as_milestones
        )
        resolved, trace = resolve(
            state,
            snapshot,
            user_intent=user_intent,
            policy=ctx.policy,
            definition=ctx.definition,
        )

        action = resolved.recommended_action
        node = ctx.definition.get(resolved.current_node)
        existing = _latest_of(node, snapshot, spec_name) if node else None
        if action in (WorkflowAction.UPDATE, WorkflowAction.LINK_ONLY) and existing:
            artifact_name = existing.artifact_name
        else:
            artifact_name = node.node_id if node else None

        selection = assemble_context(
            resolved.current_node,
            snapshot,
            policy=ctx.policy.context,
            definition=ctx.definition,
            spec_name=spec_name,
        )
        link_targets = (
            _unlinked_dependencies(node, ctx, snapshot, spec_name)
            if node and action == WorkflowAction.LINK_ONLY
            else None
        )
        prompt, rules, expected = compile_instruction(
            action,
            node,
            spec_name=spec_name,
            artifact_name=artifact_name,
            context=selection,
            reasoning=resolved.reasoning,
            link_targets=link_targets,
        )
        trace.rules_applied.extend(["context_assembly", "instruction_compiler"])

        instruction = guard_instruction(
            NextInstruction(
                action=action,
                decision_trace=trace,
                node_id=node.node_id if node else None,
                artifact_type=node.artifact_type.value if node else None,
                spec_name=spec_name if node else None,
                artifact_name=artifact_name,
                current_state=resolved.current_node,
                next_candidates=resolved.next_candidates,
                context_artifacts=[a.to_ref() for a in selection.artifacts],
                context_elided=bool(selection.elided),
                fallback=selection.fallback,
                prompt=prompt,
                rules=rules,
                expected_outcome=expected,
            ),
            snapshot,
        )

        pending_id = state.pending_instruction_id
        pending_node = state.pending_node
        if instruction.action in ACTIONABLE:
            if not (pending_id and pending_node == resolved.current_node):
                pending_id = generate_instruction_id()
            pending_node = resolved.current_node
            instruction.pending_instruction_id = pending_id

        ctx.store.save(
            replace(
                state,
                current_node=resolved.current_node,
                completed_nodes=resolved.completed_nodes,
                blocked_nodes=resolved.blocked_nodes,
                inferred_nodes=resolved.inferred_nodes,
                skipped_nodes=[n for n in state.skipped_nodes if n not in resolved.completed_nodes],
                pending_instruction_id=pending_id,
                pending_node=pending_node,
                last_decision_reason=instruction.decision_trace.reasoning[-1]
                if instruction.decision_trace.reasoning
                else None,
                last_user_intent=user_intent or state.last_user_intent,
                source=ctx.source,
                updated_at=utc_now(),
            )
        )

    logger.info(
        "next instruction for %s: %s %s",
        project_id,
        instruction.action.value,
        instruction.node_id or "-",
    )
    return instruction


def record_progress(ctx: WorkflowContext, payload: ProgressPayload) -> dict:
    """Acknowledge completed work and advance the workflow.

    Returns ``{"success": False}`` when the project has no saved state. A
    report for an instruction that is not pending succeeds without changing
    anything (``acknowledged`` is ``False``).
    """
    with ctx.store.lock(payload.project_id):
        state = ctx.store.load(payload.project_id)
        if state is None:
            return {
                "success": False,
                "error": f"No workflow state for project '{payload.project_id}'",
            }
        new_state, outcome = apply_progress(state, payload, definition=ctx.definition)
        if outcome.acknowledged:
            ctx.store.save(new_state)
            logger.info(
                "progress recorded for %s: current node %s",
                payload.project_id,
                new_state.current_node or "-",
            )
        else:
            logger.info("progress report ignored for %s: %s", payload.project_id, outcome.reason)
    return outcome.to_dict()
