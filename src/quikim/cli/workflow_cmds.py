"""CLI commands: next, progress."""

from __future__ import annotations

import click

from quikim.cli.helpers import (
    ARTIFACT_TYPE_CHOICE,
    error_code,
    output_error,
    output_result,
    require_client,
    require_root,
)
from quikim.cli.main import cli
from quikim.core.context import NextInstruction
from quikim.core.workflow import ProgressPayload
from quikim.errors import QuikimError
from quikim.storage.project import load_project_config
from quikim.sync.orchestrator import WorkflowContext, get_next_instruction, record_progress


def _format_instruction(instruction: NextInstruction) -> str:
    lines = [f"Action: {instruction.action.value}"]
    if instruction.node_id:
        lines.append(
            f"Node:   {instruction.node_id} "
            f"({instruction.artifact_type} @ {instruction.spec_name}/{instruction.artifact_name})"
        )
    if instruction.pending_instruction_id:
        lines.append(f"Instruction id: {instruction.pending_instruction_id}")
    if instruction.context_artifacts:
        refs = ", ".join(
            f"@{r['artifactType']}.{r['specName']}.{r['artifactName']}"
            for r in instruction.context_artifacts
        )
        lines.append(f"Context: {refs}")
    if instruction.prompt:
        lines.extend(["", instruction.prompt])
    return "\n".join(lines)


@cli.command("next")
@click.option("--intent", default=None, help="What the user asked for, in plain words.")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def next_cmd(intent: str | None, output_json: bool) -> None:
    """Show the next workflow instruction for this project."""
    root = require_root(output_json)
    try:
        project = load_project_config(root)
    except QuikimError as e:
        output_error(str(e), error_code(e), output_json)
    client = require_client(root, output_json)

    try:
        ctx = WorkflowContext.from_root(root, client, source="cli")
        instruction = get_next_instruction(ctx, project["projectId"], intent)
    except (QuikimError, ValueError) as e:
        output_error(str(e), error_code(e), output_json)

    output_result(
        data=instruction.to_dict(),
        human_message=_format_instruction(instruction),
        is_json=output_json,
    )


@cli.command()
@click.option("--type", "artifact_type", type=ARTIFACT_TYPE_CHOICE, required=True)
@click.option("--spec", default="default", show_default=True, help="Spec name.")
@click.option("--name", "artifact_name", default=None, help="Artifact name.")
@click.option("--artifact-id", default=None, help="Server id of the created artifact.")
@click.option(
    "--instruction-id", required=True, help="Pending instruction id being completed."
)
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def progress(
    artifact_type: str,
    spec: str,
    artifact_name: str | None,
    artifact_id: str | None,
    instruction_id: str,
    output_json: bool,
) -> None:
    """Report that the pending instruction's artifact was created."""
    root = require_root(output_json)
    try:
        project = load_project_config(root)
        ctx = WorkflowContext.from_root(root, client=None, source="cli")
        outcome = record_progress(
            ctx,
            ProgressPayload(
                project_id=project["projectId"],
                artifact_type=artifact_type,
                spec_name=spec,
                artifact_name=artifact_name,
                artifact_id=artifact_id,
                pending_instruction_id=instruction_id,
            ),
        )
    except (QuikimError, ValueError) as e:
        output_error(str(e), error_code(e), output_json)

    if not outcome["success"]:
        output_error(outcome.get("error", "Progress not recorded"), "NO_STATE", output_json)

    if outcome["acknowledged"]:
        message = f"Progress recorded. Current node: {outcome['currentNode'] or 'none (complete)'}"
    else:
        message = f"Nothing recorded: {outcome.get('reason', 'instruction not pending')}"
    output_result(data=outcome, human_message=message, is_json=output_json)
