"""CLI commands: push, pull, sync, status."""

from __future__ import annotations

import click

from quikim.cli.helpers import (
    build_engine,
    build_filters,
    configure_logging,
    error_code,
    filter_options,
    output_error,
    output_result,
    require_root,
    sync_options,
)
from quikim.cli.main import cli
from quikim.core.artifacts import PullResult, PushResult
from quikim.errors import QuikimError


def _error_lines(errors: list[dict]) -> list[str]:
    return [f"  error: {e.get('artifact')}: {e.get('error')}" for e in errors]


def _push_summary(result: PushResult) -> str:
    verb = "Would push" if result.dry_run else "Pushed"
    lines = [f"{verb} {result.pushed}, skipped {result.skipped}, errors {len(result.errors)}."]
    lines.extend(f"  pushed: {v['artifact']} (v{v['version']})" for v in result.versions)
    lines.extend(_error_lines(result.errors))
    return "\n".join(lines)


def _pull_summary(result: PullResult) -> str:
    verb = "Would pull" if result.dry_run else "Pulled"
    lines = [
        f"{verb} {result.pulled} ({result.created} new, {result.updated} updated), "
        f"skipped {result.skipped}, errors {len(result.errors)}."
    ]
    lines.extend(f"  pulled: {v['artifact']} (v{v['version']})" for v in result.versions)
    lines.extend(_error_lines(result.errors))
    return "\n".join(lines)


def _run_batch(
    operation: str,
    spec: str | None,
    artifact_type: str | None,
    artifact_name: str | None,
    dry_run: bool,
    force: bool,
    verbose: bool,
    output_json: bool,
) -> None:
    configure_logging(verbose)
    root = require_root(output_json)
    engine = build_engine(root, output_json)
    try:
        filters = build_filters(spec, artifact_type, artifact_name)
        run = getattr(engine, operation)
        result = run(filters, dry_run=dry_run, force=force, verbose=verbose)
    except (QuikimError, ValueError) as e:
        output_error(str(e), error_code(e), output_json)

    if operation == "push":
        message = _push_summary(result)
    elif operation == "pull":
        message = _pull_summary(result)
    else:
        message = f"{_push_summary(result.push)}\n{_pull_summary(result.pull)}"
    output_result(data=result.to_dict(), human_message=message, is_json=output_json)
    if not result.success:
        raise SystemExit(1)


@cli.command()
@sync_options
def push(
    spec: str | None,
    artifact_type: str | None,
    artifact_name: str | None,
    dry_run: bool,
    force: bool,
    verbose: bool,
    output_json: bool,
) -> None:
    """Push local artifact changes to the server."""
    _run_batch("push", spec, artifact_type, artifact_name, dry_run, force, verbose, output_json)


@cli.command()
@sync_options
def pull(
    spec: str | None,
    artifact_type: str | None,
    artifact_name: str | None,
    dry_run: bool,
    force: bool,
    verbose: bool,
    output_json: bool,
) -> None:
    """Pull the latest server artifacts into local files."""
    _run_batch("pull", spec, artifact_type, artifact_name, dry_run, force, verbose, output_json)


@cli.command()
@sync_options
def sync(
    spec: str | None,
    artifact_type: str | None,
    artifact_name: str | None,
    dry_run: bool,
    force: bool,
    verbose: bool,
    output_json: bool,
) -> None:
    """Push local changes, then pull remote ones."""
    _run_batch("sync", spec, artifact_type, artifact_name, dry_run, force, verbose, output_json)


@cli.command()
@filter_options
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def status(
    spec: str | None,
    artifact_type: str | None,
    artifact_name: str | None,
    output_json: bool,
) -> None:
    """Show local artifacts and whether they changed since the last sync."""
    from quikim.storage.artifacts import ArtifactStore
    from quikim.storage.metadata import MetadataIndex
    from quikim.storage.project import artifacts_dir, locks_dir
    from quikim.sync.engine import SyncEngine

    root = require_root(output_json)
    # Status never touches the network, so no client is built.
    engine = SyncEngine(
        ArtifactStore(artifacts_dir(root)),
        MetadataIndex(artifacts_dir(root), locks_dir(root)),
        client=None,
    )
    try:
        rows = engine.status(build_filters(spec, artifact_type, artifact_name))
    except (QuikimError, ValueError) as e:
        output_error(str(e), error_code(e), output_json)

    if not rows:
        message = "No local artifacts."
    else:
        lines = []
        for row in rows:
            if not row["synced"]:
                marker = "new"
            elif row["changed"]:
                marker = "modified"
            else:
                marker = "synced"
            lines.append(f"{marker:<9} {row['artifact']}")
        message = "\n".join(lines)
    output_result(data=rows, human_message=message, is_json=output_json)
