"""CLI entry point and commands."""

from __future__ import annotations

from pathlib import Path

import click

from quikim import __version__
from quikim.cli.helpers import json_envelope
from quikim.core.config import ProjectConfig, default_config, serialize_config
from quikim.storage.fs import QUIKIM_DIR, atomic_write, ensure_quikim_dirs
from quikim.storage.project import CONFIG_FILENAME, PROJECT_FILENAME, write_project_config


@click.group()
@click.version_option(__version__, prog_name="quikim")
def cli() -> None:
    """Quikim: sync project artifacts and steer agents through the workflow."""


@cli.command()
@click.option(
    "--path",
    "target_path",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    help="Directory to initialize quikim in (defaults to current directory).",
)
@click.option("--project-id", required=True, help="Remote project id.")
@click.option("--organization-id", required=True, help="Remote organization id.")
@click.option("--user-id", default=None, help="Your user id (optional).")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def init(
    target_path: str,
    project_id: str,
    organization_id: str,
    user_id: str | None,
    output_json: bool,
) -> None:
    """Initialize a quikim project and link it to a remote project."""
    root = Path(target_path)
    quikim_dir = root / QUIKIM_DIR
    project_path = quikim_dir / PROJECT_FILENAME

    if project_path.is_file():
        if output_json:
            click.echo(json_envelope(True, data={"root": str(root), "already_initialized": True}))
        else:
            click.echo(f"quikim already initialized in {QUIKIM_DIR}/")
        return

    if quikim_dir.exists() and not quikim_dir.is_dir():
        raise click.ClickException(
            f"Cannot initialize: '{QUIKIM_DIR}' exists but is not a directory. "
            "Remove it and try again."
        )

    project: ProjectConfig = {
        "projectId": project_id,
        "organizationId": organization_id,
        "latestVersion": 0,
    }
    if user_id:
        project["userId"] = user_id

    try:
        ensure_quikim_dirs(root)
        write_project_config(root, project)
        config_path = quikim_dir / CONFIG_FILENAME
        if not config_path.exists():
            atomic_write(config_path, serialize_config(default_config()))
    except PermissionError:
        raise click.ClickException(f"Permission denied: cannot create {QUIKIM_DIR}/ in {root}")
    except OSError as e:
        raise click.ClickException(f"Failed to initialize quikim: {e}")

    if output_json:
        click.echo(json_envelope(True, data={"root": str(root), "project": dict(project)}))
        return
    click.echo(f"quikim initialized in {QUIKIM_DIR}/")
    click.echo(f"Project: {project_id} (organization {organization_id})")


# Register command modules (they attach to ``cli`` on import).
from quikim.cli import sync_cmds as _sync_cmds  # noqa: E402, F401
from quikim.cli import workflow_cmds as _workflow_cmds  # noqa: E402, F401
