"""Shared CLI helpers, decorators, and output utilities."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click

from quikim.core.artifacts import ArtifactFilters, ArtifactType
from quikim.errors import (
    AuthenticationError,
    NotFoundError,
    ProjectConfigError,
    ProjectRootError,
    QuikimError,
    RemoteAPIError,
    StorageError,
    TransientNetworkError,
)
from quikim.storage.fs import QUIKIM_DIR, find_root
from quikim.sync.client import client_from_project
from quikim.sync.engine import SyncEngine

# ---------------------------------------------------------------------------
# Root & client
# ---------------------------------------------------------------------------


def require_root(is_json: bool = False) -> Path:
    """Find the project root (the directory holding .quikim/) or exit with error."""
    try:
        root = find_root()
    except ProjectRootError as e:
        output_error(str(e), "NOT_INITIALIZED", is_json)
    if root is None:
        output_error(
            f"Not a quikim project (no {QUIKIM_DIR}/ found). Run 'quikim init' first.",
            "NOT_INITIALIZED",
            is_json,
        )
    return root


def require_client(root: Path, is_json: bool):  # noqa: ANN201
    """Return the API client from the Click context object, building it on first use.

    Tests (and embedding callers) can inject a client with
    ``cli.main(obj={"client": ...})`` or ``CliRunner().invoke(cli, ..., obj=...)``.
    """
    ctx = click.get_current_context()
    ctx.ensure_object(dict)
    client = ctx.obj.get("client")
    if client is None:
        try:
            client = client_from_project(root)
        except QuikimError as e:
            output_error(str(e), error_code(e), is_json)
        ctx.obj["client"] = client
        ctx.call_on_close(client.close)
    return client


def build_engine(root: Path, is_json: bool) -> SyncEngine:
    client = require_client(root, is_json)
    try:
        return SyncEngine.from_root(root, client)
    except QuikimError as e:
        output_error(str(e), error_code(e), is_json)


def build_filters(spec: str | None, artifact_type: str | None, name: str | None) -> ArtifactFilters:
    return ArtifactFilters(
        spec_name=spec or None,
        artifact_type=ArtifactType(artifact_type) if artifact_type else None,
        artifact_name=name or None,
    )


def configure_logging(verbose: bool) -> None:
    """Send DEBUG logs to stderr when ``--verbose`` is given."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(levelname)s %(name)s: %(message)s",
        )
        logging.getLogger("quikim").setLevel(logging.DEBUG)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def error_code(exc: Exception) -> str:
    """Map an exception to the error code used in JSON output."""
    if isinstance(exc, ProjectRootError):
        return "NOT_INITIALIZED"
    if isinstance(exc, ProjectConfigError):
        return "NOT_CONFIGURED"
    if isinstance(exc, AuthenticationError):
        return "AUTH_FAILED"
    if isinstance(exc, NotFoundError):
        return "NOT_FOUND"
    if isinstance(exc, RemoteAPIError):
        return "REMOTE_ERROR"
    if isinstance(exc, TransientNetworkError):
        return "NETWORK_ERROR"
    if isinstance(exc, StorageError):
        return "STORAGE_ERROR"
    if isinstance(exc, ValueError):
        return "INVALID_INPUT"
    return "ERROR"


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def json_envelope(ok: bool, *, data: object = None, error: object = None) -> str:
    """Build a structured JSON output envelope."""
    result: dict = {"ok": ok}
    if data is not None:
        result["data"] = data
    if error is not None:
        result["error"] = error
    return json.dumps(result, sort_keys=True, indent=2) + "\n"


def json_error_obj(code: str, message: str) -> dict:
    """Build an error object for the JSON envelope."""
    return {"code": code, "message": message}


def output_error(message: str, code: str, is_json: bool, exit_code: int = 1) -> NoReturn:
    """Print error and exit. JSON errors go to stdout; human errors to stderr."""
    if is_json:
        click.echo(json_envelope(False, error=json_error_obj(code, message)))
    else:
        click.echo(f"Error: {message}", err=True)
    raise SystemExit(exit_code)


def output_result(*, data: object, human_message: str, is_json: bool) -> None:
    """Print success result in the appropriate format."""
    if is_json:
        click.echo(json_envelope(True, data=data))
    else:
        click.echo(human_message)


# ---------------------------------------------------------------------------
# Option decorators
# ---------------------------------------------------------------------------

ARTIFACT_TYPE_CHOICE = click.Choice([t.value for t in ArtifactType])


def filter_options(f):  # noqa: ANN001, ANN201
    """Decorator adding ``--spec``, ``--type``, and ``--name`` filters."""
    f = click.option("--name", "artifact_name", default=None, help="Artifact name or file key.")(f)
    f = click.option(
        "--type", "artifact_type", type=ARTIFACT_TYPE_CHOICE, default=None, help="Artifact type."
    )(f)
    f = click.option("--spec", default=None, help="Spec name (directory under artifacts/).")(f)
    return f


def sync_options(f):  # noqa: ANN001, ANN201
    """Decorator adding the filter options plus the batch-mode flags."""
    f = click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")(f)
    f = click.option("--verbose", is_flag=True, help="Log each artifact to stderr.")(f)
    f = click.option("--force", is_flag=True, help="Ignore sync metadata and transfer everything.")(
        f
    )
    f = click.option("--dry-run", is_flag=True, help="Report what would change without writing.")(
        f
    )
    return filter_options(f)
