"""Shared test fixtures."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from click.testing import CliRunner

from quikim.core.artifacts import (
    ArtifactFilters,
    ArtifactType,
    ServerArtifact,
    artifact_filename,
    is_versioned,
)
from quikim.core.tasks import ParsedTask
from quikim.errors import NotFoundError, RemoteAPIError

PROJECT_ID = "proj-1"
ORGANIZATION_ID = "org-1"

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeArtifactAPI:
    """In-memory stand-in for ``ArtifactAPIClient``.

    Versioned types get a new record per push (sharing the chain's root id);
    other types are updated in place. Names in ``fail_names`` make
    ``push_artifact`` and ``create_milestone`` raise, and ``list_error`` makes
    ``list_artifacts`` raise. Milestones and their tasks live in
    ``milestones`` and ``tasks``.
    """

    def __init__(self) -> None:
        self.records: list[dict] = []
        self.links: list[dict] = []
        self.milestones: list[dict] = []
        self.tasks: list[dict] = []
        self.fail_names: set[str] = set()
        self.list_error: Exception | None = None
        self.push_calls: list[dict] = []
        self.list_calls = 0
        self.closed = False
        self._clock = 0

    def _tick(self) -> str:
        self._clock += 1
        return (_EPOCH + timedelta(seconds=self._clock)).isoformat()

    def _chain_version(self, root_id: str) -> int:
        versions = [
            r["version"] for r in self.records if (r["rootId"] or r["artifactId"]) == root_id
        ]
        return max(versions, default=0)

    def add(
        self,
        spec_name: str,
        artifact_type: ArtifactType | str,
        artifact_name: str,
        content: str,
        *,
        root_id: str | None = None,
        is_llm_context: bool = False,
    ) -> ServerArtifact:
        """Store a new server record, as a new version of *root_id* when given."""
        record = {
            "artifactId": str(uuid.uuid4()),
            "rootId": root_id,
            "specName": spec_name,
            "artifactType": ArtifactType(artifact_type).value,
            "artifactName": artifact_name,
            "content": content,
            "version": self._chain_version(root_id) + 1 if root_id else 1,
            "updatedAt": self._tick(),
            "isLLMContext": is_llm_context,
        }
        self.records.append(record)
        return ServerArtifact.model_validate(record)

    def link(self, from_id: str, to_id: str) -> None:
        self.links.append({"fromId": from_id, "toId": to_id, "type": "depends_on"})

    # -- client interface ---------------------------------------------------

    def list_artifacts(self, filters: ArtifactFilters | None = None) -> list[ServerArtifact]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        filters = filters or ArtifactFilters()
        result = []
        for record in self.records:
            artifact = ServerArtifact.model_validate(record)
            if filters.spec_name and artifact.spec_name != filters.spec_name:
                continue
            if filters.artifact_type and artifact.artifact_type != filters.artifact_type:
                continue
            if filters.artifact_name and filters.artifact_name not in (
                artifact.artifact_name,
                artifact.file_key,
                artifact.artifact_id,
            ):
                continue
            result.append(artifact)
        return result

    def push_artifact(
        self,
        spec_name: str,
        artifact_type: ArtifactType,
        artifact_name: str,
        content: str,
        *,
        artifact_id: str | None = None,
        root_id: str | None = None,
    ) -> ServerArtifact:
        self.push_calls.append(
            {
                "specName": spec_name,
                "artifactType": ArtifactType(artifact_type).value,
                "artifactName": artifact_name,
                "artifactId": artifact_id,
                "rootId": root_id,
            }
        )
        if artifact_name in self.fail_names:
            raise RemoteAPIError(f"cannot save {artifact_name}", 500)
        if is_versioned(artifact_type) or not artifact_id:
            return self.add(spec_name, artifact_type, artifact_name, content, root_id=root_id)
        for record in self.records:
            if record["artifactId"] == artifact_id:
                record.update(
                    artifactName=artifact_name,
                    content=content,
                    version=record["version"] + 1,
                    updatedAt=self._tick(),
                )
                return ServerArtifact.model_validate(record)
        raise NotFoundError(f"artifact {artifact_id} not found", 404)

    def fetch_artifact(self, artifact_id: str) -> ServerArtifact:
        for record in self.records:
            if record["artifactId"] == artifact_id:
                return ServerArtifact.model_validate(record)
        raise NotFoundError(f"artifact {artifact_id} not found", 404)

    def list_links(self) -> list[dict]:
        return list(self.links)

    def add_milestone(self, spec_name: str, name: str, description: str = "") -> dict:
        milestone = {
            "id": str(uuid.uuid4()),
            "specName": spec_name,
            "name": name,
            "description": description,
            "updatedAt": self._tick(),
        }
        self.milestones.append(milestone)
        return milestone

    def add_task(self, milestone_id: str, title: str, **fields: object) -> dict:
        task = {
            "id": str(uuid.uuid4()),
            "milestoneId": milestone_id,
            "title": title,
            "description": "",
            "status": "todo",
            "locked": True,
            "order": len(self.tasks),
            **fields,
        }
        self.tasks.append(task)
        return task

    def list_milestones(self, spec_name: str | None = None) -> list[dict]:
        return [m for m in self.milestones if not spec_name or m["specName"] == spec_name]

    def create_milestone(self, spec_name: str, name: str, description: str) -> dict:
        if name in self.fail_names:
            raise RemoteAPIError(f"cannot save {name}", 500)
        return self.add_milestone(spec_name, name, description)

    def list_tasks(self, milestone_id: str, spec_name: str | None = None) -> list[dict]:
        return [dict(t) for t in self.tasks if t["milestoneId"] == milestone_id]

    def create_task(self, milestone_id: str, spec_name: str, task: ParsedTask) -> dict:
        return self.add_task(
            milestone_id,
            task.title,
            description=task.description,
            status=task.status,
            locked=task.required,
            order=task.order,
            specName=spec_name,
        )

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Project fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def quikim_root(tmp_path: Path) -> Path:
    """Return a temporary directory suitable for initializing .quikim/ in."""
    return tmp_path


@pytest.fixture()
def initialized_root(quikim_root: Path) -> Path:
    """Return a temporary directory with .quikim/ initialized and linked to a project."""
    from quikim.core.config import default_config, serialize_config
    from quikim.storage.fs import QUIKIM_DIR, atomic_write, ensure_quikim_dirs

    ensure_quikim_dirs(quikim_root)
    quikim_dir = quikim_root / QUIKIM_DIR
    project = {"projectId": PROJECT_ID, "organizationId": ORGANIZATION_ID, "latestVersion": 0}
    atomic_write(quikim_dir / "project.json", json.dumps(project, sort_keys=True, indent=2) + "\n")
    atomic_write(quikim_dir / "config.json", serialize_config(default_config()))
    return quikim_root


@pytest.fixture()
def fake_api() -> FakeArtifactAPI:
    return FakeArtifactAPI()


@pytest.fixture()
def write_artifact(initialized_root: Path):
    """Write a local artifact file and return its path.

    Usage::

        path = write_artifact("requirement", "main", "# Requirements")
    """

    def _write(
        artifact_type: str, key: str, content: str, spec_name: str = "default"
    ) -> Path:
        spec_dir = initialized_root / ".quikim" / "artifacts" / spec_name
        spec_dir.mkdir(parents=True, exist_ok=True)
        path = spec_dir / artifact_filename(artifact_type, key)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def engine(initialized_root: Path, fake_api: FakeArtifactAPI):
    """A ``SyncEngine`` over the initialized root, talking to ``fake_api``."""
    from quikim.storage.artifacts import ArtifactStore
    from quikim.storage.metadata import MetadataIndex
    from quikim.storage.project import artifacts_dir, locks_dir
    from quikim.sync.engine import SyncEngine

    return SyncEngine(
        ArtifactStore(artifacts_dir(initialized_root)),
        MetadataIndex(artifacts_dir(initialized_root), locks_dir(initialized_root)),
        fake_api,
        max_workers=2,
    )


# ---------------------------------------------------------------------------
# CLI fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def cli_runner() -> CliRunner:
    """Return a Click CliRunner for invoking CLI commands."""
    return CliRunner()


@pytest.fixture()
def cli_env(initialized_root: Path) -> dict[str, str]:
    """Return env dict with QUIKIM_ROOT pointing to initialized_root."""
    return {"QUIKIM_ROOT": str(initialized_root)}


@pytest.fixture()
def invoke(cli_runner: CliRunner, cli_env: dict[str, str], fake_api: FakeArtifactAPI):
    """Return a helper that invokes CLI commands against ``fake_api``.

    Usage::

        result = invoke("push", "--spec", "default")
    """
    from quikim.cli.main import cli

    def _invoke(*args: str, **kwargs):
        return cli_runner.invoke(
            cli, list(args), env=cli_env, obj={"client": fake_api}, **kwargs
        )

    return _invoke


@pytest.fixture()
def invoke_json(invoke):
    """Like invoke, but appends --json and parses the response.

    Returns (parsed_dict, exit_code) tuple.
    """

    def _invoke_json(*args: str) -> tuple[dict, int]:
        result = invoke(*args, "--json")
        parsed = json.loads(result.stdout)
        return parsed, result.exit_code

    return _invoke_json
