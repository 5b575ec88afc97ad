"""Tests for push/pull reconciliation through the sync engine."""

from __future__ import annotations

import json
from pathlib import Path

from quikim.core.artifacts import ArtifactFilters, ArtifactType, ServerArtifact
from quikim.errors import TransientNetworkError
from quikim.storage.artifacts import ArtifactStore
from quikim.storage.metadata import MetadataIndex
from quikim.storage.project import artifacts_dir, locks_dir
from quikim.sync.engine import SyncEngine

ARTIFACTS = Path(".quikim") / "artifacts"


def _files(root: Path, spec: str = "default") -> list[str]:
    spec_dir = root / ARTIFACTS / spec
    return sorted(p.name for p in spec_dir.iterdir() if not p.name.startswith("."))


def _metadata(root: Path, spec: str = "default") -> dict:
    return json.loads((root / ARTIFACTS / spec / ".metadata.json").read_text())["artifacts"]


class TestPush:
    def test_new_artifact_is_pushed_and_renamed_to_server_key(
        self, engine, fake_api, write_artifact, initialized_root: Path
    ) -> None:
        write_artifact("requirement", "main", "# Requirements\n\nLogin.")

        result = engine.push()

        assert result.success
        assert result.pushed == 1
        assert result.versions == [{"artifact": "default/requirement_main.md", "version": 1}]
        server_id = fake_api.records[0]["artifactId"]
        assert _files(initialized_root) == [f"requirement_{server_id}.md"]
        entry = _metadata(initialized_root)[f"requirement_{server_id}"]
        assert entry["artifactName"] == "main"
        assert entry["rootId"] == server_id

    def test_push_is_idempotent(self, engine, fake_api, write_artifact) -> None:
        write_artifact("requirement", "main", "# Requirements")
        engine.push()

        second = engine.push()

        assert second.pushed == 0
        assert second.skipped == 1
        assert len(fake_api.push_calls) == 1

    def test_whitespace_only_edit_is_not_pushed(
        self, engine, fake_api, write_artifact, initialized_root: Path
    ) -> None:
        write_artifact("context", "sprint", "- one\n- two")
        engine.push()
        path = initialized_root / ARTIFACTS / "default" / _files(initialized_root)[0]
        path.write_text("- one\n\n- two\n\n")

        assert engine.push().skipped == 1
        assert len(fake_api.push_calls) == 1

    def test_edit_of_versioned_artifact_creates_new_version(
        self, engine, fake_api, write_artifact, initialized_root: Path
    ) -> None:
        write_artifact("hld", "design", "v1 design")
        engine.push()
        root_id = fake_api.records[0]["artifactId"]
        (initialized_root / ARTIFACTS / "default" / f"hld_{root_id}.md").write_text("v2 design")

        result = engine.push()

        assert result.pushed == 1
        assert result.versions[0]["version"] == 2
        assert fake_api.push_calls[-1]["rootId"] == root_id
        assert fake_api.push_calls[-1]["artifactName"] == "design"
        assert _files(initialized_root) == [f"hld_{root_id}.md"]
        assert _metadata(initialized_root)[f"hld_{root_id}"]["versionNumber"] == 2

    def test_edit_of_unversioned_artifact_updates_in_place(
        self, engine, fake_api, write_artifact, initialized_root: Path
    ) -> None:
        write_artifact("context", "sprint", "one")
        engine.push()
        artifact_id = fake_api.records[0]["artifactId"]
        (initialized_root / ARTIFACTS / "default" / f"context_{artifact_id}.md").write_text("two")

        engine.push()

        assert len(fake_api.records) == 1
        assert fake_api.push_calls[-1]["artifactId"] == artifact_id
        assert fake_api.records[0]["content"] == "two"

    def test_identical_server_artifact_is_adopted_not_pushed(
        self, engine, fake_api, write_artifact, initialized_root: Path
    ) -> None:
        existing = fake_api.add("default", "requirement", "main", "<p>Same body</p>")
        write_artifact("requirement", "main", "Same body\n")

        result = engine.push()

        assert result.skipped == 1
        assert fake_api.push_calls == []
        assert _files(initialized_root) == [f"requirement_{existing.artifact_id}.md"]

    def test_changed_server_match_pushes_onto_its_chain(
        self, engine, fake_api, write_artifact
    ) -> None:
        existing = fake_api.add("default", "requirement", "main", "old body")
        write_artifact("requirement", "main", "new body")

        engine.push()

        assert fake_api.push_calls[0]["rootId"] == existing.artifact_id
        assert fake_api.records[-1]["version"] == 2

    def test_one_failure_does_not_abort_batch(
        self, engine, fake_api, write_artifact
    ) -> None:
        write_artifact("context", "good", "fine")
        write_artifact("context", "broken", "will fail")
        fake_api.fail_names.add("broken")

        result = engine.push()

        assert not result.success
        assert result.pushed == 1
        assert result.errors == [
            {"artifact": "default/context_broken.md", "error": "cannot save broken"}
        ]

    def test_failed_push_is_retried_next_time(self, engine, fake_api, write_artifact) -> None:
        write_artifact("context", "broken", "will fail")
        fake_api.fail_names.add("broken")
        engine.push()
        fake_api.fail_names.clear()

        assert engine.push().pushed == 1

    def test_dry_run_writes_nothing(
        self, engine, fake_api, write_artifact, initialized_root: Path
    ) -> None:
        write_artifact("context", "a", "x")
        write_artifact("context", "b", "y")

        result = engine.push(dry_run=True)

        assert result.dry_run
        assert result.pushed == 2
        assert fake_api.push_calls == []
        assert _files(initialized_root) == ["context_a.md", "context_b.md"]

    def test_force_pushes_unchanged(self, engine, fake_api, write_artifact) -> None:
        write_artifact("context", "a", "x")
        engine.push()

        assert engine.push(force=True).pushed == 1
        assert len(fake_api.push_calls) == 2

    def test_listing_failure_still_pushes(self, engine, fake_api, write_artifact) -> None:
        write_artifact("context", "a", "x")
        fake_api.list_error = TransientNetworkError("offline")

        assert engine.push().pushed == 1

    def test_filters_limit_scope(self, engine, fake_api, write_artifact) -> None:
        write_artifact("context", "a", "x")
        write_artifact("context", "b", "y", spec_name="billing")

        result = engine.push(ArtifactFilters(spec_name="billing"))

        assert result.pushed == 1
        assert fake_api.push_calls[0]["specName"] == "billing"

    def test_invalid_server_response_fails_only_that_artifact(
        self, engine, fake_api, write_artifact
    ) -> None:
        write_artifact("context", "good", "fine")
        write_artifact("context", "odd", "server returns no id")
        real_push = fake_api.push_artifact

        def push(spec_name, artifact_type, artifact_name, content, **kwargs):
            if artifact_name == "odd":
                return ServerArtifact.model_validate(
                    {"artifactId": " ", "artifactType": "context", "artifactName": "odd"}
                )
            return real_push(spec_name, artifact_type, artifact_name, content, **kwargs)

        fake_api.push_artifact = push

        result = engine.push()

        assert result.pushed == 1
        assert [e["artifact"] for e in result.errors] == ["default/context_odd.md"]

    def test_forced_push_without_metadata_continues_chain(
        self, fake_api, initialized_root: Path
    ) -> None:
        v1 = fake_api.add("default", "hld", "design", "version one")
        SyncEngine.from_root(initialized_root, fake_api).pull()
        (initialized_root / ARTIFACTS / "default" / ".metadata.json").unlink()
        path = initialized_root / ARTIFACTS / "default" / f"hld_{v1.artifact_id}.md"
        path.write_text("version two")

        result = SyncEngine.from_root(initialized_root, fake_api).push(force=True)

        assert result.versions[0]["version"] == 2
        assert fake_api.push_calls[-1]["rootId"] == v1.artifact_id
        assert fake_api.push_calls[-1]["artifactName"] == "design"
        assert _files(initialized_root) == [f"hld_{v1.artifact_id}.md"]


class TestPull:
    def test_creates_local_files(self, engine, fake_api, initialized_root: Path) -> None:
        req = fake_api.add("default", "requirement", "main", "# Requirements")
        tasks = fake_api.add("billing", "tasks", "Sprint", "- pay")

        result = engine.pull()

        assert result.success
        assert result.created == 2
        assert result.pulled == 2
        assert _files(initialized_root) == [f"requirement_{req.artifact_id}.md"]
        assert _files(initialized_root, "billing") == [f"tasks_{tasks.artifact_id}.md"]

    def test_pull_converges(self, engine, fake_api) -> None:
        fake_api.add("default", "requirement", "main", "# Requirements")
        engine.pull()

        second = engine.pull()

        assert second.pulled == 0
        assert second.skipped == 1

    def test_only_latest_version_lands_in_one_file(
        self, engine, fake_api, initialized_root: Path
    ) -> None:
        v1 = fake_api.add("default", "hld", "design", "version one")
        fake_api.add("default", "hld", "design", "version two", root_id=v1.artifact_id)

        engine.pull()

        files = _files(initialized_root)
        assert files == [f"hld_{v1.artifact_id}.md"]
        assert (initialized_root / ARTIFACTS / "default" / files[0]).read_text() == "version two"
        assert _metadata(initialized_root)[f"hld_{v1.artifact_id}"]["versionNumber"] == 2

    def test_new_server_version_updates_local_file(
        self, engine, fake_api, initialized_root: Path
    ) -> None:
        v1 = fake_api.add("default", "hld", "design", "version one")
        engine.pull()
        fake_api.add("default", "hld", "design", "version two", root_id=v1.artifact_id)

        result = engine.pull()

        assert result.updated == 1
        path = initialized_root / ARTIFACTS / "default" / f"hld_{v1.artifact_id}.md"
        assert path.read_text() == "version two"

    def test_unpushed_local_edit_is_not_clobbered(
        self, engine, fake_api, initialized_root: Path
    ) -> None:
        v1 = fake_api.add("default", "hld", "design", "server text")
        engine.pull()
        path = initialized_root / ARTIFACTS / "default" / f"hld_{v1.artifact_id}.md"
        path.write_text("my local edit")

        result = engine.pull()

        assert result.skipped == 1
        assert path.read_text() == "my local edit"

    def test_force_overwrites_local_edit(
        self, engine, fake_api, initialized_root: Path
    ) -> None:
        v1 = fake_api.add("default", "hld", "design", "server text")
        engine.pull()
        path = initialized_root / ARTIFACTS / "default" / f"hld_{v1.artifact_id}.md"
        path.write_text("my local edit")

        engine.pull(force=True)

        assert path.read_text() == "server text"

    def test_html_content_is_converted(self, engine, fake_api, initialized_root: Path) -> None:
        art = fake_api.add("default", "context", "notes", "<p>Hello <strong>team</strong></p>")

        engine.pull()
        again = engine.pull()

        path = initialized_root / ARTIFACTS / "default" / f"context_{art.artifact_id}.md"
        assert path.read_text() == "Hello **team**\n"
        assert again.skipped == 1

    def test_dry_run_writes_nothing(self, engine, fake_api, initialized_root: Path) -> None:
        fake_api.add("default", "tasks", "Sprint", "x")

        result = engine.pull(dry_run=True)

        assert result.created == 1
        assert not (initialized_root / ARTIFACTS / "default").exists()

    def test_listing_failure_is_reported(self, engine, fake_api) -> None:
        fake_api.list_error = TransientNetworkError("offline")

        result = engine.pull()

        assert not result.success
        assert result.errors == [{"artifact": "general", "error": "offline"}]

    def test_filters_by_type(self, engine, fake_api, initialized_root: Path) -> None:
        fake_api.add("default", "tasks", "Sprint", "x")
        fake_api.add("default", "hld", "design", "y")

        result = engine.pull(ArtifactFilters(artifact_type=ArtifactType.HLD))

        assert result.created == 1
        assert all(name.startswith("hld_") for name in _files(initialized_root))

    def test_invalid_spec_name_fails_only_that_artifact(
        self, engine, fake_api, initialized_root: Path
    ) -> None:
        good = fake_api.add("default", "requirement", "main", "# Requirements")
        bad = fake_api.add("feature/auth", "requirement", "login", "# Login")

        result = engine.pull()

        assert not result.success
        assert result.created == 1
        assert _files(initialized_root) == [f"requirement_{good.artifact_id}.md"]
        assert len(result.errors) == 1
        assert bad.artifact_id in result.errors[0]["artifact"]
        assert "Invalid spec name" in result.errors[0]["error"]

    def test_blank_artifact_id_fails_only_that_artifact(self, engine, fake_api) -> None:
        fake_api.add("default", "context", "notes", "kept")
        fake_api.records.append(
            {
                "artifactId": " ",
                "rootId": None,
                "specName": "default",
                "artifactType": "context",
                "artifactName": "blank",
                "content": "lost",
                "version": 1,
            }
        )

        result = engine.pull()

        assert result.created == 1
        assert len(result.errors) == 1
        assert result.errors[0]["error"] == "Artifact key must not be empty"

    def test_wrapped_quotes_are_stripped(self, engine, fake_api, initialized_root: Path) -> None:
        art = fake_api.add("default", "context", "notes", '"# Notes"')

        engine.pull()

        path = initialized_root / ARTIFACTS / "default" / f"context_{art.artifact_id}.md"
        assert path.read_text() == "# Notes"


class TestSyncAndStatus:
    def test_sync_pushes_then_pulls(
        self, engine, fake_api, write_artifact, initialized_root: Path
    ) -> None:
        write_artifact("context", "mine", "local work")
        remote = fake_api.add("default", "hld", "design", "remote work")

        result = engine.sync()

        assert result.success
        assert result.push.pushed == 1
        assert result.pull.created == 1
        assert f"hld_{remote.artifact_id}.md" in _files(initialized_root)
        assert result.to_dict()["pull"]["created"] == 1

    def test_status_reports_new_synced_and_modified(
        self, engine, fake_api, write_artifact, initialized_root: Path
    ) -> None:
        write_artifact("context", "synced", "a")
        engine.push()
        write_artifact("context", "fresh", "b")

        rows = {row["artifactName"]: row for row in engine.status()}

        assert rows["fresh"]["synced"] is False
        assert rows["fresh"]["changed"] is True
        synced_key = fake_api.records[0]["artifactId"]
        assert rows[synced_key]["synced"] is True
        assert rows[synced_key]["changed"] is False
        assert rows[synced_key]["version"] == 1


SPRINT = """# Sprint 1

First cut.

## Tasks

- [ ] Build login
  Email and password
- [x] Write docs*
"""


class TestTasksAsMilestones:
    def test_push_creates_milestone_and_tasks(
        self, engine, fake_api, write_artifact, initialized_root: Path
    ) -> None:
        write_artifact("tasks", "sprint", SPRINT)

        result = engine.push()

        assert result.success
        assert fake_api.push_calls == []
        [milestone] = fake_api.milestones
        assert (milestone["name"], milestone["description"]) == ("Sprint 1", "First cut.")
        assert [(t["title"], t["status"], t["locked"]) for t in fake_api.tasks] == [
            ("Build login", "todo", True),
            ("Write docs", "completed", False),
        ]
        assert fake_api.tasks[0]["description"] == "Email and password"
        assert result.versions == [
            {"artifact": "default/tasks_sprint.md", "version": 1, "tasksCreated": 2}
        ]
        assert _files(initialized_root) == [f"tasks_{milestone['id']}.md"]

    def test_repush_creates_only_new_tasks(
        self, engine, fake_api, write_artifact, initialized_root: Path
    ) -> None:
        write_artifact("tasks", "sprint", SPRINT)
        engine.push()
        milestone_id = fake_api.milestones[0]["id"]
        path = initialized_root / ARTIFACTS / "default" / f"tasks_{milestone_id}.md"
        path.write_text(SPRINT + "- [ ] Add logout\n")

        result = engine.push()

        assert result.versions[0]["tasksCreated"] == 1
        assert len(fake_api.milestones) == 1
        assert [t["title"] for t in fake_api.tasks] == ["Build login", "Write docs", "Add logout"]

    def test_existing_milestone_is_reused_by_name(
        self, engine, fake_api, write_artifact
    ) -> None:
        milestone = fake_api.add_milestone("default", "Sprint 1")
        fake_api.add_task(milestone["id"], "Build login", description="email and  password")
        write_artifact("tasks", "sprint", SPRINT)

        result = engine.push()

        assert result.versions[0]["tasksCreated"] == 1
        assert len(fake_api.milestones) == 1

    def test_milestone_failure_is_reported(self, engine, fake_api, write_artifact) -> None:
        write_artifact("tasks", "sprint", SPRINT)
        fake_api.fail_names.add("Sprint 1")

        result = engine.push()

        assert not result.success
        assert result.errors == [
            {"artifact": "default/tasks_sprint.md", "error": "cannot save Sprint 1"}
        ]

    def test_pushed_file_is_up_to_date_on_pull(self, engine, fake_api, write_artifact) -> None:
        write_artifact("tasks", "sprint", SPRINT)
        engine.push()

        result = engine.pull()

        assert result.skipped == 1
        assert result.pulled == 0

    def test_pull_rebuilds_milestone_file(
        self, engine, fake_api, initialized_root: Path
    ) -> None:
        milestone = fake_api.add_milestone("billing", "Payments", "Take money.")
        fake_api.add_task(
            milestone["id"], "Charge card", description="Use the card API", status="completed"
        )
        fake_api.add_task(milestone["id"], "Refunds", locked=False)

        result = engine.pull()
        again = engine.pull()

        assert result.created == 1
        path = initialized_root / ARTIFACTS / "billing" / f"tasks_{milestone['id']}.md"
        assert path.read_text() == (
            "# Payments\n\nTake money.\n\n## Tasks\n\n"
            "- [x] Charge card\n  Use the card API\n- [ ] Refunds*\n"
        )
        assert again.skipped == 1

    def test_type_filter_excludes_milestones(self, engine, fake_api) -> None:
        fake_api.add_milestone("default", "Payments")

        result = engine.pull(ArtifactFilters(artifact_type=ArtifactType.HLD))

        assert result.created == 0

    def test_disabled_pushes_tasks_as_artifacts(
        self, fake_api, write_artifact, initialized_root: Path
    ) -> None:
        write_artifact("tasks", "sprint", SPRINT)
        engine = SyncEngine(
            ArtifactStore(artifacts_dir(initialized_root)),
            MetadataIndex(artifacts_dir(initialized_root), locks_dir(initialized_root)),
            fake_api,
            tasks_as_milestones=False,
        )

        engine.push()

        assert fake_api.milestones == []
        assert fake_api.push_calls[0]["artifactType"] == "tasks"
