"""Tests for project.json, config.json, and workflow state persistence."""

from __future__ import annotations

from pathlib import Path

import pytest

from quikim.core.workflow import WorkflowState
from quikim.errors import ProjectConfigError
from quikim.storage.fs import ensure_quikim_dirs
from quikim.storage.project import (
    STATE_FILENAME,
    WorkflowStateStore,
    load_project_config,
    load_quikim_config,
    quikim_dir,
    write_project_config,
)


class TestProjectConfig:
    def test_round_trip(self, tmp_path: Path) -> None:
        ensure_quikim_dirs(tmp_path)
        write_project_config(tmp_path, {"projectId": "p", "organizationId": "o"})

        assert load_project_config(tmp_path)["organizationId"] == "o"

    def test_missing_is_config_error(self, tmp_path: Path) -> None:
        ensure_quikim_dirs(tmp_path)
        with pytest.raises(ProjectConfigError, match="quikim init"):
            load_project_config(tmp_path)

    def test_incomplete_is_config_error(self, tmp_path: Path) -> None:
        ensure_quikim_dirs(tmp_path)
        (quikim_dir(tmp_path) / "project.json").write_text('{"projectId": "p"}')
        with pytest.raises(ProjectConfigError, match="organizationId"):
            load_project_config(tmp_path)


class TestQuikimConfig:
    def test_missing_file_gives_defaults(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("QUIKIM_API_URL", raising=False)
        ensure_quikim_dirs(tmp_path)

        assert load_quikim_config(tmp_path)["api_url"] == "https://api.quikim.com"

    def test_env_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("QUIKIM_API_URL", "http://localhost:4000")
        ensure_quikim_dirs(tmp_path)
        (quikim_dir(tmp_path) / "config.json").write_text('{"max_workers": 2}')

        config = load_quikim_config(tmp_path)
        assert config["api_url"] == "http://localhost:4000"
        assert config["max_workers"] == 2

    def test_invalid_file_is_config_error(self, tmp_path: Path) -> None:
        ensure_quikim_dirs(tmp_path)
        (quikim_dir(tmp_path) / "config.json").write_text("[]")
        with pytest.raises(ProjectConfigError):
            load_quikim_config(tmp_path)


class TestWorkflowStateStore:
    def test_missing_state_loads_none(self, tmp_path: Path) -> None:
        assert WorkflowStateStore(tmp_path).load("proj") is None

    def test_save_and_load(self, tmp_path: Path) -> None:
        store = WorkflowStateStore(tmp_path)
        state = WorkflowState(
            project_id="proj",
            current_node="hld",
            completed_nodes=["requirements"],
            pending_instruction_id="instr_X",
            pending_node="hld",
        )
        with store.lock("proj"):
            store.save(state)

        assert store.path_for("proj") == tmp_path / ".quikim" / "proj" / STATE_FILENAME
        assert store.load("proj") == state

    def test_corrupt_state_loads_none(self, tmp_path: Path) -> None:
        store = WorkflowStateStore(tmp_path)
        path = store.path_for("proj")
        path.parent.mkdir(parents=True)
        path.write_text("{}")

        assert store.load("proj") is None

    @pytest.mark.parametrize("project_id", ["", "..", "a/b"])
    def test_invalid_project_id(self, tmp_path: Path, project_id: str) -> None:
        with pytest.raises(ValueError):
            WorkflowStateStore(tmp_path).path_for(project_id)
