"""Tests for MCP tool functions."""

from __future__ import annotations

from pathlib import Path

import pytest

import quikim.mcp.tools as tools
from quikim.errors import ProjectConfigError
from quikim.mcp.tools import (
    quikim_next_instruction,
    quikim_pull,
    quikim_push,
    quikim_record_progress,
    quikim_status,
)


@pytest.fixture()
def quikim_env(initialized_root: Path, fake_api, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point QUIKIM_ROOT at an initialized project and route tools to ``fake_api``."""
    monkeypatch.setenv("QUIKIM_ROOT", str(initialized_root))
    monkeypatch.setattr(tools, "_build_client", lambda root: fake_api)
    return initialized_root


class TestSyncTools:
    def test_push(self, quikim_env: Path, write_artifact, fake_api) -> None:
        write_artifact("requirement", "main", "# Requirements")

        result = quikim_push()

        assert result["success"] is True
        assert result["pushed"] == 1
        assert fake_api.closed

    def test_pull_dry_run(self, quikim_env: Path, fake_api) -> None:
        fake_api.add("default", "tasks", "sprint", "- one")

        result = quikim_pull(dry_run=True)

        assert result["dryRun"] is True
        assert result["created"] == 1

    def test_status(self, quikim_env: Path, write_artifact) -> None:
        write_artifact("context", "sprint", "- one")

        rows = quikim_status(spec_name="default")

        assert [row["artifact"] for row in rows] == ["default/context_sprint.md"]

    def test_invalid_type(self, quikim_env: Path) -> None:
        with pytest.raises(ValueError, match="Invalid artifact type"):
            quikim_push(artifact_type="poem")

    def test_explicit_root(self, initialized_root: Path, fake_api, monkeypatch) -> None:
        monkeypatch.delenv("QUIKIM_ROOT", raising=False)
        monkeypatch.setattr(tools, "_build_client", lambda root: fake_api)

        result = quikim_pull(quikim_root=str(initialized_root))

        assert result["success"] is True

    def test_missing_root(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="No .quikim/"):
            quikim_status(quikim_root=str(tmp_path))

    def test_client_errors_become_value_errors(
        self, quikim_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken(root: Path):
            raise ProjectConfigError("project.json is missing 'projectId'")

        monkeypatch.setattr(tools, "_build_client", broken)
        with pytest.raises(ValueError, match="projectId"):
            quikim_push()


class TestWorkflowTools:
    def test_next_then_progress(self, quikim_env: Path, fake_api) -> None:
        fake_api.add("default", "requirement", "main", "# Requirements")

        instruction = quikim_next_instruction()

        assert instruction["action"] == "GENERATE"
        assert instruction["nodeId"] == "hld"
        assert instruction["decisionTrace"]["llmUsed"] is False

        outcome = quikim_record_progress(
            artifact_type="hld",
            artifact_name="hld",
            pending_instruction_id=instruction["pendingInstructionId"],
        )

        assert outcome["acknowledged"] is True
        assert outcome["currentNode"] == "wireframes"

    def test_next_with_intent(self, quikim_env: Path, fake_api) -> None:
        fake_api.add("default", "requirement", "main", "# Requirements")

        instruction = quikim_next_instruction(user_intent="stop for now")

        assert instruction["action"] == "WAIT_FOR_INPUT"
        assert "pendingInstructionId" not in instruction

    def test_progress_without_state(self, quikim_env: Path) -> None:
        with pytest.raises(ValueError, match="No workflow state"):
            quikim_record_progress(artifact_type="hld", pending_instruction_id="instr_X")

    def test_progress_invalid_type(self, quikim_env: Path) -> None:
        with pytest.raises(ValueError, match="Invalid artifact type"):
            quikim_record_progress(artifact_type="poem", pending_instruction_id="instr_X")
