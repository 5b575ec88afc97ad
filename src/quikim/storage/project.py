"""Project config, tool config, and workflow state files under ``.quikim/``."""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import Generator
from pathlib import Path

from quikim.core.config import (
    ProjectConfig,
    apply_env_overrides,
    default_config,
    load_config,
    parse_project_config,
)
from quikim.core.workflow import WorkflowState
from quikim.errors import ProjectConfigError, StorageError
from quikim.storage.fs import QUIKIM_DIR, atomic_write
from quikim.storage.locks import KeyedLocks, keyed_lock

logger = logging.getLogger(__name__)

PROJECT_FILENAME = "project.json"
CONFIG_FILENAME = "config.json"
STATE_FILENAME = "workflow-state.json"


def quikim_dir(root: Path) -> Path:
    return root / QUIKIM_DIR


def artifacts_dir(root: Path) -> Path:
    return root / QUIKIM_DIR / "artifacts"


def locks_dir(root: Path) -> Path:
    return root / QUIKIM_DIR / "locks"


def load_project_config(root: Path) -> ProjectConfig:
    """Read and validate ``.quikim/project.json``.

    Raises:
        ProjectConfigError: If the file is missing, unreadable, or invalid.
    """
    path = quikim_dir(root) / PROJECT_FILENAME
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ProjectConfigError(
            f"No {QUIKIM_DIR}/{PROJECT_FILENAME} found. Run 'quikim init' first."
        ) from None
    except OSError as exc:
        raise ProjectConfigError(f"Cannot read {path}: {exc}") from exc
    return parse_project_config(raw)


def write_project_config(root: Path, project: ProjectConfig) -> None:
    path = quikim_dir(root) / PROJECT_FILENAME
    atomic_write(path, json.dumps(project, sort_keys=True, indent=2) + "\n")


def load_quikim_config(root: Path) -> dict:
    """Return ``.quikim/config.json`` merged over the defaults, with env overrides.

    A missing file means defaults. An unparseable file is an error.
    """
    path = quikim_dir(root) / CONFIG_FILENAME
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return apply_env_overrides(default_config())  # type: ignore[arg-type]
    try:
        config = load_config(raw)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ProjectConfigError(f"{path} is not a valid config: {exc}") from exc
    return apply_env_overrides(config)


class WorkflowStateStore:
    """Persist one ``WorkflowState`` per project at ``.quikim/<projectId>/workflow-state.json``."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._locks = KeyedLocks()

    def path_for(self, project_id: str) -> Path:
        if not project_id or "/" in project_id or "\\" in project_id or project_id in (".", ".."):
            raise ValueError(f"Invalid project id: '{project_id}'")
        return quikim_dir(self.root) / project_id / STATE_FILENAME

    @contextlib.contextmanager
    def lock(self, project_id: str) -> Generator[None, None, None]:
        """Serialize read-modify-write cycles for one project."""
        with keyed_lock(self._locks, locks_dir(self.root), f"workflow-{project_id}"):
            yield

    def load(self, project_id: str) -> WorkflowState | None:
        """Return the saved state, or ``None`` when absent or unreadable."""
        path = self.path_for(project_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
        try:
            return WorkflowState.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Ignoring corrupt workflow state %s: %s", path, exc)
            return None

    def save(self, state: WorkflowState) -> None:
        path = self.path_for(state.project_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write(path, json.dumps(state.to_dict(), sort_keys=True, indent=2) + "\n")
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc
