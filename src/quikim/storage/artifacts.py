"""Local artifact files under ``.quikim/artifacts/<spec>/``."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from quikim.core.artifacts import (
    ArtifactFilters,
    ArtifactType,
    LocalArtifact,
    artifact_filename,
    is_versioned,
    parse_artifact_filename,
    validate_spec_name,
)
from quikim.errors import StorageError
from quikim.storage.fs import TEMP_PREFIX, atomic_rename, atomic_write


class ArtifactStore:
    """Read, write, and enumerate artifact files.

    Absence is never an error here: ``read`` returns ``None`` and ``scan``
    returns ``[]`` for a missing directory. Every other ``OSError`` is raised
    as ``StorageError``.
    """

    def __init__(self, artifacts_dir: Path) -> None:
        self.artifacts_dir = artifacts_dir

    def spec_dir(self, spec_name: str) -> Path:
        return self.artifacts_dir / validate_spec_name(spec_name)

    def path_for(self, spec_name: str, artifact_type: ArtifactType | str, key: str) -> Path:
        return self.spec_dir(spec_name) / artifact_filename(artifact_type, key)

    def write(
        self,
        spec_name: str,
        artifact_type: ArtifactType | str,
        artifact_name: str,
        content: str,
        *,
        root_id: str | None = None,
        artifact_id: str | None = None,
    ) -> Path:
        """Atomically write an artifact and return its path.

        The filename key is the ``root_id`` for versioned types (so every
        version of a chain lands in the same file), otherwise the
        ``artifact_id``, otherwise *artifact_name*.
        """
        if root_id and is_versioned(artifact_type):
            key = root_id
        else:
            key = artifact_id or artifact_name
        path = self.path_for(spec_name, artifact_type, key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write(path, content)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc
        return path

    def read(self, spec_name: str, artifact_type: ArtifactType | str, key: str) -> str | None:
        path = self.path_for(spec_name, artifact_type, key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc

    def exists(self, spec_name: str, artifact_type: ArtifactType | str, key: str) -> bool:
        return self.path_for(spec_name, artifact_type, key).is_file()

    def rename(
        self,
        spec_name: str,
        artifact_type: ArtifactType | str,
        old_key: str,
        new_key: str,
    ) -> Path:
        """Move an artifact file onto a new key, replacing any existing target."""
        source = self.path_for(spec_name, artifact_type, old_key)
        target = self.path_for(spec_name, artifact_type, new_key)
        if source == target:
            return target
        try:
            atomic_rename(source, target)
        except OSError as exc:
            raise StorageError(f"Failed to rename {source} to {target}: {exc}") from exc
        return target

    def spec_names(self) -> list[str]:
        try:
            return sorted(
                p.name
                for p in self.artifacts_dir.iterdir()
                if p.is_dir() and not p.name.startswith(".")
            )
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageError(f"Failed to list {self.artifacts_dir}: {exc}") from exc

    def scan(self, filters: ArtifactFilters | None = None) -> list[LocalArtifact]:
        """Return every artifact file matching *filters*, sorted by spec then filename."""
        filters = filters or ArtifactFilters()
        specs = [filters.spec_name] if filters.spec_name else self.spec_names()

        results: list[LocalArtifact] = []
        for spec_name in specs:
            spec_dir = self.spec_dir(spec_name)
            try:
                entries = sorted(spec_dir.iterdir())
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StorageError(f"Failed to list {spec_dir}: {exc}") from exc

            for path in entries:
                if path.name.startswith((TEMP_PREFIX, ".")) or not path.is_file():
                    continue
                parsed = parse_artifact_filename(path.name)
                if parsed is None:
                    continue
                artifact_type, key = parsed
                if not filters.matches(spec_name, artifact_type, key):
                    continue
                try:
                    content = path.read_text(encoding="utf-8")
                    mtime = path.stat().st_mtime
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    raise StorageError(f"Failed to read {path}: {exc}") from exc
                results.append(
                    LocalArtifact(
                        spec_name=spec_name,
                        artifact_type=artifact_type,
                        artifact_name=key,
                        content=content,
                        file_path=path,
                        last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc),
                    )
                )
        return results
