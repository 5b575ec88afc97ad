"""Per-spec sync metadata stored in ``.quikim/artifacts/<spec>/.metadata.json``."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from quikim.core.artifacts import MetadataEntry, validate_spec_name
from quikim.core.hashing import compute_content_hash
from quikim.core.ids import utc_now
from quikim.errors import StorageError
from quikim.storage.fs import atomic_write
from quikim.storage.locks import KeyedLocks, keyed_lock

logger = logging.getLogger(__name__)

METADATA_FILENAME = ".metadata.json"


def _lock_key(spec_name: str) -> str:
    return f"metadata-{spec_name}"


class MetadataIndex:
    """Last-synced content hash and server identity for each local artifact.

    Metadata is advisory: it only decides whether an artifact needs a remote
    call. Each spec has its own lock, so writes to different specs never
    block one another. Within a spec, rewrites are serialized by a thread
    lock plus a file lock under ``locks_dir``.
    """

    def __init__(self, artifacts_dir: Path, locks_dir: Path) -> None:
        self.artifacts_dir = artifacts_dir
        self.locks_dir = locks_dir
        self._locks = KeyedLocks()
        self._cache: dict[str, dict[str, MetadataEntry]] = {}

    def path_for(self, spec_name: str) -> Path:
        return self.artifacts_dir / validate_spec_name(spec_name) / METADATA_FILENAME

    # -- reads --------------------------------------------------------------

    def load(self, spec_name: str) -> dict[str, MetadataEntry]:
        """Return the metadata map for *spec_name*, reading it from disk once."""
        with self._locks.hold(_lock_key(spec_name)):
            cached = self._cache.get(spec_name)
            if cached is None:
                cached = self._read(spec_name)
                self._cache[spec_name] = cached
            return dict(cached)

    def _read(self, spec_name: str) -> dict[str, MetadataEntry]:
        path = self.path_for(spec_name)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc

        try:
            data = json.loads(raw)
            entries = {
                key: MetadataEntry.from_dict(value)
                for key, value in data.get("artifacts", {}).items()
            }
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring corrupt metadata file %s: %s", path, exc)
            return {}
        return entries

    def get(self, spec_name: str, key: str) -> MetadataEntry | None:
        return self.load(spec_name).get(key)

    def has_changed(self, spec_name: str, key: str, content: str) -> bool:
        """Return ``True`` if *content* differs from the last sync, or was never synced."""
        entry = self.get(spec_name, key)
        if entry is None:
            return True
        return entry.content_hash != compute_content_hash(content)

    # -- writes -------------------------------------------------------------

    def update(self, spec_name: str, key: str, entry: MetadataEntry) -> None:
        with keyed_lock(self._locks, self.locks_dir, _lock_key(spec_name)):
            entries = self._fresh(spec_name)
            entries[key] = entry
            self._write(spec_name, entries)

    def remove(self, spec_name: str, key: str) -> None:
        with keyed_lock(self._locks, self.locks_dir, _lock_key(spec_name)):
            entries = self._fresh(spec_name)
            if entries.pop(key, None) is not None:
                self._write(spec_name, entries)

    def clear_cache(self, spec_name: str | None = None) -> None:
        if spec_name is None:
            self._cache.clear()
        else:
            self._cache.pop(spec_name, None)

    def _fresh(self, spec_name: str) -> dict[str, MetadataEntry]:
        # Re-read under the file lock so another process's writes are kept.
        entries = self._read(spec_name)
        self._cache[spec_name] = entries
        return entries

    def _write(self, spec_name: str, entries: dict[str, MetadataEntry]) -> None:
        path = self.path_for(spec_name)
        payload = {
            "specName": spec_name,
            "artifacts": {key: entries[key].to_dict() for key in sorted(entries)},
            "lastUpdated": utc_now(),
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write(path, json.dumps(payload, sort_keys=True, indent=2) + "\n")
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc
        self._cache[spec_name] = dict(entries)
