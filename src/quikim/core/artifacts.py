"""Artifact types, identity, filenames, and sync result records."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from quikim.core.hashing import compute_content_hash

# ---------------------------------------------------------------------------
# Artifact types
# ---------------------------------------------------------------------------


class ArtifactType(str, Enum):
    REQUIREMENT = "requirement"
    HLD = "hld"
    LLD = "lld"
    TASKS = "tasks"
    WIREFRAME_FILES = "wireframe_files"
    FLOW_DIAGRAM = "flow_diagram"
    ER_DIAGRAM = "er_diagram"
    CONTEXT = "context"
    CODE_GUIDELINE = "code_guideline"


# Versioned types keep one local file per version chain, keyed by root id.
VERSIONED_ARTIFACT_TYPES: frozenset[ArtifactType] = frozenset(
    {
        ArtifactType.REQUIREMENT,
        ArtifactType.HLD,
        ArtifactType.LLD,
        ArtifactType.FLOW_DIAGRAM,
        ArtifactType.ER_DIAGRAM,
        ArtifactType.WIREFRAME_FILES,
    }
)

FILENAME_PREFIXES: dict[ArtifactType, str] = {t: f"{t.value}_" for t in ArtifactType}

# Longest prefix first so "wireframe_files_x" never parses as a shorter type.
_PREFIXES_BY_LENGTH: list[tuple[str, ArtifactType]] = sorted(
    ((prefix, t) for t, prefix in FILENAME_PREFIXES.items()),
    key=lambda item: len(item[0]),
    reverse=True,
)

ARTIFACT_SUFFIX = ".md"
DEFAULT_SPEC = "default"

_UNSAFE_KEY_RE = re.compile(r'[/\\:*?"<>|]')
_WHITESPACE_RE = re.compile(r"\s+")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def is_versioned(artifact_type: ArtifactType | str) -> bool:
    """Return ``True`` if *artifact_type* produces a new server version per edit."""
    return ArtifactType(artifact_type) in VERSIONED_ARTIFACT_TYPES


def looks_like_server_id(key: str) -> bool:
    """Return ``True`` if *key* has the shape of a server-assigned UUID."""
    return bool(_UUID_RE.match(key))


# ---------------------------------------------------------------------------
# Filenames
# ---------------------------------------------------------------------------


def sanitize_key(key: str) -> str:
    """Make *key* safe to embed in a filename."""
    cleaned = _UNSAFE_KEY_RE.sub("_", key.strip())
    cleaned = _WHITESPACE_RE.sub("_", cleaned)
    if not cleaned:
        raise ValueError("Artifact key must not be empty")
    return cleaned


def validate_spec_name(spec_name: str) -> str:
    """Return *spec_name* if it is a single safe path component, else raise ``ValueError``."""
    if not spec_name or spec_name in (".", "..") or "/" in spec_name or "\\" in spec_name:
        raise ValueError(f"Invalid spec name: '{spec_name}'")
    return spec_name


def artifact_filename(artifact_type: ArtifactType | str, key: str) -> str:
    """Return ``<prefix><key>.md`` for an artifact."""
    return f"{FILENAME_PREFIXES[ArtifactType(artifact_type)]}{sanitize_key(key)}{ARTIFACT_SUFFIX}"


def artifact_key(artifact_type: ArtifactType | str, key: str) -> str:
    """Return the identity key used by the metadata index (the filename stem)."""
    return artifact_filename(artifact_type, key)[: -len(ARTIFACT_SUFFIX)]


def parse_artifact_filename(filename: str) -> tuple[ArtifactType, str] | None:
    """Parse ``<prefix><key>.md`` into ``(artifact_type, key)``.

    Returns ``None`` for files that are not artifacts (wrong suffix, unknown
    prefix, or an empty key).
    """
    if not filename.endswith(ARTIFACT_SUFFIX):
        return None
    stem = filename[: -len(ARTIFACT_SUFFIX)]
    for prefix, artifact_type in _PREFIXES_BY_LENGTH:
        if stem.startswith(prefix) and len(stem) > len(prefix):
            return artifact_type, stem[len(prefix) :]
    return None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArtifactFilters:
    spec_name: str | None = None
    artifact_type: ArtifactType | None = None
    artifact_name: str | None = None

    def matches(self, spec_name: str, artifact_type: ArtifactType, artifact_name: str) -> bool:
        if self.spec_name and spec_name != self.spec_name:
            return False
        if self.artifact_type and artifact_type != self.artifact_type:
            return False
        if self.artifact_name and artifact_name != self.artifact_name:
            return False
        return True

    def to_query(self) -> dict[str, str]:
        """Return the spec/type filters as remote API query parameters.

        ``artifact_name`` is left out: locally it may be a root id rather than
        a name, so callers match it against the returned records instead.
        """
        params: dict[str, str] = {}
        if self.spec_name:
            params["specName"] = self.spec_name
        if self.artifact_type:
            params["artifactType"] = ArtifactType(self.artifact_type).value
        return params


@dataclass(frozen=True)
class LocalArtifact:
    """An artifact file on disk. ``artifact_name`` is the filename key."""

    spec_name: str
    artifact_type: ArtifactType
    artifact_name: str
    content: str
    file_path: Path
    last_modified: datetime | None = None

    @property
    def key(self) -> str:
        return artifact_key(self.artifact_type, self.artifact_name)

    @property
    def label(self) -> str:
        """Short human-readable identity used in results and logs."""
        return f"{self.spec_name}/{self.file_path.name}"


class ServerArtifact(BaseModel):
    """An artifact as returned by the remote API.

    Validation happens here, at the API boundary: camelCase keys and the
    backend's ``id``/``name``/``type`` aliases are accepted, ``artifact_type``
    must be a known ``ArtifactType``, and structured ``content`` is JSON-encoded.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    artifact_id: str = Field(validation_alias=AliasChoices("artifactId", "artifact_id", "id"))
    root_id: str | None = Field(default=None, validation_alias=AliasChoices("rootId", "root_id"))
    spec_name: str = Field(
        default=DEFAULT_SPEC, validation_alias=AliasChoices("specName", "spec_name")
    )
    artifact_type: ArtifactType = Field(
        validation_alias=AliasChoices("artifactType", "artifact_type", "type")
    )
    artifact_name: str = Field(
        validation_alias=AliasChoices("artifactName", "artifact_name", "name")
    )
    content: str = ""
    version: int = 1
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("createdAt", "created_at")
    )
    updated_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("updatedAt", "updated_at")
    )
    is_llm_context: bool = Field(
        default=False,
        validation_alias=AliasChoices("isLLMContext", "isLlmContext", "is_llm_context"),
    )
    content_hash: str | None = Field(
        default=None, validation_alias=AliasChoices("contentHash", "content_hash")
    )

    @field_validator("artifact_id", "root_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("spec_name", mode="before")
    @classmethod
    def _default_spec(cls, value: object) -> object:
        return value or DEFAULT_SPEC

    @field_validator("content", mode="before")
    @classmethod
    def _content_as_text(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return json.dumps(value, sort_keys=True)

    @field_validator("version", mode="before")
    @classmethod
    def _default_version(cls, value: object) -> object:
        return 1 if value is None else value

    @property
    def chain_id(self) -> str:
        """The id shared by every version of this artifact."""
        return self.root_id or self.artifact_id

    @property
    def file_key(self) -> str:
        """The local filename key: root id for versioned types, own id otherwise."""
        if is_versioned(self.artifact_type):
            return self.chain_id
        return self.artifact_id

    @property
    def label(self) -> str:
        return f"{self.spec_name}/{artifact_filename(self.artifact_type, self.file_key)}"

    def normalized_hash(self) -> str:
        return self.content_hash or compute_content_hash(self.content)


@dataclass
class MetadataEntry:
    """Last-known sync state of one artifact, as stored in ``.metadata.json``."""

    artifact_id: str
    artifact_type: str
    artifact_name: str
    spec_name: str
    version_number: int
    content_hash: str
    last_sync_timestamp: str
    root_id: str | None = None

    def to_dict(self) -> dict:
        data = {
            "artifactId": self.artifact_id,
            "artifactType": self.artifact_type,
            "artifactName": self.artifact_name,
            "specName": self.spec_name,
            "versionNumber": self.version_number,
            "contentHash": self.content_hash,
            "lastSyncTimestamp": self.last_sync_timestamp,
        }
        if self.root_id is not None:
            data["rootId"] = self.root_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> MetadataEntry:
        """Build an entry from its stored form. Raises ``KeyError``/``TypeError`` if malformed."""
        return cls(
            artifact_id=str(data["artifactId"]),
            artifact_type=str(data["artifactType"]),
            artifact_name=str(data["artifactName"]),
            spec_name=str(data["specName"]),
            version_number=int(data.get("versionNumber", 1)),
            content_hash=str(data["contentHash"]),
            last_sync_timestamp=str(data.get("lastSyncTimestamp", "")),
            root_id=data.get("rootId"),
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class PushResult:
    success: bool = True
    pushed: int = 0
    skipped: int = 0
    errors: list[dict] = field(default_factory=list)
    versions: list[dict] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "pushed": self.pushed,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "versions": list(self.versions),
            "dryRun": self.dry_run,
        }


@dataclass
class PullResult:
    success: bool = True
    pulled: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[dict] = field(default_factory=list)
    versions: list[dict] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "pulled": self.pulled,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "versions": list(self.versions),
            "dryRun": self.dry_run,
        }


@dataclass
class SyncResult:
    push: PushResult
    pull: PullResult

    @property
    def success(self) -> bool:
        return self.push.success and self.pull.success

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "push": self.push.to_dict(),
            "pull": self.pull.to_dict(),
        }


# ---------------------------------------------------------------------------
# Version chains and duplicates
# ---------------------------------------------------------------------------


def select_latest(artifacts: list[ServerArtifact]) -> list[ServerArtifact]:
    """Reduce each version chain to its highest version.

    Non-versioned artifacts are their own chain. Ties on version keep the
    most recently updated record, then the first seen. Input order of the
    surviving chains is preserved.
    """
    latest: dict[tuple[str, str, str], ServerArtifact] = {}
    for artifact in artifacts:
        chain = (artifact.spec_name, artifact.artifact_type.value, artifact.chain_id)
        current = latest.get(chain)
        if current is None or _newer(artifact, current):
            latest[chain] = artifact
    return list(latest.values())


def _newer(candidate: ServerArtifact, current: ServerArtifact) -> bool:
    if candidate.version != current.version:
        return candidate.version > current.version
    if candidate.updated_at and current.updated_at:
        return candidate.updated_at > current.updated_at
    return False


def find_duplicate_artifact(
    spec_name: str,
    artifact_type: ArtifactType,
    artifact_name: str,
    content: str,
    server_artifacts: list[ServerArtifact],
) -> tuple[ServerArtifact | None, bool]:
    """Find the server artifact a local artifact corresponds to.

    Identity matches on spec + type + either the artifact name or the local
    file key (root id / artifact id). Returns ``(match, identical)``:
    ``identical`` is ``True`` when some matching version has the same
    normalized content; otherwise ``match`` is the latest matching version
    (so the caller can push an update to it), or ``None`` when nothing
    matches.
    """
    if not spec_name or not artifact_name:
        return None, False

    matches = [
        a
        for a in server_artifacts
        if a.spec_name == spec_name
        and a.artifact_type == artifact_type
        and artifact_name in (a.artifact_name, a.file_key, a.artifact_id)
    ]
    if not matches:
        return None, False

    local_hash = compute_content_hash(content)
    for candidate in matches:
        if candidate.normalized_hash() == local_hash:
            return candidate, True

    latest = matches[0]
    for candidate in matches[1:]:
        if _newer(candidate, latest):
            latest = candidate
    return latest, False
