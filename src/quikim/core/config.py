"""Default config generation, parsing, and project config validation."""

from __future__ import annotations

import copy
import json
import os
from typing import TypedDict

from quikim.errors import ProjectConfigError

API_URL_ENV = "QUIKIM_API_URL"
TOKEN_ENV = "QUIKIM_TOKEN"


class RetryConfig(TypedDict, total=False):
    max_attempts: int
    initial_delay: float
    multiplier: float
    max_delay: float


class ContextPolicyConfig(TypedDict, total=False):
    max_artifacts: int
    max_tokens: int
    priority_order: list[str]
    fallback: str


class NodeConfig(TypedDict, total=False):
    node_id: str
    artifact_type: str
    dependencies: list[str]
    label: str
    aliases: list[str]


class WorkflowConfig(TypedDict, total=False):
    spec_name: str
    enforce_links: bool
    nodes: list[NodeConfig]


class SyncConfig(TypedDict, total=False):
    tasks_as_milestones: bool


class QuikimConfig(TypedDict, total=False):
    schema_version: int
    api_url: str
    timeout_seconds: float
    max_workers: int
    retry: RetryConfig
    context_policy: ContextPolicyConfig
    workflow: WorkflowConfig
    sync: SyncConfig


class ProjectConfig(TypedDict, total=False):
    projectId: str
    organizationId: str
    userId: str
    latestVersion: int


def default_config() -> QuikimConfig:
    """Return the default quikim configuration.

    The returned dict, when serialized with ``serialize_config``, produces
    the canonical default ``config.json``.
    """
    return {
        "schema_version": 1,
        "api_url": "https://api.quikim.com",
        "timeout_seconds": 30,
        "max_workers": 4,
        "retry": {
            "max_attempts": 3,
            "initial_delay": 1.0,
            "multiplier": 2.0,
            "max_delay": 10.0,
        },
        "context_policy": {
            "max_artifacts": 8,
            "max_tokens": 32000,
            "priority_order": [
                "currentNodeDependencies",
                "directParents",
                "LLMContextArtifacts",
                "recentArtifacts",
            ],
            "fallback": "summarize",
        },
        "workflow": {
            "spec_name": "default",
            "enforce_links": False,
        },
        "sync": {
            "tasks_as_milestones": True,
        },
    }


def serialize_config(config: QuikimConfig | dict[str, object]) -> str:
    """Serialize a config dict to the canonical JSON format."""
    return json.dumps(config, sort_keys=True, indent=2) + "\n"


def load_config(raw: str) -> dict:
    """Parse a JSON config string and return it merged over the defaults.

    This is a pure function (no I/O).  The caller reads the file and passes
    the raw string here.
    """
    overrides = json.loads(raw)
    if not isinstance(overrides, dict):
        raise ValueError("config.json must contain a JSON object")
    return merge_config(default_config(), overrides)


def merge_config(defaults: dict, overrides: dict) -> dict:
    """Recursively merge *overrides* onto a copy of *defaults*.

    Nested dicts are merged key by key; any other value (including lists)
    replaces the default outright.
    """
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_env_overrides(config: dict, environ: dict[str, str] | None = None) -> dict:
    """Return *config* with ``QUIKIM_API_URL`` applied, if set."""
    env = os.environ if environ is None else environ
    api_url = env.get(API_URL_ENV)
    if api_url:
        config = {**config, "api_url": api_url}
    return config


def resolve_token(environ: dict[str, str] | None = None) -> str | None:
    """Return the bearer token from ``QUIKIM_TOKEN``, or ``None``."""
    env = os.environ if environ is None else environ
    return env.get(TOKEN_ENV) or None


# ---------------------------------------------------------------------------
# Project config (.quikim/project.json)
# ---------------------------------------------------------------------------


def parse_project_config(raw: str) -> ProjectConfig:
    """Parse ``project.json``.

    Raises:
        ProjectConfigError: If *raw* is not a JSON object or lacks
            ``projectId``/``organizationId``.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProjectConfigError(f"project.json is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProjectConfigError("project.json must contain a JSON object")
    for field in ("projectId", "organizationId"):
        value = data.get(field)
        if not isinstance(value, str) or not value:
            raise ProjectConfigError(f"project.json is missing '{field}'")
    return data  # type: ignore[return-value]
