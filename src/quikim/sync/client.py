"""HTTP client for the Quikim artifact API."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

import httpx
from pydantic import ValidationError as PydanticValidationError

from quikim.core.artifacts import ArtifactFilters, ArtifactType, ServerArtifact, is_versioned
from quikim.core.config import resolve_token
from quikim.core.tasks import ParsedTask
from quikim.errors import (
    AuthenticationError,
    NotFoundError,
    RemoteAPIError,
    TransientNetworkError,
    ValidationError,
)
from quikim.storage.project import load_project_config, load_quikim_config
from quikim.sync.retry import RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def _unwrap(payload: object) -> object:
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _matches(filters: ArtifactFilters, artifact: ServerArtifact) -> bool:
    if filters.spec_name and artifact.spec_name != filters.spec_name:
        return False
    if filters.artifact_type and artifact.artifact_type != filters.artifact_type:
        return False
    if filters.artifact_name:
        return filters.artifact_name in (
            artifact.artifact_name,
            artifact.file_key,
            artifact.artifact_id,
        )
    return True


def _error_message(response: httpx.Response) -> tuple[str, dict | None]:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text or response.reason_phrase or f"HTTP {response.status_code}", None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or f"HTTP {response.status_code}"
        return str(message), body
    return f"HTTP {response.status_code}", {"body": body}


class ArtifactAPIClient:
    """Talks to ``/api/v1/organizations/{org}/projects/{project}``.

    Transport failures become ``TransientNetworkError`` and are retried with
    backoff. Error responses become ``RemoteAPIError`` (or its
    ``AuthenticationError``/``ValidationError`` subclasses) and are not
    retried.
    """

    def __init__(
        self,
        base_url: str,
        organization_id: str,
        project_id: str,
        *,
        token: str | None = None,
        timeout: float = 30,
        retry: RetryPolicy | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.organization_id = organization_id
        self.project_id = project_id
        self.retry = retry or RetryPolicy()
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> ArtifactAPIClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    @property
    def project_path(self) -> str:
        return f"{API_PREFIX}/organizations/{self.organization_id}/projects/{self.project_id}"

    # -- transport ----------------------------------------------------------

    def _send(self, method: str, path: str, **kwargs: object) -> httpx.Response:
        url = f"{self.project_path}{path}"
        try:
            response = self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"{method} {url} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"{method} {url} failed: {exc}") from exc
        logger.debug("%s %s -> %d", method, url, response.status_code)
        return response

    def _request(self, method: str, path: str, **kwargs: object) -> httpx.Response:
        response = retry_with_backoff(
            lambda: self._send(method, path, **kwargs),
            self.retry,
            description=f"{method} {path}",
            sleep=self._sleep,
        )
        if response.is_success:
            return response

        message, details = _error_message(response)
        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(message, status, details)
        if status in (400, 422):
            raise ValidationError(message, status, details)
        if status == 404:
            raise NotFoundError(message, status, details)
        raise RemoteAPIError(message, status, details)

    @staticmethod
    def _json(response: httpx.Response) -> object:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteAPIError(
                f"Response is not valid JSON: {exc}", response.status_code
            ) from exc

    @staticmethod
    def _artifact(payload: object) -> ServerArtifact:
        try:
            return ServerArtifact.model_validate(payload)
        except PydanticValidationError as exc:
            errors = [
                {"loc": [str(p) for p in err["loc"]], "msg": err["msg"]} for err in exc.errors()
            ]
            raise ValidationError(
                "Server returned an invalid artifact", details={"errors": errors}
            ) from exc

    # -- artifacts ----------------------------------------------------------

    def list_artifacts(self, filters: ArtifactFilters | None = None) -> list[ServerArtifact]:
        """Return server artifacts matching *filters*; unparseable records are skipped."""
        filters = filters or ArtifactFilters()
        response = self._request("GET", "/artifacts", params=filters.to_query())
        items = _unwrap(self._json(response))
        if items is None:
            return []
        if not isinstance(items, list):
            raise ValidationError("Expected a list of artifacts", response.status_code)

        artifacts = []
        for item in items:
            try:
                artifacts.append(ServerArtifact.model_validate(item))
            except PydanticValidationError as exc:
                logger.warning("Skipping unrecognised server artifact: %s", exc.errors()[0]["msg"])
        # Names are matched here: a local key may be the root id rather than the name.
        return [a for a in artifacts if _matches(filters, a)]

    def fetch_artifact(self, artifact_id: str) -> ServerArtifact:
        response = self._request("GET", f"/artifacts/{artifact_id}")
        return self._artifact(_unwrap(self._json(response)))

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
        """Create, version, or update an artifact and return the server record.

        Versioned types always ``POST`` a new version (carrying ``rootId`` when
        the chain is known). Non-versioned types ``PATCH`` when the
        ``artifact_id`` is known and ``POST`` otherwise.
        """
        body: dict = {
            "specName": spec_name,
            "artifactType": ArtifactType(artifact_type).value,
            "artifactName": artifact_name,
            "content": content,
        }
        if is_versioned(artifact_type):
            if root_id:
                body["rootId"] = root_id
            response = self._request("POST", "/artifacts", json=body)
        elif artifact_id:
            response = self._request(
                "PATCH",
                f"/artifacts/{artifact_id}",
                json={"artifactName": artifact_name, "content": content},
            )
            body["artifactId"] = artifact_id
        else:
            response = self._request("POST", "/artifacts", json=body)

        returned = _unwrap(self._json(response))
        merged = {**body, **returned} if isinstance(returned, dict) else body
        return self._artifact(merged)

    def list_links(self) -> list[dict]:
        """Return artifact links; a server without the endpoint (404) has none."""
        try:
            response = self._request("GET", "/artifact-links")
        except NotFoundError:
            return []
        return self._records(response)

    # -- milestones and tasks -----------------------------------------------

    def _records(self, response: httpx.Response) -> list[dict]:
        items = _unwrap(self._json(response))
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]

    def _created(self, response: httpx.Response, body: dict, what: str) -> dict:
        returned = _unwrap(self._json(response))
        record = {**body, **returned} if isinstance(returned, dict) else dict(body)
        record_id = record.get("id") or record.get(f"{what}Id")
        if not record_id:
            raise ValidationError(f"Server did not return an id for the new {what}")
        record["id"] = str(record_id)
        return record

    def list_milestones(self, spec_name: str | None = None) -> list[dict]:
        """Return milestones; a server without the endpoint (404) has none."""
        params = {"specName": spec_name} if spec_name else {}
        try:
            response = self._request("GET", "/milestones", params=params)
        except NotFoundError:
            return []
        return self._records(response)

    def create_milestone(self, spec_name: str, name: str, description: str) -> dict:
        body = {
            "specName": spec_name,
            "name": name,
            "description": description,
            "order": 0,
            "status": "pending",
        }
        response = self._request("POST", "/milestones", json=body)
        return self._created(response, body, "milestone")

    def list_tasks(self, milestone_id: str, spec_name: str | None = None) -> list[dict]:
        params = {"milestoneId": milestone_id}
        if spec_name:
            params["specName"] = spec_name
        response = self._request("GET", "/tasks", params=params)
        return self._records(response)

    def create_task(self, milestone_id: str, spec_name: str, task: ParsedTask) -> dict:
        """Create one checklist item; required tasks are locked and high priority."""
        body = {
            "milestoneId": milestone_id,
            "specName": spec_name,
            "title": task.title,
            "description": task.description,
            "status": task.status,
            "priority": "high" if task.required else "medium",
            "type": "feature",
            "locked": task.required,
            "order": task.order,
        }
        response = self._request("POST", "/tasks", json=body)
        return self._created(response, body, "task")


def client_from_project(
    root: Path, *, transport: httpx.BaseTransport | None = None
) -> ArtifactAPIClient:
    """Build a client from ``.quikim/project.json``, ``config.json``, and ``QUIKIM_TOKEN``."""
    project = load_project_config(root)
    config = load_quikim_config(root)
    return ArtifactAPIClient(
        config["api_url"],
        project["organizationId"],
        project["projectId"],
        token=resolve_token(),
        timeout=float(config.get("timeout_seconds", 30)),
        retry=RetryPolicy.from_config(config),
        transport=transport,
    )
