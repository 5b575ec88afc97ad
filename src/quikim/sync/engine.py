"""Push/pull reconciliation between local artifact files and the remote API."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from quikim.core.artifacts import (
    ArtifactFilters,
    ArtifactType,
    LocalArtifact,
    MetadataEntry,
    PullResult,
    PushResult,
    ServerArtifact,
    SyncResult,
    artifact_key,
    find_duplicate_artifact,
    is_versioned,
    looks_like_server_id,
    select_latest,
)
from quikim.core.convert import html_to_markdown
from quikim.core.hashing import (
    compute_content_hash,
    has_content_changed,
    strip_wrapped_quotes,
)
from quikim.core.ids import utc_now
from quikim.errors import ConversionError, NotFoundError, QuikimError
from quikim.storage.artifacts import ArtifactStore
from quikim.storage.metadata import MetadataIndex
from quikim.storage.project import artifacts_dir, load_quikim_config, locks_dir
from quikim.sync.milestones import fetch_milestone_artifacts, push_tasks_milestone

logger = logging.getLogger(__name__)

# Per-artifact outcomes reported by the worker functions.
PUSHED = "pushed"
CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"
FAILED = "failed"


def _entry_for(server: ServerArtifact, content: str) -> MetadataEntry:
    return MetadataEntry(
        artifact_id=server.artifact_id,
        artifact_type=server.artifact_type.value,
        artifact_name=server.artifact_name,
        spec_name=server.spec_name,
        version_number=server.version,
        content_hash=compute_content_hash(content),
        last_sync_timestamp=utc_now(),
        root_id=server.chain_id if is_versioned(server.artifact_type) else server.root_id,
    )


class SyncEngine:
    """Reconcile ``ArtifactStore`` files with the server through an API client.

    The client is a ``quikim.sync.client.ArtifactAPIClient`` or anything with
    the same methods. With ``tasks_as_milestones``, ``tasks`` files are pushed
    as a milestone plus tasks and milestones are pulled back as ``tasks``
    files. Per-artifact failures are collected into the result; they never
    abort the batch.
    """

    def __init__(
        self,
        store: ArtifactStore,
        metadata: MetadataIndex,
        client,
        *,
        max_workers: int = 4,
        converter: Callable[[str], str] = html_to_markdown,
        tasks_as_milestones: bool = True,
    ) -> None:
        self.store = store
        self.metadata = metadata
        self.client = client
        self.max_workers = max(1, max_workers)
        self.converter = converter
        self.tasks_as_milestones = tasks_as_milestones

    @classmethod
    def from_root(cls, root: Path, client) -> SyncEngine:
        """Build an engine over ``<root>/.quikim/`` using ``config.json`` settings."""
        config = load_quikim_config(root)
        return cls(
            ArtifactStore(artifacts_dir(root)),
            MetadataIndex(artifacts_dir(root), locks_dir(root)),
            client,
            max_workers=int(config.get("max_workers", 4)),
            tasks_as_milestones=bool(config.get("sync", {}).get("tasks_as_milestones", True)),
        )

    def _log(self, verbose: bool, msg: str, *args: object) -> None:
        logger.log(logging.INFO if verbose else logging.DEBUG, msg, *args)

    # -- push ---------------------------------------------------------------

    def push(
        self,
        filters: ArtifactFilters | None = None,
        *,
        dry_run: bool = False,
        force: bool = False,
        verbose: bool = False,
    ) -> PushResult:
        filters = filters or ArtifactFilters()
        result = PushResult(dry_run=dry_run)

        candidates: list[LocalArtifact] = []
        for local in self.store.scan(filters):
            unchanged = not self.metadata.has_changed(local.spec_name, local.key, local.content)
            if not force and unchanged:
                self._log(verbose, "unchanged since last sync: %s", local.label)
                result.skipped += 1
            else:
                candidates.append(local)

        if dry_run:
            result.pushed = len(candidates)
            for local in candidates:
                self._log(verbose, "would push: %s", local.label)
            return result
        if not candidates:
            return result

        listing: list[ServerArtifact] | None = None
        if not force:
            try:
                listing = self.client.list_artifacts(
                    ArtifactFilters(
                        spec_name=filters.spec_name, artifact_type=filters.artifact_type
                    )
                )
            except QuikimError as exc:
                logger.warning(
                    "Could not list server artifacts, pushing without duplicate check: %s", exc
                )

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(self._push_one, local, listing, verbose) for local in candidates]
            outcomes = [f.result() for f in futures]

        for outcome, detail in outcomes:
            if outcome == PUSHED:
                result.pushed += 1
                result.versions.append(detail)
            elif outcome == SKIPPED:
                result.skipped += 1
            else:
                result.errors.append(detail)
        result.success = not result.errors
        return result

    def _push_one(
        self,
        local: LocalArtifact,
        listing: list[ServerArtifact] | None,
        verbose: bool,
    ) -> tuple[str, dict]:
        entry = self.metadata.get(local.spec_name, local.key)
        try:
            if self.tasks_as_milestones and local.artifact_type == ArtifactType.TASKS:
                return self._push_milestone(local, entry, verbose)
            return self._push_artifact(local, entry, listing, verbose)
        except (QuikimError, ValueError) as exc:
            logger.warning("push failed for %s: %s", local.label, exc)
            error = {"artifact": local.label, "error": str(exc)}
            if entry is not None:
                error["version"] = entry.version_number
            return FAILED, error

    def _push_artifact(
        self,
        local: LocalArtifact,
        entry: MetadataEntry | None,
        listing: list[ServerArtifact] | None,
        verbose: bool,
    ) -> tuple[str, dict]:
        artifact_id = entry.artifact_id if entry else None
        root_id = entry.root_id if entry else None
        name = entry.artifact_name if entry else local.artifact_name

        if listing is not None:
            match, identical = find_duplicate_artifact(
                local.spec_name,
                local.artifact_type,
                local.artifact_name,
                local.content,
                listing,
            )
            if match is not None and identical:
                self._adopt(local, match)
                self._log(verbose, "already on server: %s", local.label)
                return SKIPPED, {"artifact": local.label}
            if match is not None and entry is None:
                artifact_id = match.artifact_id
                root_id = match.chain_id if is_versioned(match.artifact_type) else None
                name = match.artifact_name

        if entry is None and root_id is None and is_versioned(local.artifact_type):
            chain = self._known_chain(local)
            if chain is not None:
                root_id, name = chain.chain_id, chain.artifact_name

        server = self.client.push_artifact(
            local.spec_name,
            local.artifact_type,
            name,
            local.content,
            artifact_id=artifact_id,
            root_id=root_id,
        )
        self._adopt(local, server)
        self._log(verbose, "pushed %s (version %d)", local.label, server.version)
        return PUSHED, {"artifact": local.label, "version": server.version}

    def _known_chain(self, local: LocalArtifact) -> ServerArtifact | None:
        """Look up the chain a root-keyed file belongs to when its metadata is gone."""
        if not looks_like_server_id(local.artifact_name):
            return None
        try:
            chain = self.client.fetch_artifact(local.artifact_name)
        except NotFoundError:
            return None
        if chain.artifact_type != local.artifact_type or chain.spec_name != local.spec_name:
            return None
        return chain

    def _push_milestone(
        self, local: LocalArtifact, entry: MetadataEntry | None, verbose: bool
    ) -> tuple[str, dict]:
        server, created = push_tasks_milestone(
            self.client,
            local,
            known_name=entry.artifact_name if entry else None,
            known_id=entry.artifact_id if entry else None,
        )
        self._adopt(local, server)
        self._log(verbose, "pushed milestone %s (%d new tasks)", local.label, created)
        return PUSHED, {"artifact": local.label, "version": server.version, "tasksCreated": created}

    def _adopt(self, local: LocalArtifact, server: ServerArtifact) -> None:
        """Record *server* as the synced identity of *local*, renaming on a key change."""
        new_key = server.file_key
        if new_key != local.artifact_name:
            self.store.rename(local.spec_name, local.artifact_type, local.artifact_name, new_key)
            self.metadata.remove(local.spec_name, local.key)
        self.metadata.update(
            local.spec_name,
            artifact_key(local.artifact_type, new_key),
            _entry_for(server, local.content),
        )

    # -- pull ---------------------------------------------------------------

    def pull(
        self,
        filters: ArtifactFilters | None = None,
        *,
        dry_run: bool = False,
        force: bool = False,
        verbose: bool = False,
    ) -> PullResult:
        filters = filters or ArtifactFilters()
        result = PullResult(dry_run=dry_run)

        try:
            remote = self.client.list_artifacts(filters)
        except QuikimError as exc:
            logger.warning("Could not list server artifacts: %s", exc)
            result.success = False
            result.errors.append({"artifact": "general", "error": str(exc)})
            return result

        if self.tasks_as_milestones:
            try:
                remote.extend(fetch_milestone_artifacts(self.client, filters))
            except QuikimError as exc:
                logger.warning("Could not list milestones: %s", exc)
                result.errors.append({"artifact": "milestones", "error": str(exc)})

        latest = select_latest(remote)
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [
                pool.submit(self._pull_one, server, dry_run, force, verbose) for server in latest
            ]
            outcomes = [f.result() for f in futures]

        for outcome, detail in outcomes:
            if outcome == CREATED:
                result.created += 1
                result.versions.append(detail)
            elif outcome == UPDATED:
                result.updated += 1
                result.versions.append(detail)
            elif outcome == SKIPPED:
                result.skipped += 1
            else:
                result.errors.append(detail)
        result.pulled = result.created + result.updated
        result.success = not result.errors
        return result

    def _convert(self, server: ServerArtifact) -> str:
        try:
            return self.converter(strip_wrapped_quotes(server.content))
        except ConversionError as exc:
            logger.warning("Keeping raw content for %s: %s", server.label, exc)
            return server.content

    def _pull_one(
        self,
        server: ServerArtifact,
        dry_run: bool,
        force: bool,
        verbose: bool,
    ) -> tuple[str, dict]:
        spec, artifact_type, key = server.spec_name, server.artifact_type, server.file_key
        label = f"{spec}/{artifact_type.value}:{key}"

        try:
            label = server.label
            detail = {"artifact": label, "version": server.version}
            meta_key = artifact_key(artifact_type, key)
            content = self._convert(server)
            local = self.store.read(spec, artifact_type, key)
            entry = self.metadata.get(spec, meta_key)

            if local is None:
                outcome = CREATED
            elif not force and not has_content_changed(local, content):
                if not dry_run and (entry is None or entry.version_number != server.version):
                    self.metadata.update(spec, meta_key, _entry_for(server, local))
                self._log(verbose, "up to date: %s", server.label)
                return SKIPPED, detail
            elif (
                not force
                and entry is not None
                and self._local_ahead(entry, server, local, content)
            ):
                self._log(verbose, "local edits not pushed yet, skipping: %s", server.label)
                return SKIPPED, detail
            else:
                outcome = UPDATED

            if dry_run:
                self._log(verbose, "would write: %s", server.label)
                return outcome, detail

            self.store.write(
                spec,
                artifact_type,
                server.artifact_name,
                content,
                root_id=server.chain_id,
                artifact_id=server.artifact_id,
            )
            self.metadata.update(spec, meta_key, _entry_for(server, content))
        except (QuikimError, ValueError) as exc:
            logger.warning("pull failed for %s: %s", label, exc)
            return FAILED, {"artifact": label, "error": str(exc), "version": server.version}

        self._log(verbose, "%s %s (version %d)", outcome, server.label, server.version)
        return outcome, detail

    @staticmethod
    def _local_ahead(
        entry: MetadataEntry, server: ServerArtifact, local: str, content: str
    ) -> bool:
        """Server unchanged since the last sync while the local file was edited."""
        server_unchanged = (
            entry.artifact_id == server.artifact_id and entry.version_number >= server.version
        ) or entry.content_hash == compute_content_hash(content)
        local_edited = entry.content_hash != compute_content_hash(local)
        return server_unchanged and local_edited

    # -- sync / status ------------------------------------------------------

    def sync(
        self,
        filters: ArtifactFilters | None = None,
        *,
        dry_run: bool = False,
        force: bool = False,
        verbose: bool = False,
    ) -> SyncResult:
        """Push local changes, then pull remote ones."""
        push = self.push(filters, dry_run=dry_run, force=force, verbose=verbose)
        pull = self.pull(filters, dry_run=dry_run, force=force, verbose=verbose)
        return SyncResult(push=push, pull=pull)

    def status(self, filters: ArtifactFilters | None = None) -> list[dict]:
        """Describe local artifacts and whether each changed since its last sync (no network)."""
        rows = []
        for local in self.store.scan(filters):
            entry = self.metadata.get(local.spec_name, local.key)
            rows.append(
                {
                    "artifact": local.label,
                    "specName": local.spec_name,
                    "artifactType": local.artifact_type.value,
                    "artifactName": local.artifact_name,
                    "path": str(local.file_path),
                    "synced": entry is not None,
                    "changed": self.metadata.has_changed(
                        local.spec_name, local.key, local.content
                    ),
                    "artifactId": entry.artifact_id if entry else None,
                    "version": entry.version_number if entry else None,
                }
            )
        return rows
