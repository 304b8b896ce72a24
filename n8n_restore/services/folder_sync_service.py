"""Synchronize the local folder hierarchy to the remote instance and move workflows into it."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from n8n_restore.exceptions import (
    LicenseRestrictedError,
    MalformedSnapshotError,
    RemoteApiError,
    VersionConflictError,
)
from n8n_restore.schemas.manifest import AuditRecord, AuditStatus, ResolutionStrategy
from n8n_restore.services.remote_index import WorkflowRecord

if TYPE_CHECKING:
    from collections.abc import Iterable

    from n8n_restore.client.base import RemoteApi
    from n8n_restore.filesystem.manifest_store import AuditLog
    from n8n_restore.schemas.manifest import FolderPath, FolderSegment, ManifestEntry
    from n8n_restore.services.remote_index import RemoteEntityIndex

logger = logging.getLogger(__name__)

DRY_RUN_PREFIX = "dry-run:"


class AssignmentState(StrEnum):
    PENDING = "pending"
    FOLDER_RESOLVED = "folder-resolved"
    ASSIGNED = "assigned"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    LICENSE_BLOCKED = "license-blocked"


_AUDIT_STATUS = {
    AssignmentState.ASSIGNED: AuditStatus.SUCCESS,
    AssignmentState.UNCHANGED: AuditStatus.UNCHANGED,
    AssignmentState.FAILED: AuditStatus.FAILED,
    AssignmentState.LICENSE_BLOCKED: AuditStatus.LICENSE_BLOCKED,
}


@dataclass
class SyncResult:
    records: list[AuditRecord] = field(default_factory=list)
    folders_created: int = 0
    folders_planned: int = 0
    skipped: int = 0
    license_blocked: bool = False
    dry_run: bool = False

    def count(self, status: AuditStatus) -> int:
        return sum(1 for record in self.records if record.status == status)

    @property
    def assigned(self) -> int:
        return self.count(AuditStatus.SUCCESS)

    @property
    def unchanged(self) -> int:
        return self.count(AuditStatus.UNCHANGED)

    @property
    def failed(self) -> int:
        return self.count(AuditStatus.FAILED)

    @property
    def blocked(self) -> int:
        return self.count(AuditStatus.LICENSE_BLOCKED)


class FolderSynchronizer:
    """Walks each reconciled entry through the assignment state machine.

    Every entry ends ``ASSIGNED``, ``UNCHANGED``, ``FAILED`` or
    ``LICENSE_BLOCKED``. Remote errors are recorded per entry and never
    abort the batch. After the first license rejection no further remote
    call is made for folder creation or workflow moves.
    """

    def __init__(
        self,
        index: RemoteEntityIndex,
        api: RemoteApi,
        *,
        dry_run: bool = False,
        project_override: str | None = None,
        audit_log: AuditLog | None = None,
    ) -> None:
        self.index = index
        self.api = api
        self.dry_run = dry_run
        self.project_override = project_override
        self.audit_log = audit_log
        self.result = SyncResult(dry_run=dry_run)
        self._planned: dict[tuple[str, str], str] = {}

    @property
    def license_blocked(self) -> bool:
        return self.result.license_blocked

    def _block_license(self, exc: LicenseRestrictedError) -> None:
        if not self.result.license_blocked:
            logger.warning(
                "Folder operations are not permitted by the instance license; "
                "skipping remaining folder assignments (%s)",
                exc,
            )
        self.result.license_blocked = True

    def sync(self, entries: Iterable[ManifestEntry]) -> SyncResult:
        for entry in entries:
            workflow_id = self._workflow_id(entry)
            if workflow_id is None:
                self.result.skipped += 1
                logger.debug("Skipping unreconciled entry %s", entry.relative_path)
                continue
            state, record = self._sync_entry(entry, workflow_id)
            logger.debug("%s -> %s (%s)", entry.relative_path, state, record.note)
            self.result.records.append(record)
            if self.audit_log is not None:
                self.audit_log.append(record)

        logger.info(
            "Folder sync%s: %d assigned, %d unchanged, %d failed, %d license-blocked, "
            "%d folder(s) created",
            " (dry run)" if self.dry_run else "",
            self.result.assigned,
            self.result.unchanged,
            self.result.failed,
            self.result.blocked,
            self.result.folders_created,
        )
        return self.result

    def resolve_project(self, entry: ManifestEntry) -> str:
        """Explicit override, then the path-derived project, then the default project."""
        target = entry.target_folder
        return self.index.projects.resolve_target(
            self.project_override, target.project_display_name, target.project_slug
        )

    def _workflow_id(self, entry: ManifestEntry) -> str | None:
        """The id to place, or None when the entry cannot be synced.

        A dry run also plans folders for workflows it would create, under a
        placeholder id.
        """
        if entry.id_reconciled and entry.actual_imported_id:
            return entry.actual_imported_id
        if self.dry_run and entry.id_resolution_strategy == ResolutionStrategy.PLANNED:
            return entry.assigned_id or f"{DRY_RUN_PREFIX}{entry.relative_path}"
        return None

    def _sync_entry(
        self, entry: ManifestEntry, workflow_id: str
    ) -> tuple[AssignmentState, AuditRecord]:
        project_id = self.resolve_project(entry)
        display_path = entry.target_folder.display_path
        folder_id: str | None = None

        def finish(state: AssignmentState, note: str = "") -> tuple[AssignmentState, AuditRecord]:
            return state, AuditRecord(
                workflow_id=workflow_id,
                workflow_name=entry.name,
                project_id=project_id,
                folder_id=folder_id,
                display_path=display_path,
                status=_AUDIT_STATUS[state],
                note=note,
            )

        try:
            folder_id = self.resolve_folder(project_id, entry.target_folder) or None
        except LicenseRestrictedError as exc:
            self._block_license(exc)
            return finish(AssignmentState.LICENSE_BLOCKED, "license-blocked")
        except (RemoteApiError, MalformedSnapshotError) as exc:
            logger.warning("Folder creation failed for %s: %s", entry.relative_path, exc)
            return finish(AssignmentState.FAILED, f"folder-create-failed: {exc}")
        logger.debug(
            "%s: %s in project %s", entry.relative_path, AssignmentState.FOLDER_RESOLVED, project_id
        )

        try:
            current = self._workflow_state(workflow_id, project_id, entry.name)
        except (RemoteApiError, MalformedSnapshotError) as exc:
            logger.warning("Could not load workflow %s: %s", workflow_id, exc)
            return finish(AssignmentState.FAILED, f"workflow-lookup-failed: {exc}")
        workflow_id = current.id

        if current.project_id == project_id and current.parent_folder_id == (folder_id or ""):
            return finish(AssignmentState.UNCHANGED)

        if self.license_blocked:
            return finish(AssignmentState.LICENSE_BLOCKED, "license-blocked")

        if self.dry_run:
            return finish(AssignmentState.ASSIGNED, "dry-run")

        notes: list[str] = []
        if not current.version_id:
            notes.append("versionId-null")
        try:
            updated = self.api.update_workflow_assignment(
                workflow_id, project_id, folder_id, current.version_id
            )
        except LicenseRestrictedError as exc:
            self._block_license(exc)
            return finish(AssignmentState.LICENSE_BLOCKED, "license-blocked")
        except VersionConflictError as exc:
            logger.warning("Version conflict moving workflow %s: %s", workflow_id, exc)
            return finish(AssignmentState.FAILED, "version-conflict")
        except (RemoteApiError, MalformedSnapshotError) as exc:
            logger.warning("Could not move workflow %s: %s", workflow_id, exc)
            return finish(AssignmentState.FAILED, f"api-update-failed: {exc}")

        new_version = updated.version_id if updated is not None else None
        self.index.record_assignment(workflow_id, project_id, folder_id, new_version)
        return finish(AssignmentState.ASSIGNED, "; ".join(notes))

    def resolve_folder(self, project_id: str, target: FolderPath) -> str:
        """Return the id of the innermost folder of ``target``, creating missing levels.

        Returns ``""`` for the project root.
        """
        parent_id = ""
        slugs: list[str] = []
        for segment in target.segments:
            slugs.append(segment.slug.lower())
            parent_id = self._ensure_segment(project_id, parent_id, "/".join(slugs), segment)
        return parent_id

    def _ensure_segment(
        self, project_id: str, parent_id: str, slug_path: str, segment: FolderSegment
    ) -> str:
        folders = self.index.folders
        found = (
            folders.lookup_path(project_id, slug_path)
            or folders.lookup_slug(project_id, parent_id, segment.slug)
            or folders.lookup_name(project_id, parent_id, segment.display_name)
        )
        if found:
            return found
        found = folders.scan_children(project_id, parent_id, segment.slug, segment.display_name)
        if found:
            self.index.remember_path(project_id, slug_path, found)
            return found

        planned = self._planned.get((project_id, slug_path))
        if planned:
            return planned
        if self.license_blocked:
            raise LicenseRestrictedError(
                f"Skipped creating folder {segment.display_name!r}: license blocked"
            )
        if self.dry_run:
            placeholder = f"{DRY_RUN_PREFIX}{project_id}:{slug_path}"
            self._planned[(project_id, slug_path)] = placeholder
            self.result.folders_planned += 1
            logger.info("Would create folder %s in project %s", slug_path, project_id)
            return placeholder

        created = self.api.create_folder(segment.display_name, project_id, parent_id or None)
        if not created.id:
            raise RemoteApiError(f"Creating folder {segment.display_name!r} returned no id")
        for warning in self.index.register_folder(
            created.id,
            created.name or segment.display_name,
            project_id,
            parent_id,
            slug=created.slug or segment.slug,
        ):
            logger.warning("%s", warning.message)
        self.index.remember_path(project_id, slug_path, created.id)
        self.result.folders_created += 1
        logger.info("Created folder %s (%s) in project %s", slug_path, created.id, project_id)
        return created.id

    def _workflow_state(self, workflow_id: str, project_id: str, name: str) -> WorkflowRecord:
        record = self.index.workflows.get(workflow_id)
        if record is not None and (record.version_id or self.dry_run):
            return record
        if self.dry_run:
            return WorkflowRecord(id=workflow_id, name=name, project_id="")
        try:
            fetched = self.api.get_workflow(workflow_id)
        except RemoteApiError as exc:
            if exc.status_code != 404:
                raise
            fallback, conflicted = self.index.workflows.lookup_in_project(project_id, name)
            if fallback is None or conflicted or fallback == workflow_id:
                raise
            logger.warning(
                "Workflow %s not found; using %s matched by name %r", workflow_id, fallback, name
            )
            return self._workflow_state(fallback, project_id, name)
        return self.index.upsert_workflow(fetched)


def sync_folders(
    entries: Iterable[ManifestEntry],
    index: RemoteEntityIndex,
    api: RemoteApi,
    *,
    dry_run: bool = False,
    project_override: str | None = None,
    audit_log: AuditLog | None = None,
) -> SyncResult:
    """Create missing folders and move each reconciled workflow into its target folder."""
    synchronizer = FolderSynchronizer(
        index,
        api,
        dry_run=dry_run,
        project_override=project_override,
        audit_log=audit_log,
    )
    return synchronizer.sync(entries)
