"""Manifest and audit record schemas.

Both are persisted as NDJSON with camelCase field names so they stay
readable by the shell tooling that consumes the same files.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MatchStrategy(StrEnum):
    """How staging matched a local file to an existing remote workflow."""

    NAME_AND_FOLDER = "name+folder"
    NAME_ONLY = "name-only"
    MANIFEST_ID = "manifest-id"


class IntendedAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"


class SanitizationNote(StrEnum):
    """Why a declared workflow id was dropped during staging."""

    INVALID_ID_FORMAT = "invalid_id_format"
    NO_OVERWRITE_POLICY = "no_overwrite_policy"
    ID_CONFLICT_DIFFERENT_WORKFLOW = "id_conflict_different_workflow"
    ID_CONFLICT_IN_BATCH = "id_conflict_in_batch"
    SUPERSEDED_BY_MATCH = "superseded_by_match"


class ResolutionStrategy(StrEnum):
    """Which matcher confirmed the post-import id of a manifest entry."""

    MANIFEST_ID = "manifest-id"
    EXISTING_WORKFLOW_ID = "existing-workflow-id"
    ORIGINAL_WORKFLOW_ID = "original-workflow-id"
    META_INSTANCE = "meta-instance"
    NAME_ONLY = "name-only"
    UNRESOLVED = "unresolved"
    # Dry run only: the workflow would be created; no id exists yet.
    PLANNED = "planned"


class AuditStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    UNCHANGED = "unchanged"
    LICENSE_BLOCKED = "license-blocked"


class ManifestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FolderSegment(ManifestModel):
    """One level of a folder path."""

    slug: str
    display_name: str


class FolderPath(ManifestModel):
    """Target location of a workflow: a project plus an ordered folder chain."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    project_slug: str = "personal"
    project_display_name: str = "Personal"
    segments: tuple[FolderSegment, ...] = ()

    @property
    def slug_path(self) -> str:
        return "/".join(segment.slug for segment in self.segments)

    @property
    def display_path(self) -> str:
        return " / ".join(segment.display_name for segment in self.segments)

    @property
    def display_segments(self) -> tuple[str, ...]:
        return tuple(segment.display_name for segment in self.segments)

    @property
    def is_root(self) -> bool:
        return not self.segments


class ManifestEntry(ManifestModel):
    """Staging decision for one local workflow file, extended after import.

    ``actual_imported_id`` and the ``id_*`` fields are only filled in by the
    post-import reconciler; an entry with ``id_reconciled`` set to True always
    carries the id that exists in the post-import snapshot.
    """

    name: str
    relative_path: str
    storage_path: str
    staged_filename: str | None = None
    original_id: str | None = None
    assigned_id: str | None = None
    existing_id: str | None = None
    match_strategy: MatchStrategy | None = None
    intended_action: IntendedAction = IntendedAction.CREATE
    sanitization_note: SanitizationNote | None = None
    instance_id: str | None = None
    target_folder: FolderPath = Field(default_factory=FolderPath)
    actual_imported_id: str | None = None
    id_reconciled: bool | None = None
    id_resolution_strategy: ResolutionStrategy | None = None
    id_reconciliation_warning: str | None = None


class AuditRecord(ManifestModel):
    """Outcome of the folder assignment of one workflow."""

    workflow_id: str | None = None
    workflow_name: str
    project_id: str | None = None
    folder_id: str | None = None
    display_path: str = ""
    status: AuditStatus
    note: str = ""
