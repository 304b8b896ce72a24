"""Staging: decide per local workflow file whether it creates or updates a remote workflow."""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from n8n_restore.filesystem.manifest_store import lookup_prior_mapping
from n8n_restore.filesystem.tree_scanner import prepend_base_folder
from n8n_restore.schemas.manifest import (
    IntendedAction,
    ManifestEntry,
    MatchStrategy,
    SanitizationNote,
)
from n8n_restore.services.slug_service import is_valid_workflow_id, normalize_name_key

if TYPE_CHECKING:
    from collections.abc import Iterable

    from n8n_restore.filesystem.manifest_store import PriorMappingEntry
    from n8n_restore.filesystem.tree_scanner import WorkflowFile
    from n8n_restore.schemas.manifest import FolderPath
    from n8n_restore.services.remote_index import RemoteEntityIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StagingPolicy:
    """Identity policy for a restore run.

    ``no_overwrite`` always wins over ``preserve_ids``: every workflow is
    imported as new, without name matching or declared ids.
    ``project_override`` names the project every workflow lands in and must
    be the same value the folder synchronizer is given.
    """

    preserve_ids: bool = False
    no_overwrite: bool = False
    default_folder_override: str = ""
    project_override: str = ""

    def __post_init__(self) -> None:
        if self.no_overwrite and self.preserve_ids:
            object.__setattr__(self, "preserve_ids", False)


@dataclass
class StagingResult:
    staged_paths: list[Path] = field(default_factory=list)
    entries: list[ManifestEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def to_create(self) -> int:
        return sum(1 for e in self.entries if e.intended_action == IntendedAction.CREATE)

    @property
    def to_update(self) -> int:
        return sum(1 for e in self.entries if e.intended_action == IntendedAction.UPDATE)


def normalize_tags(tags: Any) -> list[dict[str, str]]:
    """Canonical tag list: unique ``{"name": ...}`` objects sorted by name.

    Tags may arrive as strings or as objects carrying ``name``, ``label``,
    ``value`` or only an ``id``; blank names are dropped.
    """
    if tags is None:
        return []
    if not isinstance(tags, list):
        tags = [tags]
    names: set[str] = set()
    for tag in tags:
        if isinstance(tag, dict):
            raw = tag.get("name") or tag.get("label") or tag.get("value")
            if not raw and tag.get("id") is not None:
                raw = f"tag-{tag['id']}"
        else:
            raw = tag
        if raw is None:
            continue
        name = str(raw).strip()
        if name:
            names.add(name)
    return [{"name": name} for name in sorted(names)]


def sanitize_workflow_content(content: dict[str, Any], assigned_id: str | None) -> dict[str, Any]:
    """Return a copy of ``content`` ready for import with ``assigned_id`` applied."""
    data = copy.deepcopy(content)
    if assigned_id:
        data["id"] = assigned_id
    else:
        data.pop("id", None)
    active = content.get("active")
    data["active"] = active if isinstance(active, bool) else False
    data["tags"] = normalize_tags(content.get("tags"))
    return data


def _unique_filename(filename: str, used: set[str]) -> str:
    candidate = filename
    stem, dot, suffix = filename.rpartition(".")
    if not dot:
        stem, suffix = filename, ""
    counter = 1
    while candidate.lower() in used:
        candidate = f"{stem}_{counter}.{suffix}" if suffix else f"{stem}_{counter}"
        counter += 1
    used.add(candidate.lower())
    return candidate


def _superseded_note(
    original_id: str, name: str, index: RemoteEntityIndex
) -> SanitizationNote:
    if not is_valid_workflow_id(original_id):
        return SanitizationNote.INVALID_ID_FORMAT
    record = index.workflows.get(original_id)
    if record is not None and normalize_name_key(record.name) != normalize_name_key(name):
        return SanitizationNote.ID_CONFLICT_DIFFERENT_WORKFLOW
    return SanitizationNote.SUPERSEDED_BY_MATCH


def _match_existing(
    wf: WorkflowFile,
    target: FolderPath,
    project_id: str,
    index: RemoteEntityIndex,
    batch_ids: set[str],
    prior_mapping: list[PriorMappingEntry],
) -> tuple[str, MatchStrategy] | None:
    hit = index.find_in_folder(project_id, target.display_segments, wf.name)
    if hit and hit not in batch_ids:
        return hit, MatchStrategy.NAME_AND_FOLDER

    hit = index.workflows.unique_by_name(wf.name)
    if hit and hit not in batch_ids:
        return hit, MatchStrategy.NAME_ONLY

    prior = lookup_prior_mapping(
        prior_mapping,
        relative_path=wf.relative_path,
        workflow_id=wf.declared_id,
        name=wf.name,
        project_slug=target.project_slug,
    )
    if prior is not None and prior.workflow_id not in batch_ids:
        record = index.workflows.get(prior.workflow_id)
        if record is not None and normalize_name_key(record.name) == normalize_name_key(wf.name):
            logger.debug(
                "Prior mapping matched %s via %s", wf.relative_path, prior.match_type
            )
            return record.id, MatchStrategy.MANIFEST_ID
    return None


def _declared_id_problem(
    wf: WorkflowFile,
    index: RemoteEntityIndex,
    policy: StagingPolicy,
    batch_ids: set[str],
) -> SanitizationNote | None:
    original_id = wf.declared_id
    if original_id is None:
        return None
    if not is_valid_workflow_id(original_id):
        return SanitizationNote.INVALID_ID_FORMAT
    if policy.no_overwrite:
        return SanitizationNote.NO_OVERWRITE_POLICY
    record = index.workflows.get(original_id)
    if record is not None and normalize_name_key(record.name) != normalize_name_key(wf.name):
        return SanitizationNote.ID_CONFLICT_DIFFERENT_WORKFLOW
    if original_id in batch_ids:
        return SanitizationNote.ID_CONFLICT_IN_BATCH
    return None


def resolve_entry(
    wf: WorkflowFile,
    index: RemoteEntityIndex,
    policy: StagingPolicy,
    batch_ids: set[str],
    prior_mapping: list[PriorMappingEntry] | None = None,
) -> ManifestEntry:
    """Build the manifest entry for one file (first matching rule wins).

    Rules, in order:
    1. name and folder match an existing workflow
    2. name is unique on the remote instance
    3. a prior backup mapping points at a workflow with this name
       (rules 1-3 only when ids are neither preserved nor protected)
    4. the declared id is dropped when malformed, forbidden by policy,
       owned by a differently named workflow or already staged
    5. otherwise the declared id is kept

    Ids already in ``batch_ids`` are never assigned again.
    """
    target = prepend_base_folder(wf.folder_path, policy.default_folder_override)
    project_id = index.projects.resolve_target(
        policy.project_override, target.project_display_name, target.project_slug
    )
    entry = ManifestEntry(
        name=wf.name,
        relative_path=wf.relative_path,
        storage_path=wf.storage_path,
        original_id=wf.declared_id,
        instance_id=wf.instance_id,
        target_folder=target,
    )

    if not policy.preserve_ids and not policy.no_overwrite:
        match = _match_existing(wf, target, project_id, index, batch_ids, prior_mapping or [])
        if match is not None:
            existing_id, strategy = match
            entry.assigned_id = existing_id
            entry.existing_id = existing_id
            entry.match_strategy = strategy
            entry.intended_action = IntendedAction.UPDATE
            if wf.declared_id and wf.declared_id != existing_id:
                entry.sanitization_note = _superseded_note(wf.declared_id, wf.name, index)
            return entry

    note = _declared_id_problem(wf, index, policy, batch_ids)
    if note is not None:
        entry.sanitization_note = note
        return entry

    if wf.declared_id:
        entry.assigned_id = wf.declared_id
        if index.workflows.get(wf.declared_id) is not None:
            entry.existing_id = wf.declared_id
            entry.match_strategy = MatchStrategy.MANIFEST_ID
            entry.intended_action = IntendedAction.UPDATE
    return entry


def stage_workflows(
    files: Iterable[WorkflowFile],
    index: RemoteEntityIndex,
    policy: StagingPolicy,
    staging_dir: Path,
    *,
    prior_mapping: list[PriorMappingEntry] | None = None,
) -> StagingResult:
    """Resolve every file against the remote index and write sanitized copies.

    Source files are never modified. Staged copies go to ``staging_dir``;
    colliding filenames get ``_1``, ``_2``, ... suffixes.
    """
    staging_dir.mkdir(parents=True, exist_ok=True)
    result = StagingResult()
    batch_ids: set[str] = set()
    used_filenames: set[str] = set()

    for wf in files:
        entry = resolve_entry(wf, index, policy, batch_ids, prior_mapping)
        if entry.assigned_id:
            batch_ids.add(entry.assigned_id)
        if entry.sanitization_note is not None:
            result.warnings.append(
                f"{wf.relative_path}: dropped declared id {wf.declared_id} "
                f"({entry.sanitization_note})"
            )

        filename = _unique_filename(wf.path.name, used_filenames)
        staged_path = staging_dir / filename
        staged_path.write_text(
            json.dumps(sanitize_workflow_content(wf.content, entry.assigned_id), indent=2),
            encoding="utf-8",
        )
        entry.staged_filename = filename
        result.staged_paths.append(staged_path)
        result.entries.append(entry)
        logger.debug(
            "Staged %s as %s (%s, strategy=%s, id=%s)",
            wf.relative_path,
            filename,
            entry.intended_action,
            entry.match_strategy,
            entry.assigned_id,
        )

    logger.info(
        "Staged %d workflow(s): %d to create, %d to update",
        len(result.entries),
        result.to_create,
        result.to_update,
    )
    return result
