"""Run-scoped index of remote projects, folders and workflows.

The index is built once per restore run from three snapshot payloads and
passed explicitly to the staging resolver and the folder synchronizer. The
synchronizer is the only writer after construction, through
``register_folder`` and ``record_assignment``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from n8n_restore.exceptions import NoProjectsAvailableError
from n8n_restore.schemas.remote import RemoteFolder, RemoteProject, RemoteWorkflow, parse_snapshot
from n8n_restore.services.slug_service import (
    normalize_identifier,
    normalize_name_key,
    sanitize_slug,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

DEFAULT_MAX_FOLDER_DEPTH = 200
PERSONAL = "personal"

FolderKey = tuple[str, str, str]
PathKey = tuple[str, str]


@dataclass(frozen=True)
class DuplicateFolderWarning:
    """Two remote folders collided on the same composite lookup key."""

    key_kind: str
    key: tuple[str, ...]
    kept_folder_id: str
    dropped_folder_id: str

    @property
    def message(self) -> str:
        return (
            f"Duplicate folder {self.key_kind} key {'/'.join(self.key)}: "
            f"keeping {self.kept_folder_id}, ignoring {self.dropped_folder_id}"
        )


@dataclass
class ProjectIndex:
    """Lookup tables for remote projects."""

    by_name: dict[str, str] = field(default_factory=dict)
    by_slug: dict[str, str] = field(default_factory=dict)
    names: dict[str, str] = field(default_factory=dict)
    default_project_id: str = ""
    personal_project_id: str | None = None

    def resolve(self, name: str | None = None, slug: str | None = None) -> str | None:
        """Return the project id for a name (preferred) or slug, case-insensitively."""
        if name:
            project_id = self.by_name.get(name.strip().lower())
            if project_id:
                return project_id
        if slug:
            project_id = self.by_slug.get(slug.strip().lower())
            if project_id:
                return project_id
        return None

    def resolve_target(
        self, override: str | None, name: str | None = None, slug: str | None = None
    ) -> str:
        """Pick the project a workflow lands in.

        An explicit override (project id, name or slug) wins, then the
        path-derived name or slug, then the default project. An override that
        matches nothing is ignored.
        """
        if override:
            if self.contains(override):
                return override
            project_id = self.resolve(override, override)
            if project_id:
                return project_id
            logger.info("Project override %r not found; ignoring it", override)
        project_id = self.resolve(name, slug)
        if project_id:
            return project_id
        if name or slug:
            logger.info(
                "Project %r not found on the remote instance; using the default project",
                name or slug,
            )
        return self.default_project_id

    def contains(self, project_id: str) -> bool:
        return project_id in self.names


@dataclass
class FolderRecord:
    id: str
    name: str
    slug: str
    project_id: str
    parent_id: str = ""


@dataclass
class FolderIndex:
    """Folder lookup tables keyed by composite tuples.

    ``parent_id`` is ``""`` for folders at the project root.
    """

    folders: dict[str, FolderRecord] = field(default_factory=dict)
    by_slug: dict[FolderKey, str] = field(default_factory=dict)
    by_name: dict[FolderKey, str] = field(default_factory=dict)
    by_path: dict[PathKey, str] = field(default_factory=dict)
    warnings: list[DuplicateFolderWarning] = field(default_factory=list)

    def lookup_path(self, project_id: str, slug_path: str) -> str | None:
        return self.by_path.get((project_id, slug_path.lower()))

    def lookup_slug(self, project_id: str, parent_id: str, slug: str) -> str | None:
        return self.by_slug.get((project_id, parent_id, slug.lower()))

    def lookup_name(self, project_id: str, parent_id: str, name: str) -> str | None:
        return self.by_name.get((project_id, parent_id, normalize_name_key(name)))

    def scan_children(self, project_id: str, parent_id: str, slug: str, name: str) -> str | None:
        """Linear scan over cached folders under ``parent_id`` matching slug or name."""
        slug_key = slug.lower()
        name_key = normalize_name_key(name)
        for record in self.folders.values():
            if record.project_id != project_id or record.parent_id != parent_id:
                continue
            if record.slug.lower() == slug_key or normalize_name_key(record.name) == name_key:
                return record.id
        return None

    def chain(self, folder_id: str, max_depth: int) -> list[FolderRecord] | None:
        """Return the folders from the project root down to ``folder_id``.

        Returns None when the parent chain loops or exceeds ``max_depth``
        hops. A parent id that is not in the index ends the chain.
        """
        chain: list[FolderRecord] = []
        seen: set[str] = set()
        current = folder_id
        while current:
            if current in seen or len(chain) >= max_depth:
                return None
            record = self.folders.get(current)
            if record is None:
                break
            seen.add(current)
            chain.append(record)
            current = record.parent_id
        chain.reverse()
        return chain


@dataclass
class WorkflowRecord:
    id: str
    name: str
    project_id: str
    parent_folder_id: str = ""
    version_id: str | None = None
    instance_id: str | None = None


@dataclass
class WorkflowIndex:
    """Workflow lookup tables.

    ``by_project_name`` maps ``(project_id, name_key)`` to a workflow id;
    keys shared by several workflows are listed in ``conflicts`` and keep
    the first-seen id.
    """

    workflows: dict[str, WorkflowRecord] = field(default_factory=dict)
    by_project_name: dict[PathKey, str] = field(default_factory=dict)
    conflicts: set[PathKey] = field(default_factory=set)
    by_name: dict[str, list[str]] = field(default_factory=dict)

    def get(self, workflow_id: str | None) -> WorkflowRecord | None:
        if not workflow_id:
            return None
        return self.workflows.get(workflow_id)

    def add(self, record: WorkflowRecord) -> None:
        self.workflows[record.id] = record
        name_key = normalize_name_key(record.name)
        self.by_name.setdefault(name_key, [])
        if record.id not in self.by_name[name_key]:
            self.by_name[name_key].append(record.id)
        self.index_project_name(record)

    def index_project_name(self, record: WorkflowRecord) -> None:
        key = (record.project_id, normalize_name_key(record.name))
        existing = self.by_project_name.get(key)
        if existing is None:
            self.by_project_name[key] = record.id
        elif existing != record.id:
            self.conflicts.add(key)

    def forget_project_name(self, record: WorkflowRecord) -> None:
        key = (record.project_id, normalize_name_key(record.name))
        if self.by_project_name.get(key) == record.id and key not in self.conflicts:
            del self.by_project_name[key]

    def lookup_in_project(self, project_id: str, name: str) -> tuple[str | None, bool]:
        """Return ``(workflow_id, conflicted)`` for a name within a project."""
        key = (project_id, normalize_name_key(name))
        return self.by_project_name.get(key), key in self.conflicts

    def unique_by_name(self, name: str) -> str | None:
        """The id of the only remote workflow with this name, if exactly one exists."""
        ids = self.by_name.get(normalize_name_key(name), [])
        if len(ids) == 1:
            return ids[0]
        return None

    def named_exactly(self, name: str) -> list[WorkflowRecord]:
        ids = self.by_name.get(normalize_name_key(name), [])
        return [self.workflows[i] for i in ids if self.workflows[i].name == name]


@dataclass
class RemoteEntityIndex:
    """Projects, folders and workflows of the remote instance for one run."""

    projects: ProjectIndex
    folders: FolderIndex = field(default_factory=FolderIndex)
    workflows: WorkflowIndex = field(default_factory=WorkflowIndex)
    max_depth: int = DEFAULT_MAX_FOLDER_DEPTH
    valid: bool = True

    def folder_display_chain(self, folder_id: str) -> tuple[str, ...] | None:
        if not folder_id:
            return ()
        chain = self.folders.chain(folder_id, self.max_depth)
        if chain is None:
            return None
        return tuple(record.name for record in chain)

    def folder_slug_path(self, folder_id: str) -> str | None:
        chain = self.folders.chain(folder_id, self.max_depth)
        if chain is None:
            return None
        return "/".join(record.slug.lower() for record in chain)

    def find_in_folder(
        self, project_id: str, display_segments: tuple[str, ...], name: str
    ) -> str | None:
        """Exact (case-sensitive) name and folder-path match within a project."""
        for record in self.workflows.named_exactly(name):
            if record.project_id != project_id:
                continue
            if self.folder_display_chain(record.parent_folder_id) == display_segments:
                return record.id
        return None

    def register_folder(
        self,
        folder_id: str,
        name: str,
        project_id: str,
        parent_id: str = "",
        slug: str | None = None,
    ) -> list[DuplicateFolderWarning]:
        """Add a folder to every lookup table.

        Existing keys are never overwritten; each collision is returned as a
        ``DuplicateFolderWarning`` and also kept on ``folders.warnings``.
        """
        parent_id = normalize_identifier(parent_id)
        record = FolderRecord(
            id=folder_id,
            name=name,
            slug=slug or sanitize_slug(name) or folder_id,
            project_id=project_id,
            parent_id=parent_id,
        )
        self.folders.folders.setdefault(folder_id, record)
        warnings = [
            warning
            for warning in (
                _claim(
                    "slug",
                    self.folders.by_slug,
                    (project_id, parent_id, record.slug.lower()),
                    folder_id,
                ),
                _claim(
                    "name",
                    self.folders.by_name,
                    (project_id, parent_id, normalize_name_key(name)),
                    folder_id,
                ),
            )
            if warning is not None
        ]
        if parent_id == "" or parent_id in self.folders.folders:
            warnings.extend(self._index_path(folder_id))
        self.folders.warnings.extend(warnings)
        return warnings

    def remember_path(self, project_id: str, slug_path: str, folder_id: str) -> None:
        """Cache a path lookup that was resolved by scanning."""
        self.folders.by_path.setdefault((project_id, slug_path.lower()), folder_id)

    def _index_path(self, folder_id: str) -> list[DuplicateFolderWarning]:
        record = self.folders.folders[folder_id]
        slug_path = self.folder_slug_path(folder_id)
        if slug_path is None:
            logger.warning(
                "Folder %s (%s) has a cyclic or too deep parent chain; skipping path index",
                folder_id,
                record.name,
            )
            return []
        warning = _claim("path", self.folders.by_path, (record.project_id, slug_path), folder_id)
        return [warning] if warning is not None else []

    def record_assignment(
        self,
        workflow_id: str,
        project_id: str,
        folder_id: str | None,
        version_id: str | None = None,
    ) -> None:
        """Update the cached location (and version) of a workflow after a move."""
        record = self.workflows.get(workflow_id)
        if record is None:
            return
        self.workflows.forget_project_name(record)
        record.project_id = project_id
        record.parent_folder_id = normalize_identifier(folder_id)
        if version_id:
            record.version_id = version_id
        self.workflows.index_project_name(record)

    def upsert_workflow(self, workflow: RemoteWorkflow) -> WorkflowRecord:
        """Insert or refresh a workflow from a remote payload."""
        record = _workflow_record(workflow, self.projects.default_project_id)
        existing = self.workflows.get(record.id)
        if existing is None:
            self.workflows.add(record)
            return record
        self.workflows.forget_project_name(existing)
        existing.name = record.name or existing.name
        existing.project_id = record.project_id
        existing.parent_folder_id = record.parent_folder_id
        existing.version_id = record.version_id or existing.version_id
        self.workflows.index_project_name(existing)
        return existing

    def invalidate(self) -> None:
        """Mark the index stale; callers must build a fresh one before reuse."""
        self.valid = False


def _claim(
    key_kind: str, table: dict[Any, str], key: tuple[str, ...], folder_id: str
) -> DuplicateFolderWarning | None:
    existing = table.get(key)
    if existing is None:
        table[key] = folder_id
        return None
    if existing == folder_id:
        return None
    return DuplicateFolderWarning(
        key_kind=key_kind, key=key, kept_folder_id=existing, dropped_folder_id=folder_id
    )


def _workflow_record(workflow: RemoteWorkflow, default_project_id: str) -> WorkflowRecord:
    return WorkflowRecord(
        id=str(workflow.id),
        name=(workflow.name or "").strip(),
        project_id=normalize_identifier(workflow.project_id) or default_project_id,
        parent_folder_id=normalize_identifier(workflow.parent_folder_id),
        version_id=normalize_identifier(workflow.version_id) or None,
        instance_id=(workflow.instance_id or "").strip() or None,
    )


def build_project_index(projects: list[RemoteProject]) -> ProjectIndex:
    """Build project lookups; the personal project (or the first one) is the default.

    Raises:
        NoProjectsAvailableError: If the snapshot lists no projects.
    """
    if not projects:
        raise NoProjectsAvailableError("Remote instance returned no projects")
    index = ProjectIndex()
    for project in projects:
        project_id = str(project.id)
        name = (project.name or "").strip()
        slug = (project.slug or "").strip() or sanitize_slug(name)
        index.names[project_id] = name
        if name:
            index.by_name.setdefault(name.lower(), project_id)
        if slug:
            index.by_slug.setdefault(slug.lower(), project_id)
        is_personal = (project.type or "").lower() == PERSONAL or name.lower() == PERSONAL
        if is_personal and index.personal_project_id is None:
            index.personal_project_id = project_id
    if index.personal_project_id is not None:
        index.default_project_id = index.personal_project_id
        index.by_name[PERSONAL] = index.personal_project_id
        index.by_slug[PERSONAL] = index.personal_project_id
    else:
        index.default_project_id = str(projects[0].id)
    return index


def _register_folders(index: RemoteEntityIndex, folders: Iterable[RemoteFolder]) -> None:
    pending: list[RemoteFolder] = []
    for folder in folders:
        project_id = normalize_identifier(folder.project_id)
        if not project_id:
            logger.debug("Skipping folder %s without a project", folder.id)
            continue
        pending.append(folder)
        record = FolderRecord(
            id=str(folder.id),
            name=(folder.name or "").strip(),
            slug=(folder.slug or "").strip() or sanitize_slug(folder.name or "") or str(folder.id),
            project_id=project_id,
            parent_id=normalize_identifier(folder.parent_folder_id),
        )
        index.folders.folders.setdefault(record.id, record)

    # Paths need every parent registered first, so keys are claimed in a second pass.
    for folder in pending:
        record = index.folders.folders[str(folder.id)]
        for warning in (
            _claim(
                "slug",
                index.folders.by_slug,
                (record.project_id, record.parent_id, record.slug.lower()),
                record.id,
            ),
            _claim(
                "name",
                index.folders.by_name,
                (record.project_id, record.parent_id, normalize_name_key(record.name)),
                record.id,
            ),
            *index._index_path(record.id),
        ):
            if warning is not None:
                index.folders.warnings.append(warning)
                logger.warning("%s", warning.message)


def load_remote_index(
    projects: Any,
    folders: Any,
    workflows: Any,
    *,
    max_depth: int = DEFAULT_MAX_FOLDER_DEPTH,
) -> RemoteEntityIndex:
    """Build a ``RemoteEntityIndex`` from raw snapshot payloads.

    Each payload may be a bare list or a ``{"data": [...]}`` envelope.
    ``folders`` may be None when the instance does not support folders.

    Raises:
        MalformedSnapshotError: If a payload does not match the snapshot schema.
        NoProjectsAvailableError: If no projects are listed.
    """
    project_models = parse_snapshot(RemoteProject, projects, "project")
    folder_models = [] if folders is None else parse_snapshot(RemoteFolder, folders, "folder")
    workflow_models = parse_snapshot(RemoteWorkflow, workflows, "workflow")

    index = RemoteEntityIndex(projects=build_project_index(project_models), max_depth=max_depth)
    _register_folders(index, folder_models)
    for workflow in workflow_models:
        index.workflows.add(_workflow_record(workflow, index.projects.default_project_id))

    logger.info(
        "Indexed %d project(s), %d folder(s), %d workflow(s)",
        len(index.projects.names),
        len(index.folders.folders),
        len(index.workflows.workflows),
    )
    return index
