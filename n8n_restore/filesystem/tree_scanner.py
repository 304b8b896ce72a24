"""Local workflow tree scanning and folder-path derivation."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from n8n_restore.schemas.manifest import FolderPath, FolderSegment
from n8n_restore.services.slug_service import normalize_identifier, sanitize_slug, unslug_to_title

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

PERSONAL_SLUG = "personal"
FALLBACK_SEGMENT_SLUG = "folder"
EXCLUDED_DIRS = frozenset({".credentials", "archive"})
EXCLUDED_FILES = frozenset({"credentials.json", "workflows.json", ".n8n-folder-structure.json"})


@dataclass(frozen=True)
class WorkflowFile:
    """A workflow definition read from the local tree.

    ``content`` is the parsed JSON object and is never mutated; staging works
    on a copy.
    """

    path: Path
    relative_path: str
    storage_path: str
    name: str
    declared_id: str | None
    folder_path: FolderPath
    content: dict[str, Any] = field(compare=False, repr=False)

    @property
    def instance_id(self) -> str | None:
        meta = self.content.get("meta")
        if isinstance(meta, dict) and meta.get("instanceId"):
            return str(meta["instanceId"]).strip() or None
        return None


def split_segments(path: str) -> list[str]:
    """Split a relative directory on ``/`` or ``\\``, trimming and dropping empty parts."""
    return [part.strip() for part in path.replace("\\", "/").split("/") if part.strip()]


def strip_path_prefix(relative_path: str, prefix: str) -> str:
    """Remove a configured repository prefix from the front of ``relative_path``."""
    prefix = "/".join(split_segments(prefix))
    relative_path = "/".join(split_segments(relative_path))
    if not prefix:
        return relative_path
    if relative_path == prefix:
        return ""
    if relative_path.startswith(prefix + "/"):
        return relative_path[len(prefix) + 1 :]
    return relative_path


def derive_folder_path(
    relative_dir: str,
    *,
    project_name: str = "",
    project_slug: str = "",
    project_from_path: bool = False,
) -> FolderPath:
    """Compute the target project and folder chain for a file's directory.

    Rules:
    - The project is the configured one (slug falls back to the sanitized
      name, then ``personal``); a leading segment equal to the project slug
      is dropped.
    - With ``project_from_path`` the first segment names the project instead.
    """
    segments = split_segments(relative_dir)

    if project_from_path and segments:
        display = segments.pop(0)
        slug = sanitize_slug(display) or PERSONAL_SLUG
    else:
        slug = project_slug.strip() or sanitize_slug(project_name.strip()) or PERSONAL_SLUG
        display = project_name.strip() or unslug_to_title(slug)
        if segments and sanitize_slug(segments[0]).lower() == slug.lower():
            segments.pop(0)

    return FolderPath(
        project_slug=slug,
        project_display_name=display,
        segments=tuple(
            FolderSegment(slug=sanitize_slug(s) or FALLBACK_SEGMENT_SLUG, display_name=s)
            for s in segments
        ),
    )


def _load_workflow_json(path: Path) -> dict[str, Any] | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Skipping unreadable workflow file %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Skipping %s: not a workflow object", path)
        return None
    return data


def scan_workflow_tree(
    root: Path,
    *,
    path_prefix: str = "",
    project_name: str = "",
    project_slug: str = "",
    project_from_path: bool = False,
) -> Iterator[WorkflowFile]:
    """Lazily yield every workflow file under ``root`` in sorted path order.

    Hidden entries, credential stores, archives and prior manifests are
    skipped. The scan has no side effects and can be restarted by calling
    the function again.
    """
    for dirpath, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if not d.startswith(".") and d not in EXCLUDED_DIRS)
        for filename in sorted(files):
            if filename.startswith(".") or filename in EXCLUDED_FILES:
                continue
            if not filename.lower().endswith(".json"):
                continue
            full = Path(dirpath) / filename
            content = _load_workflow_json(full)
            if content is None:
                continue

            repo_relative = PurePosixPath(full.relative_to(root).as_posix())
            relative_path = strip_path_prefix(str(repo_relative), path_prefix)
            storage_path = str(PurePosixPath(relative_path).parent)
            if storage_path == ".":
                storage_path = ""

            name = content.get("name")
            name = name.strip() if isinstance(name, str) and name.strip() else full.stem
            yield WorkflowFile(
                path=full,
                relative_path=relative_path,
                storage_path=storage_path,
                name=name,
                declared_id=normalize_identifier(content.get("id")) or None,
                folder_path=derive_folder_path(
                    storage_path,
                    project_name=project_name,
                    project_slug=project_slug,
                    project_from_path=project_from_path,
                ),
                content=content,
            )


def prepend_base_folder(folder_path: FolderPath, base_folder: str) -> FolderPath:
    """Place ``folder_path`` under ``base_folder`` unless it already starts there.

    Base segments equal to the project slug are ignored.
    """
    project_slug = folder_path.project_slug.lower()
    base = [s for s in split_segments(base_folder) if sanitize_slug(s).lower() != project_slug]
    if not base:
        return folder_path
    base_slugs = [sanitize_slug(s).lower() or FALLBACK_SEGMENT_SLUG for s in base]
    local_slugs = [segment.slug.lower() for segment in folder_path.segments[: len(base)]]
    if local_slugs == base_slugs:
        return folder_path
    prefix = tuple(
        FolderSegment(slug=sanitize_slug(s) or FALLBACK_SEGMENT_SLUG, display_name=s) for s in base
    )
    return folder_path.model_copy(update={"segments": prefix + folder_path.segments})
