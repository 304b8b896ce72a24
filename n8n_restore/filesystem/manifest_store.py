"""NDJSON persistence for the restore manifest, the audit log and prior mappings."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from pydantic import ValidationError

from n8n_restore.exceptions import RestoreError
from n8n_restore.schemas.manifest import AuditRecord, ManifestEntry
from n8n_restore.services.slug_service import normalize_lookup_key, normalize_name_key

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

MANIFEST_FILE = "restore-manifest.ndjson"
AUDIT_LOG_FILE = "folder-assignments.ndjson"
PRIOR_MAPPING_FILE = ".n8n-folder-structure.json"


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_manifest(path: Path, entries: Iterable[ManifestEntry]) -> None:
    """Write all entries as NDJSON, replacing ``path`` atomically."""
    lines = [json.dumps(entry.model_dump(mode="json", by_alias=True)) for entry in entries]
    _atomic_write_text(path, "".join(line + "\n" for line in lines))
    logger.debug("Wrote %d manifest entr(ies) to %s", len(lines), path)


def read_manifest(path: Path) -> list[ManifestEntry]:
    """Load manifest entries, ignoring blank lines.

    Raises:
        RestoreError: If a line is not a valid manifest entry.
    """
    entries: list[ManifestEntry] = []
    for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        if not line.strip():
            continue
        try:
            entries.append(ManifestEntry.model_validate_json(line))
        except ValidationError as exc:
            raise RestoreError(f"Invalid manifest entry at {path}:{lineno}") from exc
    return entries


class AuditLog:
    """Append-only NDJSON log of folder assignment outcomes.

    Each record is flushed as soon as it is appended so a crash mid-run leaves
    every completed assignment on disk. Without a path the log is in-memory.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self.records: list[AuditRecord] = []
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, record: AuditRecord) -> None:
        self.records.append(record)
        if self.path is None:
            return
        with open(self.path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(record.model_dump(mode="json", by_alias=True)) + "\n")
            handle.flush()


def read_audit_log(path: Path) -> list[AuditRecord]:
    return [
        AuditRecord.model_validate_json(line)
        for line in path.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]


@dataclass(frozen=True)
class PriorMappingEntry:
    """A workflow recorded by an earlier backup's folder-structure file."""

    id: str
    name: str
    relative_path: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class PriorMappingHit:
    workflow_id: str
    match_type: str
    note: str | None = None


def load_prior_mapping(path: Path) -> list[PriorMappingEntry]:
    """Read ``{"workflows": [...]}`` from a prior backup; missing or broken files yield []."""
    if not path.is_file():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable prior mapping %s: %s", path, exc)
        return []
    workflows = data.get("workflows") if isinstance(data, dict) else None
    if not isinstance(workflows, list):
        return []
    entries: list[PriorMappingEntry] = []
    for item in workflows:
        if not isinstance(item, dict) or not item.get("id"):
            continue
        entries.append(
            PriorMappingEntry(
                id=str(item["id"]).strip(),
                name=str(item.get("name") or "").strip(),
                relative_path=str(item.get("relativePath") or ""),
                updated_at=str(item.get("updatedAt") or ""),
            )
        )
    return entries


def paths_match(left: str, right: str, project_slug: str = "") -> bool:
    """Compare two relative paths, tolerating a leading project or ``personal`` segment."""
    a = normalize_lookup_key(left)
    b = normalize_lookup_key(right)
    if a == b:
        return True
    for prefix in {"personal", normalize_lookup_key(project_slug)} - {""}:
        a_stripped = a[len(prefix) + 1 :] if a.startswith(prefix + "/") else a
        b_stripped = b[len(prefix) + 1 :] if b.startswith(prefix + "/") else b
        if a_stripped == b_stripped:
            return True
    return False


def _parent_dir(relative_path: str) -> str:
    parent = str(PurePosixPath(relative_path).parent)
    return "" if parent == "." else parent


def _newest(entries: list[PriorMappingEntry]) -> PriorMappingEntry:
    return max(entries, key=lambda e: e.updated_at)


def lookup_prior_mapping(
    mapping: list[PriorMappingEntry],
    *,
    relative_path: str,
    workflow_id: str | None,
    name: str,
    project_slug: str = "",
) -> PriorMappingHit | None:
    """Find a workflow in a prior mapping: by path, then workflow id, then folder and name.

    Several path or folder-and-name matches are resolved to the newest
    ``updatedAt``.
    """
    if not mapping:
        return None

    without_ext = str(PurePosixPath(relative_path).with_suffix(""))
    path_matches = [
        entry
        for entry in mapping
        if entry.relative_path
        and (
            paths_match(entry.relative_path, relative_path, project_slug)
            or paths_match(entry.relative_path, without_ext, project_slug)
        )
    ]
    if len(path_matches) == 1:
        return PriorMappingHit(path_matches[0].id, "path")
    if path_matches:
        return PriorMappingHit(
            _newest(path_matches).id,
            "path-newest",
            "multiple path matches resolved via newest updatedAt",
        )

    if workflow_id:
        for entry in mapping:
            if entry.id == workflow_id:
                return PriorMappingHit(entry.id, "workflow-id")

    name_key = normalize_name_key(name)
    folder = _parent_dir(relative_path)
    name_matches = [entry for entry in mapping if normalize_name_key(entry.name) == name_key]
    in_folder = [
        entry
        for entry in name_matches
        if paths_match(_parent_dir(entry.relative_path), folder, project_slug)
        or paths_match(entry.relative_path, folder, project_slug)
    ]
    candidates = in_folder or (name_matches if len(name_matches) == 1 else [])
    if len(candidates) == 1:
        return PriorMappingHit(candidates[0].id, "folder-name")
    if candidates:
        return PriorMappingHit(
            _newest(candidates).id,
            "folder-name-newest",
            "multiple name matches resolved via newest updatedAt",
        )
    return None
