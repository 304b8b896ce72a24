"""Pydantic schemas for remote snapshots, manifests and audit records."""

from n8n_restore.schemas.manifest import (
    AuditRecord,
    AuditStatus,
    FolderPath,
    FolderSegment,
    IntendedAction,
    ManifestEntry,
    MatchStrategy,
    ResolutionStrategy,
    SanitizationNote,
)
from n8n_restore.schemas.remote import (
    RemoteFolder,
    RemoteProject,
    RemoteWorkflow,
    parse_snapshot,
)

__all__ = [
    "AuditRecord",
    "AuditStatus",
    "FolderPath",
    "FolderSegment",
    "IntendedAction",
    "ManifestEntry",
    "MatchStrategy",
    "RemoteFolder",
    "RemoteProject",
    "RemoteWorkflow",
    "ResolutionStrategy",
    "SanitizationNote",
    "parse_snapshot",
]
