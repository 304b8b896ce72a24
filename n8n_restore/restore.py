"""In-process restore pipeline: scan, stage, import, reconcile, synchronize folders, summarize."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from n8n_restore.filesystem.manifest_store import (
    AUDIT_LOG_FILE,
    MANIFEST_FILE,
    PRIOR_MAPPING_FILE,
    AuditLog,
    load_prior_mapping,
    write_manifest,
)
from n8n_restore.filesystem.tree_scanner import scan_workflow_tree
from n8n_restore.schemas.remote import RemoteWorkflow, parse_snapshot
from n8n_restore.services.folder_sync_service import sync_folders
from n8n_restore.services.reconcile_service import reconcile_manifest
from n8n_restore.services.remote_index import load_remote_index
from n8n_restore.services.report_service import build_summary, log_summary
from n8n_restore.services.staging_service import stage_workflows

if TYPE_CHECKING:
    from pathlib import Path

    from n8n_restore.client.base import RemoteApi
    from n8n_restore.config import RestoreSettings
    from n8n_restore.services.folder_sync_service import SyncResult
    from n8n_restore.services.reconcile_service import ReconcileResult
    from n8n_restore.services.report_service import RestoreSummary
    from n8n_restore.services.staging_service import StagingResult

logger = logging.getLogger(__name__)

STAGING_DIR = "staging"


@runtime_checkable
class WorkflowImporter(Protocol):
    """Runs n8n's native import over a directory of staged workflow files."""

    def __call__(self, staging_dir: Path) -> None: ...


@dataclass
class RestoreRun:
    staging: StagingResult
    reconciliation: ReconcileResult
    sync: SyncResult | None
    summary: RestoreSummary
    manifest_path: Path
    audit_log_path: Path | None


def configure_logging(debug: bool) -> None:
    """Configure restore logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def run_restore(
    settings: RestoreSettings,
    api: RemoteApi,
    source_dir: Path,
    work_dir: Path,
    importer: WorkflowImporter,
) -> RestoreRun:
    """Restore every workflow under ``source_dir`` into the remote instance.

    The manifest is rewritten after staging and after reconciliation; folder
    assignments are appended to the audit log as they happen. A dry run stages
    and plans but never imports, creates or moves anything.

    Raises:
        MalformedSnapshotError: If a remote snapshot cannot be parsed.
        NoProjectsAvailableError: If the remote instance has no projects.
    """
    projects = api.list_projects()
    folders = api.list_folders()
    workflows = api.list_workflows()
    index = load_remote_index(projects, folders, workflows, max_depth=settings.max_folder_depth)

    files = scan_workflow_tree(
        source_dir,
        path_prefix=settings.path_prefix,
        project_name=settings.project_name,
        project_slug=settings.project_slug,
        project_from_path=settings.project_from_path,
    )
    staging_dir = work_dir / STAGING_DIR
    staging = stage_workflows(
        files,
        index,
        settings.staging_policy(),
        staging_dir,
        prior_mapping=load_prior_mapping(source_dir / PRIOR_MAPPING_FILE),
    )
    manifest_path = work_dir / MANIFEST_FILE
    write_manifest(manifest_path, staging.entries)

    if settings.dry_run:
        logger.info("Dry run: skipping import of %d staged workflow(s)", len(staging.entries))
        post_workflows = workflows
    else:
        importer(staging_dir)
        post_workflows = api.list_workflows()

    reconciliation = reconcile_manifest(
        staging.entries,
        parse_snapshot(RemoteWorkflow, workflows, "workflow"),
        parse_snapshot(RemoteWorkflow, post_workflows, "workflow"),
        dry_run=settings.dry_run,
    )
    write_manifest(manifest_path, staging.entries)
    index.invalidate()

    sync: SyncResult | None = None
    audit_log_path: Path | None = None
    if folders is None:
        logger.info("Folder synchronization skipped: instance has no folder support")
    else:
        post_index = load_remote_index(
            projects, folders, post_workflows, max_depth=settings.max_folder_depth
        )
        audit_log_path = None if settings.dry_run else work_dir / AUDIT_LOG_FILE
        sync = sync_folders(
            staging.entries,
            post_index,
            api,
            dry_run=settings.dry_run,
            project_override=settings.project_override or None,
            audit_log=AuditLog(audit_log_path),
        )

    summary = build_summary(staging, reconciliation, sync)
    log_summary(summary)
    return RestoreRun(
        staging=staging,
        reconciliation=reconciliation,
        sync=sync,
        summary=summary,
        manifest_path=manifest_path,
        audit_log_path=audit_log_path,
    )
