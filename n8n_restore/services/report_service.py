"""Restore summary: counts per outcome and a human-readable report."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from n8n_restore.schemas.manifest import AuditStatus, ResolutionStrategy

if TYPE_CHECKING:
    from n8n_restore.schemas.manifest import AuditRecord
    from n8n_restore.services.folder_sync_service import SyncResult
    from n8n_restore.services.reconcile_service import ReconcileResult
    from n8n_restore.services.staging_service import StagingResult

logger = logging.getLogger(__name__)

MAX_LISTED_FAILURES = 10


@dataclass
class RestoreSummary:
    created: int = 0
    updated: int = 0
    unresolved: int = 0
    assigned: int = 0
    unchanged: int = 0
    failed: int = 0
    license_blocked: int = 0
    folders_created: int = 0
    total: int = 0
    dry_run: bool = False
    strategies: dict[str, int] = field(default_factory=dict)
    failures: list[str] = field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "assigned": self.assigned,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "license-blocked": self.license_blocked,
            "unresolved": self.unresolved,
            "folders-created": self.folders_created,
        }

    @property
    def nothing_to_do(self) -> bool:
        return self.total == 0 or (
            self.created == 0
            and self.updated == 0
            and self.assigned == 0
            and self.folders_created == 0
            and self.failed == 0
            and self.license_blocked == 0
            and self.unresolved == 0
        )

    def render(self) -> list[str]:
        """Human-readable summary lines."""
        prefix = "[dry run] " if self.dry_run else ""
        if self.nothing_to_do:
            return [f"{prefix}Nothing to do: {self.total} workflow(s) already up to date"]

        problems = self.failed + self.license_blocked + self.unresolved
        if problems:
            headline = f"{prefix}Processed {self.total} workflow(s) with {problems} failure(s)"
        else:
            headline = f"{prefix}Processed {self.total} workflow(s) successfully"
        lines = [
            headline,
            f"  created: {self.created}, updated: {self.updated}, unresolved: {self.unresolved}",
            f"  folders: {self.assigned} assigned, {self.unchanged} unchanged, "
            f"{self.failed} failed, {self.license_blocked} license-blocked, "
            f"{self.folders_created} folder(s) created",
        ]
        if self.strategies:
            parts = ", ".join(f"{name}={count}" for name, count in sorted(self.strategies.items()))
            lines.append(f"  id resolution: {parts}")
        for failure in self.failures[:MAX_LISTED_FAILURES]:
            lines.append(f"  - {failure}")
        hidden = len(self.failures) - MAX_LISTED_FAILURES
        if hidden > 0:
            lines.append(f"  ...and {hidden} additional failure(s)")
        return lines


def _describe_failure(record: AuditRecord) -> str:
    location = record.display_path or "(project root)"
    detail = f": {record.note}" if record.note else ""
    return f"{record.workflow_name} -> {location} [{record.status}]{detail}"


def build_summary(
    staging: StagingResult | None = None,
    reconciliation: ReconcileResult | None = None,
    sync: SyncResult | None = None,
) -> RestoreSummary:
    """Aggregate the stage results of one run; any stage may be missing."""
    summary = RestoreSummary()

    if staging is not None:
        summary.total = len(staging.entries)
        summary.created = staging.to_create
        summary.updated = staging.to_update

    if reconciliation is not None:
        summary.total = summary.total or len(reconciliation.entries)
        summary.created = reconciliation.created + reconciliation.planned
        summary.updated = reconciliation.updated
        summary.unresolved = reconciliation.unresolved
        summary.strategies = dict(reconciliation.strategies)
        summary.failures.extend(
            f"{entry.name} ({entry.relative_path}): {entry.id_reconciliation_warning}"
            for entry in reconciliation.entries
            if entry.id_resolution_strategy == ResolutionStrategy.UNRESOLVED
        )

    if sync is not None:
        summary.dry_run = sync.dry_run
        summary.assigned = sync.assigned
        summary.unchanged = sync.unchanged
        summary.failed = sync.failed
        summary.license_blocked = sync.blocked
        summary.folders_created = sync.folders_created + sync.folders_planned
        summary.total = summary.total or len(sync.records)
        summary.failures.extend(
            _describe_failure(record)
            for record in sync.records
            if record.status in (AuditStatus.FAILED, AuditStatus.LICENSE_BLOCKED)
        )

    return summary


def log_summary(summary: RestoreSummary) -> None:
    level = logging.WARNING if summary.failures else logging.INFO
    for line in summary.render():
        logger.log(level, "%s", line)
