"""Tests for the restore summary."""

from __future__ import annotations

import logging

import pytest

from n8n_restore.filesystem.tree_scanner import derive_folder_path
from n8n_restore.schemas.manifest import (
    AuditRecord,
    AuditStatus,
    ManifestEntry,
    ResolutionStrategy,
)
from n8n_restore.services.folder_sync_service import SyncResult
from n8n_restore.services.reconcile_service import ReconcileResult
from n8n_restore.services.report_service import (
    MAX_LISTED_FAILURES,
    RestoreSummary,
    build_summary,
    log_summary,
)


def _record(name: str, status: AuditStatus, note: str = "") -> AuditRecord:
    return AuditRecord(
        workflow_id=f"id-{name}",
        workflow_name=name,
        project_id="p-personal",
        display_path="Sales",
        status=status,
        note=note,
    )


class TestBuildSummary:
    def test_aggregates_all_stages(self) -> None:
        lost = ManifestEntry(
            name="Lost",
            relative_path="Lost.json",
            storage_path="",
            target_folder=derive_folder_path(""),
            id_reconciled=False,
            id_resolution_strategy=ResolutionStrategy.UNRESOLVED,
            id_reconciliation_warning="workflow not found after import",
        )
        reconciliation = ReconcileResult(entries=[lost], created=2, updated=1, unresolved=1)
        reconciliation.strategies.update({"manifest-id": 2, "name-only": 1})
        sync = SyncResult(
            records=[
                _record("A", AuditStatus.SUCCESS),
                _record("B", AuditStatus.UNCHANGED),
                _record("C", AuditStatus.FAILED, "version-conflict"),
            ],
            folders_created=1,
        )

        summary = build_summary(reconciliation=reconciliation, sync=sync)
        assert summary.counts == {
            "created": 2,
            "updated": 1,
            "assigned": 1,
            "unchanged": 1,
            "failed": 1,
            "license-blocked": 0,
            "unresolved": 1,
            "folders-created": 1,
        }
        assert summary.failures == [
            "Lost (Lost.json): workflow not found after import",
            "C -> Sales [failed]: version-conflict",
        ]

        lines = summary.render()
        assert lines[0] == "Processed 1 workflow(s) with 2 failure(s)"
        assert "  id resolution: manifest-id=2, name-only=1" in lines

    def test_nothing_to_do(self) -> None:
        sync = SyncResult(records=[_record("A", AuditStatus.UNCHANGED)])
        summary = build_summary(sync=sync)
        assert summary.nothing_to_do
        assert summary.render() == ["Nothing to do: 1 workflow(s) already up to date"]

    def test_empty_run(self) -> None:
        assert build_summary().render() == ["Nothing to do: 0 workflow(s) already up to date"]

    def test_dry_run_prefix_and_planned_folders(self) -> None:
        sync = SyncResult(
            records=[_record("A", AuditStatus.SUCCESS, "dry-run")], folders_planned=3, dry_run=True
        )
        summary = build_summary(sync=sync)
        assert summary.folders_created == 3
        assert summary.render()[0] == "[dry run] Processed 1 workflow(s) successfully"

    def test_planned_creations_are_not_failures(self) -> None:
        planned = ManifestEntry(
            name="Brand New",
            relative_path="Sales/New.json",
            storage_path="Sales",
            target_folder=derive_folder_path("Sales"),
            id_resolution_strategy=ResolutionStrategy.PLANNED,
        )
        reconciliation = ReconcileResult(entries=[planned], planned=1)
        sync = SyncResult(
            records=[_record("Brand New", AuditStatus.SUCCESS, "dry-run")],
            folders_planned=1,
            dry_run=True,
        )
        summary = build_summary(reconciliation=reconciliation, sync=sync)
        assert summary.failures == []
        assert summary.counts["created"] == 1
        assert summary.counts["unresolved"] == 0
        assert summary.render()[0] == "[dry run] Processed 1 workflow(s) successfully"


class TestRender:
    def test_failure_list_is_capped(self) -> None:
        summary = RestoreSummary(
            total=20,
            failed=15,
            failures=[f"failure {n}" for n in range(15)],
        )
        lines = summary.render()
        listed = [line for line in lines if line.startswith("  - ")]
        assert len(listed) == MAX_LISTED_FAILURES
        assert lines[-1] == "  ...and 5 additional failure(s)"


class TestLogSummary:
    def test_warns_on_failures(self, caplog: pytest.LogCaptureFixture) -> None:
        summary = RestoreSummary(total=1, failed=1, failures=["x"])
        with caplog.at_level(logging.INFO, logger="n8n_restore.services.report_service"):
            log_summary(summary)
        assert all(r.levelno == logging.WARNING for r in caplog.records)
        assert "with 1 failure(s)" in caplog.text

    def test_info_when_clean(self, caplog: pytest.LogCaptureFixture) -> None:
        summary = RestoreSummary(total=1, created=1)
        with caplog.at_level(logging.INFO, logger="n8n_restore.services.report_service"):
            log_summary(summary)
        assert caplog.records
        assert all(r.levelno == logging.INFO for r in caplog.records)
