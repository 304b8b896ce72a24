"""Tests for the run-scoped remote entity index."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from n8n_restore.exceptions import MalformedSnapshotError, NoProjectsAvailableError
from n8n_restore.services.remote_index import (
    DuplicateFolderWarning,
    RemoteEntityIndex,
    load_remote_index,
)
from tests.conftest import PERSONAL_PROJECT, TEAM_PROJECT, folder_payload, workflow_payload


def _index(
    folders: list[dict[str, Any]] | None = None,
    workflows: list[dict[str, Any]] | None = None,
    projects: list[dict[str, Any]] | None = None,
    **kwargs: Any,
) -> RemoteEntityIndex:
    return load_remote_index(
        projects if projects is not None else [PERSONAL_PROJECT, TEAM_PROJECT],
        folders or [],
        workflows or [],
        **kwargs,
    )


class TestProjectIndex:
    def test_personal_project_is_default(self) -> None:
        index = _index(projects=[TEAM_PROJECT, PERSONAL_PROJECT])
        assert index.projects.default_project_id == "p-personal"
        assert index.projects.personal_project_id == "p-personal"

    def test_first_project_is_default_without_personal(self) -> None:
        index = _index(projects=[TEAM_PROJECT])
        assert index.projects.default_project_id == "p-team"
        assert index.projects.personal_project_id is None

    def test_personal_alias(self) -> None:
        personal = {"id": "p1", "name": "Jane Doe <jane@example.com>", "type": "personal"}
        index = _index(projects=[personal])
        assert index.projects.resolve("personal") == "p1"
        assert index.projects.resolve(slug="personal") == "p1"

    def test_name_preferred_over_slug(self) -> None:
        projects = [
            {"id": "a", "name": "ops", "slug": "alpha"},
            {"id": "b", "name": "Other", "slug": "ops"},
        ]
        index = _index(projects=projects)
        assert index.projects.resolve("OPS", "ops") == "a"
        assert index.projects.resolve(None, "OPS") == "b"

    def test_explicit_slug_used_for_lookup(self) -> None:
        index = _index()
        assert index.projects.resolve(slug="Team_Ops") is None
        assert index.projects.resolve(slug="team-ops") == "p-team"

    def test_unknown_project_falls_back_to_default(self) -> None:
        index = _index()
        assert index.projects.resolve("Nope", "nope") is None
        assert index.projects.resolve_target(None, "Nope", "nope") == "p-personal"

    def test_override_wins_over_path(self) -> None:
        projects = _index().projects
        assert projects.resolve_target("Team Ops", "Personal") == "p-team"
        assert projects.resolve_target("p-team", "Personal") == "p-team"
        assert projects.resolve_target("team-ops", None, "personal") == "p-team"

    def test_unknown_override_is_ignored(self, caplog: pytest.LogCaptureFixture) -> None:
        projects = _index().projects
        with caplog.at_level(logging.INFO, logger="n8n_restore.services.remote_index"):
            assert projects.resolve_target("Nope", "Team Ops") == "p-team"
            assert projects.resolve_target("Nope") == "p-personal"
        assert "Project override 'Nope' not found" in caplog.text

    def test_no_projects_is_fatal(self) -> None:
        with pytest.raises(NoProjectsAvailableError):
            _index(projects=[])


class TestSnapshotParsing:
    def test_accepts_data_envelope(self) -> None:
        index = load_remote_index(
            {"data": [PERSONAL_PROJECT]},
            {"data": [folder_payload("f1", "Sales")]},
            {"data": [workflow_payload("w1", "Lead Gen")]},
        )
        assert "f1" in index.folders.folders
        assert index.workflows.get("w1") is not None

    def test_rejects_non_list_payload(self) -> None:
        with pytest.raises(MalformedSnapshotError):
            load_remote_index({"items": []}, [], [])

    def test_rejects_non_object_items(self) -> None:
        with pytest.raises(MalformedSnapshotError):
            load_remote_index([PERSONAL_PROJECT], [], ["not-a-workflow"])

    def test_items_without_id_skipped(self) -> None:
        index = _index(workflows=[{"name": "anonymous"}, workflow_payload("w1", "Named")])
        assert list(index.workflows.workflows) == ["w1"]

    def test_folders_none_means_no_folder_support(self) -> None:
        index = load_remote_index([PERSONAL_PROJECT], None, [])
        assert index.folders.folders == {}


class TestFolderIndex:
    def test_composite_keys(self) -> None:
        index = _index(
            folders=[
                folder_payload("f2", "Leads", parent_id="f1"),
                folder_payload("f1", "Sales"),
            ]
        )
        assert index.folders.lookup_path("p-personal", "sales/leads") == "f2"
        assert index.folders.lookup_slug("p-personal", "f1", "LEADS") == "f2"
        assert index.folders.lookup_name("p-personal", "", "sales") == "f1"

    def test_root_parent_spellings_normalized(self) -> None:
        folders = [
            {"id": "f1", "name": "A", "projectId": "p-personal", "parentFolderId": "0"},
            {"id": "f2", "name": "B", "projectId": "p-personal", "parentFolderId": "root"},
        ]
        index = _index(folders=folders)
        assert index.folders.folders["f1"].parent_id == ""
        assert index.folders.folders["f2"].parent_id == ""

    def test_folder_without_project_skipped(self) -> None:
        index = _index(folders=[{"id": "f1", "name": "Orphan"}])
        assert "f1" not in index.folders.folders

    def test_duplicates_keep_first_and_warn(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="n8n_restore.services.remote_index"):
            index = _index(folders=[folder_payload("f1", "Sales"), folder_payload("f2", "sales")])
        assert index.folders.lookup_name("p-personal", "", "Sales") == "f1"
        assert index.folders.lookup_path("p-personal", "sales") == "f1"
        kinds = {w.key_kind for w in index.folders.warnings}
        assert kinds == {"slug", "name", "path"}
        assert all(w.kept_folder_id == "f1" for w in index.folders.warnings)
        assert "Duplicate folder" in caplog.text

    def test_cycle_does_not_hang(self, caplog: pytest.LogCaptureFixture) -> None:
        folders = [
            folder_payload("f1", "A", parent_id="f2"),
            folder_payload("f2", "B", parent_id="f1"),
        ]
        with caplog.at_level(logging.WARNING, logger="n8n_restore.services.remote_index"):
            index = _index(folders=folders)
        assert index.folders.by_path == {}
        assert "cyclic or too deep" in caplog.text

    def test_depth_guard(self) -> None:
        folders = [
            folder_payload("a", "A"),
            folder_payload("b", "B", parent_id="a"),
            folder_payload("c", "C", parent_id="b"),
            folder_payload("d", "D", parent_id="c"),
        ]
        index = _index(folders=folders, max_depth=3)
        assert index.folders.lookup_path("p-personal", "a/b/c") == "c"
        assert index.folders.lookup_path("p-personal", "a/b/c/d") is None

    def test_register_folder_reports_collisions(self) -> None:
        index = _index(folders=[folder_payload("f1", "Sales")])
        warnings = index.register_folder("f9", "Sales", "p-personal")
        assert warnings
        assert all(isinstance(w, DuplicateFolderWarning) for w in warnings)
        assert index.folders.lookup_slug("p-personal", "", "sales") == "f1"

    def test_register_folder_indexes_path_under_parent(self) -> None:
        index = _index(folders=[folder_payload("f1", "Sales")])
        assert index.register_folder("f2", "Lead Gen", "p-personal", "f1") == []
        assert index.folders.lookup_path("p-personal", "sales/lead_gen") == "f2"


class TestWorkflowIndex:
    def test_missing_project_uses_default(self) -> None:
        index = _index(workflows=[{"id": "w1", "name": "Loose"}])
        assert index.workflows.get("w1").project_id == "p-personal"

    def test_nested_version_and_instance(self) -> None:
        payload = {
            "id": "w1",
            "name": "Nested",
            "version": {"id": "v7"},
            "homeProjectId": "p-team",
            "meta": {"instanceId": "inst-1"},
        }
        record = _index(workflows=[payload]).workflows.get("w1")
        assert record.version_id == "v7"
        assert record.project_id == "p-team"
        assert record.instance_id == "inst-1"

    def test_project_name_conflicts(self) -> None:
        index = _index(
            workflows=[workflow_payload("w1", "Report"), workflow_payload("w2", "report ")]
        )
        workflow_id, conflicted = index.workflows.lookup_in_project("p-personal", "Report")
        assert workflow_id == "w1"
        assert conflicted

    def test_unique_by_name(self) -> None:
        index = _index(
            workflows=[
                workflow_payload("w1", "Only One"),
                workflow_payload("w2", "Twice"),
                workflow_payload("w3", "Twice", project_id="p-team"),
            ]
        )
        assert index.workflows.unique_by_name("only one") == "w1"
        assert index.workflows.unique_by_name("Twice") is None

    def test_find_in_folder_is_case_sensitive(self) -> None:
        index = _index(
            folders=[folder_payload("f1", "Sales")],
            workflows=[workflow_payload("w1", "Lead Gen", folder_id="f1")],
        )
        assert index.find_in_folder("p-personal", ("Sales",), "Lead Gen") == "w1"
        assert index.find_in_folder("p-personal", ("sales",), "Lead Gen") is None
        assert index.find_in_folder("p-personal", ("Sales",), "lead gen") is None
        assert index.find_in_folder("p-team", ("Sales",), "Lead Gen") is None

    def test_record_assignment_updates_location(self) -> None:
        index = _index(workflows=[workflow_payload("w1", "Flow")])
        index.record_assignment("w1", "p-team", "f3", "v2")
        record = index.workflows.get("w1")
        assert (record.project_id, record.parent_folder_id, record.version_id) == (
            "p-team",
            "f3",
            "v2",
        )
        assert index.workflows.lookup_in_project("p-team", "Flow") == ("w1", False)
        assert index.workflows.lookup_in_project("p-personal", "Flow") == (None, False)
