"""Shared test fixtures for n8n-restore."""

from __future__ import annotations

import copy
import json
from typing import TYPE_CHECKING, Any

import pytest

from n8n_restore.exceptions import LicenseRestrictedError, RemoteApiError, VersionConflictError
from n8n_restore.schemas.remote import RemoteFolder, RemoteWorkflow

if TYPE_CHECKING:
    from pathlib import Path

PERSONAL_PROJECT = {"id": "p-personal", "name": "Personal", "type": "personal"}
TEAM_PROJECT = {"id": "p-team", "name": "Team Ops", "slug": "team-ops", "type": "team"}


def workflow_payload(
    workflow_id: str,
    name: str,
    *,
    project_id: str = "p-personal",
    folder_id: str | None = None,
    version_id: str | None = "v1",
    instance_id: str | None = None,
) -> dict[str, Any]:
    """Workflow as listed by ``GET /workflows``."""
    payload: dict[str, Any] = {
        "id": workflow_id,
        "name": name,
        "versionId": version_id,
        "homeProject": {"id": project_id},
        "parentFolderId": folder_id,
    }
    if instance_id is not None:
        payload["meta"] = {"instanceId": instance_id}
    return payload


def folder_payload(
    folder_id: str,
    name: str,
    *,
    project_id: str = "p-personal",
    parent_id: str | None = None,
) -> dict[str, Any]:
    return {
        "id": folder_id,
        "name": name,
        "homeProject": {"id": project_id},
        "parentFolder": {"id": parent_id} if parent_id else None,
    }


def write_workflow(root: Path, relative_path: str, **content: Any) -> Path:
    """Write a workflow JSON file under ``root`` and return its path."""
    path = root / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    content.setdefault("nodes", [])
    content.setdefault("connections", {})
    path.write_text(json.dumps(content), encoding="utf-8")
    return path


class FakeRemoteApi:
    """In-memory n8n instance implementing the ``RemoteApi`` protocol.

    ``import_staged`` plays the role of n8n's native import command.
    """

    def __init__(
        self,
        projects: list[dict[str, Any]] | None = None,
        folders: list[dict[str, Any]] | None = None,
        workflows: list[dict[str, Any]] | None = None,
        *,
        license_blocked: bool = False,
        supports_folders: bool = True,
    ) -> None:
        self.projects = projects if projects is not None else [dict(PERSONAL_PROJECT)]
        self.folders = [dict(f) for f in folders or []]
        self.workflows = {w["id"]: dict(w) for w in workflows or []}
        self.license_blocked = license_blocked
        self.supports_folders = supports_folders
        self.conflicting_ids: set[str] = set()
        self.calls: list[tuple[Any, ...]] = []
        self._folder_seq = 0
        self._workflow_seq = 0

    @property
    def mutating_calls(self) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] in {"create_folder", "update_workflow_assignment"}]

    def list_projects(self) -> Any:
        self.calls.append(("list_projects",))
        return {"data": copy.deepcopy(self.projects)}

    def list_folders(self) -> Any | None:
        self.calls.append(("list_folders",))
        if not self.supports_folders:
            return None
        return {"data": copy.deepcopy(self.folders)}

    def list_workflows(self) -> Any:
        self.calls.append(("list_workflows",))
        return [copy.deepcopy(w) for w in self.workflows.values()]

    def get_workflow(self, workflow_id: str) -> RemoteWorkflow:
        self.calls.append(("get_workflow", workflow_id))
        if workflow_id not in self.workflows:
            raise RemoteApiError("not found", status_code=404)
        return RemoteWorkflow.model_validate(copy.deepcopy(self.workflows[workflow_id]))

    def create_folder(
        self, name: str, project_id: str, parent_folder_id: str | None = None
    ) -> RemoteFolder:
        self.calls.append(("create_folder", name, project_id, parent_folder_id))
        if self.license_blocked:
            raise LicenseRestrictedError("plan lacks license", status_code=403)
        self._folder_seq += 1
        folder = {
            "id": f"new-folder-{self._folder_seq}",
            "name": name,
            "projectId": project_id,
            "parentFolderId": parent_folder_id,
        }
        self.folders.append(folder)
        return RemoteFolder.model_validate(folder)

    def update_workflow_assignment(
        self,
        workflow_id: str,
        project_id: str,
        folder_id: str | None,
        version_id: str | None,
    ) -> RemoteWorkflow | None:
        self.calls.append(("update_workflow_assignment", workflow_id, project_id, folder_id))
        if self.license_blocked:
            raise LicenseRestrictedError("plan lacks license", status_code=403)
        workflow = self.workflows.get(workflow_id)
        if workflow is None:
            raise RemoteApiError("not found", status_code=404)
        if workflow_id in self.conflicting_ids or workflow.get("versionId") != version_id:
            raise VersionConflictError("version changed", status_code=409)
        workflow["homeProject"] = {"id": project_id}
        workflow["parentFolderId"] = folder_id
        workflow["versionId"] = f"{version_id}+1"
        return RemoteWorkflow.model_validate(copy.deepcopy(workflow))

    def import_staged(self, staging_dir: Path) -> None:
        """Import every staged file: known ids are updated in place, others created at the root."""
        for path in sorted(staging_dir.glob("*.json")):
            data = json.loads(path.read_text(encoding="utf-8"))
            workflow_id = data.get("id")
            if workflow_id in self.workflows:
                self.workflows[workflow_id]["name"] = data["name"]
                continue
            if not workflow_id:
                self._workflow_seq += 1
                workflow_id = f"gen{self._workflow_seq:013d}"
            self.workflows[workflow_id] = workflow_payload(
                workflow_id,
                data["name"],
                project_id=self.projects[0]["id"],
                instance_id=(data.get("meta") or {}).get("instanceId"),
            )


@pytest.fixture
def fake_api() -> FakeRemoteApi:
    return FakeRemoteApi()
