"""HTTP client for the n8n REST API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from n8n_restore.exceptions import (
    LicenseRestrictedError,
    MalformedSnapshotError,
    RemoteApiError,
    VersionConflictError,
)
from n8n_restore.schemas.remote import RemoteFolder, RemoteWorkflow, parse_entity

logger = logging.getLogger(__name__)

PROJECTS_PAGE = {"skip": 0, "take": 250}
FOLDERS_PAGE = {"skip": 0, "take": 1000}
LICENSE_MARKERS = ("plan lacks license", "feature is not available")
VERSION_CONFLICT_MARKERS = ("someone else just updated", "version conflict", "versionid mismatch")


def _error_for(response: httpx.Response, method: str, path: str) -> RemoteApiError:
    body = response.text
    lowered = body.lower()
    message = f"{method} {path} failed with HTTP {response.status_code}"
    if response.status_code == 403 and any(marker in lowered for marker in LICENSE_MARKERS):
        return LicenseRestrictedError(message, status_code=response.status_code, body=body)
    # Body markers only count on client errors; a 5xx is never a conflict.
    if response.status_code == 409 or (
        response.is_client_error and any(m in lowered for m in VERSION_CONFLICT_MARKERS)
    ):
        return VersionConflictError(message, status_code=response.status_code, body=body)
    return RemoteApiError(message, status_code=response.status_code, body=body)


class N8nApiClient:
    """Synchronous client for the subset of ``/rest`` endpoints used by a restore."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-N8N-API-KEY"] = api_key
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            base_url=f"{self.base_url}/rest",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> N8nApiClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteApiError(f"{method} {path} failed: {exc}") from exc
        if resp.is_error:
            raise _error_for(resp, method, path)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedSnapshotError(f"{method} {path} returned invalid JSON") from exc

    def list_projects(self) -> Any:
        return self._request("GET", "/projects", params=PROJECTS_PAGE)

    def list_folders(self) -> Any | None:
        try:
            return self._request("GET", "/folders", params=FOLDERS_PAGE)
        except RemoteApiError as exc:
            if exc.status_code == 404:
                logger.info("Remote instance does not support folders; skipping folder snapshot")
                return None
            raise

    def list_workflows(self) -> Any:
        return self._request("GET", "/workflows")

    def get_workflow(self, workflow_id: str) -> RemoteWorkflow:
        payload = self._request("GET", f"/workflows/{workflow_id}")
        workflow = parse_entity(RemoteWorkflow, payload, "workflow")
        if not workflow.id:
            workflow = workflow.model_copy(update={"id": workflow_id})
        return workflow

    def create_folder(
        self, name: str, project_id: str, parent_folder_id: str | None = None
    ) -> RemoteFolder:
        body = {"name": name, "projectId": project_id, "parentFolderId": parent_folder_id}
        payload = self._request("POST", "/folders", json=body)
        folder = parse_entity(RemoteFolder, payload, "folder")
        if folder.project_id is None:
            folder = folder.model_copy(update={"project_id": project_id})
        return folder

    def update_workflow_assignment(
        self,
        workflow_id: str,
        project_id: str,
        folder_id: str | None,
        version_id: str | None,
    ) -> RemoteWorkflow | None:
        body = {
            "homeProject": {"id": project_id},
            "parentFolderId": folder_id,
            "versionId": version_id,
        }
        payload = self._request("PATCH", f"/workflows/{workflow_id}", json=body)
        if payload is None:
            return None
        return parse_entity(RemoteWorkflow, payload, "workflow")
