"""Protocol for the remote n8n API used by the restore engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from n8n_restore.schemas.remote import RemoteFolder, RemoteWorkflow


@runtime_checkable
class RemoteApi(Protocol):
    """Operations the engine needs from an n8n instance.

    Listing methods return the raw JSON payload (a list or a ``{"data": [...]}``
    envelope); the remote index validates it. Failures raise
    ``RemoteApiError`` or one of its subclasses.
    """

    def list_projects(self) -> Any:
        """Return the projects snapshot."""
        ...

    def list_folders(self) -> Any | None:
        """Return the folders snapshot, or None when the instance has no folder support."""
        ...

    def list_workflows(self) -> Any:
        """Return the workflows snapshot."""
        ...

    def get_workflow(self, workflow_id: str) -> RemoteWorkflow:
        """Fetch one workflow, including its current version id."""
        ...

    def create_folder(
        self, name: str, project_id: str, parent_folder_id: str | None = None
    ) -> RemoteFolder:
        """Create a folder under ``parent_folder_id`` (project root when None)."""
        ...

    def update_workflow_assignment(
        self,
        workflow_id: str,
        project_id: str,
        folder_id: str | None,
        version_id: str | None,
    ) -> RemoteWorkflow | None:
        """Move a workflow, guarded by its last known ``version_id``."""
        ...
