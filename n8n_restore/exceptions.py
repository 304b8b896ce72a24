"""Restore-level exception types.

Convention:
- Fatal errors (``MalformedSnapshotError``, ``NoProjectsAvailableError``) are
  raised before any manifest is written and propagate to the caller.
- ``RemoteApiError`` and its subclasses describe a single failed remote call.
  The folder synchronizer catches them per entry, records the failure on the
  audit record and continues with the next entry.
- Ambiguous matches and invalid id formats are not exceptions: they are
  recorded as warnings/notes on the manifest entry.
"""

from __future__ import annotations


class RestoreError(Exception):
    """Base class for all restore engine errors."""


class MalformedSnapshotError(RestoreError):
    """Raised when a remote snapshot payload does not match the expected schema."""


class NoProjectsAvailableError(RestoreError):
    """Raised when the remote instance reports no projects at all."""


class RemoteApiError(RestoreError):
    """Raised when a remote API call fails.

    ``status_code`` is ``None`` for transport-level failures (connection
    refused, timeouts) that never produced an HTTP response.
    """

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class VersionConflictError(RemoteApiError):
    """Raised when an update is rejected because the workflow version changed."""


class LicenseRestrictedError(RemoteApiError):
    """Raised when the instance's license plan does not permit folder operations."""
