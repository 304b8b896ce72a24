"""Schemas for remote snapshot payloads (projects, folders, workflows)."""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from n8n_restore.exceptions import MalformedSnapshotError


def _nested_id(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("id")
    return None


def _lift(data: dict[str, Any], alias: str, field_name: str, value: Any) -> None:
    if value is None or data.get(alias) is not None or data.get(field_name) is not None:
        return
    data[alias] = value


class RemoteEntity(BaseModel):
    """Common configuration for entities read from the remote API."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    id: str | None = None
    name: str | None = None


class RemoteProject(RemoteEntity):
    """A project as listed by ``GET /projects``."""

    slug: str | None = None
    type: str | None = None


class RemoteFolder(RemoteEntity):
    """A folder as listed by ``GET /folders``.

    n8n versions differ in how they nest references: the parent may come as
    ``parentFolderId`` or ``parentFolder.id`` and the project as ``projectId``,
    ``homeProject.id`` or ``homeProjectId``.
    """

    slug: str | None = None
    parent_folder_id: str | None = None
    project_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _lift_nested_refs(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        _lift(data, "parentFolderId", "parent_folder_id", _nested_id(data.get("parentFolder")))
        project = _nested_id(data.get("homeProject")) or data.get("homeProjectId")
        _lift(data, "projectId", "project_id", project)
        return data


class RemoteWorkflow(RemoteEntity):
    """A workflow as listed by ``GET /workflows`` or fetched by id."""

    version_id: str | None = None
    parent_folder_id: str | None = None
    project_id: str | None = None
    instance_id: str | None = None
    updated_at: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _lift_nested_refs(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        _lift(data, "versionId", "version_id", _nested_id(data.get("version")))
        _lift(data, "parentFolderId", "parent_folder_id", _nested_id(data.get("parentFolder")))
        project = _nested_id(data.get("homeProject")) or data.get("homeProjectId")
        _lift(data, "projectId", "project_id", project)
        meta = data.get("meta")
        if isinstance(meta, dict):
            _lift(data, "instanceId", "instance_id", meta.get("instanceId"))
        return data


EntityT = TypeVar("EntityT", bound=RemoteEntity)


def unwrap_collection(payload: Any, kind: str) -> list[Any]:
    """Return the item list of a payload that is either a bare list or ``{"data": [...]}``."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    raise MalformedSnapshotError(
        f"Malformed {kind} snapshot: expected a list or a {{'data': [...]}} envelope, "
        f"got {type(payload).__name__}"
    )


def unwrap_entity(payload: Any, kind: str) -> Any:
    """Return the entity of a single-item payload, unwrapping ``{"data": {...}}``."""
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    if isinstance(payload, dict):
        return payload
    raise MalformedSnapshotError(f"Malformed {kind} payload: expected an object")


def parse_snapshot(model: type[EntityT], payload: Any, kind: str) -> list[EntityT]:
    """Validate a snapshot payload into models, skipping items that carry no id.

    Raises:
        MalformedSnapshotError: If the payload or any item does not match the schema.
    """
    items = unwrap_collection(payload, kind)
    try:
        parsed = [model.model_validate(item) for item in items]
    except ValidationError as exc:
        raise MalformedSnapshotError(
            f"Malformed {kind} snapshot: {exc.error_count()} invalid field(s)"
        ) from exc
    return [item for item in parsed if item.id]


def parse_entity(model: type[EntityT], payload: Any, kind: str) -> EntityT:
    """Validate a single-entity payload (bare or ``{"data": {...}}``)."""
    try:
        return model.model_validate(unwrap_entity(payload, kind))
    except ValidationError as exc:
        raise MalformedSnapshotError(f"Malformed {kind} payload") from exc
