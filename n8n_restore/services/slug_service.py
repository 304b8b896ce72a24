"""Slug generation and lookup-key normalization for projects, folders and workflows."""

from __future__ import annotations

import re

WORKFLOW_ID_PATTERN = re.compile(r"^[A-Za-z0-9]{16}$")
ROOT_FOLDER = "root"
DEFAULT_FOLDER_TITLE = "Folder"

_EMPTY_IDENTIFIERS = frozenset({"", "0", "null", "none", ROOT_FOLDER})
_UNSAFE_SLUG_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_WHITESPACE = re.compile(r"\s+")
_CONTROL_CHARS = re.compile(r"[\r\n\t]")


def sanitize_slug(value: str) -> str:
    """Turn a display name into a filesystem- and URL-safe slug.

    - Drop carriage returns, newlines and tabs
    - Replace spaces and ``/`` with ``_``
    - Drop every character outside ``[A-Za-z0-9._-]``

    Case is preserved; comparisons lowercase the slug themselves.
    """
    text = _CONTROL_CHARS.sub("", value)
    text = text.replace(" ", "_").replace("/", "_")
    return _UNSAFE_SLUG_CHARS.sub("", text)


def unslug_to_title(slug: str) -> str:
    """Best-effort display name for a slug (``sales_leads`` -> ``sales leads``)."""
    text = re.sub(r"[_.\-]", " ", slug)
    text = _WHITESPACE.sub(" ", text).strip()
    return text or DEFAULT_FOLDER_TITLE


def normalize_lookup_key(value: str) -> str:
    """Normalize a relative path so equivalent spellings compare equal.

    Backslashes become ``/``, whitespace runs collapse, spaces around ``/``
    and repeated or leading/trailing slashes are removed, and the result is
    lowercased.
    """
    text = _CONTROL_CHARS.sub("", value).replace("\\", "/")
    text = _WHITESPACE.sub(" ", text).strip()
    text = re.sub(r" */ *", "/", text)
    text = re.sub(r"/+", "/", text)
    return text.strip("/").lower()


def normalize_name_key(name: str) -> str:
    """Case-insensitive, whitespace-collapsed key for workflow and folder names."""
    return _WHITESPACE.sub(" ", name).strip().lower()


def normalize_identifier(value: object) -> str:
    """Return a trimmed identifier, or ``""`` for the various spellings of "none"."""
    if value is None:
        return ""
    text = str(value).strip()
    if text.lower() in _EMPTY_IDENTIFIERS:
        return ""
    return text


def is_valid_workflow_id(value: str | None) -> bool:
    """Whether ``value`` is a 16-character alphanumeric n8n workflow id."""
    if not value:
        return False
    return WORKFLOW_ID_PATTERN.fullmatch(value) is not None
