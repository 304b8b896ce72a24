"""Restore configuration loaded from environment variables."""

from __future__ import annotations

from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from n8n_restore.services.remote_index import DEFAULT_MAX_FOLDER_DEPTH
from n8n_restore.services.staging_service import StagingPolicy


class RestoreSettings(BaseSettings):
    """n8n restore settings."""

    model_config = SettingsConfigDict(
        env_prefix="N8N_RESTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remote instance
    base_url: str = "http://localhost:5678"
    api_key: str = ""
    request_timeout: float = Field(default=60.0, gt=0)

    # Target location
    project_name: str = ""
    project_slug: str = ""
    project_from_path: bool = False
    project_override: str = ""
    path_prefix: str = ""
    default_folder: str = ""

    # Identity policy
    preserve_ids: bool = False
    no_overwrite: bool = False

    # Run
    dry_run: bool = False
    debug: bool = False
    max_folder_depth: int = Field(default=DEFAULT_MAX_FOLDER_DEPTH, ge=1)

    def staging_policy(self) -> StagingPolicy:
        return StagingPolicy(
            preserve_ids=self.preserve_ids and not self.no_overwrite,
            no_overwrite=self.no_overwrite,
            default_folder_override=self.default_folder,
            project_override=self.project_override,
        )

    def validate_runtime(self) -> None:
        """Reject settings that cannot reach a remote instance."""
        parsed = urlparse(self.base_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(f"N8N_RESTORE_BASE_URL must be an http(s) URL, got {self.base_url!r}")
