"""Runtime configuration: env-driven via pydantic-settings.

Reads ``BUNDLEFORGE_*`` environment variables and an optional ``.env`` file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class ForgeSettings(BaseSettings):
    """Settings for the mutation pipeline and the local CLI.

    Examples
    --------
    Override via environment::

        export BUNDLEFORGE_LOG_LEVEL=DEBUG
        export BUNDLEFORGE_CACHE_PATH=/var/lib/bundleforge/cache
        export BUNDLEFORGE_REJECT_UNKNOWN_VALUES=true
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="BUNDLEFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Storage
    cache_path: Path = Path(".bundleforge/cache")
    workdir_root: Path | None = None  # None -> system temp directory

    # Patch sources
    http_timeout_seconds: float = 30.0

    # Compilation bounds
    max_reference_depth: int = 16
    max_alias_hops: int = 8

    # Override values absent from the configuration defaults are dropped
    # with a warning unless this is set.
    reject_unknown_values: bool = False

    # Output archives
    archive_compression: Literal["gzip", "none"] = "gzip"


# Module-level singleton: import as `from bundleforge.config import settings`
settings = ForgeSettings()
