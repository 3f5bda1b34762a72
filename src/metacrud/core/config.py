"""Application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from metacrud.core.errors import ConfigurationError
from metacrud.core.types import DEFAULT_MAX_PAGE
from metacrud.persistence.config import DatabaseConfig


@dataclass
class Settings:
    """Runtime settings for the metacrud application.

    Attributes:
        metadata_path: Directory holding controllers/*.yaml definitions
        database: Storage backend configuration
        max_page: Default page size ceiling for list routes
        api_prefix: Path prefix under which controllers are mounted
        log_level: Root log level name
    """

    metadata_path: Path = field(default_factory=lambda: Path("metadata"))
    database: DatabaseConfig = field(default_factory=lambda: DatabaseConfig("memory://"))
    max_page: int = DEFAULT_MAX_PAGE
    api_prefix: str = "/api"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Settings:
        """Create settings from environment variables.

        METACRUD_METADATA_PATH, METACRUD_MAX_PAGE, METACRUD_API_PREFIX,
        METACRUD_LOG_LEVEL; database resolution is delegated to
        DatabaseConfig.from_env().
        """
        raw_max_page = os.environ.get("METACRUD_MAX_PAGE")
        max_page = DEFAULT_MAX_PAGE
        if raw_max_page:
            try:
                max_page = int(raw_max_page)
            except ValueError:
                raise ConfigurationError(
                    f"METACRUD_MAX_PAGE must be an integer, got '{raw_max_page}'"
                ) from None
            if max_page < 0:
                raise ConfigurationError("METACRUD_MAX_PAGE must not be negative")

        return cls(
            metadata_path=Path(os.environ.get("METACRUD_METADATA_PATH", "metadata")),
            database=DatabaseConfig.from_env(),
            max_page=max_page,
            api_prefix=os.environ.get("METACRUD_API_PREFIX", "/api"),
            log_level=os.environ.get("METACRUD_LOG_LEVEL", "INFO").upper(),
        )
