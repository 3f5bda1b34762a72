"""Database configuration and backend factory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from metacrud.core.errors import ConfigurationError

if TYPE_CHECKING:
    from metacrud.persistence.adapter import StorageBackend


@dataclass
class DatabaseConfig:
    """Storage connection configuration.

    Supports memory:// (in-process store) and any SQLAlchemy URL.
    """

    url: str

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Create config from environment variables.

        Resolution order:
        1. METACRUD_DATABASE_URL env var
        2. DATABASE_URL env var (standard)
        3. Default: memory://
        """
        url = os.environ.get("METACRUD_DATABASE_URL") or os.environ.get("DATABASE_URL")
        if url:
            return cls(url=url)
        return cls(url="memory://")

    @property
    def is_memory(self) -> bool:
        return self.url.startswith("memory:")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_postgresql(self) -> bool:
        return self.url.startswith("postgresql")

    @property
    def sqlalchemy_url(self) -> str:
        """URL suitable for SQLAlchemy engine creation.

        Plain postgresql:// URLs are pointed at the psycopg (v3) driver.
        """
        if self.url.startswith("postgresql://"):
            return self.url.replace("postgresql://", "postgresql+psycopg://", 1)
        return self.url


def create_backend(config: DatabaseConfig) -> StorageBackend:
    """Create a storage backend based on the database URL scheme.

    Args:
        config: Database configuration with URL.

    Returns:
        A StorageBackend instance (not yet connected).

    Raises:
        ConfigurationError: For unsupported URL schemes.
    """
    if config.is_memory:
        from metacrud.persistence.memory import MemoryBackend

        return MemoryBackend()

    if "://" in config.url:
        from metacrud.persistence.sql import SQLBackend

        return SQLBackend(config.sqlalchemy_url)

    raise ConfigurationError(f"Unsupported database URL scheme: {config.url}")
