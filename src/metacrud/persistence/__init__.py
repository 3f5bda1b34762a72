"""Persistence layer - storage backends and their configuration."""

from metacrud.persistence.adapter import Cursor, StorageBackend
from metacrud.persistence.config import DatabaseConfig, create_backend

__all__ = ["Cursor", "StorageBackend", "DatabaseConfig", "create_backend"]
