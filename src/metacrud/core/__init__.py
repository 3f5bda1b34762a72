"""Core error kinds and shared enums."""

from metacrud.core.errors import ConfigurationError, ResultError
from metacrud.core.types import AccessMode, Operation, SortDirection

__all__ = ["AccessMode", "ConfigurationError", "Operation", "ResultError", "SortDirection"]
