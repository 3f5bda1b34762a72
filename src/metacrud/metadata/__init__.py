"""Field metadata: capability declarations, inheritance, named functions.

Usage:
    from metacrud.metadata import MetadataRegistry

    registry = MetadataRegistry()
    registry.define("user", table="users").field("email", access="readwrite")
    meta = registry.resolve("user")
"""

from metacrud.metadata.types import ControllerMetadata, FieldMetadata, ForeignRef
from metacrud.metadata.registry import MetadataRegistry, fields_with
from metacrud.metadata.functions import FunctionRegistry, function, register_builtin_functions

__all__ = [
    "ControllerMetadata",
    "FieldMetadata",
    "ForeignRef",
    "FunctionRegistry",
    "MetadataRegistry",
    "fields_with",
    "function",
    "register_builtin_functions",
]
