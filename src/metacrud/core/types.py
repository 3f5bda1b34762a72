"""Shared enums and constants."""

from enum import Enum


class AccessMode(Enum):
    """Whether a field is exposed for reading, writing, or both.

    A field with no declared access mode is exposed in neither direction.
    """

    READ_ONLY = "read"
    WRITE_ONLY = "write"
    READ_WRITE = "readwrite"

    @property
    def readable(self) -> bool:
        return self in (AccessMode.READ_ONLY, AccessMode.READ_WRITE)

    @property
    def writable(self) -> bool:
        return self in (AccessMode.WRITE_ONLY, AccessMode.READ_WRITE)


class Operation(Enum):
    """The five canonical operations."""

    GET = "get"
    LIST = "list"
    NEW = "new"
    EDIT = "edit"
    DELETE = "delete"


class SortDirection(Enum):
    ASC = "asc"
    DESC = "desc"


# Comparison operators accepted in filter specs
OPERATORS = ("eq", "ne", "gt", "ge", "lt", "le")

# Operations a field can be mandatory for
MANDATORY_OPERATIONS = frozenset({"new", "edit"})

DEFAULT_PLUCK_MODE = "list"
DEFAULT_MAX_PAGE = 100
DEFAULT_PRIMARY_KEY = "id"

# Bookkeeping field never allowed to leave the system
INTERNAL_FIELD = "_internal"
