"""Field and controller metadata types.

FieldMetadata holds the resolved capabilities of one field. ControllerMetadata
is the immutable, ordered field table of one controller plus its table
binding. Both are built once at startup and only read afterwards.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from metacrud.core.types import AccessMode

# Function-valued capability signatures
Validator = Callable[[Any], bool]
Transform = Callable[[Any], Any]
# (value, operator) -> Predicate; the predicate type lives in metacrud.query
FilterFn = Callable[[Any, str], Any]


@dataclass(frozen=True)
class ForeignRef:
    """Marks a field as referencing records of another table.

    Attributes:
        table: Target table name
        index: Secondary index to look up by (primary key when None)
        multiple: The field holds a sequence of identifiers
    """

    table: str
    index: str | None = None
    multiple: bool = False


@dataclass(frozen=True)
class FieldMetadata:
    """Resolved capabilities of a single field."""

    name: str
    access: AccessMode | None = None
    listable: frozenset[str] = frozenset()
    sortable: bool = False
    mandatory: frozenset[str] = frozenset()
    foreign: ForeignRef | None = None
    type: str | None = None
    validator: Validator | None = None
    filter: FilterFn | None = None
    getter: Transform | None = None
    setter: Transform | None = None

    @property
    def readable(self) -> bool:
        return self.access is not None and self.access.readable

    @property
    def writable(self) -> bool:
        return self.access is not None and self.access.writable

    def listable_in(self, mode: str) -> bool:
        return mode in self.listable

    def mandatory_for(self, operation: str) -> bool:
        return operation in self.mandatory


# Capability names accepted by declare(); "name" is not a capability.
CAPABILITIES = frozenset(
    f for f in FieldMetadata.__dataclass_fields__ if f != "name"
)


@dataclass(frozen=True)
class ControllerMetadata:
    """Resolved, read-only metadata of one controller.

    Attributes:
        name: Controller name (also its route segment)
        table: Bound storage table
        primary_key: Primary key field of the table
        fields: Field metadata in declaration order
        max_page: Page size ceiling for list, None to use the route/app default
        chain: Controller names from root ancestor to this controller
    """

    name: str
    table: str
    primary_key: str
    fields: Mapping[str, FieldMetadata] = field(default_factory=dict)
    max_page: int | None = None
    chain: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def get(self, name: str) -> FieldMetadata | None:
        return self.fields.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.fields

    def __iter__(self) -> Iterator[FieldMetadata]:
        return iter(self.fields.values())

    @property
    def foreign_fields(self) -> list[FieldMetadata]:
        return [f for f in self.fields.values() if f.foreign is not None]

    def describe(self) -> dict[str, Any]:
        """JSON-ready summary of the controller's non-function capabilities."""
        return {
            "name": self.name,
            "table": self.table,
            "primaryKey": self.primary_key,
            "maxPage": self.max_page,
            "extends": list(self.chain[:-1]),
            "fields": [
                {
                    "name": f.name,
                    "access": f.access.value if f.access else None,
                    "listable": sorted(f.listable),
                    "sortable": f.sortable,
                    "mandatory": sorted(f.mandatory),
                    "foreign": {
                        "table": f.foreign.table,
                        "index": f.foreign.index,
                        "multiple": f.foreign.multiple,
                    } if f.foreign else None,
                    "type": f.type,
                    "filter": f.filter is not None,
                }
                for f in self.fields.values()
            ],
        }
