"""Request-scoped parameter structures, one per operation kind.

All of these are created per request and discarded with the response.
"""

from dataclasses import dataclass, field
from typing import Any

from metacrud.core.types import DEFAULT_PLUCK_MODE, SortDirection

# field name -> ordered (value, operator) constraints, all AND-ed
FilterSpec = dict[str, list[tuple[Any, str]]]


@dataclass
class GetParameters:
    id: Any = None
    index: str | None = None
    no_foreign: bool = False


@dataclass
class ListParameters:
    filters: FilterSpec = field(default_factory=dict)
    offset: int = 0
    limit: int | None = None
    sort_key: str | None = None
    sort_direction: SortDirection = SortDirection.ASC
    max_page: int | None = None
    no_foreign: bool = False
    no_pluck: bool = False
    pluck_mode: str = DEFAULT_PLUCK_MODE


@dataclass
class NewParameters:
    no_mandatory: bool = False


@dataclass
class EditParameters:
    id: Any = None
    index: str | None = None
    no_mandatory: bool = False


@dataclass
class DeleteParameters:
    id: list[Any] = field(default_factory=list)
