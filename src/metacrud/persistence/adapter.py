"""StorageBackend Protocol: the interface every storage backend implements.

The engine consumes these calls; it never evaluates predicates, sorts, or
counts itself. All storage calls are coroutines so a pending call suspends
only the request that issued it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from metacrud.core.types import SortDirection
    from metacrud.query.predicates import Predicate


@runtime_checkable
class Cursor(Protocol):
    """Immutable query over one table. Builder methods return new cursors."""

    def filter(self, predicate: Predicate) -> Cursor: ...

    def order_by(self, field: str, direction: SortDirection) -> Cursor: ...

    def skip(self, n: int) -> Cursor: ...

    def limit(self, n: int) -> Cursor: ...

    async def count(self) -> int:
        """Count matching records, ignoring skip/limit."""
        ...

    async def fetch(self) -> list[dict[str, Any]]: ...


@runtime_checkable
class StorageBackend(Protocol):
    """Interface all storage backends must implement."""

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def get_by_key(self, table: str, id: Any) -> dict[str, Any] | None: ...

    async def get_by_index(
        self, table: str, index: str, value: Any
    ) -> dict[str, Any] | None: ...

    async def get_many(
        self, table: str, values: list[Any], index: str | None = None
    ) -> dict[Any, dict[str, Any]]:
        """Batched lookup by primary key (or index); returns value -> record.

        Values with no matching record are absent from the result.
        """
        ...

    def cursor(self, table: str) -> Cursor: ...

    async def insert(self, table: str, record: dict[str, Any]) -> Any:
        """Insert a record and return its (possibly generated) primary key."""
        ...

    async def update(self, table: str, id: Any, partial: dict[str, Any]) -> bool: ...

    async def delete(self, table: str, id: Any) -> bool: ...
