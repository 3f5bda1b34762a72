"""In-process storage backend.

Tables are plain dicts keyed by primary key. Predicates are evaluated in
Python; sorting is stable and always places None last. Handy for
tests, demos, and the memory:// database URL.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, replace
from typing import Any

from metacrud.core.types import DEFAULT_PRIMARY_KEY, SortDirection
from metacrud.query.predicates import Predicate, all_of, matches


def _sort_key(value: Any) -> tuple[int, Any]:
    # None sorts after every value; mixed types sort by type name
    if value is None:
        return (2, 0)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, value)
    return (1, (type(value).__name__, value))


@dataclass(frozen=True)
class MemoryCursor:
    backend: MemoryBackend
    table: str
    predicate: Predicate | None = None
    ordering: tuple[tuple[str, SortDirection], ...] = ()
    offset: int = 0
    size: int | None = None

    def filter(self, predicate: Predicate) -> MemoryCursor:
        return replace(self, predicate=all_of(self.predicate, predicate))

    def order_by(self, field: str, direction: SortDirection) -> MemoryCursor:
        return replace(self, ordering=self.ordering + ((field, direction),))

    def skip(self, n: int) -> MemoryCursor:
        return replace(self, offset=max(0, n))

    def limit(self, n: int) -> MemoryCursor:
        return replace(self, size=max(0, n))

    def _matching(self) -> list[dict[str, Any]]:
        rows = self.backend.rows(self.table)
        return [r for r in rows if matches(self.predicate, r)]

    async def count(self) -> int:
        return len(self._matching())

    async def fetch(self) -> list[dict[str, Any]]:
        rows = self._matching()
        # Apply the last ordering first so earlier orderings take precedence
        for field, direction in reversed(self.ordering):
            present = [r for r in rows if r.get(field) is not None]
            missing = [r for r in rows if r.get(field) is None]
            present.sort(
                key=lambda r: _sort_key(r.get(field)),
                reverse=direction is SortDirection.DESC,
            )
            rows = present + missing
        end = None if self.size is None else self.offset + self.size
        return [copy.deepcopy(r) for r in rows[self.offset:end]]


class MemoryBackend:
    """Dict-of-tables storage backend."""

    def __init__(self, primary_keys: dict[str, str] | None = None):
        self._tables: dict[str, dict[Any, dict[str, Any]]] = {}
        self._primary_keys = dict(primary_keys or {})

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    def primary_key(self, table: str) -> str:
        return self._primary_keys.get(table, DEFAULT_PRIMARY_KEY)

    def set_primary_key(self, table: str, field: str) -> None:
        self._primary_keys[table] = field

    def rows(self, table: str) -> list[dict[str, Any]]:
        return list(self._tables.get(table, {}).values())

    def seed(self, table: str, records: list[dict[str, Any]]) -> list[Any]:
        """Synchronously insert records (fixtures and demos)."""
        return [self._insert(table, r) for r in records]

    def _insert(self, table: str, record: dict[str, Any]) -> Any:
        pk = self.primary_key(table)
        stored = copy.deepcopy(record)
        if stored.get(pk) is None:
            stored[pk] = uuid.uuid4().hex
        rows = self._tables.setdefault(table, {})
        if stored[pk] in rows:
            raise KeyError(f"Duplicate primary key {stored[pk]!r} in table '{table}'")
        rows[stored[pk]] = stored
        return stored[pk]

    async def get_by_key(self, table: str, id: Any) -> dict[str, Any] | None:
        record = self._tables.get(table, {}).get(id)
        return copy.deepcopy(record) if record is not None else None

    async def get_by_index(self, table: str, index: str, value: Any) -> dict[str, Any] | None:
        for record in self._tables.get(table, {}).values():
            if record.get(index) == value:
                return copy.deepcopy(record)
        return None

    async def get_many(
        self, table: str, values: list[Any], index: str | None = None
    ) -> dict[Any, dict[str, Any]]:
        wanted = set(values)
        field = index or self.primary_key(table)
        found: dict[Any, dict[str, Any]] = {}
        for record in self._tables.get(table, {}).values():
            value = record.get(field)
            if value in wanted and value not in found:
                found[value] = copy.deepcopy(record)
        return found

    def cursor(self, table: str) -> MemoryCursor:
        return MemoryCursor(self, table)

    async def insert(self, table: str, record: dict[str, Any]) -> Any:
        return self._insert(table, record)

    async def update(self, table: str, id: Any, partial: dict[str, Any]) -> bool:
        record = self._tables.get(table, {}).get(id)
        if record is None:
            return False
        pk = self.primary_key(table)
        record.update({k: copy.deepcopy(v) for k, v in partial.items() if k != pk})
        return True

    async def delete(self, table: str, id: Any) -> bool:
        return self._tables.get(table, {}).pop(id, None) is not None
