"""SQL storage backend on SQLAlchemy Core.

Uses a synchronous engine; every storage call runs in a worker thread via
asyncio.to_thread, so a list page fetch and its count query overlap rather
than queue behind each other. Tables are reflected from the database on
connect, or supplied up front on a MetaData.

Predicates compile to SQLAlchemy expressions:
  Condition -> column comparison (eq/ne/gt/ge/lt/le)
  Match     -> ILIKE over each field, OR-ed
  AllOf / AnyOf / Not -> and_ / or_ / not_
NULLs sort last in either direction, matching the memory backend.
"""

from __future__ import annotations

import asyncio
import logging
import operator
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any, TypeVar

from sqlalchemy import (
    Column,
    MetaData,
    String,
    Table,
    and_,
    create_engine,
    delete,
    func,
    not_,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql.elements import ColumnElement

from metacrud.core.types import SortDirection
from metacrud.query.predicates import (
    AllOf,
    AnyOf,
    Condition,
    Match,
    Not,
    Predicate,
    all_of,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "ge": operator.ge,
    "lt": operator.lt,
    "le": operator.le,
}


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def compile_predicate(predicate: Predicate, table: Table) -> ColumnElement:
    """Translate a predicate tree into a SQLAlchemy boolean expression."""
    if isinstance(predicate, Condition):
        column = table.c[predicate.field]
        return _OPERATORS[predicate.op](column, predicate.value)
    if isinstance(predicate, Match):
        escaped = _escape_like(predicate.text)
        pattern = f"{escaped}%" if predicate.mode == "prefix" else f"%{escaped}%"
        return or_(*(table.c[f].ilike(pattern, escape="\\") for f in predicate.fields))
    if isinstance(predicate, AllOf):
        return and_(*(compile_predicate(p, table) for p in predicate.items))
    if isinstance(predicate, AnyOf):
        return or_(*(compile_predicate(p, table) for p in predicate.items))
    if isinstance(predicate, Not):
        return not_(compile_predicate(predicate.item, table))
    raise TypeError(f"Unsupported predicate: {predicate!r}")


def _coerce_key(column: Column, value: Any) -> Any:
    """Convert string identifiers from the wire to integer key columns."""
    if not isinstance(value, str):
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if python_type is int:
        try:
            return int(value)
        except ValueError:
            return value
    return value


@dataclass(frozen=True)
class SQLCursor:
    backend: SQLBackend
    table: str
    predicate: Predicate | None = None
    ordering: tuple[tuple[str, SortDirection], ...] = ()
    offset: int = 0
    size: int | None = None

    def filter(self, predicate: Predicate) -> SQLCursor:
        return replace(self, predicate=all_of(self.predicate, predicate))

    def order_by(self, field: str, direction: SortDirection) -> SQLCursor:
        return replace(self, ordering=self.ordering + ((field, direction),))

    def skip(self, n: int) -> SQLCursor:
        return replace(self, offset=max(0, n))

    def limit(self, n: int) -> SQLCursor:
        return replace(self, size=max(0, n))

    def _where(self, stmt: Any, table: Table) -> Any:
        if self.predicate is not None:
            stmt = stmt.where(compile_predicate(self.predicate, table))
        return stmt

    def _count(self) -> int:
        table = self.backend.table(self.table)
        stmt = self._where(select(func.count()).select_from(table), table)
        with self.backend.engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    def _fetch(self) -> list[dict[str, Any]]:
        table = self.backend.table(self.table)
        stmt = self._where(select(table), table)
        for field, direction in self.ordering:
            column = table.c[field]
            stmt = stmt.order_by(
                column.is_(None),
                column.desc() if direction is SortDirection.DESC else column.asc(),
            )
        if self.offset:
            stmt = stmt.offset(self.offset)
        if self.size is not None:
            stmt = stmt.limit(self.size)
        with self.backend.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]

    async def count(self) -> int:
        return await self.backend.run(self._count)

    async def fetch(self) -> list[dict[str, Any]]:
        return await self.backend.run(self._fetch)


class SQLBackend:
    """SQLAlchemy Core storage backend."""

    def __init__(
        self,
        url: str | None = None,
        engine: Engine | None = None,
        metadata: MetaData | None = None,
    ):
        if url is None and engine is None:
            raise ValueError("SQLBackend needs a database URL or an engine")
        self.url = url
        self._engine = engine
        self._metadata = metadata or MetaData()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not connected")
        return self._engine

    def _create_engine(self) -> Engine:
        assert self.url is not None
        if self.url.startswith("sqlite"):
            options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, or every thread sees its own empty database
                options["poolclass"] = StaticPool
            return create_engine(self.url, **options)
        return create_engine(self.url)

    async def connect(self) -> None:
        if self._engine is None:
            self._engine = self._create_engine()
        await self.run(self._metadata.reflect, bind=self._engine)
        logger.info("Connected to %s (%d tables)", self._engine.url, len(self._metadata.tables))

    async def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()

    async def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking database call in a worker thread."""
        return await asyncio.to_thread(fn, *args, **kwargs)

    def table(self, name: str) -> Table:
        if name not in self._metadata.tables:
            raise KeyError(f"Unknown table '{name}'")
        return self._metadata.tables[name]

    def _primary_column(self, table: Table) -> Column:
        columns = list(table.primary_key.columns)
        if not columns:
            raise KeyError(f"Table '{table.name}' has no primary key")
        return columns[0]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _get_one(self, table_name: str, field: str | None, value: Any) -> dict[str, Any] | None:
        table = self.table(table_name)
        column = table.c[field] if field else self._primary_column(table)
        stmt = select(table).where(column == _coerce_key(column, value)).limit(1)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).first()
        return dict(row._mapping) if row is not None else None

    def _get_many(
        self, table_name: str, values: list[Any], index: str | None
    ) -> dict[Any, dict[str, Any]]:
        table = self.table(table_name)
        column = table.c[index] if index else self._primary_column(table)
        # Key results by the caller's values, which may be strings for integer keys
        lookup = {_coerce_key(column, v): v for v in values}
        stmt = select(table).where(column.in_(list(lookup)))
        found: dict[Any, dict[str, Any]] = {}
        with self.engine.connect() as conn:
            for row in conn.execute(stmt):
                record = dict(row._mapping)
                original = lookup.get(record[column.name], record[column.name])
                found.setdefault(original, record)
        return found

    async def get_by_key(self, table: str, id: Any) -> dict[str, Any] | None:
        return await self.run(self._get_one, table, None, id)

    async def get_by_index(self, table: str, index: str, value: Any) -> dict[str, Any] | None:
        return await self.run(self._get_one, table, index, value)

    async def get_many(
        self, table: str, values: list[Any], index: str | None = None
    ) -> dict[Any, dict[str, Any]]:
        if not values:
            return {}
        return await self.run(self._get_many, table, values, index)

    def cursor(self, table: str) -> SQLCursor:
        return SQLCursor(self, table)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _insert(self, table_name: str, record: dict[str, Any]) -> Any:
        table = self.table(table_name)
        pk = self._primary_column(table)
        values = dict(record)
        if values.get(pk.name) is None and isinstance(pk.type, String):
            values[pk.name] = uuid.uuid4().hex
        with self.engine.begin() as conn:
            result = conn.execute(table.insert().values(**values))
        if values.get(pk.name) is not None:
            return values[pk.name]
        return result.inserted_primary_key[0]

    def _update(self, table_name: str, id: Any, partial: dict[str, Any]) -> bool:
        table = self.table(table_name)
        pk = self._primary_column(table)
        values = {k: v for k, v in partial.items() if k != pk.name}
        key = _coerce_key(pk, id)
        if not values:
            return self._get_one(table_name, None, key) is not None
        stmt = update(table).where(pk == key).values(**values)
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0

    def _delete(self, table_name: str, id: Any) -> bool:
        table = self.table(table_name)
        pk = self._primary_column(table)
        stmt = delete(table).where(pk == _coerce_key(pk, id))
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount > 0

    async def insert(self, table: str, record: dict[str, Any]) -> Any:
        return await self.run(self._insert, table, record)

    async def update(self, table: str, id: Any, partial: dict[str, Any]) -> bool:
        return await self.run(self._update, table, id, partial)

    async def delete(self, table: str, id: Any) -> bool:
        return await self.run(self._delete, table, id)
