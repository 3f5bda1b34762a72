"""Query engine: get, list, delete, and foreign-key resolution.

Everything here delegates predicate evaluation, sorting, and counting to the
storage backend's cursor; the engine only decides what to ask for.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Hashable
from dataclasses import dataclass, field
from typing import Any

from metacrud.core.types import DEFAULT_MAX_PAGE
from metacrud.metadata.types import ControllerMetadata, FieldMetadata
from metacrud.params.types import ListParameters
from metacrud.persistence.adapter import StorageBackend
from metacrud.query.filters import compile_filters

logger = logging.getLogger(__name__)


@dataclass
class ListResult:
    """One page of records plus the size of the whole filtered set."""

    records: list[dict[str, Any]]
    total: int
    offset: int
    limit: int


@dataclass
class DeleteSummary:
    """Per-identifier outcome of a multi-id delete."""

    results: dict[Any, bool] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return sum(1 for ok in self.results.values() if ok)

    @property
    def failed(self) -> int:
        return sum(1 for ok in self.results.values() if not ok)

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": {str(k): v for k, v in self.results.items()},
        }


def effective_max_page(
    meta: ControllerMetadata,
    params: ListParameters,
    default: int = DEFAULT_MAX_PAGE,
) -> int:
    """Route option first, then the controller's own ceiling, then default."""
    if params.max_page is not None:
        return params.max_page
    if meta.max_page is not None:
        return meta.max_page
    return default


async def get(
    backend: StorageBackend,
    table: str,
    id: Any,
    index: str | None = None,
) -> dict[str, Any] | None:
    """Fetch one record by primary key, or by a secondary index.

    Returns None when no record matches.
    """
    if index:
        return await backend.get_by_index(table, index, id)
    return await backend.get_by_key(table, id)


async def list_records(
    meta: ControllerMetadata,
    backend: StorageBackend,
    params: ListParameters,
    default_max_page: int = DEFAULT_MAX_PAGE,
) -> ListResult:
    """Fetch one filtered, sorted page and the filtered total concurrently.

    A sort key that is undeclared or not sortable is ignored. The requested
    limit is clamped to [0, maxPage]; no limit means maxPage.
    """
    max_page = max(0, effective_max_page(meta, params, default_max_page))
    limit = max_page if params.limit is None else min(max(params.limit, 0), max_page)
    offset = max(params.offset, 0)

    cursor = backend.cursor(meta.table)
    predicate = compile_filters(params.filters, meta)
    if predicate is not None:
        cursor = cursor.filter(predicate)

    page = cursor
    if params.sort_key:
        sort_field = meta.get(params.sort_key)
        if sort_field is not None and sort_field.sortable:
            page = page.order_by(params.sort_key, params.sort_direction)
        else:
            logger.debug(
                "Ignoring sort on '%s' for '%s': field is not sortable",
                params.sort_key,
                meta.name,
            )
    page = page.skip(offset).limit(limit)

    logger.debug(
        "List '%s': offset=%d limit=%d sort=%s",
        meta.name,
        offset,
        limit,
        params.sort_key,
    )
    records, total = await asyncio.gather(page.fetch(), cursor.count())
    return ListResult(records=records, total=total, offset=offset, limit=limit)


async def delete(
    backend: StorageBackend,
    table: str,
    ids: Any,
) -> bool | DeleteSummary:
    """Delete records independently per identifier.

    A single identifier returns a boolean. Several identifiers return a
    DeleteSummary; a failure on one id (missing, or a storage error) is
    counted and never undoes the others. Repeated identifiers are deleted
    and reported once.
    """
    if not isinstance(ids, (list, tuple)):
        return await backend.delete(table, ids)
    if len(ids) == 1:
        return await backend.delete(table, ids[0])
    ids = list(dict.fromkeys(ids))

    outcomes = await asyncio.gather(
        *(backend.delete(table, i) for i in ids),
        return_exceptions=True,
    )
    summary = DeleteSummary()
    for id_, outcome in zip(ids, outcomes):
        if isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            logger.warning("Delete of '%s' in '%s' failed: %s", id_, table, outcome)
            outcome = False
        summary.results[id_] = bool(outcome)
    return summary


def _identifiers(value: Any, multiple: bool) -> list[Any]:
    if value is None:
        return []
    values = value if multiple and isinstance(value, (list, tuple)) else [value]
    return [v for v in values if v is not None and isinstance(v, Hashable)]


async def _resolve_field(
    backend: StorageBackend,
    field_meta: FieldMetadata,
    records: list[dict[str, Any]],
) -> None:
    ref = field_meta.foreign
    assert ref is not None
    name = field_meta.name

    wanted: list[Any] = []
    for record in records:
        wanted.extend(_identifiers(record.get(name), ref.multiple))
    wanted = list(dict.fromkeys(wanted))

    found: dict[Any, dict[str, Any]] = {}
    if wanted:
        try:
            found = await backend.get_many(ref.table, wanted, ref.index)
        except Exception as e:
            logger.warning(
                "Foreign lookup of '%s' in '%s' failed: %s", name, ref.table, e
            )

    for record in records:
        if name not in record or record[name] is None:
            continue
        value = record[name]
        if ref.multiple:
            items = value if isinstance(value, (list, tuple)) else [value]
            record[name] = [
                found.get(i) if isinstance(i, Hashable) else None for i in items
            ]
        else:
            record[name] = found.get(value) if isinstance(value, Hashable) else None


async def foreign(
    backend: StorageBackend,
    meta: ControllerMetadata,
    records: dict[str, Any] | list[dict[str, Any]],
) -> Any:
    """Replace foreign identifiers with the referenced records, depth 1.

    Lookups are batched per field across all records and the fields are
    resolved concurrently. A missing target, or a failed lookup, leaves
    None in its place; it never fails the response.
    """
    fields = meta.foreign_fields
    if not fields:
        return records

    batch = [records] if isinstance(records, dict) else list(records)
    if batch:
        await asyncio.gather(*(_resolve_field(backend, f, batch) for f in fields))
    return records if isinstance(records, dict) else batch
