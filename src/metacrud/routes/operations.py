"""Route table: the five canonical operations over one controller.

Each operation takes raw request inputs (query string plus path values) and,
for writes, the decoded body; it returns a JSON-ready result or raises a
ResultError. The HTTP binding decides nothing beyond moving data in and out.

    read:  extract -> storage get/list -> foreign -> project_foreign -> read_properties
           -> pluck (list only) -> clear_internal
    write: extract -> mandatory_fields -> write_properties -> insert/update
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from metacrud.core.errors import ConfigurationError, bad_request, not_found
from metacrud.core.types import DEFAULT_MAX_PAGE, Operation
from metacrud.metadata.types import ControllerMetadata
from metacrud.params import extract
from metacrud.params.types import (
    DeleteParameters,
    EditParameters,
    GetParameters,
    ListParameters,
    NewParameters,
)
from metacrud.persistence.adapter import StorageBackend
from metacrud.query import engine
from metacrud.query.projection import (
    clear_internal,
    mandatory_fields,
    pluck,
    project_foreign,
    read_properties,
    write_properties,
)

# Per-operation static options, e.g. {"list": {"noForeign": True, "maxPage": 20}}
RouteOptions = Mapping[str, Mapping[str, Any]]

_PARAMETER_TYPES = {
    Operation.GET: GetParameters,
    Operation.LIST: ListParameters,
    Operation.NEW: NewParameters,
    Operation.EDIT: EditParameters,
    Operation.DELETE: DeleteParameters,
}


@dataclass(frozen=True)
class RouteSpec:
    """One entry of the route table."""

    method: str
    path: str
    operation: Operation


ROUTES: tuple[RouteSpec, ...] = (
    RouteSpec("GET", "", Operation.LIST),
    RouteSpec("GET", "/{id}", Operation.GET),
    RouteSpec("POST", "", Operation.NEW),
    RouteSpec("PUT", "/{id}", Operation.EDIT),
    RouteSpec("PATCH", "/{id}", Operation.EDIT),
    RouteSpec("DELETE", "", Operation.DELETE),
    RouteSpec("DELETE", "/{id}", Operation.DELETE),
)


def validate_route_options(options: RouteOptions | None) -> dict[str, dict[str, Any]]:
    """Check option keys against each operation's parameters at startup.

    Raises:
        ConfigurationError: For unknown operations or option keys.
    """
    checked: dict[str, dict[str, Any]] = {}
    for op_name, op_options in (options or {}).items():
        try:
            operation = Operation(op_name)
        except ValueError:
            raise ConfigurationError(f"Unknown operation '{op_name}' in route options") from None
        probe = _PARAMETER_TYPES[operation]()
        for key in op_options:
            if not hasattr(probe, extract.to_attribute(key)):
                raise ConfigurationError(
                    f"Unknown route option '{key}' for operation '{op_name}'"
                )
        checked[op_name] = dict(op_options)
    return checked


def controllers_by_table(
    controllers: Mapping[str, ControllerMetadata],
) -> dict[str, ControllerMetadata]:
    """The controller exposing each table, for projecting foreign records.

    When several controllers share a table the one nearest the root of its
    inheritance chain wins, then the first by name.
    """
    by_table: dict[str, ControllerMetadata] = {}
    for name in sorted(controllers, key=lambda n: (len(controllers[n].chain), n)):
        by_table.setdefault(controllers[name].table, controllers[name])
    return by_table


class Controller:
    """The canonical operations bound to one controller and backend."""

    def __init__(
        self,
        meta: ControllerMetadata,
        backend: StorageBackend,
        options: RouteOptions | None = None,
        max_page: int = DEFAULT_MAX_PAGE,
        targets: Mapping[str, ControllerMetadata] | None = None,
    ):
        self.meta = meta
        self.backend = backend
        self.options = validate_route_options(options)
        self.max_page = max_page
        self.targets = targets or {}

    def _options(self, operation: Operation) -> dict[str, Any]:
        return self.options.get(operation.value, {})

    def _check_index(self, index: str | None) -> None:
        if index is None:
            return
        field = self.meta.get(index)
        if field is None or not field.readable:
            raise bad_request(f"Unknown index '{index}'", ["index"])

    async def get(self, raw: Any) -> dict[str, Any]:
        params = extract.extract_get(raw, self._options(Operation.GET))
        self._check_index(params.index)
        record = await engine.get(self.backend, self.meta.table, params.id, params.index)
        if record is None:
            raise not_found(f"{self.meta.name} '{params.id}' not found")
        if not params.no_foreign:
            await engine.foreign(self.backend, self.meta, record)
            project_foreign(self.meta, record, self.targets)
        return clear_internal(self.meta, read_properties(self.meta, record))

    async def list(self, raw: Any) -> dict[str, Any]:
        params = extract.extract_list(raw, self._options(Operation.LIST))
        result = await engine.list_records(self.meta, self.backend, params, self.max_page)
        records = result.records
        if not params.no_foreign:
            records = await engine.foreign(self.backend, self.meta, records)
            for record in records:
                project_foreign(self.meta, record, self.targets)
        results = [
            clear_internal(
                self.meta,
                pluck(self.meta, read_properties(self.meta, r), params.pluck_mode, params.no_pluck),
            )
            for r in records
        ]
        return {
            "results": results,
            "total": result.total,
            "offset": result.offset,
            "limit": result.limit,
        }

    async def new(self, raw: Any, body: Any) -> list[Any]:
        params = extract.extract_new(raw, self._options(Operation.NEW))
        items = body if isinstance(body, list) else [body]
        if not all(isinstance(item, dict) for item in items):
            raise bad_request("Body must be an object or an array of objects")

        # Check everything before inserting anything
        prepared = []
        for item in items:
            if not params.no_mandatory:
                mandatory_fields(self.meta, item, Operation.NEW.value)
            prepared.append(write_properties(self.meta, item, Operation.NEW.value))

        ids = []
        for record in prepared:
            ids.append(await self.backend.insert(self.meta.table, record))
        return ids

    async def edit(self, raw: Any, body: Any) -> dict[str, Any]:
        params = extract.extract_edit(raw, self._options(Operation.EDIT))
        self._check_index(params.index)
        if not isinstance(body, dict):
            raise bad_request("Body must be an object")

        existing = await engine.get(self.backend, self.meta.table, params.id, params.index)
        if existing is None:
            raise not_found(f"{self.meta.name} '{params.id}' not found")

        if not params.no_mandatory:
            mandatory_fields(self.meta, body, Operation.EDIT.value)
        partial = write_properties(self.meta, body, Operation.EDIT.value)

        key = existing.get(self.meta.primary_key, params.id)
        if not await self.backend.update(self.meta.table, key, partial):
            raise not_found(f"{self.meta.name} '{params.id}' not found")
        return {"success": True}

    async def delete(self, raw: Any) -> bool | dict[str, Any]:
        params = extract.extract_delete(raw, self._options(Operation.DELETE))
        ids = params.id[0] if len(params.id) == 1 else params.id
        result = await engine.delete(self.backend, self.meta.table, ids)
        if isinstance(result, engine.DeleteSummary):
            return result.to_dict()
        return result

    async def dispatch(self, operation: Operation, raw: Any, body: Any = None) -> Any:
        """Run an operation by enum value."""
        if operation is Operation.NEW:
            return await self.new(raw, body)
        if operation is Operation.EDIT:
            return await self.edit(raw, body)
        handler = getattr(self, operation.value)
        return await handler(raw)
