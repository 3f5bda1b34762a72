"""Read/write projection of records through controller metadata.

Read side:  project_foreign -> read_properties -> pluck (listings) -> clear_internal
Write side: mandatory_fields -> write_properties

Whether a field is ever exposed (access mode) and whether it is shown in a
particular listing (listable modes) are separate axes: read_properties
applies the first, pluck the second.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from metacrud.core.errors import validation_failed
from metacrud.core.types import DEFAULT_PLUCK_MODE, INTERNAL_FIELD
from metacrud.metadata.types import ControllerMetadata


def is_empty(value: Any) -> bool:
    """Absent for mandatory checks: None, blank strings, empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return not value
    return False


def read_properties(meta: ControllerMetadata, record: dict[str, Any]) -> dict[str, Any]:
    """Project a stored record to its readable fields, applying getters.

    Output follows declaration order; undeclared and write-only fields are
    dropped.
    """
    result: dict[str, Any] = {}
    for field in meta:
        if not field.readable or field.name not in record:
            continue
        value = record[field.name]
        if field.getter is not None:
            value = field.getter(value)
        result[field.name] = value
    return result


def pluck(
    meta: ControllerMetadata,
    record: dict[str, Any],
    mode: str = DEFAULT_PLUCK_MODE,
    no_pluck: bool = False,
) -> dict[str, Any]:
    """Narrow a read-projected record to the fields listable in mode."""
    if no_pluck:
        return record
    return {
        name: value
        for name, value in record.items()
        if (field := meta.get(name)) is not None and field.listable_in(mode)
    }


def write_properties(
    meta: ControllerMetadata,
    data: dict[str, Any],
    operation: str,
) -> dict[str, Any]:
    """Project client input to a storage-ready record.

    Keys that are undeclared or not writable are dropped. Declared validators
    run on the present values; the first failure rejects the whole write.
    Setters run after validation.

    Raises:
        ResultError: 400 naming the field whose validator failed.
    """
    result: dict[str, Any] = {}
    for name, value in data.items():
        field = meta.get(name)
        if field is None or not field.writable:
            continue
        if field.validator is not None and not field.validator(value):
            raise validation_failed(
                f"Invalid value for field '{name}' on {operation}", [name]
            )
        if field.setter is not None:
            value = field.setter(value)
        result[name] = value
    return result


def mandatory_fields(
    meta: ControllerMetadata,
    data: dict[str, Any],
    operation: str,
) -> None:
    """Check every field mandatory for operation is present and non-empty.

    Raises:
        ResultError: a single 400 listing every missing field.
    """
    missing = [
        field.name
        for field in meta
        if field.mandatory_for(operation) and is_empty(data.get(field.name))
    ]
    if missing:
        raise validation_failed(
            f"Missing mandatory field(s): {', '.join(missing)}", missing
        )


def clear_internal(
    meta: ControllerMetadata,
    records: dict[str, Any] | Iterable[dict[str, Any]],
) -> Any:
    """Strip non-readable fields and the reserved bookkeeping field.

    Accepts one record or an iterable of records and returns the same shape.
    Idempotent.
    """
    if isinstance(records, dict):
        return _clear_one(meta, records)
    return [_clear_one(meta, r) for r in records]


def _clear_one(meta: ControllerMetadata, record: dict[str, Any]) -> dict[str, Any]:
    return {
        name: value
        for name, value in record.items()
        if name != INTERNAL_FIELD and (field := meta.get(name)) is not None and field.readable
    }


def project_foreign(
    meta: ControllerMetadata,
    record: dict[str, Any],
    targets: Mapping[str, ControllerMetadata] | None = None,
) -> dict[str, Any]:
    """Project resolved foreign records through their own controller.

    targets maps a table name to the controller exposing it. A target table
    with no controller keeps its stored fields less the reserved
    bookkeeping field. Identifiers left unresolved pass through unchanged.
    """
    targets = targets or {}
    for field in meta.foreign_fields:
        value = record.get(field.name)
        if value is None:
            continue
        target = targets.get(field.foreign.table)
        if isinstance(value, list):
            record[field.name] = [_project_target(target, v) for v in value]
        else:
            record[field.name] = _project_target(target, value)
    return record


def _project_target(target: ControllerMetadata | None, value: Any) -> Any:
    if not isinstance(value, dict):
        return value
    if target is None:
        return {k: v for k, v in value.items() if k != INTERNAL_FIELD}
    return _clear_one(target, read_properties(target, value))
