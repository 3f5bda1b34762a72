"""Parameter extraction.

Turns raw request inputs (query string, path segments) into typed parameter
structures. Raw inputs are any mapping; values may be single values or lists
of every occurrence, and objects exposing getlist() (e.g. starlette's
QueryParams) are read occurrence by occurrence.

Coercion tables map wire keys to one of:
    string      identity
    number      parse float
    int         parse integer
    bool        '0' is False, any other present value is True
    multi:X     every occurrence of the key, each coerced as X

Route options (static per-route configuration) are applied after the request
values and win over them, so they can enforce defaults such as noForeign.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import fields as dataclass_fields
from typing import Any, TypeVar

from metacrud.core.errors import ConfigurationError, bad_request
from metacrud.core.types import OPERATORS, SortDirection
from metacrud.params.types import (
    DeleteParameters,
    EditParameters,
    FilterSpec,
    GetParameters,
    ListParameters,
    NewParameters,
)

T = TypeVar("T")

FILTER_PREFIX = "filter_"

GET_PARAMETERS: dict[str, str] = {
    "id": "string",
    "index": "string",
    "noForeign": "bool",
}

LIST_PARAMETERS: dict[str, str] = {
    "offset": "int",
    "limit": "int",
    "sortKey": "string",
    "sortDirection": "string",
    "noForeign": "bool",
    "noPluck": "bool",
    "pluckMode": "string",
}

NEW_PARAMETERS: dict[str, str] = {
    "noMandatory": "bool",
}

EDIT_PARAMETERS: dict[str, str] = {
    "id": "string",
    "index": "string",
    "noMandatory": "bool",
}

DELETE_PARAMETERS: dict[str, str] = {
    "id": "multi:string",
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_attribute(key: str) -> str:
    """Convert a wire key (camelCase) to its attribute name (snake_case)."""
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def raw_values(raw: Any, key: str) -> list[Any]:
    """Every occurrence of key in the raw inputs, in order."""
    if hasattr(raw, "getlist"):
        return list(raw.getlist(key))
    if key not in raw:
        return []
    value = raw[key]
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [v for v in value if v is not None]
    return [value]


def raw_keys(raw: Any) -> list[str]:
    """Distinct keys of the raw inputs, in first-seen order."""
    return list(dict.fromkeys(raw.keys()))


def coerce(value: Any, coercion: str, key: str) -> Any:
    """Coerce a single raw value.

    Raises:
        ResultError: 400 naming the key when numeric coercion fails.
    """
    if coercion == "string":
        return value if isinstance(value, str) else str(value)

    if coercion == "bool":
        if isinstance(value, bool):
            return value
        return str(value) != "0"

    if coercion == "number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        try:
            return float(str(value).strip())
        except ValueError:
            raise bad_request(f"Malformed parameter '{key}': expected a number", [key]) from None

    if coercion == "int":
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        try:
            return int(str(value).strip())
        except ValueError:
            raise bad_request(f"Malformed parameter '{key}': expected an integer", [key]) from None

    raise ConfigurationError(f"Unknown coercion '{coercion}' for '{key}'")


def extract_generic(raw: Any, coercion_table: Mapping[str, str]) -> dict[str, Any]:
    """Coerce each declared key present in raw; unknown keys are ignored.

    Returns a dict keyed by attribute name (snake_case) holding only the
    keys that were present.
    """
    result: dict[str, Any] = {}
    for key, coercion in coercion_table.items():
        values = raw_values(raw, key)
        if coercion.startswith("multi:"):
            inner = coercion.split(":", 1)[1]
            if values:
                result[to_attribute(key)] = [coerce(v, inner, key) for v in values]
            continue
        if not values:
            continue
        result[to_attribute(key)] = coerce(values[0], coercion, key)
    return result


def extract_filters(raw: Any) -> FilterSpec:
    """Parse filter_<field>=<op>:<value> entries.

    Repeated keys append to the field's constraint list.

    Raises:
        ResultError: 400 for a malformed entry or an unknown operator.
    """
    spec: FilterSpec = {}
    for key in raw_keys(raw):
        if not key.startswith(FILTER_PREFIX):
            continue
        field = key[len(FILTER_PREFIX):]
        if not field:
            raise bad_request(f"Malformed filter '{key}': missing field name", [key])

        for entry in raw_values(raw, key):
            text = str(entry)
            op, sep, value = text.partition(":")
            if not sep:
                raise bad_request(
                    f"Malformed filter '{key}': expected <op>:<value>", [key]
                )
            if op not in OPERATORS:
                raise bad_request(
                    f"Unknown filter operator '{op}' in '{key}'. "
                    f"Expected one of: {', '.join(OPERATORS)}",
                    [key],
                )
            spec.setdefault(field, []).append((value, op))
    return spec


def apply_route_options(params: T, options: Mapping[str, Any] | None) -> T:
    """Overwrite parameters with static route options.

    Option keys may be wire names (noForeign) or attribute names
    (no_foreign). Filters merge per field, the option's list replacing
    the client's list for the same field.

    Raises:
        ConfigurationError: For option keys the parameter structure lacks.
    """
    if not options:
        return params

    attributes = {f.name for f in dataclass_fields(params)}
    for key, value in options.items():
        attr = to_attribute(key)
        if attr not in attributes:
            raise ConfigurationError(
                f"Unknown route option '{key}' for {type(params).__name__}"
            )
        if attr == "filters":
            merged = dict(params.filters)
            merged.update({f: list(c) for f, c in value.items()})
            value = merged
        elif attr == "sort_direction":
            value = _sort_direction(value)
        setattr(params, attr, value)
    return params


def _sort_direction(value: Any) -> SortDirection:
    if isinstance(value, SortDirection):
        return value
    try:
        return SortDirection(str(value).lower())
    except ValueError:
        raise bad_request(
            f"Malformed parameter 'sortDirection': expected asc or desc, got '{value}'",
            ["sortDirection"],
        ) from None


def _require_id(value: Any) -> None:
    if value is None or value == "" or value == []:
        raise bad_request("Missing ID", ["id"])


def extract_get(raw: Any, options: Mapping[str, Any] | None = None) -> GetParameters:
    params = GetParameters(**extract_generic(raw, GET_PARAMETERS))
    params = apply_route_options(params, options)
    _require_id(params.id)
    return params


def extract_list(raw: Any, options: Mapping[str, Any] | None = None) -> ListParameters:
    values = extract_generic(raw, LIST_PARAMETERS)
    if "sort_direction" in values:
        values["sort_direction"] = _sort_direction(values["sort_direction"])
    params = ListParameters(filters=extract_filters(raw), **values)
    params = apply_route_options(params, options)
    if params.offset < 0:
        params.offset = 0
    return params


def extract_new(raw: Any, options: Mapping[str, Any] | None = None) -> NewParameters:
    params = NewParameters(**extract_generic(raw, NEW_PARAMETERS))
    return apply_route_options(params, options)


def extract_edit(raw: Any, options: Mapping[str, Any] | None = None) -> EditParameters:
    params = EditParameters(**extract_generic(raw, EDIT_PARAMETERS))
    params = apply_route_options(params, options)
    _require_id(params.id)
    return params


def extract_delete(raw: Any, options: Mapping[str, Any] | None = None) -> DeleteParameters:
    params = DeleteParameters(**extract_generic(raw, DELETE_PARAMETERS))
    params = apply_route_options(params, options)
    if not isinstance(params.id, list):
        params.id = [params.id]
    params.id = [i for i in params.id if i is not None and i != ""]
    _require_id(params.id)
    return params
