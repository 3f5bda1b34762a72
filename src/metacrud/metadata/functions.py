"""Named function registry for metacrud.

Validators, filters, getters, and setters can be attached to fields as
Python callables directly, or referenced by name from YAML definitions.
Names resolve through this registry, which follows the same explicit
registration pattern as hooks: nothing is looked up implicitly.

Parameterised entries are registered as factories; the YAML params dict
is passed to the factory to build the actual function:

    @function("validator", "maxLength", factory=True)
    def max_length(params):
        limit = int(params["length"])
        return lambda value: isinstance(value, str) and len(value) <= limit
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import Any

from metacrud.core.errors import ConfigurationError
from metacrud.query.predicates import Match, Predicate

FUNCTION_KINDS = ("validator", "filter", "getter", "setter")

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class FunctionRegistry:
    """Registry of named field functions, one namespace per kind."""

    _functions: dict[str, dict[str, Callable[..., Any]]] = {k: {} for k in FUNCTION_KINDS}
    _factories: dict[str, dict[str, Callable[[dict[str, Any]], Callable[..., Any]]]] = {
        k: {} for k in FUNCTION_KINDS
    }

    @classmethod
    def _check_kind(cls, kind: str) -> None:
        if kind not in FUNCTION_KINDS:
            raise ConfigurationError(
                f"Unknown function kind '{kind}'. Expected one of: {', '.join(FUNCTION_KINDS)}"
            )

    @classmethod
    def register(
        cls,
        kind: str,
        name: str,
        fn: Callable[..., Any],
        factory: bool = False,
    ) -> None:
        """Register a function (or factory) by kind and name.

        Idempotent: re-registering the same name is a no-op.
        """
        cls._check_kind(kind)
        table = cls._factories[kind] if factory else cls._functions[kind]
        if name in cls._functions[kind] or name in cls._factories[kind]:
            return
        table[name] = fn

    @classmethod
    def build(
        cls,
        kind: str,
        spec: str | dict[str, Any],
        defaults: dict[str, Any] | None = None,
    ) -> Callable[..., Any]:
        """Resolve a YAML reference to a callable.

        Args:
            kind: validator, filter, getter or setter
            spec: A bare name, or a dict with "name" plus factory params
            defaults: Params applied under the spec's own (e.g. the field name)

        Raises:
            ConfigurationError: If the name is not registered, or params are
                given for a function that takes none.
        """
        cls._check_kind(kind)
        if isinstance(spec, str):
            name, params = spec, {}
        elif isinstance(spec, dict) and "name" in spec:
            name = spec["name"]
            params = {k: v for k, v in spec.items() if k != "name"}
        else:
            raise ConfigurationError(f"Invalid {kind} reference: {spec!r}")

        if name in cls._factories[kind]:
            try:
                return cls._factories[kind][name]({**(defaults or {}), **params})
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid params for {kind} '{name}': {e}") from e

        if name in cls._functions[kind]:
            if params:
                raise ConfigurationError(f"{kind.capitalize()} '{name}' takes no params")
            return cls._functions[kind][name]

        raise ConfigurationError(
            f"{kind.capitalize()} '{name}' is not registered. "
            "Functions must be explicitly registered at application startup."
        )

    @classmethod
    def get(cls, kind: str, name: str) -> Callable[..., Any]:
        """Look up a plain (non-factory) function by name.

        Raises:
            ConfigurationError: If no such function is registered.
        """
        cls._check_kind(kind)
        if name not in cls._functions[kind]:
            raise ConfigurationError(f"{kind.capitalize()} '{name}' is not registered")
        return cls._functions[kind][name]

    @classmethod
    def is_registered(cls, kind: str, name: str) -> bool:
        cls._check_kind(kind)
        return name in cls._functions[kind] or name in cls._factories[kind]

    @classmethod
    def list_registered(cls, kind: str) -> list[str]:
        cls._check_kind(kind)
        return sorted({*cls._functions[kind], *cls._factories[kind]})

    @classmethod
    def clear(cls) -> None:
        """Clear all registrations. Primarily for testing."""
        for kind in FUNCTION_KINDS:
            cls._functions[kind].clear()
            cls._factories[kind].clear()


def function(kind: str, name: str, factory: bool = False) -> Callable:
    """Decorator to register a named field function."""

    def decorator(fn: Callable) -> Callable:
        FunctionRegistry.register(kind, name, fn, factory=factory)
        return fn

    return decorator


# ---------------------------------------------------------------------------
# Built-in validators
# ---------------------------------------------------------------------------


def not_empty(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict, tuple, set)):
        return bool(value)
    return True


def is_email(value: Any) -> bool:
    return isinstance(value, str) and bool(_EMAIL_PATTERN.match(value))


def is_positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _max_length(params: dict[str, Any]) -> Callable[[Any], bool]:
    limit = int(params["length"])

    def validator(value: Any) -> bool:
        return value is None or (hasattr(value, "__len__") and len(value) <= limit)

    return validator


def _one_of(params: dict[str, Any]) -> Callable[[Any], bool]:
    allowed = list(params["values"])
    return lambda value: value in allowed


def _pattern(params: dict[str, Any]) -> Callable[[Any], bool]:
    regex = re.compile(params["regex"])
    return lambda value: isinstance(value, str) and bool(regex.fullmatch(value))


# ---------------------------------------------------------------------------
# Built-in filters
# ---------------------------------------------------------------------------


def _search(params: dict[str, Any]) -> Callable[[Any, str], Predicate]:
    """Substring search across several stored columns; ignores the operator."""
    fields = params.get("fields") or [params["field"]]
    if isinstance(fields, str):
        fields = [fields]
    columns = tuple(fields)
    if not columns:
        raise ValueError("'fields' must not be empty")

    def search(value: Any, op: str) -> Predicate:
        return Match(columns, str(value), "contains")

    return search


def _prefix(params: dict[str, Any]) -> Callable[[Any, str], Predicate]:
    field = params["field"]

    def prefix(value: Any, op: str) -> Predicate:
        return Match((field,), str(value), "prefix")

    return prefix


# ---------------------------------------------------------------------------
# Built-in transforms
# ---------------------------------------------------------------------------


def _str_transform(method: str) -> Callable[[Any], Any]:
    def transform(value: Any) -> Any:
        if isinstance(value, str):
            return getattr(value, method)()
        return value

    return transform


def to_json(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value)


def from_json(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def register_builtin_functions() -> None:
    """Register framework-provided functions. Called at startup."""
    FunctionRegistry.register("validator", "notEmpty", not_empty)
    FunctionRegistry.register("validator", "email", is_email)
    FunctionRegistry.register("validator", "positive", is_positive)
    FunctionRegistry.register("validator", "maxLength", _max_length, factory=True)
    FunctionRegistry.register("validator", "oneOf", _one_of, factory=True)
    FunctionRegistry.register("validator", "pattern", _pattern, factory=True)

    FunctionRegistry.register("filter", "search", _search, factory=True)
    FunctionRegistry.register("filter", "prefix", _prefix, factory=True)

    for kind in ("getter", "setter"):
        FunctionRegistry.register(kind, "lower", _str_transform("lower"))
        FunctionRegistry.register(kind, "upper", _str_transform("upper"))
        FunctionRegistry.register(kind, "strip", _str_transform("strip"))
    FunctionRegistry.register("setter", "json", to_json)
    FunctionRegistry.register("getter", "json", from_json)
