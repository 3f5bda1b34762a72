"""Field metadata registry.

Controllers are declared through an explicit registration API instead of
attribute decorators:

    registry = MetadataRegistry()
    base = registry.define("base", table="documents")
    base.field("_id", access="read", listable=["list"], sortable=True)

    article = registry.define("article", extends="base")
    article.field("title", access="readwrite", mandatory=["new", "edit"])
    article.declare("_id", "sortable", False)

    meta = registry.resolve("article")

A child's declaration of a capability overrides that single capability from
its ancestors; everything it does not redeclare is inherited unchanged.
Resolving a controller freezes it and its ancestors.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from metacrud.core.errors import ConfigurationError
from metacrud.core.types import (
    DEFAULT_PRIMARY_KEY,
    MANDATORY_OPERATIONS,
    AccessMode,
)
from metacrud.metadata.types import (
    CAPABILITIES,
    ControllerMetadata,
    FieldMetadata,
    ForeignRef,
)

logger = logging.getLogger(__name__)

# Accepted spellings for access modes in code and YAML
_ACCESS_ALIASES: dict[str, AccessMode | None] = {
    "read": AccessMode.READ_ONLY,
    "readonly": AccessMode.READ_ONLY,
    "write": AccessMode.WRITE_ONLY,
    "writeonly": AccessMode.WRITE_ONLY,
    "readwrite": AccessMode.READ_WRITE,
    "rw": AccessMode.READ_WRITE,
    "none": None,
}

VALUE_TYPES = ("string", "number", "int", "bool")


def _normalize_modes(capability: str, value: Any) -> frozenset[str]:
    if value is None or value is False:
        return frozenset()
    if isinstance(value, str):
        return frozenset({value})
    if isinstance(value, Iterable):
        modes = frozenset(value)
        if not all(isinstance(m, str) for m in modes):
            raise ConfigurationError(f"'{capability}' entries must be strings")
        return modes
    raise ConfigurationError(f"Invalid value for '{capability}': {value!r}")


def normalize_capability(capability: str, value: Any) -> Any:
    """Validate and normalize a capability value.

    Raises:
        ConfigurationError: For unknown capabilities or malformed values.
    """
    if capability not in CAPABILITIES:
        raise ConfigurationError(
            f"Unknown capability '{capability}'. "
            f"Known capabilities: {', '.join(sorted(CAPABILITIES))}"
        )

    if capability == "access":
        if value is None or isinstance(value, AccessMode):
            return value
        key = str(value).lower().replace("_", "").replace("-", "")
        if key not in _ACCESS_ALIASES:
            raise ConfigurationError(f"Invalid access mode: {value!r}")
        return _ACCESS_ALIASES[key]

    if capability == "listable":
        if value is True:
            return frozenset({"list"})
        return _normalize_modes(capability, value)

    if capability == "mandatory":
        if value is True:
            return MANDATORY_OPERATIONS
        modes = _normalize_modes(capability, value)
        unknown = modes - MANDATORY_OPERATIONS
        if unknown:
            raise ConfigurationError(
                f"'mandatory' accepts only new/edit, got: {', '.join(sorted(unknown))}"
            )
        return modes

    if capability == "sortable":
        if not isinstance(value, bool):
            raise ConfigurationError(f"'sortable' must be a boolean, got {value!r}")
        return value

    if capability == "foreign":
        if value is None or isinstance(value, ForeignRef):
            return value
        if isinstance(value, str):
            return ForeignRef(table=value)
        if isinstance(value, dict) and value.get("table"):
            return ForeignRef(
                table=value["table"],
                index=value.get("index"),
                multiple=bool(value.get("multiple", False)),
            )
        raise ConfigurationError(f"Invalid foreign reference: {value!r}")

    if capability == "type":
        if value is not None and value not in VALUE_TYPES:
            raise ConfigurationError(
                f"Invalid field type {value!r}. Expected one of: {', '.join(VALUE_TYPES)}"
            )
        return value

    # Function-valued capabilities
    if value is not None and not callable(value):
        raise ConfigurationError(f"'{capability}' must be callable, got {value!r}")
    return value


class ControllerDefinition:
    """Builder holding one controller's own field declarations."""

    def __init__(
        self,
        name: str,
        table: str | None = None,
        parent: ControllerDefinition | None = None,
        primary_key: str | None = None,
        max_page: int | None = None,
    ):
        self.name = name
        self.table = table
        self.parent = parent
        self.primary_key = primary_key
        self.max_page = max_page
        # field -> capability -> value, in declaration order
        self._declarations: dict[str, dict[str, Any]] = {}
        self._merged: dict[str, dict[str, Any]] | None = None
        self._resolved: ControllerMetadata | None = None

    @property
    def frozen(self) -> bool:
        return self._merged is not None

    def declare(self, field: str, capability: str, value: Any) -> ControllerDefinition:
        """Declare one capability for one field. Redeclaring replaces it."""
        if self.frozen:
            raise ConfigurationError(
                f"Controller '{self.name}' is already resolved; "
                f"cannot declare '{capability}' on '{field}'"
            )
        normalized = normalize_capability(capability, value)
        self._declarations.setdefault(field, {})[capability] = normalized
        return self

    def field(self, name: str, **capabilities: Any) -> ControllerDefinition:
        """Declare several capabilities for a field at once."""
        if not capabilities:
            # Declares the field with no capabilities
            self._declarations.setdefault(name, {})
        for capability, value in capabilities.items():
            self.declare(name, capability, value)
        return self

    def declared(self, field: str) -> dict[str, Any]:
        """Capabilities declared at this level only."""
        return dict(self._declarations.get(field, {}))

    def chain(self) -> list[ControllerDefinition]:
        """Definitions from the root ancestor down to this one."""
        chain: list[ControllerDefinition] = []
        node: ControllerDefinition | None = self
        while node is not None:
            if node in chain:
                raise ConfigurationError(f"Inheritance cycle at controller '{node.name}'")
            chain.append(node)
            node = node.parent
        chain.reverse()
        return chain

    def merged(self) -> dict[str, dict[str, Any]]:
        """Per-capability merge of the parent's merged table with our own."""
        if self._merged is not None:
            return self._merged

        merged: dict[str, dict[str, Any]] = {}
        if self.parent is not None:
            for name, caps in self.parent.merged().items():
                merged[name] = dict(caps)
        for name, caps in self._declarations.items():
            merged.setdefault(name, {}).update(caps)

        self._merged = merged
        return merged

    def inherited(self, attribute: str) -> Any:
        """Nearest non-None controller-level attribute along the chain."""
        node: ControllerDefinition | None = self
        while node is not None:
            value = getattr(node, attribute)
            if value is not None:
                return value
            node = node.parent
        return None

    def resolve(self) -> ControllerMetadata:
        """Fold the chain root to leaf into immutable ControllerMetadata.

        Raises:
            ConfigurationError: If no table is bound anywhere in the chain.
        """
        if self._resolved is not None:
            return self._resolved

        chain = self.chain()
        table = self.inherited("table")
        if not table:
            raise ConfigurationError(
                f"Controller '{self.name}' has no bound table "
                f"(chain: {' -> '.join(d.name for d in chain)})"
            )

        fields = {
            name: FieldMetadata(name=name, **caps)
            for name, caps in self.merged().items()
        }

        self._resolved = ControllerMetadata(
            name=self.name,
            table=table,
            primary_key=self.inherited("primary_key") or DEFAULT_PRIMARY_KEY,
            fields=fields,
            max_page=self.inherited("max_page"),
            chain=tuple(d.name for d in chain),
        )
        logger.debug(
            "Resolved controller '%s' on table '%s' (%d fields)",
            self.name,
            table,
            len(fields),
        )
        return self._resolved

    def __repr__(self) -> str:
        return f"ControllerDefinition({self.name!r})"


class MetadataRegistry:
    """Registry of controller definitions, keyed by name."""

    def __init__(self) -> None:
        self._definitions: dict[str, ControllerDefinition] = {}

    def define(
        self,
        name: str,
        table: str | None = None,
        extends: str | ControllerDefinition | None = None,
        primary_key: str | None = None,
        max_page: int | None = None,
    ) -> ControllerDefinition:
        """Create a controller definition, optionally extending another.

        Raises:
            ConfigurationError: On duplicate names or an unknown parent.
        """
        if name in self._definitions:
            raise ConfigurationError(f"Controller '{name}' is already defined")

        parent: ControllerDefinition | None = None
        if isinstance(extends, ControllerDefinition):
            parent = extends
        elif extends is not None:
            parent = self._definitions.get(extends)
            if parent is None:
                raise ConfigurationError(
                    f"Controller '{name}' extends unknown controller '{extends}'"
                )

        definition = ControllerDefinition(
            name,
            table=table,
            parent=parent,
            primary_key=primary_key,
            max_page=max_page,
        )
        self._definitions[name] = definition
        return definition

    def get(self, name: str) -> ControllerDefinition:
        if name not in self._definitions:
            raise ConfigurationError(f"Controller '{name}' is not defined")
        return self._definitions[name]

    def declare(
        self,
        controller: str | ControllerDefinition,
        field: str,
        capability: str,
        value: Any,
    ) -> None:
        definition = controller if isinstance(controller, ControllerDefinition) else self.get(controller)
        definition.declare(field, capability, value)

    def resolve(self, controller: str | ControllerDefinition) -> ControllerMetadata:
        definition = controller if isinstance(controller, ControllerDefinition) else self.get(controller)
        return definition.resolve()

    def resolve_all(self) -> dict[str, ControllerMetadata]:
        """Resolve every controller; called once at startup."""
        return {name: d.resolve() for name, d in self._definitions.items()}

    def list_controllers(self) -> list[str]:
        return list(self._definitions.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._definitions


def fields_with(
    meta: ControllerMetadata,
    capability: str,
    predicate: Callable[[Any], bool] = bool,
) -> list[str]:
    """Names of fields whose capability value satisfies predicate.

    Preserves declaration order, e.g.:

        fields_with(meta, "listable", lambda modes: "list" in modes)
        fields_with(meta, "mandatory", lambda ops: "new" in ops)
    """
    if capability not in CAPABILITIES:
        raise ConfigurationError(f"Unknown capability '{capability}'")
    return [f.name for f in meta if predicate(getattr(f, capability))]
