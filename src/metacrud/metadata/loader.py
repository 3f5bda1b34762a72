"""Load controller definitions from YAML files.

Each file under <metadata>/controllers/ holds one document:

    controller: article
    extends: base
    table: articles
    fields:
      title:
        access: readwrite
        mandatory: [new, edit]
        validator: notEmpty
    routes:
      list: {noForeign: true}

Function-valued capabilities (validator, filter, getter, setter) are
resolved by name through FunctionRegistry. Parents are defined before their
children whatever the file order, and every controller is resolved at load
time so configuration errors surface at startup.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from metacrud.core.errors import ConfigurationError
from metacrud.metadata.functions import FUNCTION_KINDS, FunctionRegistry
from metacrud.metadata.registry import MetadataRegistry
from metacrud.metadata.types import ControllerMetadata
from metacrud.routes.operations import validate_route_options

logger = logging.getLogger(__name__)

CONTROLLERS_DIR = "controllers"


class ControllerLoader:
    """Loads controller definitions from a metadata directory."""

    def __init__(self, metadata_path: Path, registry: MetadataRegistry | None = None):
        self.metadata_path = Path(metadata_path)
        self.registry = registry or MetadataRegistry()
        self.route_options: dict[str, dict[str, dict[str, Any]]] = {}
        self.sources: dict[str, Path] = {}

    @property
    def controllers_path(self) -> Path:
        return self.metadata_path / CONTROLLERS_DIR

    def load_all(self) -> dict[str, ControllerMetadata]:
        """Define and resolve every controller found on disk.

        Raises:
            ConfigurationError: On duplicate names, unknown parents,
                inheritance cycles, or invalid capabilities.
        """
        documents = self._read_documents()
        for name in self._ordered(documents):
            self._define(documents[name])
            logger.info("Loaded controller '%s' from %s", name, self.sources[name])
        return self.registry.resolve_all()

    def _read_documents(self) -> dict[str, dict[str, Any]]:
        documents: dict[str, dict[str, Any]] = {}
        if not self.controllers_path.is_dir():
            return documents

        files = sorted(
            [*self.controllers_path.glob("*.yaml"), *self.controllers_path.glob("*.yml")]
        )
        for yaml_file in files:
            with open(yaml_file) as f:
                data = yaml.safe_load(f)
            if not data or "controller" not in data:
                continue
            name = str(data["controller"])
            if name in documents:
                raise ConfigurationError(
                    f"Controller '{name}' is defined in both "
                    f"{self.sources[name]} and {yaml_file}"
                )
            documents[name] = data
            self.sources[name] = yaml_file
        return documents

    def _ordered(self, documents: dict[str, dict[str, Any]]) -> list[str]:
        """Controller names with every parent before its children."""
        ordered: list[str] = []
        visiting: set[str] = set()

        def visit(name: str) -> None:
            if name in ordered:
                return
            if name in visiting:
                raise ConfigurationError(f"Inheritance cycle at controller '{name}'")
            visiting.add(name)
            parent = documents[name].get("extends")
            if parent is not None:
                if parent in documents:
                    visit(parent)
                elif parent not in self.registry:
                    raise ConfigurationError(
                        f"Controller '{name}' extends unknown controller '{parent}'"
                    )
            visiting.discard(name)
            ordered.append(name)

        for name in documents:
            visit(name)
        return ordered

    def _define(self, data: dict[str, Any]) -> None:
        name = str(data["controller"])
        definition = self.registry.define(
            name,
            table=data.get("table"),
            extends=data.get("extends"),
            primary_key=data.get("primaryKey"),
            max_page=data.get("maxPage"),
        )

        for field_name, capabilities in (data.get("fields") or {}).items():
            if not capabilities:
                definition.field(field_name)
                continue
            for capability, value in capabilities.items():
                definition.declare(
                    field_name,
                    capability,
                    self._capability_value(field_name, capability, value),
                )

        routes = data.get("routes")
        if routes:
            self.route_options[name] = validate_route_options(routes)

    def _capability_value(self, field_name: str, capability: str, value: Any) -> Any:
        """Resolve named functions; pass other values through."""
        if capability in FUNCTION_KINDS and value is not None:
            return FunctionRegistry.build(capability, value, defaults={"field": field_name})
        return value

    def get(self, name: str) -> ControllerMetadata:
        return self.registry.resolve(name)

    def list_controllers(self) -> list[str]:
        return self.registry.list_controllers()
