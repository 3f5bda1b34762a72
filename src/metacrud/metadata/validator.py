"""
metadata/validator.py: JSON Schema validation for controller YAML files.

Usage:
    from metacrud.metadata.validator import validate_controllers_dir

    issues = validate_controllers_dir(Path("metadata"))
    for issue in issues:
        print(issue)

Schema errors are reported as errors. Fields that declare no access mode are
never exposed nor written, which is legal but usually a mistake; they are
reported as warnings, escalated to errors under ``strict``.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"
CONTROLLER_SCHEMA = "controller.schema.json"


@dataclass
class ValidationIssue:
    """A single validation finding for a controller YAML file."""

    file: Path
    message: str
    path: str = ""          # location within the document, e.g. "fields/title/access"
    severity: str = "error" # "error" | "warning"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


def _load_schema(name: str = CONTROLLER_SCHEMA) -> dict[str, Any]:
    with (_SCHEMAS_DIR / name).open() as fh:
        return json.load(fh)


def _json_path(error: ValidationError) -> str:
    parts = []
    for p in error.absolute_path:
        parts.append(f"[{p}]" if isinstance(p, int) else str(p))
    return "/".join(parts).replace("/[", "[")


def _field_warnings(yaml_path: Path, doc: dict[str, Any]) -> list[ValidationIssue]:
    issues = []
    fields = doc.get("fields") or {}
    if not isinstance(fields, dict):
        return issues
    for name, caps in fields.items():
        if not isinstance(caps, dict) or caps.get("access") in (None, "none"):
            issues.append(
                ValidationIssue(
                    file=yaml_path,
                    message=f"Field '{name}' has no access mode and is never exposed",
                    path=f"fields/{name}",
                    severity="warning",
                )
            )
    return issues


def validate_yaml_file(
    yaml_path: Path,
    *,
    validator: Draft202012Validator | None = None,
) -> list[ValidationIssue]:
    """
    Validate a single controller YAML file.

    Args:
        yaml_path: Path to the YAML file to validate.
        validator: Pre-built schema validator.  Built automatically if omitted.

    Returns:
        A list of :class:`ValidationIssue` objects (empty on success).
    """
    try:
        with yaml_path.open() as fh:
            doc = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        return [ValidationIssue(file=yaml_path, message=f"YAML parse error: {exc}")]

    if doc is None:
        return [
            ValidationIssue(file=yaml_path, message="File is empty or contains only whitespace")
        ]

    if validator is None:
        validator = Draft202012Validator(_load_schema())

    issues = [
        ValidationIssue(file=yaml_path, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(doc), key=lambda e: list(map(str, e.path)))
    ]
    if isinstance(doc, dict):
        issues.extend(_field_warnings(yaml_path, doc))
    return issues


def validate_controllers_dir(
    metadata_dir: Path,
    *,
    strict: bool = False,
) -> list[ValidationIssue]:
    """
    Validate every YAML file under ``<metadata_dir>/controllers``.

    Args:
        metadata_dir: Root metadata directory.
        strict:       Escalate warnings to errors.

    Returns:
        A flat list of :class:`ValidationIssue` objects across all files.
    """
    if not metadata_dir.is_dir():
        return [
            ValidationIssue(
                file=metadata_dir,
                message=f"Metadata directory does not exist: {metadata_dir}",
            )
        ]

    try:
        validator = Draft202012Validator(_load_schema())
    except (FileNotFoundError, json.JSONDecodeError) as exc:
        return [
            ValidationIssue(
                file=_SCHEMAS_DIR,
                message=f"Failed to load JSON Schema files: {exc}",
            )
        ]

    target = metadata_dir / "controllers"
    if not target.is_dir():
        return []

    all_issues: list[ValidationIssue] = []
    files = sorted([*target.glob("*.yaml"), *target.glob("*.yml")])
    for yaml_file in files:
        file_issues = validate_yaml_file(yaml_file, validator=validator)
        if strict:
            for issue in file_issues:
                if issue.severity == "warning":
                    issue.severity = "error"
        all_issues.extend(file_issues)

    logger.debug("Validated %d controller file(s) under %s", len(files), target)
    return all_issues
