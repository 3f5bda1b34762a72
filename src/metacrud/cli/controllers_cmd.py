"""Controller commands and the serve command."""

import os
from pathlib import Path

import click

from metacrud.core.config import Settings
from metacrud.core.errors import ConfigurationError
from metacrud.metadata.functions import register_builtin_functions
from metacrud.metadata.loader import ControllerLoader
from metacrud.metadata.validator import validate_controllers_dir
from metacrud.routes.operations import ROUTES

_path_option = click.option(
    "--path",
    "metadata_path",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Metadata directory (default: METACRUD_METADATA_PATH or ./metadata).",
)


def _resolve_metadata_path(metadata_path: Path | None) -> Path:
    if metadata_path is not None:
        return metadata_path
    return Settings.from_env().metadata_path


def _load(metadata_path: Path) -> ControllerLoader:
    register_builtin_functions()
    loader = ControllerLoader(metadata_path)
    loader.load_all()
    return loader


@click.group()
def controllers():
    """Controller definition commands."""
    pass


@controllers.command()
@_path_option
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Treat warnings as errors.",
)
def validate(metadata_path: Path | None, strict: bool):
    """Validate controller YAML files and resolve every controller."""
    metadata_path = _resolve_metadata_path(metadata_path)

    # ── Schema (JSON Schema) validation ─────────────────────────────────────
    schema_issues = validate_controllers_dir(metadata_path, strict=strict)
    errors = [i for i in schema_issues if i.severity == "error"]
    warnings = [i for i in schema_issues if i.severity == "warning"]

    for issue in schema_issues:
        colour = "red" if issue.severity == "error" else "yellow"
        click.echo(click.style(str(issue), fg=colour))

    if errors:
        click.echo(
            click.style(
                f"\n{len(errors)} schema error(s) found"
                + (f", {len(warnings)} warning(s)" if warnings else ""),
                fg="red",
                bold=True,
            )
        )
        raise SystemExit(1)

    if warnings:
        click.echo(click.style(f"{len(warnings)} warning(s) found.", fg="yellow"))

    # ── Semantic (load + resolve) validation ────────────────────────────────
    try:
        loader = _load(metadata_path)
    except ConfigurationError as e:
        click.echo(click.style(f"\nSemantic validation failed: {e}", fg="red"), err=True)
        raise SystemExit(1)

    names = loader.list_controllers()
    click.echo(f"\nLoaded {len(names)} controllers:")
    for name in sorted(names):
        meta = loader.get(name)
        parents = f", extends: {meta.chain[-2]}" if len(meta.chain) > 1 else ""
        click.echo(f"  ✓ {name} ({len(meta.fields)} fields, table: {meta.table}{parents})")

    click.echo(click.style("\nAll controllers are valid.", fg="green", bold=True))


@controllers.command()
@_path_option
@click.option("--prefix", default=None, help="API path prefix (default: METACRUD_API_PREFIX or /api).")
def routes(metadata_path: Path | None, prefix: str | None):
    """Print the route table of every controller."""
    metadata_path = _resolve_metadata_path(metadata_path)
    if prefix is None:
        prefix = Settings.from_env().api_prefix

    try:
        loader = _load(metadata_path)
    except ConfigurationError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        raise SystemExit(1)

    for name in sorted(loader.list_controllers()):
        for spec in ROUTES:
            path = f"{prefix.rstrip('/')}/{name}{spec.path}"
            click.echo(f"{spec.method:<7} {path:<40} {spec.operation.value}")


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", default=8000, show_default=True, type=int, help="Bind port.")
@click.option("--reload", is_flag=True, default=False, help="Reload on code changes.")
@_path_option
def serve(host: str, port: int, reload: bool, metadata_path: Path | None):
    """Run the API server with uvicorn."""
    import uvicorn

    if metadata_path is not None:
        os.environ["METACRUD_METADATA_PATH"] = str(metadata_path)

    uvicorn.run(
        "metacrud.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )
