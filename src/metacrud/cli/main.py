"""metacrud CLI entry point."""

import click


@click.group()
def cli():
    """metacrud: metadata-driven REST CRUD CLI."""
    pass


# Register subcommand groups
from metacrud.cli.controllers_cmd import controllers, serve  # noqa: E402

cli.add_command(controllers)
cli.add_command(serve)
