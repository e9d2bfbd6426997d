"""CLI subcommand registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all subcommands on the CLI group."""
    from ulp.cli_commands.complete import complete
    from ulp.cli_commands.providers import providers

    cli.add_command(complete)
    cli.add_command(providers)
