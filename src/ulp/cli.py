"""ULP CLI entrypoint."""

from __future__ import annotations

import click

from ulp import __version__


@click.group()
@click.version_option(version=__version__, prog_name="ulp")
def main() -> None:
    """ULP — Universal LLM Proxy."""


# Register subcommands
from ulp.cli_commands import register_commands  # noqa: E402

register_commands(main)

if __name__ == "__main__":
    main()
