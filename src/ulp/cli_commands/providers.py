"""``ulp providers`` — list the registered upstream providers."""

from __future__ import annotations

import click

from ulp.cli_commands._output import console, print_providers_table


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def providers(as_json: bool) -> None:
    """List the providers the proxy can route to."""
    from ulp.core.providers.registry import get_provider, list_providers

    factories = [get_provider(name) for name in list_providers()]

    if as_json:
        console.print_json(
            data=[
                {
                    "provider": f.provider,
                    "interaction_type": f.interaction_type,
                    "tokenizer_family": f.tokenizer_family,
                    "base_url": f.get_base_url(),
                    "span_name": f.get_span_name(),
                }
                for f in factories
            ]
        )
        return

    print_providers_table(factories)
