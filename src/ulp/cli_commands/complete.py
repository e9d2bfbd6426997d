"""``ulp complete`` — send one Chat Completions request through the proxy."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import click
import yaml

from ulp.cli_commands._output import console, err_console, print_completion, print_usage


def _load_request(path: Path) -> dict[str, Any]:
    """Read a request body from a JSON or YAML file."""
    try:
        data: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        msg = f"Request file is not valid JSON or YAML: {exc}"
        raise click.BadParameter(msg, param_hint="REQUEST_FILE") from exc
    if not isinstance(data, dict):
        msg = f"Request file must contain a mapping, got {type(data).__name__}"
        raise click.BadParameter(msg, param_hint="REQUEST_FILE")
    return data


def _configure_logging(verbose: bool) -> None:
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )
    if not verbose:
        logging.getLogger("LiteLLM").setLevel(logging.WARNING)


@click.command()
@click.argument("provider")
@click.argument("request_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--stream", "stream", is_flag=True, help="Stream the response as SSE.")
@click.option("--api-key", envvar="ULP_API_KEY", default=None, help="Upstream API key.")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), default=None, help="Settings YAML file.")
@click.option("--mock", is_flag=True, help="Replay canned upstream payloads instead of calling the provider.")
@click.option("--compress", is_flag=True, help="Enable TOON compression of tool results.")
@click.option("--json", "as_json", is_flag=True, help="Print the raw downstream response as JSON.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option("--telemetry", is_flag=True, help="Export spans to the console.")
def complete(
    provider: str,
    request_file: str,
    stream: bool,
    api_key: str | None,
    config_path: str | None,
    mock: bool,
    compress: bool,
    as_json: bool,
    verbose: bool,
    telemetry: bool,
) -> None:
    """Send the request in REQUEST_FILE to PROVIDER."""
    from ulp.core.errors import ProxyError
    from ulp.core.interface.config import ProxySettings, load_settings
    from ulp.core.proxy import ProxyHandler
    from ulp.utils.telemetry import configure_telemetry

    _configure_logging(verbose)

    try:
        settings = load_settings(Path(config_path)) if config_path else ProxySettings()
    except ProxyError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(1)

    updates: dict[str, Any] = {}
    if mock:
        updates["mock_mode"] = True
    if compress:
        updates["compression_enabled"] = True
    if updates:
        settings = settings.model_copy(update=updates)

    if telemetry or settings.telemetry.enabled:
        configure_telemetry(settings.telemetry, export_to_console=telemetry)

    body = _load_request(Path(request_file))
    headers = {"authorization": f"Bearer {api_key}"} if api_key else {}
    handler = ProxyHandler(settings)

    try:
        if stream:
            asyncio.run(_run_stream(handler, provider, body, headers))
        else:
            result = asyncio.run(handler.complete(provider, body, headers))
            if as_json:
                console.print_json(data=result.response)
            else:
                print_completion(result.response)
                print_usage(result.usage, result.compression)
    except ProxyError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)


async def _run_stream(handler: Any, provider: str, body: dict[str, Any], headers: dict[str, str]) -> None:
    session = handler.open_stream(provider, body, headers)
    async for fragment in session.events():
        click.echo(fragment, nl=False)
    print_usage(session.usage, session.compression, target=err_console)
