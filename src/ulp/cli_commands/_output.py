"""Shared CLI output formatters."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table

from ulp.core.interface.models import ToolCompressionStats, UsageView  # noqa: TC001
from ulp.core.providers.factory import ProviderFactory  # noqa: TC001

console = Console()
err_console = Console(stderr=True)


def print_providers_table(factories: list[ProviderFactory]) -> None:
    """Pretty-print the registered providers as a table."""
    table = Table(title="Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Interaction")
    table.add_column("Tokenizer")
    table.add_column("Base URL")

    for factory in factories:
        table.add_row(
            factory.provider,
            factory.interaction_type,
            factory.tokenizer_family,
            factory.get_base_url() or "(provider default)",
        )

    console.print(table)


def print_completion(response: dict[str, Any]) -> None:
    """Print the assistant turn of a Chat Completions response."""
    choices = response.get("choices") or [{}]
    message = choices[0].get("message") or {}

    if message.get("content"):
        console.print(message["content"])

    tool_calls = message.get("tool_calls") or []
    if tool_calls:
        table = Table(title="Tool Calls")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Arguments")
        for tc in tool_calls:
            function = tc.get("function", {})
            table.add_row(tc.get("id", "?"), function.get("name", "?"), _truncate(function.get("arguments", "")))
        console.print(table)

    console.print(f"[dim]finish_reason: {choices[0].get('finish_reason')}[/dim]")


def print_usage(
    usage: UsageView | None,
    compression: ToolCompressionStats | None,
    *,
    target: Console = console,
) -> None:
    """Print token usage and, when compression ran, its savings."""
    if usage is not None:
        target.print(
            f"[dim]tokens: prompt={usage.input_tokens} completion={usage.output_tokens} "
            f"total={usage.total_tokens}[/dim]"
        )
    if compression is not None and compression.had_tool_results:
        target.print(
            f"[dim]compression: {compression.tokens_before} -> {compression.tokens_after} tokens "
            f"(saved {compression.tokens_saved}, ${compression.cost_savings:.6f})[/dim]"
        )


def _truncate(text: str, max_len: int = 80) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
