"""ProviderFactory — the complete adapter set for one upstream provider.

A factory bundles the three adapter constructors with everything needed to
reach the provider: the API-key extraction rule, the upstream base URL, the
telemetry span name, a client constructor and the execute entry points.
Factories are immutable module-level values; the registry selects one per
request.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from ulp.core.interface.adapter import RequestAdapter, ResponseAdapter, StreamAdapter


class ClientOptions(BaseModel):
    """Per-request options for building an upstream client."""

    mock_mode: bool = False
    base_url: str | None = None
    timeout: float = 600.0


RequestAdapterFactory = Callable[..., RequestAdapter]
ResponseAdapterFactory = Callable[[dict[str, Any]], ResponseAdapter]
StreamAdapterFactory = Callable[[], StreamAdapter]


@dataclass(frozen=True)
class ProviderFactory:
    """Adapter set and transport wiring for one provider."""

    provider: str
    interaction_type: str
    tokenizer_family: str
    base_url: str | None
    span_name: str
    create_request_adapter: RequestAdapterFactory
    create_response_adapter: ResponseAdapterFactory
    create_stream_adapter: StreamAdapterFactory
    extract_api_key: Callable[[Mapping[str, str]], str | None]
    create_client: Callable[[str | None, ClientOptions | None], Any]
    execute: Callable[[Any, dict[str, Any]], Any]
    execute_stream: Callable[[Any, dict[str, Any]], Any]
    extract_error_message: Callable[[Any], str]

    def get_base_url(self) -> str | None:
        return self.base_url

    def get_span_name(self) -> str:
        return self.span_name


# ---------------------------------------------------------------------------
# API key extraction rules
# ---------------------------------------------------------------------------


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def bearer_api_key(headers: Mapping[str, str]) -> str | None:
    """Take the key from ``Authorization``, stripping a ``Bearer`` prefix."""
    value = _header(headers, "authorization")
    if not value:
        return None
    scheme, _, token = value.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token.strip()
    return value.strip()


def header_api_key(name: str) -> Callable[[Mapping[str, str]], str | None]:
    """Build a rule reading the key from header *name*, falling back to bearer auth."""

    def extract(headers: Mapping[str, str]) -> str | None:
        return _header(headers, name.lower()) or bearer_api_key(headers)

    return extract
