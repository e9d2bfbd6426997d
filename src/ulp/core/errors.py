"""Shared error types for the proxy engine."""

from __future__ import annotations

from typing import Any


class ProxyError(Exception):
    """Base error for all proxy-engine failures."""


class ConfigError(ProxyError):
    """Settings could not be read or failed validation."""


class UnknownProviderError(ProxyError):
    """No adapter set is registered for the requested provider."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Unknown provider: {provider}")


class RequestConstructionError(ProxyError):
    """The downstream request cannot be turned into a provider request."""


class UpstreamError(ProxyError):
    """The upstream provider rejected the request or the transport failed.

    ``body`` holds the decoded error envelope when the provider sent one, so
    the provider's error normalizer can dig out the nested message.
    """

    def __init__(self, message: str, status_code: int | None = None, body: Any = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)
