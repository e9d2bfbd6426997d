"""Upstream clients used by the provider factories."""

from ulp.core.clients.http_client import HttpProviderClient
from ulp.core.clients.litellm_client import LiteLLMClient
from ulp.core.clients.mock import MockClient

__all__ = ["HttpProviderClient", "LiteLLMClient", "MockClient"]
