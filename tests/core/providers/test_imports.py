"""Each public module imports cleanly in a fresh interpreter."""

import subprocess
import sys

import pytest


@pytest.mark.parametrize(
    "statement",
    [
        "from ulp.core.adapters.openai import OpenAIRequestAdapter",
        "from ulp.core.adapters.anthropic import AnthropicRequestAdapter",
        "from ulp.core.adapters.gemini import GeminiRequestAdapter",
        "from ulp.core.adapters.cohere import CohereRequestAdapter",
        "from ulp.core.adapters.base import BaseRequestAdapter",
        "from ulp.core.providers import ProviderFactory",
        "from ulp.core.providers import get_provider",
        "from ulp.core.providers.registry import list_providers",
        "from ulp.core.proxy import ProxyHandler",
        "from ulp import get_provider",
    ],
)
def test_cold_import(statement: str) -> None:
    result = subprocess.run([sys.executable, "-c", statement], capture_output=True, text=True, check=False)
    assert result.returncode == 0, result.stderr


def test_lazy_registry_export() -> None:
    import ulp.core.providers as providers
    from ulp.core.providers.registry import get_provider

    assert providers.get_provider is get_provider
    with pytest.raises(AttributeError, match="no attribute 'missing'"):
        _ = providers.missing  # pyright: ignore[reportAttributeAccessIssue]
