"""Smoke test to verify the project scaffolding works."""

from __future__ import annotations


def test_import() -> None:
    import ulp

    assert ulp.__version__ == "0.1.0"


def test_cli_entrypoint() -> None:
    from ulp.cli import main

    assert callable(main)


def test_package_imports() -> None:
    from ulp.core.adapters import (
        AnthropicRequestAdapter,
        CohereStreamAdapter,
        GeminiResponseAdapter,
        OpenAIRequestAdapter,
    )
    from ulp.core.providers import get_provider, list_providers

    assert AnthropicRequestAdapter is not None
    assert CohereStreamAdapter is not None
    assert GeminiResponseAdapter is not None
    assert OpenAIRequestAdapter is not None
    assert callable(get_provider)
    assert len(list_providers()) == 6


def test_lazy_import_from_ulp() -> None:
    import ulp

    assert ulp.ProxyHandler is not None
    assert ulp.get_provider("openai").provider == "openai"
