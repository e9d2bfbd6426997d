"""Provider registry — maps provider identifiers to their factories."""

from __future__ import annotations

from ulp.core.adapters.anthropic import anthropic_factory
from ulp.core.adapters.cohere import cohere_factory
from ulp.core.adapters.gemini import gemini_factory
from ulp.core.adapters.openai import deepseek_factory, ollama_factory, openai_factory
from ulp.core.errors import UnknownProviderError
from ulp.core.providers.factory import ProviderFactory

_FACTORIES: dict[str, ProviderFactory] = {
    factory.provider: factory
    for factory in (
        openai_factory,
        anthropic_factory,
        gemini_factory,
        cohere_factory,
        deepseek_factory,
        ollama_factory,
    )
}


def get_provider(name: str) -> ProviderFactory:
    """Return the factory for provider *name* (case-insensitive)."""
    try:
        return _FACTORIES[name.strip().lower()]
    except KeyError:
        raise UnknownProviderError(name) from None


def list_providers() -> list[str]:
    return sorted(_FACTORIES)
