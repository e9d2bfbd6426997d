"""Per-provider request, response and stream adapters."""

from ulp.core.adapters.anthropic import AnthropicRequestAdapter, AnthropicResponseAdapter, AnthropicStreamAdapter
from ulp.core.adapters.cohere import CohereRequestAdapter, CohereResponseAdapter, CohereStreamAdapter
from ulp.core.adapters.gemini import GeminiRequestAdapter, GeminiResponseAdapter, GeminiStreamAdapter
from ulp.core.adapters.openai import OpenAIRequestAdapter, OpenAIResponseAdapter, OpenAIStreamAdapter

__all__ = [
    "AnthropicRequestAdapter",
    "AnthropicResponseAdapter",
    "AnthropicStreamAdapter",
    "CohereRequestAdapter",
    "CohereResponseAdapter",
    "CohereStreamAdapter",
    "GeminiRequestAdapter",
    "GeminiResponseAdapter",
    "GeminiStreamAdapter",
    "OpenAIRequestAdapter",
    "OpenAIResponseAdapter",
    "OpenAIStreamAdapter",
]
