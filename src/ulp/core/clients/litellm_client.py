"""LiteLLMClient — drives OpenAI-compatible upstreams through LiteLLM.

LiteLLM returns OpenAI-shaped response objects; they are converted to plain
dicts so the adapters see exactly the Chat Completions wire shape.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import litellm


def _to_dict(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        result: dict[str, Any] = obj.model_dump()
        return result
    return dict(obj)


class LiteLLMClient:
    """Async client for one OpenAI-compatible endpoint.

    Usage::

        client = LiteLLMClient(api_key="sk-...", base_url="https://api.deepseek.com")
        response = await client.complete({"model": "deepseek-chat", "messages": [...]})
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 600.0,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout

    def _call_kwargs(self, request: dict[str, Any]) -> dict[str, Any]:
        call_kwargs: dict[str, Any] = {
            **request,
            "custom_llm_provider": "openai",
            "timeout": self.timeout,
        }
        if self.api_key:
            call_kwargs["api_key"] = self.api_key
        if self.base_url:
            call_kwargs["api_base"] = self.base_url
        return call_kwargs

    async def complete(self, request: dict[str, Any]) -> dict[str, Any]:
        """Execute a non-streaming Chat Completions request."""
        call_kwargs = self._call_kwargs({**request, "stream": False})
        response = await litellm.acompletion(**call_kwargs)  # pyright: ignore[reportUnknownMemberType]
        return _to_dict(response)

    async def stream(self, request: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        """Execute a streaming request, yielding Chat Completions chunks."""
        call_kwargs = self._call_kwargs(
            {**request, "stream": True, "stream_options": {"include_usage": True}}
        )
        response = await litellm.acompletion(**call_kwargs)  # pyright: ignore[reportUnknownMemberType]
        async for chunk in response:  # pyright: ignore[reportGeneralTypeIssues]
            yield _to_dict(chunk)
