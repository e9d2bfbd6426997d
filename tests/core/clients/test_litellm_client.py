"""Tests for LiteLLMClient — unit tests with mocked LiteLLM."""

from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

from ulp.core.clients.litellm_client import LiteLLMClient


def _completion() -> dict[str, Any]:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "model": "deepseek-chat",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": "hi"}, "finish_reason": "stop"}],
    }


class TestComplete:
    async def test_forwards_request(self) -> None:
        client = LiteLLMClient(api_key="sk-test", base_url="https://api.deepseek.com", timeout=30.0)
        with patch("litellm.acompletion", new_callable=AsyncMock, return_value=_completion()) as mock_call:
            result = await client.complete({"model": "deepseek-chat", "messages": [], "stream": True})

        assert result["choices"][0]["message"]["content"] == "hi"
        kwargs = mock_call.call_args.kwargs
        assert kwargs["model"] == "deepseek-chat"
        assert kwargs["custom_llm_provider"] == "openai"
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["api_base"] == "https://api.deepseek.com"
        assert kwargs["timeout"] == 30.0
        assert kwargs["stream"] is False

    async def test_omits_missing_key_and_base(self) -> None:
        with patch("litellm.acompletion", new_callable=AsyncMock, return_value=_completion()) as mock_call:
            await LiteLLMClient().complete({"model": "llama3", "messages": []})

        kwargs = mock_call.call_args.kwargs
        assert "api_key" not in kwargs
        assert "api_base" not in kwargs

    async def test_converts_pydantic_response(self) -> None:
        response = MagicMock()
        response.model_dump.return_value = _completion()
        with patch("litellm.acompletion", new_callable=AsyncMock, return_value=response):
            result = await LiteLLMClient().complete({"model": "gpt-4o", "messages": []})
        assert result["id"] == "chatcmpl-1"


class TestStream:
    async def test_yields_dict_chunks(self) -> None:
        chunk = MagicMock()
        chunk.model_dump.return_value = {"id": "c1", "choices": [{"index": 0, "delta": {"content": "x"}}]}

        async def _chunks() -> AsyncIterator[Any]:
            yield chunk
            yield {"id": "c1", "choices": [], "usage": {"prompt_tokens": 1, "completion_tokens": 1}}

        with patch("litellm.acompletion", new_callable=AsyncMock, return_value=_chunks()) as mock_call:
            chunks = [c async for c in LiteLLMClient().stream({"model": "gpt-4o", "messages": []})]

        assert chunks[0]["choices"][0]["delta"] == {"content": "x"}
        assert chunks[1]["usage"]["prompt_tokens"] == 1
        kwargs = mock_call.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["stream_options"] == {"include_usage": True}
