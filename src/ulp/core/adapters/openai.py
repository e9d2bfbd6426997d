"""OpenAI-compatible adapters — OpenAI, DeepSeek and Ollama.

The downstream contract *is* Chat Completions, so requests pass through with
only the staged edits applied, responses are forwarded unchanged, and text
chunks are re-emitted verbatim. Tool-call deltas are accumulated and held
back for replay.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from functools import partial
from typing import Any

from ulp.core.adapters.base import (
    BaseRequestAdapter,
    BaseResponseAdapter,
    BaseStreamAdapter,
    format_sse,
    normalize_error,
    parse_arguments,
)
from ulp.core.clients.litellm_client import LiteLLMClient
from ulp.core.clients.mock import MockClient
from ulp.core.interface.models import CanonicalToolCall, UsageView
from ulp.core.providers.factory import ClientOptions, ProviderFactory, bearer_api_key

# =============================================================================
# REQUEST ADAPTER
# =============================================================================


class OpenAIRequestAdapter(BaseRequestAdapter):
    """Chat Completions in, Chat Completions out."""

    def __init__(self, request: dict[str, Any], *, provider: str = "openai", **kwargs: Any) -> None:
        super().__init__(request, **kwargs)
        self.provider = provider

    def render_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return messages

    def render(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        return {**self._request, "model": self.get_model(), "messages": messages}


# =============================================================================
# RESPONSE ADAPTER
# =============================================================================


class OpenAIResponseAdapter(BaseResponseAdapter):
    def __init__(self, response: dict[str, Any], *, provider: str = "openai") -> None:
        super().__init__(response)
        self.provider = provider

    def _message(self) -> dict[str, Any]:
        choices = self._response.get("choices") or []
        if not choices:
            return {}
        message: dict[str, Any] = choices[0].get("message") or {}
        return message

    def get_id(self) -> str:
        return str(self._response.get("id") or "unknown")

    def get_model(self) -> str:
        return str(self._response.get("model") or "unknown")

    def get_text(self) -> str:
        return self._message().get("content") or ""

    def get_tool_calls(self) -> list[CanonicalToolCall]:
        calls: list[CanonicalToolCall] = []
        for tool_call in self._message().get("tool_calls") or []:
            kind = tool_call.get("type", "function")
            if kind == "function" and tool_call.get("function"):
                name = tool_call["function"].get("name", "unknown")
                arguments = parse_arguments(tool_call["function"].get("arguments"))
            elif kind == "custom" and tool_call.get("custom"):
                name = tool_call["custom"].get("name", "unknown")
                arguments = parse_arguments(tool_call["custom"].get("input"))
            else:
                name, arguments = "unknown", {}
            calls.append(CanonicalToolCall(id=tool_call.get("id", ""), name=name, arguments=arguments))
        return calls

    def get_usage(self) -> UsageView:
        usage = self._response.get("usage") or {}
        return UsageView(
            input_tokens=usage.get("prompt_tokens") or 0,
            output_tokens=usage.get("completion_tokens") or 0,
        )

    def get_finish_reason(self) -> str:
        choices = self._response.get("choices") or []
        return (choices[0].get("finish_reason") if choices else None) or "stop"

    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        choices = self._response.get("choices") or [{"index": 0}]
        return {
            **self._response,
            "choices": [
                {
                    **choices[0],
                    "message": {"role": "assistant", "content": content_message, "refusal": None},
                    "finish_reason": "stop",
                }
            ],
        }

    def to_downstream_response(self) -> dict[str, Any]:
        return self._response


# =============================================================================
# STREAM ADAPTER
# =============================================================================


class OpenAIStreamAdapter(BaseStreamAdapter):
    """Accumulates Chat Completions chunks.

    The stream is logically finished once both a finish reason and a usage
    payload have been seen, whichever arrives last.
    """

    def __init__(self, *, provider: str = "openai") -> None:
        super().__init__()
        self.provider = provider

    def _consume(self, chunk: dict[str, Any]) -> tuple[str | None, bool]:
        self.state.response_id = chunk.get("id") or self.state.response_id
        self.state.model = chunk.get("model") or self.state.model

        usage = chunk.get("usage")
        if usage:
            self.state.usage = UsageView(
                input_tokens=usage.get("prompt_tokens") or 0,
                output_tokens=usage.get("completion_tokens") or 0,
            )

        choices = chunk.get("choices") or []
        if not choices:
            return None, False

        choice = choices[0]
        delta = choice.get("delta") or {}
        sse_data: str | None = None
        is_tool_call_chunk = False

        if delta.get("content"):
            self.state.text += delta["content"]
            sse_data = format_sse(chunk)

        if delta.get("tool_calls"):
            for tool_call_delta in delta["tool_calls"]:
                function = tool_call_delta.get("function") or {}
                self._append_tool_delta(
                    tool_call_delta.get("index", 0),
                    tool_call_id=tool_call_delta.get("id"),
                    name=function.get("name"),
                    arguments=function.get("arguments"),
                )
            self.state.raw_tool_call_events.append(chunk)
            is_tool_call_chunk = True

        if choice.get("finish_reason"):
            self.state.stop_reason = choice["finish_reason"]

        return sse_data, is_tool_call_chunk

    def to_provider_response(self) -> dict[str, Any]:
        tool_calls = [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.name, "arguments": tc.arguments},
            }
            for tc in self.state.tool_calls
        ]
        message: dict[str, Any] = {
            "role": "assistant",
            "content": self.state.text or None,
            "refusal": None,
        }
        if tool_calls:
            message["tool_calls"] = tool_calls
        usage = self.state.usage or UsageView()
        return {
            "id": self.state.response_id,
            "object": "chat.completion",
            "created": int(time.time()),
            "model": self.state.model,
            "choices": [
                {
                    "index": 0,
                    "message": message,
                    "logprobs": None,
                    "finish_reason": self.state.stop_reason or "stop",
                }
            ],
            "usage": {
                "prompt_tokens": usage.input_tokens,
                "completion_tokens": usage.output_tokens,
                "total_tokens": usage.total_tokens,
            },
        }


# =============================================================================
# ERRORS, CLIENT, EXECUTION
# =============================================================================


def extract_error_message(error: Any) -> str:
    return normalize_error(error, ("error.message", "message"))


def _mock_payloads(provider: str) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    response_id = f"chatcmpl-mock-{provider}"
    model = f"{provider}-mock"
    response = {
        "id": response_id,
        "object": "chat.completion",
        "created": 0,
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "Hello from the mock upstream.", "refusal": None},
                "logprobs": None,
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 12, "completion_tokens": 6, "total_tokens": 18},
    }
    base = {"id": response_id, "object": "chat.completion.chunk", "created": 0, "model": model}
    chunks = [
        {**base, "choices": [{"index": 0, "delta": {"role": "assistant", "content": "Hello"}, "finish_reason": None}]},
        {**base, "choices": [{"index": 0, "delta": {"content": " from the mock upstream."}, "finish_reason": None}]},
        {**base, "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]},
        {**base, "choices": [], "usage": {"prompt_tokens": 12, "completion_tokens": 6, "total_tokens": 18}},
    ]
    return response, chunks


def _create_client(
    provider: str, default_base_url: str | None, api_key: str | None, options: ClientOptions | None
) -> LiteLLMClient | MockClient:
    options = options or ClientOptions()
    if options.mock_mode:
        return MockClient(*_mock_payloads(provider))
    return LiteLLMClient(
        api_key=api_key,
        base_url=options.base_url or default_base_url,
        timeout=options.timeout,
    )


async def execute(client: LiteLLMClient | MockClient, request: dict[str, Any]) -> dict[str, Any]:
    return await client.complete({**request, "stream": False})


async def execute_stream(
    client: LiteLLMClient | MockClient, request: dict[str, Any]
) -> AsyncIterator[dict[str, Any]]:
    return client.stream({**request, "stream": True})


# =============================================================================
# ADAPTER FACTORIES
# =============================================================================


def _openai_compatible_factory(provider: str, base_url: str | None) -> ProviderFactory:
    return ProviderFactory(
        provider=provider,
        interaction_type=f"{provider}:chatCompletions",
        tokenizer_family="openai",
        base_url=base_url,
        span_name=f"{provider}.chat.completions",
        create_request_adapter=partial(OpenAIRequestAdapter, provider=provider),
        create_response_adapter=partial(OpenAIResponseAdapter, provider=provider),
        create_stream_adapter=partial(OpenAIStreamAdapter, provider=provider),
        extract_api_key=bearer_api_key,
        create_client=partial(_create_client, provider, base_url),
        execute=execute,
        execute_stream=execute_stream,
        extract_error_message=extract_error_message,
    )


openai_factory = _openai_compatible_factory("openai", None)
deepseek_factory = _openai_compatible_factory("deepseek", "https://api.deepseek.com")
ollama_factory = _openai_compatible_factory("ollama", "http://localhost:11434/v1")
