"""Anthropic adapters — Chat Completions to and from the Messages API.

Key differences from Chat Completions:
- System messages become a separate top-level ``system`` parameter.
- Messages must strictly alternate between user and assistant roles, so
  consecutive same-role messages are merged.
- Tool results are user messages with ``tool_result`` content blocks.
- Streaming is a typed event grammar (``message_start``,
  ``content_block_*``, ``message_delta``, ``message_stop``) instead of
  uniform deltas.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from ulp.core.adapters.base import (
    BaseRequestAdapter,
    BaseResponseAdapter,
    BaseStreamAdapter,
    content_text,
    normalize_error,
    parse_arguments,
)
from ulp.core.clients.http_client import HttpProviderClient
from ulp.core.clients.mock import MockClient
from ulp.core.errors import UpstreamError
from ulp.core.interface.models import CanonicalToolCall, UsageView
from ulp.core.policy.images import parse_data_url
from ulp.core.providers.factory import ClientOptions, ProviderFactory, header_api_key

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096

_FINISH_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "pause_turn": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
    "refusal": "content_filter",
}


def to_downstream_finish_reason(stop_reason: str | None) -> str:
    return _FINISH_REASONS.get(stop_reason or "", "stop")


# =============================================================================
# REQUEST ADAPTER
# =============================================================================


def _image_block(url: str) -> dict[str, Any]:
    parsed = parse_data_url(url)
    if parsed is not None:
        media_type, data = parsed
        return {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}}
    return {"type": "image", "source": {"type": "url", "url": url}}


def _content_blocks(content: Any) -> str | list[dict[str, Any]]:
    """Convert Chat Completions content to Anthropic content."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    blocks: list[dict[str, Any]] = []
    for part in content:
        kind = part.get("type")
        if kind == "text":
            blocks.append({"type": "text", "text": part.get("text", "")})
        elif kind == "image_url":
            blocks.append(_image_block((part.get("image_url") or {}).get("url", "")))
    return blocks


def _merge_consecutive_roles(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Merge consecutive messages with the same role.

    Anthropic requires strict user/assistant alternation. When multiple
    consecutive messages share a role, their content is merged into one message.
    """
    merged: list[dict[str, Any]] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            merged[-1] = {**merged[-1], "content": _merge_content(merged[-1]["content"], msg["content"])}
        else:
            merged.append(msg)
    return merged


def _merge_content(
    existing: str | list[dict[str, Any]], new: str | list[dict[str, Any]]
) -> list[dict[str, Any]]:
    result: list[dict[str, Any]] = []
    for item in (existing, new):
        if isinstance(item, str):
            if item:
                result.append({"type": "text", "text": item})
        else:
            result.extend(item)
    return result


def _tool_choice(choice: Any) -> dict[str, Any] | None:
    if choice is None:
        return None
    if choice == "auto":
        return {"type": "auto"}
    if choice == "required":
        return {"type": "any"}
    if choice == "none":
        return {"type": "none"}
    if isinstance(choice, dict) and choice.get("type") == "function":
        return {"type": "tool", "name": (choice.get("function") or {}).get("name", "")}
    return None


class AnthropicRequestAdapter(BaseRequestAdapter):
    """Renders Chat Completions requests as Messages API requests."""

    provider = "anthropic"
    tokenizer_family = "anthropic"

    def _message_to_anthropic(self, msg: dict[str, Any]) -> dict[str, Any]:
        role = msg.get("role")
        if role == "tool":
            return {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": msg.get("tool_call_id", ""),
                        "content": _content_blocks(msg.get("content")),
                    }
                ],
            }

        if role == "assistant":
            blocks: list[dict[str, Any]] = []
            text = content_text(msg.get("content"))
            if text:
                blocks.append({"type": "text", "text": text})
            for tc in msg.get("tool_calls") or []:
                function = tc.get("function") or {}
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": tc.get("id", ""),
                        "name": function.get("name", ""),
                        "input": parse_arguments(function.get("arguments")),
                    }
                )
            return {"role": "assistant", "content": blocks}

        return {"role": "user", "content": _content_blocks(msg.get("content"))}

    def render_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        converted = [
            self._message_to_anthropic(m) for m in messages if m.get("role") not in ("system", "developer")
        ]
        return _merge_consecutive_roles(converted)

    def render(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        request = self._request
        result: dict[str, Any] = {
            "model": self.get_model(),
            "max_tokens": request.get("max_tokens") or request.get("max_completion_tokens") or DEFAULT_MAX_TOKENS,
            "messages": self.render_messages(messages),
        }

        system_parts = [
            content_text(m.get("content")) for m in messages if m.get("role") in ("system", "developer")
        ]
        if system_parts:
            result["system"] = "\n\n".join(system_parts)

        if self.has_tools():
            result["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description or "",
                    "input_schema": tool.input_schema or {"type": "object", "properties": {}},
                }
                for tool in self.get_tools()
            ]
        tool_choice = _tool_choice(request.get("tool_choice"))
        if tool_choice is not None:
            result["tool_choice"] = tool_choice

        for src, dst in (("temperature", "temperature"), ("top_p", "top_p")):
            if request.get(src) is not None:
                result[dst] = request[src]
        stop = request.get("stop")
        if stop:
            result["stop_sequences"] = [stop] if isinstance(stop, str) else list(stop)
        if self.is_streaming():
            result["stream"] = True
        return result


# =============================================================================
# RESPONSE ADAPTER
# =============================================================================


class AnthropicResponseAdapter(BaseResponseAdapter):
    provider = "anthropic"

    def _blocks(self) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = self._response.get("content") or []
        return blocks

    def get_id(self) -> str:
        return str(self._response.get("id") or "unknown")

    def get_model(self) -> str:
        return str(self._response.get("model") or "anthropic-model")

    def get_text(self) -> str:
        return "".join(b.get("text", "") for b in self._blocks() if b.get("type") == "text")

    def get_tool_calls(self) -> list[CanonicalToolCall]:
        return [
            CanonicalToolCall(
                id=b.get("id", ""),
                name=b.get("name", "unknown"),
                arguments=parse_arguments(b.get("input")),
            )
            for b in self._blocks()
            if b.get("type") == "tool_use"
        ]

    def get_usage(self) -> UsageView:
        usage = self._response.get("usage") or {}
        return UsageView(
            input_tokens=usage.get("input_tokens") or 0,
            output_tokens=usage.get("output_tokens") or 0,
        )

    def get_finish_reason(self) -> str:
        return to_downstream_finish_reason(self._response.get("stop_reason"))

    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        return {
            **self._response,
            "content": [{"type": "text", "text": content_message}],
            "stop_reason": "end_turn",
            "stop_sequence": None,
        }


# =============================================================================
# STREAM ADAPTER
# =============================================================================


class AnthropicStreamAdapter(BaseStreamAdapter):
    """Accumulates Messages API stream events.

    The stream is logically finished on ``message_stop``, or earlier once the
    ``message_delta`` carrying both stop reason and usage has arrived.
    """

    provider = "anthropic"

    def __init__(self) -> None:
        super().__init__()
        self._input_tokens = 0
        self._message_stopped = False

    def _is_terminal(self) -> bool:
        return self._message_stopped or super()._is_terminal()

    def _consume(self, chunk: dict[str, Any]) -> tuple[str | None, bool]:
        event_type = chunk.get("type")

        if event_type == "message_start":
            message = chunk.get("message") or {}
            self.state.response_id = message.get("id") or self.state.response_id
            self.state.model = message.get("model") or self.state.model
            self._input_tokens = (message.get("usage") or {}).get("input_tokens") or 0
            return None, False

        if event_type == "content_block_start":
            block = chunk.get("content_block") or {}
            if block.get("type") == "tool_use":
                self._append_tool_delta(
                    chunk.get("index", 0),
                    tool_call_id=block.get("id"),
                    name=block.get("name"),
                )
                self.state.raw_tool_call_events.append(chunk)
                return None, True
            if block.get("type") == "text" and block.get("text"):
                self.state.text += block["text"]
                return self.format_text_delta_sse(block["text"]), False
            return None, False

        if event_type == "content_block_delta":
            delta = chunk.get("delta") or {}
            if delta.get("type") == "text_delta" and delta.get("text"):
                self.state.text += delta["text"]
                return self.format_text_delta_sse(delta["text"]), False
            if delta.get("type") == "input_json_delta":
                self._append_tool_delta(chunk.get("index", 0), arguments=delta.get("partial_json"))
                self.state.raw_tool_call_events.append(chunk)
                return None, True
            return None, False

        if event_type == "message_delta":
            delta = chunk.get("delta") or {}
            if delta.get("stop_reason"):
                self.state.stop_reason = delta["stop_reason"]
            usage = chunk.get("usage")
            if usage:
                self.state.usage = UsageView(
                    input_tokens=usage.get("input_tokens") or self._input_tokens,
                    output_tokens=usage.get("output_tokens") or 0,
                )
            return None, False

        if event_type == "message_stop":
            self._message_stopped = True
            return None, False

        if event_type == "error":
            error = chunk.get("error") or {}
            raise UpstreamError(error.get("message") or "Anthropic stream error", body=chunk)

        return None, False

    def downstream_finish_reason(self) -> str:
        return to_downstream_finish_reason(self.state.stop_reason)

    def _raw_event_to_chunk(self, event: Any) -> Any:
        slot = self._slot_for(event.get("index", 0))
        if event.get("type") == "content_block_start":
            block = event.get("content_block") or {}
            return self._tool_call_chunk(slot, tool_call_id=block.get("id"), name=block.get("name"))
        return self._tool_call_chunk(slot, arguments=(event.get("delta") or {}).get("partial_json", ""))

    def to_provider_response(self) -> dict[str, Any]:
        content: list[dict[str, Any]] = []
        if self.state.text:
            content.append({"type": "text", "text": self.state.text})
        for tc in self.state.tool_calls:
            content.append(
                {"type": "tool_use", "id": tc.id, "name": tc.name, "input": parse_arguments(tc.arguments)}
            )
        usage = self.state.usage or UsageView(input_tokens=self._input_tokens)
        return {
            "id": self.state.response_id,
            "type": "message",
            "role": "assistant",
            "model": self.state.model,
            "content": content,
            "stop_reason": self.state.stop_reason or "end_turn",
            "stop_sequence": None,
            "usage": {"input_tokens": usage.input_tokens, "output_tokens": usage.output_tokens},
        }


# =============================================================================
# ERRORS, CLIENT, EXECUTION
# =============================================================================


def extract_error_message(error: Any) -> str:
    return normalize_error(error, ("error.message",))


def _mock_payloads() -> tuple[dict[str, Any], list[dict[str, Any]]]:
    response = {
        "id": "msg_mock",
        "type": "message",
        "role": "assistant",
        "model": "claude-mock",
        "content": [{"type": "text", "text": "Hello from the mock upstream."}],
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 12, "output_tokens": 6},
    }
    chunks: list[dict[str, Any]] = [
        {
            "type": "message_start",
            "message": {**response, "content": [], "stop_reason": None, "usage": {"input_tokens": 12, "output_tokens": 1}},
        },
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hello"}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": " from the mock upstream."}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn", "stop_sequence": None}, "usage": {"output_tokens": 6}},
        {"type": "message_stop"},
    ]
    return response, chunks


def create_client(api_key: str | None, options: ClientOptions | None = None) -> HttpProviderClient | MockClient:
    options = options or ClientOptions()
    if options.mock_mode:
        return MockClient(*_mock_payloads())
    headers = {"anthropic-version": ANTHROPIC_VERSION}
    if api_key:
        headers["x-api-key"] = api_key
    return HttpProviderClient(
        base_url=options.base_url or ANTHROPIC_BASE_URL,
        headers=headers,
        timeout=options.timeout,
    )


async def execute(client: HttpProviderClient | MockClient, request: dict[str, Any]) -> dict[str, Any]:
    body = {k: v for k, v in request.items() if k != "stream"}
    return await client.post_json("/messages", body)


async def execute_stream(
    client: HttpProviderClient | MockClient, request: dict[str, Any]
) -> AsyncIterator[dict[str, Any]]:
    return client.stream_events("/messages", {**request, "stream": True})


anthropic_factory = ProviderFactory(
    provider="anthropic",
    interaction_type="anthropic:messages",
    tokenizer_family="anthropic",
    base_url=ANTHROPIC_BASE_URL,
    span_name="anthropic.messages",
    create_request_adapter=AnthropicRequestAdapter,
    create_response_adapter=AnthropicResponseAdapter,
    create_stream_adapter=AnthropicStreamAdapter,
    extract_api_key=header_api_key("x-api-key"),
    create_client=create_client,
    execute=execute,
    execute_stream=execute_stream,
    extract_error_message=extract_error_message,
)

