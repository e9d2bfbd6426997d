"""Gemini adapters — Chat Completions to and from generateContent.

Gemini differs from Chat Completions in a few structural ways:
- The assistant role is ``model`` and every message is a list of ``parts``.
- System messages become a top-level ``systemInstruction``.
- Tool results are ``functionResponse`` parts keyed by function *name*, not
  call id, so the name is resolved from the preceding assistant turn.
- Function calls usually carry no id; a stable one is synthesized from the
  response id and the call's position.
- Streamed chunks are complete ``GenerateContentResponse`` objects.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

from ulp.core.adapters.base import (
    UNKNOWN_TOOL_NAME,
    BaseRequestAdapter,
    BaseResponseAdapter,
    BaseStreamAdapter,
    content_text,
    find_tool_name,
    normalize_error,
    parse_arguments,
    parse_tool_content,
)
from ulp.core.clients.http_client import HttpProviderClient
from ulp.core.clients.mock import MockClient
from ulp.core.interface.models import CanonicalToolCall, UsageView
from ulp.core.policy.images import parse_data_url
from ulp.core.providers.factory import ClientOptions, ProviderFactory, header_api_key

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

# JSON Schema keywords the Gemini function declaration schema rejects.
_UNSUPPORTED_SCHEMA_KEYS = frozenset({"$schema", "additionalProperties", "$id", "$ref", "definitions", "$defs"})

_BLOCKED_REASONS = frozenset(
    {"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII", "IMAGE_SAFETY"}
)


def to_downstream_finish_reason(finish_reason: str | None, has_tool_calls: bool) -> str:
    if finish_reason == "MAX_TOKENS":
        return "length"
    if finish_reason in _BLOCKED_REASONS:
        return "content_filter"
    if has_tool_calls:
        return "tool_calls"
    return "stop"


def synthetic_call_id(response_id: str | None, position: int) -> str:
    return f"call_{response_id or 'gemini'}_{position}"


# =============================================================================
# REQUEST ADAPTER
# =============================================================================


def _clean_schema(schema: Any) -> Any:
    if isinstance(schema, dict):
        return {k: _clean_schema(v) for k, v in schema.items() if k not in _UNSUPPORTED_SCHEMA_KEYS}
    if isinstance(schema, list):
        return [_clean_schema(item) for item in schema]
    return schema


def _image_part(url: str) -> dict[str, Any]:
    parsed = parse_data_url(url)
    if parsed is not None:
        mime_type, data = parsed
        return {"inlineData": {"mimeType": mime_type, "data": data}}
    return {"fileData": {"fileUri": url}}


def _user_parts(content: Any) -> list[dict[str, Any]]:
    if content is None:
        return []
    if isinstance(content, str):
        return [{"text": content}] if content else []
    parts: list[dict[str, Any]] = []
    for part in content:
        if part.get("type") == "text" and part.get("text"):
            parts.append({"text": part["text"]})
        elif part.get("type") == "image_url":
            parts.append(_image_part((part.get("image_url") or {}).get("url", "")))
    return parts


def _tool_result_parts(name: str, content: Any) -> list[dict[str, Any]]:
    """A functionResponse part, followed by any image blocks as inline parts."""
    parsed = parse_tool_content(content_text(content) if isinstance(content, list) else content)
    response = parsed if isinstance(parsed, dict) else {"content": parsed}
    parts: list[dict[str, Any]] = [{"functionResponse": {"name": name, "response": response}}]
    if isinstance(content, list):
        parts.extend(
            _image_part((block.get("image_url") or {}).get("url", ""))
            for block in content
            if isinstance(block, dict) and block.get("type") == "image_url"
        )
    return parts


def _merge_consecutive_roles(contents: list[dict[str, Any]]) -> list[dict[str, Any]]:
    merged: list[dict[str, Any]] = []
    for item in contents:
        if merged and merged[-1]["role"] == item["role"]:
            merged[-1] = {"role": item["role"], "parts": merged[-1]["parts"] + item["parts"]}
        else:
            merged.append(item)
    return merged


def _tool_config(choice: Any) -> dict[str, Any] | None:
    if choice == "auto":
        return {"functionCallingConfig": {"mode": "AUTO"}}
    if choice == "required":
        return {"functionCallingConfig": {"mode": "ANY"}}
    if choice == "none":
        return {"functionCallingConfig": {"mode": "NONE"}}
    if isinstance(choice, dict) and choice.get("type") == "function":
        name = (choice.get("function") or {}).get("name", "")
        return {"functionCallingConfig": {"mode": "ANY", "allowedFunctionNames": [name]}}
    return None


class GeminiRequestAdapter(BaseRequestAdapter):
    """Renders Chat Completions requests as generateContent requests.

    The rendered request keeps ``model`` (and ``stream``) as routing keys;
    :func:`execute` strips them and puts the model in the URL.
    """

    provider = "gemini"
    tokenizer_family = "gemini"

    def render_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        contents: list[dict[str, Any]] = []
        for msg in messages:
            role = msg.get("role")
            if role in ("system", "developer"):
                continue
            if role == "tool":
                name = find_tool_name(messages, msg.get("tool_call_id")) or UNKNOWN_TOOL_NAME
                contents.append({"role": "user", "parts": _tool_result_parts(name, msg.get("content"))})
            elif role == "assistant":
                parts: list[dict[str, Any]] = []
                text = content_text(msg.get("content"))
                if text:
                    parts.append({"text": text})
                for tc in msg.get("tool_calls") or []:
                    function = tc.get("function") or {}
                    parts.append(
                        {"functionCall": {"name": function.get("name", ""), "args": parse_arguments(function.get("arguments"))}}
                    )
                contents.append({"role": "model", "parts": parts})
            else:
                contents.append({"role": "user", "parts": _user_parts(msg.get("content"))})
        return _merge_consecutive_roles([c for c in contents if c["parts"]])

    def render(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        request = self._request
        result: dict[str, Any] = {
            "model": self.get_model(),
            "contents": self.render_messages(messages),
        }

        system_parts = [
            content_text(m.get("content")) for m in messages if m.get("role") in ("system", "developer")
        ]
        if system_parts:
            result["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_parts)}]}

        if self.has_tools():
            declarations = []
            for tool in self.get_tools():
                declaration: dict[str, Any] = {"name": tool.name, "description": tool.description or ""}
                if tool.input_schema:
                    declaration["parameters"] = _clean_schema(tool.input_schema)
                declarations.append(declaration)
            result["tools"] = [{"functionDeclarations": declarations}]
        tool_config = _tool_config(request.get("tool_choice"))
        if tool_config is not None:
            result["toolConfig"] = tool_config

        generation_config: dict[str, Any] = {}
        for src, dst in (
            ("temperature", "temperature"),
            ("top_p", "topP"),
            ("max_tokens", "maxOutputTokens"),
            ("max_completion_tokens", "maxOutputTokens"),
            ("n", "candidateCount"),
        ):
            if request.get(src) is not None:
                generation_config[dst] = request[src]
        stop = request.get("stop")
        if stop:
            generation_config["stopSequences"] = [stop] if isinstance(stop, str) else list(stop)
        if generation_config:
            result["generationConfig"] = generation_config

        if self.is_streaming():
            result["stream"] = True
        return result


# =============================================================================
# RESPONSE ADAPTER
# =============================================================================


class GeminiResponseAdapter(BaseResponseAdapter):
    provider = "gemini"

    def _candidate(self) -> dict[str, Any]:
        candidates = self._response.get("candidates") or []
        candidate: dict[str, Any] = candidates[0] if candidates else {}
        return candidate

    def _parts(self) -> list[dict[str, Any]]:
        parts: list[dict[str, Any]] = (self._candidate().get("content") or {}).get("parts") or []
        return parts

    def get_id(self) -> str:
        return str(self._response.get("responseId") or "unknown")

    def get_model(self) -> str:
        return str(self._response.get("modelVersion") or "gemini-model")

    def get_text(self) -> str:
        return "".join(p.get("text", "") for p in self._parts() if "text" in p and not p.get("thought"))

    def get_tool_calls(self) -> list[CanonicalToolCall]:
        response_id = self._response.get("responseId")
        calls = [p["functionCall"] for p in self._parts() if "functionCall" in p]
        return [
            CanonicalToolCall(
                id=call.get("id") or synthetic_call_id(response_id, i),
                name=call.get("name", UNKNOWN_TOOL_NAME),
                arguments=call.get("args") or {},
            )
            for i, call in enumerate(calls)
        ]

    def get_usage(self) -> UsageView:
        usage = self._response.get("usageMetadata") or {}
        return UsageView(
            input_tokens=usage.get("promptTokenCount") or 0,
            output_tokens=usage.get("candidatesTokenCount") or 0,
        )

    def get_finish_reason(self) -> str:
        return to_downstream_finish_reason(self._candidate().get("finishReason"), self.has_tool_calls())

    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        candidate = self._candidate()
        return {
            **self._response,
            "candidates": [
                {
                    **candidate,
                    "content": {"role": "model", "parts": [{"text": content_message}]},
                    "finishReason": "STOP",
                }
            ],
        }


# =============================================================================
# STREAM ADAPTER
# =============================================================================


class GeminiStreamAdapter(BaseStreamAdapter):
    """Accumulates streamGenerateContent chunks.

    Function calls arrive whole, so each one fills its own slot in a single
    append. The stream is logically finished on the first chunk carrying a
    ``finishReason``.
    """

    provider = "gemini"

    def _is_terminal(self) -> bool:
        return self.state.stop_reason is not None

    def _consume(self, chunk: dict[str, Any]) -> tuple[str | None, bool]:
        self.state.response_id = chunk.get("responseId") or self.state.response_id
        self.state.model = chunk.get("modelVersion") or self.state.model

        usage = chunk.get("usageMetadata")
        if usage:
            self.state.usage = UsageView(
                input_tokens=usage.get("promptTokenCount") or 0,
                output_tokens=usage.get("candidatesTokenCount") or 0,
            )

        candidates = chunk.get("candidates") or []
        if not candidates:
            return None, False
        candidate = candidates[0]

        text = ""
        is_tool_call_chunk = False
        for part in (candidate.get("content") or {}).get("parts") or []:
            if "functionCall" in part:
                call = part["functionCall"]
                slot = len(self.state.tool_calls)
                tool_call_id = call.get("id") or synthetic_call_id(self.state.response_id, slot)
                self._append_tool_delta(
                    slot,
                    tool_call_id=tool_call_id,
                    name=call.get("name") or UNKNOWN_TOOL_NAME,
                    arguments=json.dumps(call.get("args") or {}),
                )
                self.state.raw_tool_call_events.append({"slot": slot, "id": tool_call_id, "functionCall": call})
                is_tool_call_chunk = True
            elif "text" in part and not part.get("thought"):
                text += part["text"]

        if candidate.get("finishReason"):
            self.state.stop_reason = candidate["finishReason"]

        if text:
            self.state.text += text
            return self.format_text_delta_sse(text), is_tool_call_chunk
        return None, is_tool_call_chunk

    def downstream_finish_reason(self) -> str:
        return to_downstream_finish_reason(self.state.stop_reason, bool(self.state.tool_calls))

    def _raw_event_to_chunk(self, event: Any) -> Any:
        call = event["functionCall"]
        return self._tool_call_chunk(
            event["slot"],
            tool_call_id=event["id"],
            name=call.get("name") or UNKNOWN_TOOL_NAME,
            arguments=json.dumps(call.get("args") or {}),
        )

    def to_provider_response(self) -> dict[str, Any]:
        parts: list[dict[str, Any]] = []
        if self.state.text:
            parts.append({"text": self.state.text})
        for tc in self.state.tool_calls:
            parts.append({"functionCall": {"id": tc.id, "name": tc.name, "args": parse_arguments(tc.arguments)}})
        usage = self.state.usage or UsageView()
        return {
            "responseId": self.state.response_id,
            "modelVersion": self.state.model,
            "candidates": [
                {
                    "index": 0,
                    "content": {"role": "model", "parts": parts},
                    "finishReason": self.state.stop_reason or "STOP",
                }
            ],
            "usageMetadata": {
                "promptTokenCount": usage.input_tokens,
                "candidatesTokenCount": usage.output_tokens,
                "totalTokenCount": usage.total_tokens,
            },
        }


# =============================================================================
# ERRORS, CLIENT, EXECUTION
# =============================================================================


def extract_error_message(error: Any) -> str:
    return normalize_error(error, ("error.message",))


def _mock_payloads() -> tuple[dict[str, Any], list[dict[str, Any]]]:
    response = {
        "responseId": "gemini-mock",
        "modelVersion": "gemini-mock",
        "candidates": [
            {
                "index": 0,
                "content": {"role": "model", "parts": [{"text": "Hello from the mock upstream."}]},
                "finishReason": "STOP",
            }
        ],
        "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 6, "totalTokenCount": 18},
    }
    base = {"responseId": "gemini-mock", "modelVersion": "gemini-mock"}
    chunks: list[dict[str, Any]] = [
        {**base, "candidates": [{"index": 0, "content": {"role": "model", "parts": [{"text": "Hello"}]}}]},
        {
            **base,
            "candidates": [
                {
                    "index": 0,
                    "content": {"role": "model", "parts": [{"text": " from the mock upstream."}]},
                    "finishReason": "STOP",
                }
            ],
            "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 6, "totalTokenCount": 18},
        },
    ]
    return response, chunks


def create_client(api_key: str | None, options: ClientOptions | None = None) -> HttpProviderClient | MockClient:
    options = options or ClientOptions()
    if options.mock_mode:
        return MockClient(*_mock_payloads())
    headers = {"x-goog-api-key": api_key} if api_key else {}
    return HttpProviderClient(
        base_url=options.base_url or GEMINI_BASE_URL,
        headers=headers,
        timeout=options.timeout,
    )


def _split_route(request: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    body = {k: v for k, v in request.items() if k not in ("model", "stream")}
    model = str(request.get("model", ""))
    if model.startswith("models/"):
        model = model[len("models/"):]
    return model, body


async def execute(client: HttpProviderClient | MockClient, request: dict[str, Any]) -> dict[str, Any]:
    model, body = _split_route(request)
    return await client.post_json(f"/models/{model}:generateContent", body)


async def execute_stream(
    client: HttpProviderClient | MockClient, request: dict[str, Any]
) -> AsyncIterator[dict[str, Any]]:
    model, body = _split_route(request)
    return client.stream_events(f"/models/{model}:streamGenerateContent", body, params={"alt": "sse"})


gemini_factory = ProviderFactory(
    provider="gemini",
    interaction_type="gemini:generateContent",
    tokenizer_family="gemini",
    base_url=GEMINI_BASE_URL,
    span_name="gemini.generateContent",
    create_request_adapter=GeminiRequestAdapter,
    create_response_adapter=GeminiResponseAdapter,
    create_stream_adapter=GeminiStreamAdapter,
    extract_api_key=header_api_key("x-goog-api-key"),
    create_client=create_client,
    execute=execute,
    execute_stream=execute_stream,
    extract_error_message=extract_error_message,
)
