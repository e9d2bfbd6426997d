"""Cohere adapters — Chat Completions to and from the v1 Chat API.

The v1 Chat API is turn-oriented rather than list-oriented: the newest user
turn travels as ``message``, earlier turns as ``chat_history`` (roles
``USER``/``CHATBOT``/``SYSTEM``/``TOOL``), system prompts as ``preamble``, and
results for the tool calls of the newest assistant turn as ``tool_results``.
Streaming uses newline-delimited JSON events.
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
    normalize_error,
    parse_arguments,
    parse_tool_content,
)
from ulp.core.clients.http_client import HttpProviderClient
from ulp.core.clients.mock import MockClient
from ulp.core.interface.models import CanonicalToolCall, UsageView
from ulp.core.policy.images import images_removed_placeholder
from ulp.core.providers.factory import ClientOptions, ProviderFactory, bearer_api_key

COHERE_BASE_URL = "https://api.cohere.com/v1"
PLACEHOLDER_MODEL = "cohere-model"

_JSON_SCHEMA_TYPES = {
    "string": "str",
    "integer": "int",
    "number": "float",
    "boolean": "bool",
    "array": "list",
    "object": "dict",
}


def to_downstream_finish_reason(finish_reason: str | None, has_tool_calls: bool) -> str:
    if finish_reason in ("MAX_TOKENS", "ERROR_LIMIT"):
        return "length"
    if finish_reason == "ERROR_TOXIC":
        return "content_filter"
    if has_tool_calls:
        return "tool_calls"
    return "stop"


def synthetic_call_id(generation_id: str | None, position: int) -> str:
    return f"call_{generation_id or 'cohere'}_{position}"


def _usage(meta: dict[str, Any] | None) -> UsageView:
    meta = meta or {}
    tokens = meta.get("tokens") or meta.get("billed_units") or {}
    return UsageView(
        input_tokens=int(tokens.get("input_tokens") or 0),
        output_tokens=int(tokens.get("output_tokens") or 0),
    )


# =============================================================================
# REQUEST ADAPTER
# =============================================================================


def _parameter_definitions(schema: dict[str, Any]) -> dict[str, Any]:
    required = set(schema.get("required") or [])
    definitions: dict[str, Any] = {}
    for name, prop in (schema.get("properties") or {}).items():
        definition: dict[str, Any] = {
            "type": _JSON_SCHEMA_TYPES.get(prop.get("type"), "str"),
            "required": name in required,
        }
        if prop.get("description"):
            definition["description"] = prop["description"]
        definitions[name] = definition
    return definitions


def _tool_outputs(content: Any) -> list[dict[str, Any]]:
    if isinstance(content, list):
        # v1 tool outputs carry no image parts
        images = sum(1 for block in content if isinstance(block, dict) and block.get("type") == "image_url")
        text = content_text(content)
        if images:
            text = "\n".join(filter(None, [images_removed_placeholder(images), text]))
        content = text
    parsed = parse_tool_content(content)
    if isinstance(parsed, dict):
        return [parsed]
    if isinstance(parsed, list) and parsed and all(isinstance(item, dict) for item in parsed):
        return parsed
    return [{"result": parsed}]


class CohereRequestAdapter(BaseRequestAdapter):
    """Renders Chat Completions requests as v1 Chat requests."""

    provider = "cohere"
    tokenizer_family = "cohere"

    @staticmethod
    def _calls_by_id(messages: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
        calls: dict[str, dict[str, Any]] = {}
        for msg in messages:
            for tc in msg.get("tool_calls") or []:
                function = tc.get("function") or {}
                calls[tc.get("id", "")] = {
                    "name": function.get("name", UNKNOWN_TOOL_NAME),
                    "parameters": parse_arguments(function.get("arguments")),
                }
        return calls

    def _tool_result(self, msg: dict[str, Any], calls: dict[str, dict[str, Any]]) -> dict[str, Any]:
        call = calls.get(msg.get("tool_call_id", ""), {"name": UNKNOWN_TOOL_NAME, "parameters": {}})
        return {"call": call, "outputs": _tool_outputs(msg.get("content"))}

    def _split_turns(
        self, messages: list[dict[str, Any]]
    ) -> tuple[list[dict[str, Any]], str, list[dict[str, Any]]]:
        """Split the conversation into history, current message and pending tool results."""
        turns = [m for m in messages if m.get("role") not in ("system", "developer")]
        calls = self._calls_by_id(turns)

        pending: list[dict[str, Any]] = []
        while turns and turns[-1].get("role") == "tool":
            pending.insert(0, self._tool_result(turns.pop(), calls))

        message = ""
        if not pending and turns and turns[-1].get("role") == "user":
            message = content_text(turns.pop().get("content"))

        history: list[dict[str, Any]] = []
        for msg in turns:
            role = msg.get("role")
            if role == "assistant":
                entry: dict[str, Any] = {"role": "CHATBOT", "message": content_text(msg.get("content"))}
                tool_calls = [
                    calls[tc.get("id", "")] for tc in msg.get("tool_calls") or [] if tc.get("id", "") in calls
                ]
                if tool_calls:
                    entry["tool_calls"] = tool_calls
                history.append(entry)
            elif role == "tool":
                result = self._tool_result(msg, calls)
                if history and history[-1]["role"] == "TOOL":
                    history[-1]["tool_results"].append(result)
                else:
                    history.append({"role": "TOOL", "tool_results": [result]})
            else:
                history.append({"role": "USER", "message": content_text(msg.get("content"))})
        return history, message, pending

    def render_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        history, message, pending = self._split_turns(messages)
        if pending:
            history.append({"role": "TOOL", "tool_results": pending})
        if message:
            history.append({"role": "USER", "message": message})
        return history

    def render(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        request = self._request
        history, message, pending = self._split_turns(messages)
        result: dict[str, Any] = {
            "model": self.get_model(),
            "message": message,
            "chat_history": history,
        }

        system_parts = [
            content_text(m.get("content")) for m in messages if m.get("role") in ("system", "developer")
        ]
        if system_parts:
            result["preamble"] = "\n\n".join(system_parts)
        if pending:
            result["tool_results"] = pending

        if self.has_tools():
            result["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description or "",
                    "parameter_definitions": _parameter_definitions(tool.input_schema),
                }
                for tool in self.get_tools()
            ]

        for src, dst in (
            ("temperature", "temperature"),
            ("top_p", "p"),
            ("max_tokens", "max_tokens"),
            ("seed", "seed"),
            ("frequency_penalty", "frequency_penalty"),
            ("presence_penalty", "presence_penalty"),
        ):
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


class CohereResponseAdapter(BaseResponseAdapter):
    provider = "cohere"

    def get_id(self) -> str:
        return str(self._response.get("generation_id") or self._response.get("response_id") or "unknown")

    def get_model(self) -> str:
        return PLACEHOLDER_MODEL

    def get_text(self) -> str:
        return self._response.get("text") or ""

    def get_tool_calls(self) -> list[CanonicalToolCall]:
        generation_id = self._response.get("generation_id")
        return [
            CanonicalToolCall(
                id=synthetic_call_id(generation_id, i),
                name=call.get("name", UNKNOWN_TOOL_NAME),
                arguments=call.get("parameters") or {},
            )
            for i, call in enumerate(self._response.get("tool_calls") or [])
        ]

    def get_usage(self) -> UsageView:
        return _usage(self._response.get("meta"))

    def get_finish_reason(self) -> str:
        return to_downstream_finish_reason(self._response.get("finish_reason"), self.has_tool_calls())

    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        return {
            **self._response,
            "text": content_message,
            "tool_calls": [],
            "finish_reason": "COMPLETE",
        }


# =============================================================================
# STREAM ADAPTER
# =============================================================================


class CohereStreamAdapter(BaseStreamAdapter):
    """Accumulates v1 Chat stream events; finished on ``stream-end``.

    Tool calls arrive either incrementally (``tool-calls-chunk``) or whole
    (``tool-calls-generation``). When both are sent, the whole form is only
    used if no incremental slots were built.
    """

    provider = "cohere"

    def __init__(self) -> None:
        super().__init__()
        self.state.model = PLACEHOLDER_MODEL
        self._ended = False

    def _is_terminal(self) -> bool:
        return self._ended

    def _consume(self, chunk: dict[str, Any]) -> tuple[str | None, bool]:
        event_type = chunk.get("event_type")

        if event_type == "stream-start":
            self.state.response_id = chunk.get("generation_id") or self.state.response_id
            return None, False

        if event_type == "text-generation":
            text = chunk.get("text") or ""
            if not text:
                return None, False
            self.state.text += text
            return self.format_text_delta_sse(text), False

        if event_type == "tool-calls-chunk":
            delta = chunk.get("tool_call_delta")
            if not delta:
                return None, False
            index = delta.get("index", 0)
            self._append_tool_delta(
                index,
                tool_call_id=synthetic_call_id(self.state.response_id, index),
                name=delta.get("name"),
                arguments=delta.get("parameters"),
            )
            self.state.raw_tool_call_events.append(chunk)
            return None, True

        if event_type == "tool-calls-generation":
            if self.state.tool_calls:
                return None, False
            for position, call in enumerate(chunk.get("tool_calls") or []):
                tool_call_id = synthetic_call_id(self.state.response_id, position)
                arguments = json.dumps(call.get("parameters") or {})
                self._append_tool_delta(
                    position,
                    tool_call_id=tool_call_id,
                    name=call.get("name") or UNKNOWN_TOOL_NAME,
                    arguments=arguments,
                )
                self.state.raw_tool_call_events.append(
                    {"slot": position, "id": tool_call_id, "name": call.get("name"), "arguments": arguments}
                )
            return None, bool(self.state.tool_calls)

        if event_type == "stream-end":
            self._ended = True
            self.state.stop_reason = chunk.get("finish_reason") or "COMPLETE"
            response = chunk.get("response") or {}
            self.state.response_id = response.get("generation_id") or self.state.response_id
            self.state.usage = _usage(response.get("meta"))
            return None, False

        return None, False

    def downstream_finish_reason(self) -> str:
        return to_downstream_finish_reason(self.state.stop_reason, bool(self.state.tool_calls))

    def _raw_event_to_chunk(self, event: Any) -> Any:
        if "slot" in event:
            return self._tool_call_chunk(
                event["slot"],
                tool_call_id=event["id"],
                name=event.get("name") or UNKNOWN_TOOL_NAME,
                arguments=event["arguments"],
            )
        delta = event["tool_call_delta"]
        index = delta.get("index", 0)
        name = delta.get("name")
        return self._tool_call_chunk(
            self._slot_for(index),
            tool_call_id=synthetic_call_id(self.state.response_id, index) if name else None,
            name=name,
            arguments=delta.get("parameters") or "",
        )

    def to_provider_response(self) -> dict[str, Any]:
        usage = self.state.usage or UsageView()
        return {
            "response_id": self.state.response_id,
            "generation_id": self.state.response_id,
            "text": self.state.text,
            "tool_calls": [
                {"name": tc.name, "parameters": parse_arguments(tc.arguments)} for tc in self.state.tool_calls
            ],
            "finish_reason": self.state.stop_reason or "COMPLETE",
            "meta": {
                "tokens": {"input_tokens": usage.input_tokens, "output_tokens": usage.output_tokens},
            },
        }


# =============================================================================
# ERRORS, CLIENT, EXECUTION
# =============================================================================


def extract_error_message(error: Any) -> str:
    return normalize_error(error, ("message",))


def _mock_payloads() -> tuple[dict[str, Any], list[dict[str, Any]]]:
    meta = {"tokens": {"input_tokens": 12, "output_tokens": 6}}
    response = {
        "response_id": "cohere-mock",
        "generation_id": "cohere-mock",
        "text": "Hello from the mock upstream.",
        "finish_reason": "COMPLETE",
        "meta": meta,
    }
    chunks: list[dict[str, Any]] = [
        {"is_finished": False, "event_type": "stream-start", "generation_id": "cohere-mock"},
        {"is_finished": False, "event_type": "text-generation", "text": "Hello"},
        {"is_finished": False, "event_type": "text-generation", "text": " from the mock upstream."},
        {"is_finished": True, "event_type": "stream-end", "finish_reason": "COMPLETE", "response": response},
    ]
    return response, chunks


def create_client(api_key: str | None, options: ClientOptions | None = None) -> HttpProviderClient | MockClient:
    options = options or ClientOptions()
    if options.mock_mode:
        return MockClient(*_mock_payloads())
    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
    return HttpProviderClient(
        base_url=options.base_url or COHERE_BASE_URL,
        headers=headers,
        timeout=options.timeout,
        stream_format="ndjson",
    )


async def execute(client: HttpProviderClient | MockClient, request: dict[str, Any]) -> dict[str, Any]:
    body = {k: v for k, v in request.items() if k != "stream"}
    return await client.post_json("/chat", body)


async def execute_stream(
    client: HttpProviderClient | MockClient, request: dict[str, Any]
) -> AsyncIterator[dict[str, Any]]:
    return client.stream_events("/chat", {**request, "stream": True})


cohere_factory = ProviderFactory(
    provider="cohere",
    interaction_type="cohere:chat",
    tokenizer_family="cohere",
    base_url=COHERE_BASE_URL,
    span_name="cohere.chat",
    create_request_adapter=CohereRequestAdapter,
    create_response_adapter=CohereResponseAdapter,
    create_stream_adapter=CohereStreamAdapter,
    extract_api_key=bearer_api_key,
    create_client=create_client,
    execute=execute,
    execute_stream=execute_stream,
    extract_error_message=extract_error_message,
)
