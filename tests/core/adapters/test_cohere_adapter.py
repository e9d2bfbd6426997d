"""Tests for the Cohere v1 Chat adapters."""

import json
from typing import Any

import pytest

from ulp.core.adapters.cohere import (
    PLACEHOLDER_MODEL,
    CohereRequestAdapter,
    CohereResponseAdapter,
    CohereStreamAdapter,
    cohere_factory,
)
from ulp.core.clients.http_client import HttpProviderClient
from ulp.core.clients.mock import MockClient
from ulp.core.errors import UpstreamError
from ulp.core.policy.registry_data import build_default_registry
from ulp.core.providers.factory import ClientOptions


def _data(fragment: str) -> dict[str, Any]:
    payload: dict[str, Any] = json.loads(fragment.split("\n\n")[0][len("data: "):])
    return payload


def _tool_request() -> dict[str, Any]:
    return {
        "model": "command-r-plus",
        "messages": [
            {"role": "system", "content": "Be precise."},
            {"role": "user", "content": "Stock price of ACME?"},
            {
                "role": "assistant",
                "content": "",
                "tool_calls": [
                    {"id": "call_x", "type": "function", "function": {"name": "quote", "arguments": '{"ticker":"ACME"}'}}
                ],
            },
            {"role": "tool", "tool_call_id": "call_x", "content": '{"price": 12.5}'},
        ],
    }


class TestCohereRequestAdapter:
    def test_simple_conversation(self) -> None:
        request = {
            "model": "command-r",
            "messages": [
                {"role": "system", "content": "Hi system"},
                {"role": "user", "content": "Hello"},
                {"role": "assistant", "content": "Hey"},
                {"role": "user", "content": "How are you?"},
            ],
            "temperature": 0.3,
            "top_p": 0.9,
        }
        result = CohereRequestAdapter(request).to_provider_request()
        assert result["model"] == "command-r"
        assert result["message"] == "How are you?"
        assert result["preamble"] == "Hi system"
        assert result["chat_history"] == [
            {"role": "USER", "message": "Hello"},
            {"role": "CHATBOT", "message": "Hey"},
        ]
        assert result["temperature"] == 0.3
        assert result["p"] == 0.9

    def test_trailing_tool_results(self) -> None:
        result = CohereRequestAdapter(_tool_request()).to_provider_request()
        assert result["message"] == ""
        assert result["tool_results"] == [
            {"call": {"name": "quote", "parameters": {"ticker": "ACME"}}, "outputs": [{"price": 12.5}]}
        ]
        assert result["chat_history"][-1] == {
            "role": "CHATBOT",
            "message": "",
            "tool_calls": [{"name": "quote", "parameters": {"ticker": "ACME"}}],
        }

    def test_earlier_tool_results_go_to_history(self) -> None:
        request = _tool_request()
        request["messages"] += [
            {"role": "assistant", "content": "It is 12.5"},
            {"role": "user", "content": "Thanks"},
        ]
        result = CohereRequestAdapter(request).to_provider_request()
        assert "tool_results" not in result
        assert result["message"] == "Thanks"
        assert {"role": "TOOL", "tool_results": [
            {"call": {"name": "quote", "parameters": {"ticker": "ACME"}}, "outputs": [{"price": 12.5}]}
        ]} in result["chat_history"]

    def test_text_tool_output_wrapped(self) -> None:
        request = _tool_request()
        request["messages"][3]["content"] = "twelve fifty"
        result = CohereRequestAdapter(request).to_provider_request()
        assert result["tool_results"][0]["outputs"] == [{"result": "twelve fifty"}]

    def test_tool_result_image_becomes_placeholder(self) -> None:
        request = _tool_request()
        request["model"] = "command-a-vision-07-2025"
        request["messages"][3]["content"] = [
            {"type": "text", "text": "done"},
            {"type": "image", "data": "QUJD", "mimeType": "image/png"},
        ]
        result = CohereRequestAdapter(request).to_provider_request()
        assert result["tool_results"][0]["outputs"] == [
            {"result": "[1 image(s) removed - model does not support image inputs]\ndone"}
        ]

    def test_converted_image_is_not_dropped_silently(self) -> None:
        registry = build_default_registry().with_overrides({"command-r-plus": True})
        request = _tool_request()
        request["messages"][3]["content"] = [
            {"type": "text", "text": "done"},
            {"type": "image", "data": "QUJD", "mimeType": "image/png"},
        ]
        result = CohereRequestAdapter(request, capabilities=registry).to_provider_request()
        assert result["tool_results"][0]["outputs"] == [
            {"result": "[1 image(s) removed - model does not support image inputs]\ndone"}
        ]

    def test_tools(self) -> None:
        request = _tool_request()
        request["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": "quote",
                    "description": "Quote a ticker",
                    "parameters": {
                        "type": "object",
                        "properties": {"ticker": {"type": "string", "description": "Symbol"}, "days": {"type": "integer"}},
                        "required": ["ticker"],
                    },
                },
            }
        ]
        result = CohereRequestAdapter(request).to_provider_request()
        assert result["tools"] == [
            {
                "name": "quote",
                "description": "Quote a ticker",
                "parameter_definitions": {
                    "ticker": {"type": "str", "required": True, "description": "Symbol"},
                    "days": {"type": "int", "required": False},
                },
            }
        ]

    def test_provider_messages_include_current_turn(self) -> None:
        messages = CohereRequestAdapter(_tool_request()).get_provider_messages()
        assert messages[0] == {"role": "USER", "message": "Stock price of ACME?"}
        assert messages[-1]["role"] == "TOOL"


class TestCohereResponseAdapter:
    def _response(self, **extra: Any) -> dict[str, Any]:
        return {
            "response_id": "resp-1",
            "generation_id": "gen-1",
            "text": "Done.",
            "finish_reason": "COMPLETE",
            "meta": {"billed_units": {"input_tokens": 11, "output_tokens": 2}},
            **extra,
        }

    def test_accessors(self) -> None:
        adapter = CohereResponseAdapter(self._response())
        assert adapter.get_id() == "gen-1"
        assert adapter.get_model() == PLACEHOLDER_MODEL
        assert adapter.get_text() == "Done."
        assert adapter.get_usage().total_tokens == 13
        assert adapter.get_finish_reason() == "stop"

    def test_tool_calls_have_stable_ids(self) -> None:
        response = self._response(tool_calls=[{"name": "quote", "parameters": {"ticker": "ACME"}}])
        calls = CohereResponseAdapter(response).get_tool_calls()
        assert [(c.id, c.name, c.arguments) for c in calls] == [("call_gen-1_0", "quote", {"ticker": "ACME"})]
        assert CohereResponseAdapter(response).get_tool_calls()[0].id == calls[0].id
        assert CohereResponseAdapter(response).get_finish_reason() == "tool_calls"

    @pytest.mark.parametrize(("native", "expected"), [("MAX_TOKENS", "length"), ("ERROR_TOXIC", "content_filter")])
    def test_finish_mapping(self, native: str, expected: str) -> None:
        assert CohereResponseAdapter(self._response(finish_reason=native)).get_finish_reason() == expected

    def test_downstream_response(self) -> None:
        downstream = CohereResponseAdapter(self._response()).to_downstream_response()
        assert downstream["model"] == PLACEHOLDER_MODEL
        assert downstream["choices"][0]["message"]["content"] == "Done."
        assert downstream["usage"]["total_tokens"] == 13

    def test_missing_id(self) -> None:
        assert CohereResponseAdapter({}).get_id() == "unknown"


_TEXT_STREAM: list[dict[str, Any]] = [
    {"is_finished": False, "event_type": "stream-start", "generation_id": "gen-s"},
    {"is_finished": False, "event_type": "text-generation", "text": "Hel"},
    {"is_finished": False, "event_type": "text-generation", "text": "lo"},
    {
        "is_finished": True,
        "event_type": "stream-end",
        "finish_reason": "COMPLETE",
        "response": {"generation_id": "gen-s", "text": "Hello", "meta": {"tokens": {"input_tokens": 4, "output_tokens": 2}}},
    },
]


class TestCohereStreamAdapter:
    def setup_method(self) -> None:
        self.adapter = CohereStreamAdapter()

    def test_text_stream(self) -> None:
        results = [self.adapter.process_chunk(e) for e in _TEXT_STREAM]
        assert self.adapter.state.text == "Hello"
        assert self.adapter.state.response_id == "gen-s"
        assert self.adapter.state.model == PLACEHOLDER_MODEL
        assert [r.is_final for r in results] == [False, False, False, True]
        assert _data(results[1].sse_data or "")["choices"][0]["delta"] == {"content": "Hel"}
        assert self.adapter.state.usage is not None
        assert self.adapter.state.usage.total_tokens == 6

    def test_incremental_tool_calls(self) -> None:
        events = [
            _TEXT_STREAM[0],
            {"event_type": "tool-calls-chunk", "tool_call_delta": {"index": 0, "name": "quote"}},
            {"event_type": "tool-calls-chunk", "tool_call_delta": {"index": 0, "parameters": '{"ticker":'}},
            {"event_type": "tool-calls-chunk", "tool_call_delta": {"index": 0, "parameters": '"ACME"}'}},
            {"event_type": "tool-calls-generation", "tool_calls": [{"name": "quote", "parameters": {"ticker": "ACME"}}]},
            {"event_type": "stream-end", "finish_reason": "COMPLETE", "response": {"generation_id": "gen-s"}},
        ]
        for event in events:
            self.adapter.process_chunk(event)
        [tool_call] = self.adapter.state.tool_calls
        assert (tool_call.id, tool_call.name, tool_call.arguments) == ("call_gen-s_0", "quote", '{"ticker":"ACME"}')
        fragments = self.adapter.get_raw_tool_call_events()
        assert len(fragments) == 3
        first = _data(fragments[0])["choices"][0]["delta"]["tool_calls"][0]
        assert first["id"] == "call_gen-s_0"
        assert first["function"]["name"] == "quote"
        assert _data(self.adapter.format_end_sse())["choices"][0]["finish_reason"] == "tool_calls"

    def test_whole_tool_calls(self) -> None:
        events = [
            _TEXT_STREAM[0],
            {"event_type": "tool-calls-generation", "tool_calls": [{"name": "quote", "parameters": {"ticker": "ACME"}}]},
            {"event_type": "stream-end", "finish_reason": "COMPLETE", "response": {"generation_id": "gen-s"}},
        ]
        for event in events:
            self.adapter.process_chunk(event)
        [fragment] = self.adapter.get_raw_tool_call_events()
        entry = _data(fragment)["choices"][0]["delta"]["tool_calls"][0]
        assert entry["id"] == "call_gen-s_0"
        assert json.loads(entry["function"]["arguments"]) == {"ticker": "ACME"}

    def test_stream_matches_non_streamed(self) -> None:
        for event in _TEXT_STREAM:
            self.adapter.process_chunk(event)
        streamed = CohereResponseAdapter(self.adapter.to_provider_response())
        assert streamed.get_text() == "Hello"
        assert streamed.get_id() == "gen-s"
        assert streamed.get_usage().total_tokens == 6
        assert streamed.get_finish_reason() == "stop"


class TestCohereFactory:
    def test_api_key_rules(self) -> None:
        assert cohere_factory.extract_api_key({"Authorization": "Bearer co-1"}) == "co-1"
        assert cohere_factory.extract_api_key({"x-api-key": "nope"}) is None

    def test_real_client(self) -> None:
        client = cohere_factory.create_client("co-1", None)
        assert isinstance(client, HttpProviderClient)
        assert client.headers["Authorization"] == "Bearer co-1"
        assert client.stream_format == "ndjson"

    async def test_mock_stream(self) -> None:
        client = cohere_factory.create_client(None, ClientOptions(mock_mode=True))
        assert isinstance(client, MockClient)
        adapter = cohere_factory.create_stream_adapter()
        async for event in await cohere_factory.execute_stream(client, {"model": "command-r", "message": "hi"}):
            adapter.process_chunk(event)
        assert adapter.state.text == "Hello from the mock upstream."
        assert client.requests[0]["stream"] is True

    def test_error_message(self) -> None:
        error = UpstreamError("HTTP 401", status_code=401, body={"message": "invalid api token"})
        assert cohere_factory.extract_error_message(error) == "invalid api token"
