"""Tests for the OpenAI-compatible adapters (OpenAI, DeepSeek, Ollama)."""

import json
from typing import Any

import pytest

from ulp.core.adapters.base import SSE_DONE
from ulp.core.adapters.openai import (
    OpenAIResponseAdapter,
    OpenAIStreamAdapter,
    deepseek_factory,
    ollama_factory,
    openai_factory,
)
from ulp.core.clients.litellm_client import LiteLLMClient
from ulp.core.clients.mock import MockClient
from ulp.core.errors import UpstreamError
from ulp.core.providers.factory import ClientOptions


def _response(**message: Any) -> dict[str, Any]:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1,
        "model": "gpt-4o",
        "choices": [{"index": 0, "message": {"role": "assistant", **message}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 4, "total_tokens": 14},
    }


def _chunk(delta: dict[str, Any] | None = None, finish: str | None = None, **extra: Any) -> dict[str, Any]:
    chunk: dict[str, Any] = {"id": "chatcmpl-1", "object": "chat.completion.chunk", "model": "gpt-4o", **extra}
    chunk["choices"] = [] if delta is None else [{"index": 0, "delta": delta, "finish_reason": finish}]
    return chunk


_USAGE_CHUNK = _chunk(usage={"prompt_tokens": 10, "completion_tokens": 4, "total_tokens": 14})


class TestOpenAIResponseAdapter:
    def test_text(self) -> None:
        adapter = OpenAIResponseAdapter(_response(content="Hello"))
        assert adapter.get_id() == "chatcmpl-1"
        assert adapter.get_model() == "gpt-4o"
        assert adapter.get_text() == "Hello"
        assert not adapter.has_tool_calls()
        assert adapter.get_usage().total_tokens == 14
        assert adapter.get_finish_reason() == "stop"

    def test_tool_calls(self) -> None:
        adapter = OpenAIResponseAdapter(
            _response(
                content=None,
                tool_calls=[
                    {"id": "call_1", "type": "function", "function": {"name": "search", "arguments": '{"q":"x"}'}},
                    {"id": "call_2", "type": "custom", "custom": {"name": "shell", "input": '{"cmd":"ls"}'}},
                    {"id": "call_3", "type": "function", "function": {"name": "broken", "arguments": "{oops"}},
                ],
            )
        )
        calls = adapter.get_tool_calls()
        assert [(c.id, c.name) for c in calls] == [("call_1", "search"), ("call_2", "shell"), ("call_3", "broken")]
        assert calls[0].arguments == {"q": "x"}
        assert calls[1].arguments == {"cmd": "ls"}
        assert calls[2].arguments == {}

    def test_missing_fields(self) -> None:
        adapter = OpenAIResponseAdapter({"choices": []})
        assert adapter.get_id() == "unknown"
        assert adapter.get_model() == "unknown"
        assert adapter.get_text() == ""
        assert adapter.get_usage().total_tokens == 0

    def test_refusal_response(self) -> None:
        original = _response(content="I will do it")
        refusal = OpenAIResponseAdapter(original).to_refusal_response("blocked", "I can't help with that.")
        message = refusal["choices"][0]["message"]
        assert message["content"] == "I can't help with that."
        assert message["refusal"] is None
        assert refusal["choices"][0]["finish_reason"] == "stop"
        assert original["choices"][0]["message"]["content"] == "I will do it"

    def test_downstream_response_is_passthrough(self) -> None:
        original = _response(content="Hi")
        assert OpenAIResponseAdapter(original).to_downstream_response() is original


class TestOpenAIStreamAdapter:
    def setup_method(self) -> None:
        self.adapter = OpenAIStreamAdapter()

    def test_text_chunk_passes_through(self) -> None:
        chunk = _chunk({"role": "assistant", "content": "Hel"})
        result = self.adapter.process_chunk(chunk)
        assert result.sse_data == f"data: {json.dumps(chunk, separators=(',', ':'))}\n\n"
        assert not result.is_tool_call_chunk
        assert self.adapter.state.text == "Hel"
        assert self.adapter.state.timing.first_chunk_time is not None

    def test_tool_deltas_accumulate(self) -> None:
        first = _chunk(
            {"tool_calls": [{"index": 0, "id": "call_1", "type": "function", "function": {"name": "get_weather", "arguments": ""}}]}
        )
        second = _chunk({"tool_calls": [{"index": 0, "function": {"arguments": '{"city":'}}]})
        third = _chunk({"tool_calls": [{"index": 0, "function": {"arguments": '"Paris"}'}}]})
        for chunk in (first, second, third):
            result = self.adapter.process_chunk(chunk)
            assert result.sse_data is None
            assert result.is_tool_call_chunk

        [tool_call] = self.adapter.state.tool_calls
        assert tool_call.id == "call_1"
        assert tool_call.name == "get_weather"
        assert tool_call.arguments == '{"city":"Paris"}'
        assert len(self.adapter.state.raw_tool_call_events) == 3

    def test_parallel_tool_calls(self) -> None:
        self.adapter.process_chunk(
            _chunk(
                {
                    "tool_calls": [
                        {"index": 0, "id": "a", "function": {"name": "one", "arguments": "{}"}},
                        {"index": 1, "id": "b", "function": {"name": "two", "arguments": "{}"}},
                    ]
                }
            )
        )
        assert [tc.name for tc in self.adapter.state.tool_calls] == ["one", "two"]

    @pytest.mark.parametrize("usage_first", [False, True])
    def test_final_reported_once_in_either_order(self, usage_first: bool) -> None:
        finish = _chunk({}, finish="stop")
        chunks = [_USAGE_CHUNK, finish] if usage_first else [finish, _USAGE_CHUNK]
        chunks.append(_USAGE_CHUNK)
        results = [self.adapter.process_chunk(c) for c in [_chunk({"content": "Hi"}), *chunks]]
        assert [r.is_final for r in results] == [False, False, True, False]

    def test_raw_events_replay_verbatim(self) -> None:
        chunk = _chunk({"tool_calls": [{"index": 0, "id": "call_1", "function": {"name": "x", "arguments": "{}"}}]})
        self.adapter.process_chunk(chunk)
        assert self.adapter.get_raw_tool_call_events() == [f"data: {json.dumps(chunk, separators=(',', ':'))}\n\n"]

    def test_end_sse(self) -> None:
        self.adapter.process_chunk(_chunk({}, finish="tool_calls"))
        end = self.adapter.format_end_sse()
        assert end.endswith(SSE_DONE)
        payload = json.loads(end.split("\n\n")[0][len("data: "):])
        assert payload["choices"][0]["finish_reason"] == "tool_calls"

    def test_end_sse_defaults_to_stop(self) -> None:
        payload = json.loads(self.adapter.format_end_sse().split("\n\n")[0][len("data: "):])
        assert payload["choices"][0]["finish_reason"] == "stop"

    def test_headers(self) -> None:
        assert self.adapter.get_sse_headers()["Content-Type"] == "text/event-stream"

    def test_complete_text_sse(self) -> None:
        [fragment] = self.adapter.format_complete_text_sse("All done")
        payload = json.loads(fragment[len("data: "):])
        assert payload["choices"][0]["delta"] == {"role": "assistant", "content": "All done"}
        assert payload["id"].startswith("chatcmpl-")

    def test_stream_matches_non_streamed_response(self) -> None:
        chunks = [
            _chunk({"role": "assistant", "content": "Checking "}),
            _chunk({"content": "weather"}),
            _chunk({"tool_calls": [{"index": 0, "id": "call_1", "function": {"name": "get_weather", "arguments": '{"city":"Paris"}'}}]}),
            _chunk({}, finish="tool_calls"),
            _USAGE_CHUNK,
        ]
        for chunk in chunks:
            self.adapter.process_chunk(chunk)

        streamed = OpenAIResponseAdapter(self.adapter.to_provider_response())
        assert streamed.get_text() == "Checking weather"
        assert [(c.id, c.name, c.arguments) for c in streamed.get_tool_calls()] == [
            ("call_1", "get_weather", {"city": "Paris"})
        ]
        assert streamed.get_usage().input_tokens == 10
        assert streamed.get_finish_reason() == "tool_calls"


class TestOpenAICompatibleFactories:
    def test_identity(self) -> None:
        assert openai_factory.provider == "openai"
        assert openai_factory.get_base_url() is None
        assert deepseek_factory.get_base_url() == "https://api.deepseek.com"
        assert ollama_factory.get_base_url() == "http://localhost:11434/v1"
        assert deepseek_factory.get_span_name() == "deepseek.chat.completions"
        assert openai_factory.tokenizer_family == "openai"

    def test_api_key_from_bearer(self) -> None:
        assert openai_factory.extract_api_key({"Authorization": "Bearer sk-123"}) == "sk-123"
        assert deepseek_factory.extract_api_key({"authorization": "sk-raw"}) == "sk-raw"
        assert openai_factory.extract_api_key({}) is None

    def test_adapters_carry_provider(self) -> None:
        adapter = deepseek_factory.create_request_adapter({"model": "deepseek-chat", "messages": []})
        assert adapter.provider == "deepseek"
        assert deepseek_factory.create_stream_adapter().provider == "deepseek"

    def test_real_client(self) -> None:
        client = deepseek_factory.create_client("sk-1", ClientOptions(timeout=5))
        assert isinstance(client, LiteLLMClient)
        assert client.base_url == "https://api.deepseek.com"
        assert client.timeout == 5

    def test_base_url_override(self) -> None:
        client = ollama_factory.create_client(None, ClientOptions(base_url="http://gpu:11434/v1"))
        assert isinstance(client, LiteLLMClient)
        assert client.base_url == "http://gpu:11434/v1"

    async def test_mock_execute(self) -> None:
        client = openai_factory.create_client(None, ClientOptions(mock_mode=True))
        assert isinstance(client, MockClient)
        response = await openai_factory.execute(client, {"model": "gpt-4o", "messages": []})
        assert OpenAIResponseAdapter(response).get_text() == "Hello from the mock upstream."
        assert client.requests[0]["stream"] is False

    async def test_mock_execute_stream(self) -> None:
        client = openai_factory.create_client(None, ClientOptions(mock_mode=True))
        adapter = openai_factory.create_stream_adapter()
        finals = []
        async for chunk in await openai_factory.execute_stream(client, {"model": "gpt-4o", "messages": []}):
            finals.append(adapter.process_chunk(chunk).is_final)
        assert adapter.state.text == "Hello from the mock upstream."
        assert finals.count(True) == 1

    def test_error_message(self) -> None:
        error = UpstreamError("HTTP 401", status_code=401, body={"error": {"message": "Invalid API key"}})
        assert openai_factory.extract_error_message(error) == "Invalid API key"
        assert openai_factory.extract_error_message({"message": "flat"}) == "flat"
        assert openai_factory.extract_error_message(42) == "Internal server error"
