"""Shared machinery for provider adapters.

Every provider reads the same downstream (Chat Completions) request, so the
read accessors, staged edits, tool-result content policy and compression live
in :class:`BaseRequestAdapter`; a provider only renders the processed message
list into its native request. :class:`BaseResponseAdapter` renders the
downstream response from the canonical accessors, and
:class:`BaseStreamAdapter` owns the accumulator and the downstream SSE
formatting.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from ulp.core.interface.config import DEFAULT_MAX_IMAGE_SIZE_BYTES
from ulp.core.interface.models import (
    CanonicalMessage,
    CanonicalToolCall,
    ChunkProcessingResult,
    StreamAccumulatorState,
    StreamToolCall,
    ToolCompressionStats,
    ToolDefinition,
    UsageView,
)
from ulp.core.policy.capabilities import CapabilityRegistry
from ulp.core.policy.images import (
    convert_image_blocks,
    does_model_support_images,
    has_image_content,
    strip_image_blocks,
)

if TYPE_CHECKING:
    from ulp.core.compression.engine import CompressionEngine

logger = logging.getLogger(__name__)

UNKNOWN_TOOL_NAME = "unknown"
DEFAULT_ERROR_MESSAGE = "Internal server error"
SSE_DONE = "data: [DONE]\n\n"

# Chat Completions roles folded into the canonical set
_ROLE_ALIASES = {"developer": "system", "function": "tool"}
SSE_HEADERS: dict[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def format_sse(payload: Any) -> str:
    """Serialize *payload* as one ``data:`` server-sent event."""
    return f"data: {json.dumps(payload, separators=(',', ':'), ensure_ascii=False)}\n\n"


def parse_arguments(raw: Any) -> Any:
    """Best-effort decode of tool-call arguments; malformed JSON yields ``{}``."""
    if not isinstance(raw, str):
        return raw if raw is not None else {}
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return {}


def parse_tool_content(content: Any) -> Any:
    """Decode a tool-result string as JSON when possible, else return it as-is."""
    if isinstance(content, str):
        try:
            return json.loads(content)
        except ValueError:
            return content
    return content


def content_text(content: Any) -> str:
    """Concatenate the text of a Chat Completions content value."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            part["text"]
            for part in content
            if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str)
        )
    return json.dumps(content)


def find_tool_name(messages: list[dict[str, Any]], tool_call_id: str | None) -> str | None:
    """Resolve the name of the call *tool_call_id* from the closest assistant turn."""
    if tool_call_id is None:
        return None
    for message in reversed(messages):
        if message.get("role") != "assistant":
            continue
        for tool_call in message.get("tool_calls") or []:
            if tool_call.get("id") != tool_call_id:
                continue
            if tool_call.get("type", "function") == "function":
                return (tool_call.get("function") or {}).get("name")
            return (tool_call.get("custom") or {}).get("name")
    return None


def get_path(obj: Any, path: str) -> Any:
    """Walk a dotted *path* through dict keys or attributes; ``None`` on a miss."""
    current = obj
    for key in path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(key)
            continue
        try:
            current = getattr(current, key, None)
        except Exception:  # noqa: BLE001 - property getters on foreign error types
            logger.debug("Attribute %s raised while reading error envelope", key, exc_info=True)
            return None
    return current


def normalize_error(error: Any, paths: tuple[str, ...], default: str = DEFAULT_ERROR_MESSAGE) -> str:
    """Reduce a provider failure to one human-readable string.

    Checks the provider envelope *paths* on the error itself and on its
    ``body`` attribute, then the exception text, then *default*.
    """
    for source in (error, get_path(error, "body")):
        for path in paths:
            value = get_path(source, path)
            if isinstance(value, str) and value:
                return value
    if isinstance(error, BaseException):
        text = str(error)
        if text:
            return text
    return default


# ---------------------------------------------------------------------------
# Request adapter
# ---------------------------------------------------------------------------


class BaseRequestAdapter:
    """Staged builder around one downstream request.

    The wrapped request is never mutated. ``set_model``,
    ``update_tool_result`` and ``apply_toon_compression`` only record intent;
    :meth:`to_provider_request` applies, in order, tool-result patches, the
    image content policy and compression, then hands the processed message
    list to the provider's renderer.
    """

    provider: str = "openai"
    tokenizer_family: ClassVar[str] = "openai"

    def __init__(
        self,
        request: dict[str, Any],
        *,
        max_image_size_bytes: int = DEFAULT_MAX_IMAGE_SIZE_BYTES,
        capabilities: CapabilityRegistry | None = None,
    ) -> None:
        self._request = request
        self._max_image_size_bytes = max_image_size_bytes
        self._capabilities = capabilities
        self._model_override: str | None = None
        self._tool_result_updates: dict[str, str] = {}
        self._compression: CompressionEngine | None = None
        self._materialized: list[dict[str, Any]] | None = None

    # -- read access --------------------------------------------------------

    def _messages(self) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = self._request.get("messages") or []
        return messages

    def get_model(self) -> str:
        return self._model_override or str(self._request.get("model", ""))

    def is_streaming(self) -> bool:
        return self._request.get("stream") is True

    def get_messages(self) -> list[CanonicalMessage]:
        messages = self._messages()
        result: list[CanonicalMessage] = []
        for message in messages:
            tool_calls: list[CanonicalToolCall] | None = None
            if message.get("role") == "tool":
                name = find_tool_name(messages, message.get("tool_call_id"))
                if name is not None:
                    tool_calls = [
                        CanonicalToolCall(
                            id=message["tool_call_id"],
                            name=name,
                            content=parse_tool_content(message.get("content")),
                        )
                    ]
            role = message.get("role")
            role = _ROLE_ALIASES.get(role, role)
            result.append(CanonicalMessage(role=role, tool_calls=tool_calls))
        return result

    def get_tool_results(self) -> list[CanonicalToolCall]:
        messages = self._messages()
        return [
            CanonicalToolCall(
                id=message.get("tool_call_id", ""),
                name=find_tool_name(messages, message.get("tool_call_id")) or UNKNOWN_TOOL_NAME,
                content=parse_tool_content(message.get("content")),
                is_error=False,
            )
            for message in messages
            if message.get("role") == "tool"
        ]

    def get_tools(self) -> list[ToolDefinition]:
        tools: list[ToolDefinition] = []
        for tool in self._request.get("tools") or []:
            if tool.get("type") != "function":
                continue
            function = tool.get("function") or {}
            tools.append(
                ToolDefinition(
                    name=function.get("name", ""),
                    description=function.get("description"),
                    input_schema=function.get("parameters") or {},
                )
            )
        return tools

    def has_tools(self) -> bool:
        return len(self._request.get("tools") or []) > 0

    def get_provider_messages(self) -> list[dict[str, Any]]:
        """The unmodified conversation, rendered in the provider's shape."""
        return self.render_messages(self._messages())

    def get_original_request(self) -> dict[str, Any]:
        return self._request

    # -- staged modification ------------------------------------------------

    def set_model(self, model: str) -> None:
        self._model_override = model
        self._materialized = None

    def update_tool_result(self, tool_call_id: str, new_content: str) -> None:
        self._tool_result_updates[tool_call_id] = new_content
        self._materialized = None

    def apply_tool_result_updates(self, updates: Mapping[str, str]) -> None:
        self._tool_result_updates.update(updates)
        self._materialized = None

    def apply_toon_compression(self, engine: CompressionEngine) -> ToolCompressionStats:
        """Stage TOON compression and return the stats it will produce."""
        self._compression = engine
        self._materialized, stats = engine.compress_messages(self._processed_messages(), self.get_model())
        return stats

    # -- materialization ----------------------------------------------------

    def _processed_messages(self) -> list[dict[str, Any]]:
        messages = self._messages()
        if self._tool_result_updates:
            messages = self._apply_updates(messages)
        return self._apply_content_policy(messages)

    def _materialize(self) -> list[dict[str, Any]]:
        """The processed message list, computed once until the next staged change."""
        if self._materialized is None:
            messages = self._processed_messages()
            if self._compression is not None:
                messages, _ = self._compression.compress_messages(messages, self.get_model())
            self._materialized = messages
        return self._materialized

    def _apply_updates(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        applied = 0
        result: list[dict[str, Any]] = []
        for message in messages:
            tool_call_id = message.get("tool_call_id")
            if message.get("role") == "tool" and tool_call_id in self._tool_result_updates:
                applied += 1
                result.append({**message, "content": self._tool_result_updates[tool_call_id]})
            else:
                result.append(message)
        logger.debug(
            "[%s] Applied %d of %d staged tool-result update(s)",
            self.provider,
            applied,
            len(self._tool_result_updates),
        )
        return result

    def _apply_content_policy(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        model = self.get_model()
        supports_images = does_model_support_images(model, self._capabilities)
        converted = 0
        stripped = 0
        result: list[dict[str, Any]] = []

        for message in messages:
            content = message.get("content")
            if message.get("role") != "tool" or not has_image_content(content):
                result.append(message)
                continue

            if not supports_images:
                stripped += 1
                result.append({**message, "content": strip_image_blocks(content)})
                continue

            blocks = convert_image_blocks(content, self._max_image_size_bytes)
            if blocks is None:
                result.append(message)
                continue
            converted += 1
            result.append({**message, "content": blocks})

        if converted or stripped:
            logger.info(
                "[%s] Processed tool messages with image content: model=%s supports_images=%s "
                "converted=%d stripped=%d",
                self.provider,
                model,
                supports_images,
                converted,
                stripped,
            )
        return result

    def to_provider_request(self) -> dict[str, Any]:
        messages = self._materialize()
        size = len(json.dumps(messages, default=str))
        logger.info(
            "[%s] Building provider request: model=%s messages=%d size_kb=%d updates=%d",
            self.provider,
            self.get_model(),
            len(messages),
            round(size / 1024),
            len(self._tool_result_updates),
        )
        return self.render(messages)

    # -- provider rendering -------------------------------------------------

    def render_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Render processed downstream messages as the provider's message list."""
        raise NotImplementedError

    def render(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        """Render the complete provider request around *messages*."""
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Response adapter
# ---------------------------------------------------------------------------


class BaseResponseAdapter:
    """Canonical view over one completed provider-native response."""

    provider: str = "openai"

    def __init__(self, response: dict[str, Any]) -> None:
        self._response = response

    def get_id(self) -> str:
        raise NotImplementedError

    def get_model(self) -> str:
        raise NotImplementedError

    def get_text(self) -> str:
        raise NotImplementedError

    def get_tool_calls(self) -> list[CanonicalToolCall]:
        raise NotImplementedError

    def get_usage(self) -> UsageView:
        raise NotImplementedError

    def get_finish_reason(self) -> str:
        """Finish reason mapped to the downstream vocabulary."""
        raise NotImplementedError

    def has_tool_calls(self) -> bool:
        return len(self.get_tool_calls()) > 0

    def get_original_response(self) -> dict[str, Any]:
        return self._response

    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]:
        raise NotImplementedError

    def to_downstream_response(self) -> dict[str, Any]:
        """Render the response as a Chat Completions object."""
        tool_calls = [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
            }
            for tc in self.get_tool_calls()
        ]
        message: dict[str, Any] = {
            "role": "assistant",
            "content": self.get_text() or None,
            "refusal": None,
        }
        if tool_calls:
            message["tool_calls"] = tool_calls
        usage = self.get_usage()
        return {
            "id": self.get_id(),
            "object": "chat.completion",
            "created": int(time.time()),
            "model": self.get_model(),
            "choices": [
                {
                    "index": 0,
                    "message": message,
                    "logprobs": None,
                    "finish_reason": self.get_finish_reason(),
                }
            ],
            "usage": {
                "prompt_tokens": usage.input_tokens,
                "completion_tokens": usage.output_tokens,
                "total_tokens": usage.total_tokens,
            },
        }


# ---------------------------------------------------------------------------
# Stream adapter
# ---------------------------------------------------------------------------


class BaseStreamAdapter:
    """Per-request accumulator turning provider chunks into downstream SSE.

    Subclasses implement :meth:`_consume` (classify one chunk, update the
    state, return the fragment to emit) and :meth:`_is_terminal`. The base
    reports ``is_final`` on exactly one chunk: the first one after which the
    terminal condition holds.
    """

    provider: str = "openai"

    def __init__(self) -> None:
        self.state = StreamAccumulatorState()
        self._final_reported = False
        self._slots_by_index: dict[Any, int] = {}

    def process_chunk(self, chunk: dict[str, Any]) -> ChunkProcessingResult:
        if self.state.timing.first_chunk_time is None:
            self.state.timing.first_chunk_time = time.monotonic()

        sse_data, is_tool_call_chunk = self._consume(chunk)

        is_final = False
        if not self._final_reported and self._is_terminal():
            self._final_reported = True
            is_final = True

        return ChunkProcessingResult(
            sse_data=sse_data,
            is_tool_call_chunk=is_tool_call_chunk,
            is_final=is_final,
        )

    def _consume(self, chunk: dict[str, Any]) -> tuple[str | None, bool]:
        raise NotImplementedError

    def _is_terminal(self) -> bool:
        return self.state.stop_reason is not None and self.state.usage is not None

    # -- accumulator helpers ------------------------------------------------

    def _append_tool_delta(
        self,
        index: Any,
        *,
        tool_call_id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
    ) -> StreamToolCall:
        """Locate or create the slot for *index* and fold one delta into it."""
        slot = self._slots_by_index.get(index)
        if slot is None:
            slot = len(self.state.tool_calls)
            self._slots_by_index[index] = slot
            self.state.tool_calls.append(StreamToolCall())
        tool_call = self.state.tool_calls[slot]
        if tool_call_id:
            tool_call.id = tool_call_id
        if name:
            tool_call.name = name
        if arguments:
            tool_call.arguments += arguments
        return tool_call

    def _slot_for(self, index: Any) -> int:
        return self._slots_by_index.get(index, 0)

    # -- downstream formatting ----------------------------------------------

    def downstream_finish_reason(self) -> str:
        """The accumulated stop reason in the downstream vocabulary."""
        return self.state.stop_reason or "stop"

    def _chunk(self, delta: dict[str, Any], finish_reason: str | None = None) -> dict[str, Any]:
        return {
            "id": self.state.response_id,
            "object": "chat.completion.chunk",
            "created": int(time.time()),
            "model": self.state.model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }

    def get_sse_headers(self) -> dict[str, str]:
        return dict(SSE_HEADERS)

    def format_text_delta_sse(self, text: str) -> str:
        return format_sse(self._chunk({"content": text}))

    def format_complete_text_sse(self, text: str) -> list[str]:
        chunk = self._chunk({"role": "assistant", "content": text})
        chunk["id"] = self.state.response_id or f"chatcmpl-{int(time.time() * 1000)}"
        return [format_sse(chunk)]

    def get_raw_tool_call_events(self) -> list[str]:
        """Replay retained tool-call events as downstream fragments."""
        return [format_sse(self._raw_event_to_chunk(event)) for event in self.state.raw_tool_call_events]

    def _raw_event_to_chunk(self, event: Any) -> Any:
        return event

    def _tool_call_chunk(
        self,
        slot: int,
        *,
        tool_call_id: str | None = None,
        name: str | None = None,
        arguments: str = "",
    ) -> dict[str, Any]:
        """A downstream chunk carrying one tool-call delta for *slot*."""
        entry: dict[str, Any] = {"index": slot, "function": {"arguments": arguments}}
        if tool_call_id:
            entry["id"] = tool_call_id
            entry["type"] = "function"
        if name:
            entry["function"]["name"] = name
        return self._chunk({"tool_calls": [entry]})

    def format_end_sse(self) -> str:
        final_chunk = self._chunk({}, finish_reason=self.downstream_finish_reason())
        return format_sse(final_chunk) + SSE_DONE

    def to_provider_response(self) -> dict[str, Any]:
        raise NotImplementedError
