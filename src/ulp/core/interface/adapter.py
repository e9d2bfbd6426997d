"""Adapter protocols — the capability sets every provider implements.

A provider contributes exactly one request adapter, one response adapter and
one stream adapter type. The registry picks the set once per request; call
sites only ever talk to these protocols.
"""

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol

from ulp.core.interface.models import (
    CanonicalMessage,
    CanonicalToolCall,
    ChunkProcessingResult,
    StreamAccumulatorState,
    ToolCompressionStats,
    ToolDefinition,
    UsageView,
)

if TYPE_CHECKING:
    from ulp.core.compression.engine import CompressionEngine


class RequestAdapter(Protocol):
    """Builds a provider-native request from a downstream request.

    Read accessors never mutate the wrapped request. Mutators stage edits
    that are applied when :meth:`to_provider_request` materializes the
    native request.
    """

    provider: str

    def get_model(self) -> str: ...
    def is_streaming(self) -> bool: ...
    def get_messages(self) -> list[CanonicalMessage]: ...
    def get_tool_results(self) -> list[CanonicalToolCall]: ...
    def get_tools(self) -> list[ToolDefinition]: ...
    def has_tools(self) -> bool: ...
    def get_provider_messages(self) -> list[dict[str, Any]]: ...
    def get_original_request(self) -> dict[str, Any]: ...

    def set_model(self, model: str) -> None: ...
    def update_tool_result(self, tool_call_id: str, new_content: str) -> None: ...
    def apply_tool_result_updates(self, updates: Mapping[str, str]) -> None: ...
    def apply_toon_compression(self, engine: "CompressionEngine") -> ToolCompressionStats: ...

    def to_provider_request(self) -> dict[str, Any]: ...


class ResponseAdapter(Protocol):
    """Reads one completed provider-native response."""

    provider: str

    def get_id(self) -> str: ...
    def get_model(self) -> str: ...
    def get_text(self) -> str: ...
    def get_tool_calls(self) -> list[CanonicalToolCall]: ...
    def has_tool_calls(self) -> bool: ...
    def get_usage(self) -> UsageView: ...
    def get_finish_reason(self) -> str: ...
    def get_original_response(self) -> dict[str, Any]: ...
    def to_refusal_response(self, refusal_message: str, content_message: str) -> dict[str, Any]: ...
    def to_downstream_response(self) -> dict[str, Any]: ...


class StreamAdapter(Protocol):
    """Accumulates one provider stream and renders downstream SSE fragments."""

    provider: str
    state: StreamAccumulatorState

    def process_chunk(self, chunk: dict[str, Any]) -> ChunkProcessingResult: ...
    def get_sse_headers(self) -> dict[str, str]: ...
    def format_text_delta_sse(self, text: str) -> str: ...
    def format_complete_text_sse(self, text: str) -> list[str]: ...
    def get_raw_tool_call_events(self) -> list[str]: ...
    def downstream_finish_reason(self) -> str: ...
    def format_end_sse(self) -> str: ...
    def to_provider_response(self) -> dict[str, Any]: ...
