"""Canonical model — the provider-neutral types every adapter reads and writes.

Request adapters produce :class:`CanonicalMessage` lists from the downstream
request, response adapters produce :class:`CanonicalToolCall` and
:class:`UsageView`, and stream adapters own one :class:`StreamAccumulatorState`
each. Value types are frozen; the stream accumulator is the only mutable
structure and is never shared between requests.
"""

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Messages and tool calls
# ---------------------------------------------------------------------------


class CanonicalToolCall(BaseModel):
    """A tool invocation, or a tool result when ``content`` is populated.

    The ``id`` is the identity: the same id resolves to the same logical call
    for the whole request, including when a tool result is matched back to the
    assistant turn that issued it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Any = Field(default_factory=dict)
    content: Any = None
    is_error: bool = False


class CanonicalMessage(BaseModel):
    """A single message in canonical form.

    Roles:
    - system: instruction/context messages
    - user: human input
    - assistant: LLM-generated messages
    - tool: tool execution results (``tool_calls`` holds the resolved result)
    """

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant", "tool"]
    tool_calls: list[CanonicalToolCall] | None = None


class ToolDefinition(BaseModel):
    """A tool offered to the model, in MCP shape."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Accounting
# ---------------------------------------------------------------------------


class UsageView(BaseModel):
    """Token usage reported by the provider, zero when omitted."""

    model_config = ConfigDict(frozen=True)

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ToolCompressionStats(BaseModel):
    """Aggregate outcome of compressing the tool results of one request."""

    model_config = ConfigDict(frozen=True)

    tokens_before: int = 0
    tokens_after: int = 0
    cost_savings: float = 0.0
    was_effective: bool = False
    had_tool_results: bool = False

    @property
    def tokens_saved(self) -> int:
        return self.tokens_before - self.tokens_after


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class StreamToolCall(BaseModel):
    """A tool call being assembled from stream deltas.

    ``arguments`` is the raw JSON text received so far and only grows.
    """

    id: str = ""
    name: str = ""
    arguments: str = ""


class StreamTiming(BaseModel):
    start_time: float = Field(default_factory=time.monotonic)
    first_chunk_time: float | None = None


class StreamAccumulatorState(BaseModel):
    """Running aggregate of one in-flight stream."""

    response_id: str = ""
    model: str = ""
    text: str = ""
    tool_calls: list[StreamToolCall] = Field(default_factory=list)
    raw_tool_call_events: list[Any] = Field(default_factory=list)
    usage: UsageView | None = None
    stop_reason: str | None = None
    timing: StreamTiming = Field(default_factory=StreamTiming)


class ChunkProcessingResult(BaseModel):
    """What one processed chunk produced for the downstream transport."""

    model_config = ConfigDict(frozen=True)

    sse_data: str | None = None
    is_tool_call_chunk: bool = False
    is_final: bool = False
