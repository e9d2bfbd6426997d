"""Provider-neutral data model, settings and adapter protocols."""

from ulp.core.interface.adapter import RequestAdapter, ResponseAdapter, StreamAdapter
from ulp.core.interface.config import ProviderSettings, ProxySettings, TelemetrySettings, TokenPrice, load_settings
from ulp.core.interface.models import (
    CanonicalMessage,
    CanonicalToolCall,
    ChunkProcessingResult,
    StreamAccumulatorState,
    StreamTiming,
    StreamToolCall,
    ToolCompressionStats,
    ToolDefinition,
    UsageView,
)

__all__ = [
    "CanonicalMessage",
    "CanonicalToolCall",
    "ChunkProcessingResult",
    "ProviderSettings",
    "ProxySettings",
    "RequestAdapter",
    "ResponseAdapter",
    "StreamAccumulatorState",
    "StreamAdapter",
    "StreamTiming",
    "StreamToolCall",
    "TelemetrySettings",
    "TokenPrice",
    "ToolCompressionStats",
    "ToolDefinition",
    "UsageView",
]
