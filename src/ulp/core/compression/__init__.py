"""TOON compression of tool results."""

from ulp.core.compression.engine import CompressionEngine, CompressionOutcome
from ulp.core.compression.unwrap import unwrap_tool_content

__all__ = [
    "CompressionEngine",
    "CompressionOutcome",
    "unwrap_tool_content",
]
