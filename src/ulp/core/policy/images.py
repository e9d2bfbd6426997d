"""Content policy for images carried in tool results.

MCP tools return images as ``{"type": "image", "data": <base64>,
"mimeType": ...}`` blocks. Before such a tool result is forwarded, the
blocks are either rewritten into the downstream multimodal shape, replaced by
a size placeholder, or stripped entirely when the target model has no image
input. All helpers here are pure.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any

from ulp.core.interface.config import DEFAULT_MAX_IMAGE_SIZE_BYTES
from ulp.core.policy.capabilities import CapabilityRegistry
from ulp.core.policy.registry_data import build_default_registry

logger = logging.getLogger(__name__)

IMAGE_TOO_LARGE_PLACEHOLDER = "[Image omitted due to size]"


def images_removed_placeholder(count: int) -> str:
    return f"[{count} image(s) removed - model does not support image inputs]"


@lru_cache(maxsize=1)
def _default_registry() -> CapabilityRegistry:
    return build_default_registry()


def does_model_support_images(model: str, registry: CapabilityRegistry | None = None) -> bool:
    """Return whether *model* accepts image input."""
    return (registry or _default_registry()).resolve(model).supports_vision


def is_mcp_image_block(item: Any) -> bool:
    """Return whether *item* is an MCP image content block with inline data."""
    return (
        isinstance(item, dict)
        and item.get("type") == "image"
        and isinstance(item.get("data"), str)
    )


def has_image_content(content: Any) -> bool:
    """Return whether a tool-result content value holds any MCP image block."""
    return isinstance(content, list) and any(is_mcp_image_block(item) for item in content)


def estimate_image_bytes(block: dict[str, Any]) -> int:
    """Decoded size of a base64 image payload, without decoding it."""
    data = block.get("data")
    if not isinstance(data, str):
        return 0
    return len(data) * 3 // 4


def is_image_too_large(block: dict[str, Any], max_bytes: int = DEFAULT_MAX_IMAGE_SIZE_BYTES) -> bool:
    return estimate_image_bytes(block) > max_bytes


def _text_of(block: dict[str, Any]) -> str:
    text = block.get("text")
    return text if isinstance(text, str) else json.dumps(text)


def strip_image_blocks(content: Any) -> str:
    """Replace every image block with a single count placeholder.

    The placeholder comes first, followed by the text blocks of the same
    message in their original order, joined by newlines.
    """
    if not isinstance(content, list):
        return content if isinstance(content, str) else json.dumps(content)

    text_parts: list[str] = []
    image_count = 0
    for item in content:
        if is_mcp_image_block(item):
            image_count += 1
        elif isinstance(item, dict) and item.get("type") == "text" and "text" in item:
            text_parts.append(_text_of(item))

    if image_count > 0:
        text_parts.insert(0, images_removed_placeholder(image_count))
        logger.info("Stripped %d image(s) from tool result (model does not support images)", image_count)

    return "\n".join(text_parts)


def convert_image_blocks(
    content: Any, max_bytes: int = DEFAULT_MAX_IMAGE_SIZE_BYTES
) -> list[dict[str, Any]] | None:
    """Rewrite MCP image blocks into ``image_url`` data-URI blocks.

    Oversized images become a text placeholder; text blocks pass through.
    Returns ``None`` when there is nothing to convert.
    """
    if not has_image_content(content):
        return None

    converted: list[dict[str, Any]] = []
    for item in content:
        if is_mcp_image_block(item):
            mime_type = item.get("mimeType") or "image/png"
            if is_image_too_large(item, max_bytes):
                logger.info(
                    "Stripping %s image block due to size limit (%d KB)",
                    mime_type,
                    estimate_image_bytes(item) // 1024,
                )
                converted.append({"type": "text", "text": IMAGE_TOO_LARGE_PLACEHOLDER})
                continue
            converted.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{mime_type};base64,{item['data']}"},
                }
            )
        elif isinstance(item, dict) and item.get("type") == "text" and "text" in item:
            converted.append({"type": "text", "text": _text_of(item)})

    return converted or None


def parse_data_url(url: str) -> tuple[str, str] | None:
    """Split a ``data:<mime>;base64,<payload>`` URL into (mime, payload)."""
    if not url.startswith("data:") or ";base64," not in url:
        return None
    header, payload = url[len("data:"):].split(";base64,", 1)
    return header or "image/png", payload
