"""Unwrap MCP tool-result envelopes down to their text payload."""

from __future__ import annotations

import json
from typing import Any


def _text_blocks(value: Any) -> list[str] | None:
    if not isinstance(value, list) or not value:
        return None
    texts: list[str] = []
    for block in value:
        if not (isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)):
            return None
        texts.append(block["text"])
    return texts


def unwrap_tool_content(content: Any) -> Any:
    """Return the text inside an MCP content wrapper, or *content* unchanged.

    Recognised wrappers, as a JSON string or as decoded values:

    * ``[{"type": "text", "text": "..."}, ...]``
    * ``{"content": [{"type": "text", "text": "..."}], "isError": false}``

    Multiple text blocks are joined with newlines.
    """
    value = content
    if isinstance(content, str):
        stripped = content.lstrip()
        if not stripped.startswith(("[", "{")):
            return content
        try:
            value = json.loads(content)
        except ValueError:
            return content

    texts = _text_blocks(value)
    if texts is None and isinstance(value, dict) and set(value) <= {"content", "isError"}:
        texts = _text_blocks(value.get("content"))
    if texts is None:
        return content
    return "\n".join(texts)
