"""Token counting — protocol and implementations for measuring prompt size.

Provides accurate counting via tiktoken (for OpenAI-family tokenizers) and a
character-based estimator as a universal fallback. Counters hold no mutable
state after construction and are safe to share between concurrent requests.
"""

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable

import tiktoken


@runtime_checkable
class Tokenizer(Protocol):
    """Protocol for counting tokens in chat-style messages.

    Messages are ``{"role": ..., "content": ...}`` dicts; content may be a
    string or any JSON-serializable structure.
    """

    def count_tokens(self, messages: list[dict[str, Any]]) -> int:
        """Return the total token count for *messages*."""
        ...


# Per-message overhead: every message has <|start|>{role}\n ... <|end|> framing.
_MSG_OVERHEAD = 4
# Reply priming tokens added once to the total (OpenAI convention).
_REPLY_PRIMING = 2


def _content_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return json.dumps(content, separators=(",", ":"))


# ---------------------------------------------------------------------------
# Tiktoken-based counter (accurate for OpenAI models)
# ---------------------------------------------------------------------------


class TiktokenCounter:
    """Token counter using tiktoken encodings.

    Falls back to ``cl100k_base`` when the model's encoding is unknown.
    """

    def __init__(self, model: str = "gpt-4o") -> None:
        try:
            self._enc = tiktoken.encoding_for_model(model)
        except KeyError:
            self._enc = tiktoken.get_encoding("cl100k_base")

    def count_tokens(self, messages: list[dict[str, Any]]) -> int:
        total = 0
        for message in messages:
            total += _MSG_OVERHEAD
            total += len(self._enc.encode(str(message.get("role", ""))))
            total += len(self._enc.encode(_content_text(message.get("content"))))
        return total + _REPLY_PRIMING


# ---------------------------------------------------------------------------
# Estimating counter (universal fallback)
# ---------------------------------------------------------------------------

_CHARS_PER_TOKEN = 4


class EstimatingCounter:
    """Fallback token counter that estimates ~4 characters per token."""

    def __init__(self, chars_per_token: float = _CHARS_PER_TOKEN) -> None:
        self._chars_per_token = chars_per_token

    def count_tokens(self, messages: list[dict[str, Any]]) -> int:
        total = 0
        for message in messages:
            total += _MSG_OVERHEAD
            total += int(len(_content_text(message.get("content"))) / self._chars_per_token)
        return total + _REPLY_PRIMING
