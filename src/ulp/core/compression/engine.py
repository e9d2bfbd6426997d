"""Compression engine — TOON re-encoding of tool results, gated on token count.

Each tool-role message whose content is structured JSON is re-encoded with
:func:`toon_format.encode`. The re-encoding is kept only when
the tokenizer says it is strictly cheaper than the original; otherwise the
message is forwarded untouched. Content that is not JSON is skipped and does
not contribute to the totals.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import toon_format
from pydantic import BaseModel, ConfigDict

from ulp.core.compression.unwrap import unwrap_tool_content
from ulp.core.context.counter import Tokenizer
from ulp.core.context.counter_registry import get_tokenizer
from ulp.core.interface.models import ToolCompressionStats
from ulp.core.pricing import PricingLookup

logger = logging.getLogger(__name__)

_TOKENS_PER_MILLION = 1_000_000


class CompressionOutcome(BaseModel):
    """Token comparison for a single tool result."""

    model_config = ConfigDict(frozen=True)

    original: str
    compressed: str
    tokens_before: int
    tokens_after: int

    @property
    def accepted(self) -> bool:
        return self.tokens_after < self.tokens_before

    @property
    def content(self) -> str:
        """The content to forward: the encoding if accepted, else the original."""
        return self.compressed if self.accepted else self.original


class CompressionEngine:
    """Compresses tool results using injected tokenizer and pricing lookups.

    Both collaborators are read-only; one engine may serve many concurrent
    requests.
    """

    def __init__(self, tokenizer: Tokenizer, pricing: PricingLookup | None = None) -> None:
        self.tokenizer = tokenizer
        self.pricing = pricing

    @classmethod
    def for_family(cls, family: str, pricing: PricingLookup | None = None) -> CompressionEngine:
        """Build an engine around the shared tokenizer of *family*."""
        return cls(get_tokenizer(family), pricing)

    def _count(self, text: str) -> int:
        return self.tokenizer.count_tokens([{"role": "user", "content": text}])

    def compress_content(self, content: Any) -> CompressionOutcome | None:
        """Compare *content* against its TOON encoding.

        Returns ``None`` when the content is not a JSON document after
        unwrapping, meaning compression does not apply.
        """
        unwrapped = unwrap_tool_content(content)
        if not isinstance(unwrapped, str):
            return None
        try:
            parsed = json.loads(unwrapped)
        except ValueError:
            return None
        if not isinstance(parsed, (dict, list)):
            return None

        compressed = toon_format.encode(parsed)
        return CompressionOutcome(
            original=unwrapped,
            compressed=compressed,
            tokens_before=self._count(unwrapped),
            tokens_after=self._count(compressed),
        )

    def compress_messages(
        self, messages: list[dict[str, Any]], model: str
    ) -> tuple[list[dict[str, Any]], ToolCompressionStats]:
        """Compress every tool-role message of a Chat Completions message list.

        Returns a new list (inputs are never mutated) and the aggregate stats.
        """
        tool_messages = 0
        tokens_before = 0
        tokens_after = 0
        result: list[dict[str, Any]] = []

        for message in messages:
            if message.get("role") != "tool":
                result.append(message)
                continue

            tool_messages += 1
            tool_call_id = message.get("tool_call_id")
            outcome = self.compress_content(message.get("content"))
            if outcome is None:
                logger.info("Skipping TOON conversion for %s - content is not JSON", tool_call_id)
                result.append(message)
                continue

            tokens_before += outcome.tokens_before
            if outcome.accepted:
                tokens_after += outcome.tokens_after
                logger.info(
                    "TOON-compressed tool result %s: %d -> %d tokens",
                    tool_call_id,
                    outcome.tokens_before,
                    outcome.tokens_after,
                )
                result.append({**message, "content": outcome.compressed})
            else:
                tokens_after += outcome.tokens_before
                logger.info(
                    "Skipping TOON compression for %s - encoded form has more tokens (%d >= %d)",
                    tool_call_id,
                    outcome.tokens_after,
                    outcome.tokens_before,
                )
                result.append(message)

        stats = ToolCompressionStats(
            tokens_before=tokens_before,
            tokens_after=tokens_after,
            cost_savings=self._cost_savings(tokens_before - tokens_after, model),
            was_effective=tokens_after < tokens_before,
            had_tool_results=tool_messages > 0,
        )
        logger.info(
            "TOON compression finished: %d tool message(s), %d -> %d tokens",
            tool_messages,
            tokens_before,
            tokens_after,
        )
        return result, stats

    def _cost_savings(self, tokens_saved: int, model: str) -> float:
        if tokens_saved <= 0 or self.pricing is None:
            return 0.0
        price = self.pricing.find_by_model(model)
        if price is None:
            return 0.0
        return tokens_saved * (price.price_per_million_input / _TOKENS_PER_MILLION)
