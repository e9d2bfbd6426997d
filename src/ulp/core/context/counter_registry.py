"""Tokenizer registry — selects the Tokenizer for a provider's tokenizer family."""

from __future__ import annotations

from functools import lru_cache

from ulp.core.context.counter import EstimatingCounter, TiktokenCounter, Tokenizer

# Families whose tokenization is well-served by tiktoken.
_TIKTOKEN_FAMILIES = frozenset({"openai"})

# Observed average characters per token for families without a public
# tokenizer; Claude and Gemini pack text slightly tighter than cl100k.
_ESTIMATE_RATIOS: dict[str, float] = {
    "anthropic": 3.5,
    "gemini": 4.0,
    "cohere": 4.0,
}


@lru_cache(maxsize=None)
def get_tokenizer(family: str) -> Tokenizer:
    """Return the shared Tokenizer for *family*.

    Uses tiktoken for the ``openai`` family and the estimating fallback for
    everything else. Instances are cached; they are read-only once built.
    """
    if family in _TIKTOKEN_FAMILIES:
        return TiktokenCounter("gpt-4o")
    return EstimatingCounter(_ESTIMATE_RATIOS.get(family, 4.0))
