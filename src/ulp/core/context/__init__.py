"""Token counting for compression decisions."""

from ulp.core.context.counter import EstimatingCounter, TiktokenCounter, Tokenizer
from ulp.core.context.counter_registry import get_tokenizer

__all__ = [
    "EstimatingCounter",
    "TiktokenCounter",
    "Tokenizer",
    "get_tokenizer",
]
