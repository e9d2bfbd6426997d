"""Pricing lookup — per-model token prices consumed by the compression engine."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from ulp.core.interface.config import TokenPrice


@runtime_checkable
class PricingLookup(Protocol):
    """Read-only source of per-model token prices."""

    def find_by_model(self, model: str) -> TokenPrice | None:
        """Return the price entry for *model*, or ``None`` when unknown."""
        ...


class StaticPricingTable:
    """In-memory pricing table.

    Lookup order:
    1. Exact model string (e.g. ``deepseek/deepseek-chat``)
    2. Model name without provider prefix (e.g. ``deepseek-chat``)
    """

    def __init__(self, prices: Iterable[TokenPrice] = ()) -> None:
        self._prices: dict[str, TokenPrice] = {p.model: p for p in prices}

    def find_by_model(self, model: str) -> TokenPrice | None:
        price = self._prices.get(model)
        if price is None and "/" in model:
            price = self._prices.get(model.split("/", 1)[1])
        return price

    def __len__(self) -> int:
        return len(self._prices)
