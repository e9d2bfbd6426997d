"""Capability detection for upstream models.

Provides a structured profile of model capabilities and a registry that maps
model identifiers (exact names or glob patterns) to their profiles. The
content policy uses it to decide whether image blocks may reach a model.
"""

from fnmatch import fnmatchcase

from pydantic import BaseModel


class CapabilityProfile(BaseModel):
    """Structured representation of a model's capabilities."""

    supports_vision: bool = False


class CapabilityRegistry:
    """Maps model identifiers and glob patterns to capability profiles.

    Read-only after construction; shared between requests.
    """

    def __init__(self) -> None:
        self._models: dict[str, CapabilityProfile] = {}
        self._patterns: list[tuple[str, CapabilityProfile]] = []

    def register(self, model_id: str, profile: CapabilityProfile) -> None:
        """Register a profile for *model_id*; ``*``/``?`` make it a pattern."""
        if any(ch in model_id for ch in "*?["):
            self._patterns.append((model_id, profile))
        else:
            self._models[model_id] = profile

    def resolve(self, model: str) -> CapabilityProfile:
        """Resolve the capability profile for *model*.

        Lookup order:
        1. Full model string (e.g. ``openai/gpt-4o``)
        2. Model name only (e.g. ``gpt-4o``)
        3. First registered pattern matching the model name
        4. Default profile (no vision)
        """
        name_only = model.split("/", 1)[1] if "/" in model else model

        profile = self._models.get(model) or self._models.get(name_only)
        if profile is not None:
            return profile

        lowered = name_only.lower()
        for pattern, candidate in self._patterns:
            if fnmatchcase(lowered, pattern):
                return candidate
        return CapabilityProfile()

    def with_overrides(self, vision: dict[str, bool]) -> "CapabilityRegistry":
        """Return a copy where *vision* entries take precedence."""
        registry = CapabilityRegistry()
        for model_id, supported in vision.items():
            registry.register(model_id, CapabilityProfile(supports_vision=supported))
        registry._models = {**self._models, **registry._models}
        registry._patterns = registry._patterns + self._patterns
        return registry
