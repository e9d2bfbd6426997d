"""Static model registry data.

Contains known model profiles and a helper to build a pre-loaded
``CapabilityRegistry``. Patterns are matched against the lower-cased model
name without its provider prefix, in declaration order.
"""

from ulp.core.policy.capabilities import CapabilityProfile, CapabilityRegistry

_VISION = CapabilityProfile(supports_vision=True)
_TEXT_ONLY = CapabilityProfile(supports_vision=False)

# ---------------------------------------------------------------------------
# Known model profiles
# ---------------------------------------------------------------------------

KNOWN_MODELS: dict[str, CapabilityProfile] = {
    # OpenAI
    "gpt-3.5-turbo*": _TEXT_ONLY,
    "gpt-4o*": _VISION,
    "gpt-4.1*": _VISION,
    "gpt-4-turbo*": _VISION,
    "gpt-5*": _VISION,
    "o1*": _VISION,
    "o3*": _VISION,
    "o4*": _VISION,
    # Anthropic
    "claude-*": _VISION,
    # Gemini
    "gemini-*": _VISION,
    # DeepSeek
    "deepseek-*": _TEXT_ONLY,
    # Cohere (the v1 Chat API takes no image input)
    "command*": _TEXT_ONLY,
    # Local / open-weight
    "llava*": _VISION,
    "llama3.2-vision*": _VISION,
    "qwen2.5vl*": _VISION,
    "llama*": _TEXT_ONLY,
    "mistral*": _TEXT_ONLY,
    "qwen*": _TEXT_ONLY,
}


def build_default_registry() -> CapabilityRegistry:
    """Return a ``CapabilityRegistry`` pre-loaded with known models."""
    registry = CapabilityRegistry()
    for model_id, profile in KNOWN_MODELS.items():
        registry.register(model_id, profile)
    return registry
