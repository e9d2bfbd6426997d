"""Proxy settings — feature flags, per-provider overrides, pricing table."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from ulp.core.errors import ConfigError

# Images whose decoded payload exceeds this many bytes are replaced by a
# placeholder before reaching the upstream model.
DEFAULT_MAX_IMAGE_SIZE_BYTES = 1024 * 1024


class TelemetrySettings(BaseModel):
    """Optional telemetry configuration."""

    enabled: bool = False
    service_name: str = "ulp"
    otlp_endpoint: str | None = None


class ProviderSettings(BaseModel):
    """Overrides for a single upstream provider."""

    base_url: str | None = None
    api_key: str | None = None
    timeout: float = 600.0


class TokenPrice(BaseModel):
    """Per-model token price, in currency units per million tokens."""

    model: str
    price_per_million_input: float = 0.0
    price_per_million_output: float = 0.0


class ProxySettings(BaseModel):
    """Top-level settings for the proxy engine.

    ``vision`` maps model names (or glob patterns) to an explicit image-input
    capability, overriding the built-in capability registry.
    """

    compression_enabled: bool = False
    max_image_size_bytes: int = DEFAULT_MAX_IMAGE_SIZE_BYTES
    mock_mode: bool = False
    providers: dict[str, ProviderSettings] = Field(default_factory=lambda: dict[str, ProviderSettings]())
    pricing: list[TokenPrice] = []
    vision: dict[str, bool] = Field(default_factory=lambda: dict[str, bool]())
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)

    def for_provider(self, provider: str) -> ProviderSettings:
        """Return the overrides for *provider*, or defaults when none are set."""
        return self.providers.get(provider) or ProviderSettings()


def load_settings(path: Path) -> ProxySettings:
    """Read a YAML settings file, interpolating environment variables.

    Variables in the form ``${VAR}`` or ``$VAR`` are expanded before parsing.
    An empty file yields default settings.

    Raises:
        ConfigError: On read errors, YAML parse errors or validation failures.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc

    expanded = os.path.expandvars(raw)

    try:
        data: Any = yaml.safe_load(expanded)
    except yaml.YAMLError as exc:
        raise ConfigError(f"YAML parse error: {exc}") from exc

    if data is None:
        return ProxySettings()
    if not isinstance(data, dict):
        raise ConfigError(f"Settings root must be a mapping, got {type(data).__name__}")

    try:
        return ProxySettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings: {exc}") from exc
