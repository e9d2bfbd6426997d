"""Tests for ProxySettings and the YAML settings loader."""

from pathlib import Path

import pytest

from ulp.core.errors import ConfigError
from ulp.core.interface.config import (
    DEFAULT_MAX_IMAGE_SIZE_BYTES,
    ProviderSettings,
    ProxySettings,
    load_settings,
)


class TestProxySettings:
    def test_defaults(self) -> None:
        settings = ProxySettings()
        assert settings.compression_enabled is False
        assert settings.mock_mode is False
        assert settings.max_image_size_bytes == DEFAULT_MAX_IMAGE_SIZE_BYTES
        assert settings.pricing == []

    def test_for_provider_known(self) -> None:
        settings = ProxySettings(providers={"ollama": ProviderSettings(base_url="http://gpu:11434/v1")})
        assert settings.for_provider("ollama").base_url == "http://gpu:11434/v1"

    def test_for_provider_unknown_gives_defaults(self) -> None:
        assert ProxySettings().for_provider("anthropic") == ProviderSettings()


class TestLoadSettings:
    def test_full_file(self, tmp_path: Path) -> None:
        path = tmp_path / "ulp.yaml"
        path.write_text(
            """
compression_enabled: true
max_image_size_bytes: 2048
providers:
  deepseek:
    api_key: sk-test
    timeout: 30
pricing:
  - model: deepseek-chat
    price_per_million_input: 0.27
vision:
  my-local-model: true
""",
            encoding="utf-8",
        )
        settings = load_settings(path)
        assert settings.compression_enabled is True
        assert settings.max_image_size_bytes == 2048
        assert settings.for_provider("deepseek").api_key == "sk-test"
        assert settings.for_provider("deepseek").timeout == 30
        assert settings.pricing[0].price_per_million_input == 0.27
        assert settings.vision == {"my-local-model": True}

    def test_env_interpolation(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ULP_TEST_KEY", "sk-from-env")
        path = tmp_path / "ulp.yaml"
        path.write_text("providers:\n  openai:\n    api_key: ${ULP_TEST_KEY}\n", encoding="utf-8")
        assert load_settings(path).for_provider("openai").api_key == "sk-from-env"

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_settings(path) == ProxySettings()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Cannot read"):
            load_settings(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("providers: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigError, match="YAML parse error"):
            load_settings(path)

    def test_non_mapping_root(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="mapping"):
            load_settings(path)

    def test_validation_error(self, tmp_path: Path) -> None:
        path = tmp_path / "invalid.yaml"
        path.write_text("max_image_size_bytes: lots\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid settings"):
            load_settings(path)
