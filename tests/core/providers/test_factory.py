"""Tests for the API key extraction rules and client options."""

from ulp.core.clients.litellm_client import LiteLLMClient
from ulp.core.clients.mock import MockClient
from ulp.core.providers.factory import ClientOptions, bearer_api_key, header_api_key
from ulp.core.providers.registry import get_provider


class TestBearerApiKey:
    def test_strips_prefix(self) -> None:
        assert bearer_api_key({"Authorization": "Bearer sk-1"}) == "sk-1"

    def test_header_name_case_insensitive(self) -> None:
        assert bearer_api_key({"AUTHORIZATION": "bearer sk-2"}) == "sk-2"

    def test_raw_value(self) -> None:
        assert bearer_api_key({"authorization": "sk-3"}) == "sk-3"

    def test_missing(self) -> None:
        assert bearer_api_key({}) is None
        assert bearer_api_key({"authorization": ""}) is None


class TestHeaderApiKey:
    def setup_method(self) -> None:
        self.extract = header_api_key("x-api-key")

    def test_dedicated_header(self) -> None:
        assert self.extract({"X-Api-Key": "ak-1"}) == "ak-1"

    def test_dedicated_header_wins(self) -> None:
        assert self.extract({"x-api-key": "ak-1", "authorization": "Bearer other"}) == "ak-1"

    def test_bearer_fallback(self) -> None:
        assert self.extract({"authorization": "Bearer ak-2"}) == "ak-2"

    def test_missing(self) -> None:
        assert self.extract({"accept": "text/event-stream"}) is None


class TestOpenAICompatibleClients:
    def test_default_base_url(self) -> None:
        client = get_provider("deepseek").create_client("sk-d", ClientOptions())
        assert isinstance(client, LiteLLMClient)
        assert client.base_url == "https://api.deepseek.com"
        assert client.api_key == "sk-d"

    def test_base_url_override(self) -> None:
        options = ClientOptions(base_url="http://gpu-box:11434/v1", timeout=5.0)
        client = get_provider("ollama").create_client(None, options)
        assert isinstance(client, LiteLLMClient)
        assert client.base_url == "http://gpu-box:11434/v1"
        assert client.api_key is None
        assert client.timeout == 5.0

    def test_mock_mode(self) -> None:
        client = get_provider("openai").create_client(None, ClientOptions(mock_mode=True))
        assert isinstance(client, MockClient)
