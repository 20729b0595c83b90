"""Tests for the LLM capability"""
from unittest.mock import MagicMock

import pytest
import requests

from cortex.config import LLMSettings
from cortex.exceptions import CapabilityUnavailable, LLMResponseError
from cortex.llm import LLMClient, LLMProvider, create_llm, rule_based_importance


def _client(provider, payload=None, **kwargs):
    client = LLMClient(provider=provider, api_key=kwargs.pop("api_key", "key"), **kwargs)
    client._session = MagicMock()
    if payload is not None:
        client._session.post.return_value.json.return_value = payload
    return client


class TestProviders:
    """Each provider's request and response shape"""

    def test_anthropic(self):
        client = _client("anthropic", {"content": [{"type": "text", "text": " Two patterns. "}]})

        text = client.generate_text("List patterns", context="MEMORIES", instruction="Be brief",
                                    max_tokens=50)

        assert text == "Two patterns."
        url = client._session.post.call_args.args[0]
        body = client._session.post.call_args.kwargs["json"]
        assert url == "https://api.anthropic.com/v1/messages"
        assert body["system"] == "Be brief"
        assert body["max_tokens"] == 50
        assert body["messages"] == [{"role": "user", "content": "MEMORIES\n\nList patterns"}]

    def test_anthropic_headers(self):
        client = LLMClient(provider="anthropic", api_key="key")
        assert client._session.headers["x-api-key"] == "key"
        assert client._session.headers["anthropic-version"] == "2023-06-01"

    def test_openai(self):
        client = _client("openai", {"choices": [{"message": {"content": "Hello"}}]})

        assert client.generate_text("Say hi") == "Hello"

        body = client._session.post.call_args.kwargs["json"]
        assert client._session.post.call_args.args[0] == "https://api.openai.com/v1/chat/completions"
        assert body["model"] == "gpt-4o-mini"
        assert body["messages"][0] == {"role": "system", "content": LLMClient.SYSTEM_PROMPT}
        assert body["max_tokens"] == 500

    def test_ollama_without_key(self):
        client = _client("ollama", {"response": "local thought"}, api_key=None)

        assert client.provider == LLMProvider.OLLAMA
        assert client.generate_text("Think") == "local thought"
        assert client._session.post.call_args.args[0] == "http://localhost:11434/api/generate"
        assert client._session.post.call_args.kwargs["json"]["stream"] is False

    def test_cloud_provider_requires_key(self):
        with pytest.raises(ValueError):
            LLMClient(provider="openai")

    def test_custom_base_url_and_model(self):
        client = _client("openai", {"choices": [{"message": {"content": "ok"}}]},
                         base_url="http://proxy:8080/v1/", model="gpt-4o")
        client.generate_text("x")
        assert client._session.post.call_args.args[0] == "http://proxy:8080/v1/chat/completions"
        assert client._session.post.call_args.kwargs["json"]["model"] == "gpt-4o"


class TestErrors:
    def test_transport_error(self):
        client = _client("anthropic")
        client._session.post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(CapabilityUnavailable):
            client.generate_text("x")

    def test_malformed_response(self):
        client = _client("anthropic", {"error": "overloaded"})
        with pytest.raises(CapabilityUnavailable):
            client.generate_text("x")

    def test_empty_response(self):
        client = _client("openai", {"choices": [{"message": {"content": "   "}}]})
        with pytest.raises(LLMResponseError):
            client.generate_text("x")


class TestScoreImportance:
    @pytest.mark.parametrize("reply, expected", [
        ("7", 0.7),
        ("I'd say 9 out of 10", 0.9),
        ("15", 1.0),
        ("0", 0.1),
    ])
    def test_rating_mapped(self, reply, expected):
        client = _client("openai", {"choices": [{"message": {"content": reply}}]})
        assert client.score_importance("a whale sold") == pytest.approx(expected)

    def test_falls_back_to_rules_without_integer(self):
        client = _client("openai", {"choices": [{"message": {"content": "very important"}}]})
        assert client.score_importance("a whale sold") == pytest.approx(rule_based_importance("a whale sold"))

    def test_falls_back_to_rules_on_failure(self):
        client = _client("openai")
        client._session.post.side_effect = requests.Timeout("slow")
        assert client.score_importance("gm") == 0.4


class TestCreateLLM:
    def test_none_without_provider(self):
        assert create_llm(LLMSettings()) is None

    def test_none_without_key(self):
        assert create_llm(LLMSettings(provider="anthropic")) is None

    def test_none_for_unknown_provider(self):
        assert create_llm(LLMSettings(provider="gemini", api_key="k")) is None

    def test_configured(self):
        llm = create_llm(LLMSettings(provider="Anthropic", api_key="k", max_tokens=200))
        assert llm.provider == LLMProvider.ANTHROPIC
        assert llm.max_tokens == 200
