from unittest.mock import MagicMock, patch

import pytest

from app.errors import UpstreamProviderError
from app.providers import (
    PROVIDER_CAPABILITIES,
    AnthropicProvider,
    GrokProvider,
    LocalProvider,
    OpenAIProvider,
    build_provider,
    resolve_model,
)
from app.schemas import GenerateOptions


def mock_chat_response(text="Hello there", total_tokens=12):
    """Mimics an OpenAI chat.completions.create() response."""
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=text))]
    response.usage = MagicMock(total_tokens=total_tokens)
    return response


# ---------------------------------------------------------------------------
# Capability table
# ---------------------------------------------------------------------------

class TestResolveModel:
    def test_supported_model_is_kept(self):
        assert resolve_model("openai", "gpt-4o") == "gpt-4o"

    def test_unsupported_model_maps_to_provider_default(self):
        assert resolve_model("grok", "gpt-4-turbo") == "grok-4"
        assert resolve_model("openai", "grok-4") == "gpt-4-turbo"

    def test_missing_model_maps_to_default(self):
        assert resolve_model("anthropic", None) == PROVIDER_CAPABILITIES["anthropic"].default_model

    def test_every_default_is_a_served_model(self):
        for capability in PROVIDER_CAPABILITIES.values():
            assert capability.default_model in capability.models


class TestBuildProvider:
    def test_known_providers(self):
        assert isinstance(build_provider("openai"), OpenAIProvider)
        assert isinstance(build_provider("grok"), GrokProvider)
        assert isinstance(build_provider("anthropic"), AnthropicProvider)
        assert isinstance(build_provider("local"), LocalProvider)

    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError):
            build_provider("carrier-pigeon")

    def test_timeout_passed_through(self):
        assert build_provider("openai", timeout_seconds=3.5).timeout_seconds == 3.5


# ---------------------------------------------------------------------------
# OpenAI-compatible providers
# ---------------------------------------------------------------------------

class TestOpenAIProvider:
    def test_missing_key_is_retryable_unavailability(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        provider = OpenAIProvider()

        with pytest.raises(UpstreamProviderError) as exc_info:
            provider.complete("prompt", GenerateOptions())

        assert exc_info.value.retryable is True
        assert exc_info.value.provider == "openai"

    def test_complete_uses_resolved_model(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "test-key")
        provider = OpenAIProvider()
        client = MagicMock()
        client.chat.completions.create.return_value = mock_chat_response("Hi", 12)

        with patch.object(provider, "_get_client", return_value=client):
            completion = provider.complete("prompt", GenerateOptions(model="grok-4", max_tokens=50))

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4-turbo"
        assert kwargs["max_tokens"] == 50
        assert completion.text == "Hi"
        assert completion.tokens_used == 12

    def test_none_content_becomes_empty_string(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "test-key")
        provider = OpenAIProvider()
        client = MagicMock()
        client.chat.completions.create.return_value = mock_chat_response(None)

        with patch.object(provider, "_get_client", return_value=client):
            assert provider.complete("prompt", GenerateOptions()).text == ""


class TestGrokProvider:
    def test_uses_xai_key_and_model(self, monkeypatch):
        monkeypatch.setenv("XAI_API_KEY", "test-key")
        provider = GrokProvider()
        client = MagicMock()
        client.chat.completions.create.return_value = mock_chat_response()

        with patch.object(provider, "_get_client", return_value=client):
            completion = provider.complete("prompt", GenerateOptions(model="gpt-4o"))

        assert completion.model == "grok-4"
        assert provider.capability.base_url == "https://api.x.ai/v1"

    def test_not_configured_without_xai_key(self, monkeypatch):
        monkeypatch.delenv("XAI_API_KEY", raising=False)
        assert GrokProvider().is_configured() is False


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

class TestAnthropicProvider:
    def test_complete_joins_text_blocks_and_counts_tokens(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        provider = AnthropicProvider()
        client = MagicMock()
        client.messages.create.return_value = MagicMock(
            content=[MagicMock(type="text", text="Hello "), MagicMock(type="text", text="world")],
            usage=MagicMock(input_tokens=3, output_tokens=4),
        )

        with patch.object(provider, "_get_client", return_value=client):
            completion = provider.complete("prompt", GenerateOptions())

        assert completion.text == "Hello world"
        assert completion.tokens_used == 7


# ---------------------------------------------------------------------------
# Local transformers pipeline
# ---------------------------------------------------------------------------

class TestLocalProvider:
    def test_always_configured(self):
        assert LocalProvider().is_configured() is True

    def test_greedy_when_temperature_zero(self):
        provider = LocalProvider()
        pipe = MagicMock(return_value=[{"generated_text": "A reply"}])
        pipe.tokenizer.encode.return_value = [1, 2, 3]

        with patch.object(provider, "_get_pipeline", return_value=pipe):
            completion = provider.complete("prompt", GenerateOptions(temperature=0.0, max_tokens=20))

        kwargs = pipe.call_args.kwargs
        assert kwargs["do_sample"] is False
        assert kwargs["max_new_tokens"] == 20
        assert "temperature" not in kwargs
        assert completion.text == "A reply"
        assert completion.tokens_used == 3

    def test_pipeline_loaded_once(self):
        provider = LocalProvider()
        fake_transformers = MagicMock()
        with patch.dict("sys.modules", {"transformers": fake_transformers}):
            provider._get_pipeline()
            provider._get_pipeline()
        fake_transformers.pipeline.assert_called_once_with(
            "text-generation", model=PROVIDER_CAPABILITIES["local"].default_model
        )
