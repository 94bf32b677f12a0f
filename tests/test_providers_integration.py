"""
Integration tests for the local text-generation provider. These load an actual model.
The first run will download the model (~1GB). Subsequent runs use the cache.

Run with: pytest tests/test_providers_integration.py -v -s
"""
import pytest

from app.gateway import LLMGateway
from app.providers import LocalProvider
from app.schemas import GenerateOptions, SourcePassage

pytestmark = pytest.mark.integration


class TestLocalProviderIntegration:
    def setup_method(self):
        self.provider = LocalProvider()

    def test_generates_text(self):
        completion = self.provider.complete(
            "Give one short reason to read an article about renewable energy.",
            GenerateOptions(temperature=0.0, max_tokens=30),
        )

        assert completion.text.strip()
        assert completion.tokens_used > 0
        assert completion.model == "Qwen/Qwen2.5-0.5B-Instruct"

    def test_gateway_serves_local_model_as_primary(self):
        gateway = LLMGateway(self.provider, None, timeout_seconds=120)
        sources = [SourcePassage(source="Wire", excerpt="Solar capacity doubled this year.")]

        response = gateway.generate(
            "Summarize: Solar capacity doubled this year.",
            GenerateOptions(temperature=0.0, max_tokens=40),
            sources,
        )

        assert response.confidence == "High"
        assert response.model_used == "local/Qwen/Qwen2.5-0.5B-Instruct"
        assert response.text.strip()