import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from app.errors import UpstreamProviderError
from app.schemas import GenerateOptions

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Capability table: which models each provider serves and how it is called
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderCapability:
    models: tuple[str, ...]
    default_model: str
    request_shape: str            # "chat_completions" | "messages" | "text_generation"
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None


PROVIDER_CAPABILITIES: dict[str, ProviderCapability] = {
    "openai": ProviderCapability(
        models=("gpt-4-turbo", "gpt-4o", "gpt-4o-mini"),
        default_model="gpt-4-turbo",
        request_shape="chat_completions",
        api_key_env="OPENAI_API_KEY",
    ),
    "grok": ProviderCapability(
        models=("grok-4",),
        default_model="grok-4",
        request_shape="chat_completions",
        api_key_env="XAI_API_KEY",
        base_url="https://api.x.ai/v1",
    ),
    "anthropic": ProviderCapability(
        models=("claude-sonnet-4-20250514", "claude-3-5-haiku-latest"),
        default_model="claude-sonnet-4-20250514",
        request_shape="messages",
        api_key_env="ANTHROPIC_API_KEY",
    ),
    "local": ProviderCapability(
        models=("Qwen/Qwen2.5-0.5B-Instruct",),
        default_model="Qwen/Qwen2.5-0.5B-Instruct",
        request_shape="text_generation",
    ),
}


def resolve_model(provider: str, requested: Optional[str]) -> str:
    """The requested model if the provider serves it, otherwise the provider's default."""
    capability = PROVIDER_CAPABILITIES[provider]
    if requested in capability.models:
        return requested
    return capability.default_model


@dataclass
class Completion:
    text: str
    model: str
    tokens_used: int = 0


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class BaseProvider(ABC):
    """
    One text-generation backend. Clients are created lazily on the first call so
    the service starts without credentials.
    """
    name: str

    def __init__(self, timeout_seconds: float = 20.0):
        self.timeout_seconds = timeout_seconds
        self._client = None

    @property
    def capability(self) -> ProviderCapability:
        return PROVIDER_CAPABILITIES[self.name]

    def is_configured(self) -> bool:
        env = self.capability.api_key_env
        return env is None or bool(os.getenv(env))

    def _require_configured(self):
        if not self.is_configured():
            # Missing credentials make the provider unavailable, which allows failover
            raise UpstreamProviderError(
                f"{self.name} service unavailable: {self.capability.api_key_env} is not set",
                provider=self.name,
                retryable=True,
            )

    @abstractmethod
    def complete(self, prompt: str, options: GenerateOptions) -> Completion:
        """Run a single completion and return its text and token usage."""
        pass


class OpenAIProvider(BaseProvider):
    name = "openai"

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(
                api_key=os.getenv(self.capability.api_key_env),
                base_url=self.capability.base_url,
                timeout=self.timeout_seconds,
                max_retries=0,  # failover is handled by the gateway
            )
        return self._client

    def complete(self, prompt: str, options: GenerateOptions) -> Completion:
        self._require_configured()
        model = resolve_model(self.name, options.model)
        response = self._get_client().chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            top_p=options.top_p,
        )
        text = response.choices[0].message.content or ""
        tokens = response.usage.total_tokens if response.usage else 0
        return Completion(text=text, model=model, tokens_used=tokens)


class GrokProvider(OpenAIProvider):
    """xAI exposes an OpenAI-compatible endpoint, so only the capability entry differs."""
    name = "grok"


class AnthropicProvider(BaseProvider):
    name = "anthropic"

    def _get_client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.Anthropic(
                api_key=os.getenv(self.capability.api_key_env),
                timeout=self.timeout_seconds,
                max_retries=0,
            )
        return self._client

    def complete(self, prompt: str, options: GenerateOptions) -> Completion:
        self._require_configured()
        model = resolve_model(self.name, options.model)
        response = self._get_client().messages.create(
            model=model,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        tokens = response.usage.input_tokens + response.usage.output_tokens
        return Completion(text=text, model=model, tokens_used=tokens)


class LocalProvider(BaseProvider):
    """Runs a small instruction-tuned model in-process through a transformers pipeline."""
    name = "local"

    def _get_pipeline(self):
        """Load and cache the text-generation pipeline on first call."""
        if self._client is None:
            from transformers import pipeline  # imported here to defer heavy load
            logger.info("[local] Loading text-generation model (first use, this may take a moment)...")
            self._client = pipeline("text-generation", model=self.capability.default_model)
            logger.info("[local] Model loaded successfully")
        return self._client

    def complete(self, prompt: str, options: GenerateOptions) -> Completion:
        pipe = self._get_pipeline()
        sampling = options.temperature > 0
        generation_args = {"max_new_tokens": options.max_tokens, "return_full_text": False, "do_sample": sampling}
        if sampling:
            generation_args.update(temperature=options.temperature, top_p=options.top_p)
        result = pipe(prompt, **generation_args)
        text = result[0]["generated_text"]
        tokens = len(pipe.tokenizer.encode(prompt + text))
        return Completion(text=text, model=self.capability.default_model, tokens_used=tokens)


PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    "openai": OpenAIProvider,
    "grok": GrokProvider,
    "anthropic": AnthropicProvider,
    "local": LocalProvider,
}


def build_provider(name: str, timeout_seconds: float = 20.0) -> BaseProvider:
    try:
        provider_class = PROVIDER_CLASSES[name]
    except KeyError:
        raise ValueError(f"Unknown provider: {name}")
    return provider_class(timeout_seconds=timeout_seconds)
