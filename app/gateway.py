import logging
import re
import threading
import time
import uuid
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import List, Optional

from app.config import Settings, settings
from app.errors import UpstreamProviderError
from app.providers import BaseProvider, Completion, build_provider, resolve_model
from app.schemas import GenerateOptions, LLMResponse, SourcePassage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Retryability: anything not matching these signatures propagates immediately
# ---------------------------------------------------------------------------

RETRYABLE_SIGNATURES = [
    re.compile(r"(status|error|code|http)\D{0,10}5\d\d\b", re.IGNORECASE),  # 5xx
    re.compile(r"internal server error|bad gateway|gateway timeout|overloaded", re.IGNORECASE),
    re.compile(r"time[d]?\s?out", re.IGNORECASE),
    re.compile(r"rate[_ ]?limit|too many requests|\b429\b", re.IGNORECASE),
    re.compile(r"couldn'?t generate", re.IGNORECASE),
    re.compile(r"service unavailable|connection error", re.IGNORECASE),
]

RETRYABLE_STATUS_CODES = {429}

PROMPT_KEY_CHARS = 100
MAX_EXTRACTIVE_SENTENCES = 3
SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")
UNAVAILABLE_MESSAGE = "Unable to generate a response at this time. Please try again later."


def is_retryable_error(error: BaseException) -> bool:
    """Classify a provider failure as transient (failover allowed) or not."""
    if isinstance(error, UpstreamProviderError):
        return error.retryable
    if isinstance(error, (FutureTimeoutError, TimeoutError)):
        return True

    status = getattr(error, "status_code", None)
    if isinstance(status, int) and (status >= 500 or status in RETRYABLE_STATUS_CODES):
        return True

    text = f"{type(error).__name__}: {error}"
    return any(pattern.search(text) for pattern in RETRYABLE_SIGNATURES)


def extractive_summary(sources: List[SourcePassage]) -> str:
    """
    Provider-free answer: the first three sentences of the supplied excerpts.
    Never touches the network.
    """
    excerpts = [s.excerpt.strip() for s in sources if s.excerpt and s.excerpt.strip()]
    if not excerpts:
        return UNAVAILABLE_MESSAGE

    sentences = SENTENCE_RE.findall(" ".join(excerpts))
    if not sentences:
        return excerpts[0][:200] + "..."

    return " ".join(s.strip() for s in sentences[:MAX_EXTRACTIVE_SENTENCES])


class ResponseCache:
    """Capacity-bounded LRU of generated responses, keyed by (provider, model, prompt prefix)."""

    def __init__(self, capacity: int = 1024):
        self.capacity = capacity
        self._entries: OrderedDict[tuple, LLMResponse] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def key(provider: str, model: str, prompt: str) -> tuple:
        return provider, model, prompt[:PROMPT_KEY_CHARS]

    def get(self, key: tuple) -> Optional[LLMResponse]:
        with self._lock:
            response = self._entries.get(key)
            if response is not None:
                self._entries.move_to_end(key)
            return response

    def put(self, key: tuple, response: LLMResponse):
        with self._lock:
            self._entries[key] = response
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)


class LLMGateway:
    """
    Primary/fallback text generation with caching.

    TRY_PRIMARY  -> success               -> High
                 -> retryable failure     -> TRY_FALLBACK
                 -> non-retryable failure -> UpstreamProviderError (no fallback)
    TRY_FALLBACK -> success               -> Med
                 -> any failure           -> extractive fallback, Low
    """

    def __init__(
        self,
        primary: BaseProvider,
        fallback: Optional[BaseProvider] = None,
        timeout_seconds: float = 20.0,
        cache_capacity: int = 1024,
        max_workers: int = 8,
    ):
        self.primary = primary
        self.fallback = fallback
        self.timeout_seconds = timeout_seconds
        self.cache = ResponseCache(cache_capacity)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="llm")

    @classmethod
    def from_settings(cls, config: Settings) -> "LLMGateway":
        primary = build_provider(config.llm_primary_provider, config.llm_timeout_seconds)
        fallback = None
        if config.llm_fallback_provider and config.llm_fallback_provider != config.llm_primary_provider:
            fallback = build_provider(config.llm_fallback_provider, config.llm_timeout_seconds)
        return cls(
            primary=primary,
            fallback=fallback,
            timeout_seconds=config.llm_timeout_seconds,
            cache_capacity=config.llm_cache_capacity,
        )

    def _call(self, provider: BaseProvider, prompt: str, options: GenerateOptions) -> Completion:
        """Run one provider call, bounded by the gateway timeout."""
        future = self._executor.submit(provider.complete, prompt, options)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            raise UpstreamProviderError(
                f"{provider.name} timed out after {self.timeout_seconds}s",
                provider=provider.name,
                retryable=True,
            )

    def _attempt(self, provider: BaseProvider, prompt: str, options: GenerateOptions, request_id: str) -> Completion:
        start = time.time()
        try:
            completion = self._call(provider, prompt, options)
        except Exception as e:
            latency_ms = (time.time() - start) * 1000
            logger.warning(
                f"[gateway] {request_id} provider={provider.name} failed after {latency_ms:.0f}ms "
                f"(retryable={is_retryable_error(e)}): {e}"
            )
            raise
        latency_ms = (time.time() - start) * 1000
        logger.info(
            f"[gateway] {request_id} provider={provider.name} model={completion.model} "
            f"tokens={completion.tokens_used} latency={latency_ms:.0f}ms"
        )
        return completion

    def generate(
        self,
        prompt: str,
        options: Optional[GenerateOptions] = None,
        sources: Optional[List[SourcePassage]] = None,
        request_id: Optional[str] = None,
    ) -> LLMResponse:
        options = options or GenerateOptions()
        sources = list(sources or [])
        request_id = request_id or f"req_{uuid.uuid4().hex[:12]}"

        cache_key = ResponseCache.key(self.primary.name, options.model, prompt)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info(f"[gateway] {request_id} cache hit ({cached.provider_used})")
            return cached.model_copy(update={"request_id": request_id})

        # --- Primary ---
        try:
            completion = self._attempt(self.primary, prompt, options, request_id)
            response = self._response(completion, self.primary, "High", False, sources, request_id)
            self.cache.put(cache_key, response)
            return response
        except Exception as e:
            if not is_retryable_error(e):
                if isinstance(e, UpstreamProviderError):
                    raise
                raise UpstreamProviderError(str(e), provider=self.primary.name, retryable=False) from e

        # --- Fallback provider ---
        if self.fallback is not None:
            try:
                completion = self._attempt(self.fallback, prompt, options, request_id)
                response = self._response(completion, self.fallback, "Med", True, sources, request_id)
                self.cache.put(cache_key, response)
                return response
            except Exception:
                # already logged by _attempt; fall through to the extractive answer
                pass

        # --- Extractive ---
        logger.warning(f"[gateway] {request_id} all providers failed, using extractive fallback")
        return LLMResponse(
            text=extractive_summary(sources),
            provider_used="extractive",
            model_used="extractive/textrank",
            tokens_used=0,
            confidence="Low",
            provider_fallback_used=True,
            request_id=request_id,
            sources=sources,
        )

    @staticmethod
    def _response(
        completion: Completion,
        provider: BaseProvider,
        confidence: str,
        fallback_used: bool,
        sources: List[SourcePassage],
        request_id: str,
    ) -> LLMResponse:
        return LLMResponse(
            text=completion.text,
            provider_used=provider.name,
            model_used=f"{provider.name}/{completion.model}",
            tokens_used=completion.tokens_used,
            confidence=confidence,
            provider_fallback_used=fallback_used,
            request_id=request_id,
            sources=sources,
        )

    def clear_cache(self):
        self.cache.clear()
        logger.info("[gateway] Response cache cleared")

    def status(self) -> dict:
        providers = {self.primary.name: self.primary.is_configured()}
        if self.fallback is not None:
            providers[self.fallback.name] = self.fallback.is_configured()
        return {
            "primary": self.primary.name,
            "fallback": self.fallback.name if self.fallback else None,
            "configured": providers,
            "default_models": {
                name: resolve_model(name, None) for name in providers
            },
            "cached_responses": len(self.cache),
        }


# Shared singleton, imported by the reason generator, the assistant and the /ml routes
gateway = LLMGateway.from_settings(settings)
