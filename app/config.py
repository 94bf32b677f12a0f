import os
from typing import Optional

from pydantic import BaseModel

# ---------------------------------------------------------------------------
# Interaction weights: static, never derived at runtime
# ---------------------------------------------------------------------------

INTERACTION_WEIGHTS: dict[str, float] = {
    "view":          1.0,
    "read_complete": 2.0,
    "save":          3.0,
    "share":         2.5,
    "note":          2.5,
    "summarize":     1.5,
    "qa":            1.5,
}

# Actions counted as positive engagement for the collaborative signal
POSITIVE_ACTIONS = {"read_complete", "save", "share"}


class Settings(BaseModel):
    """Tunable parameters for the personalization pipeline."""

    database_url: str = "sqlite:///./news.db"

    # --- Profile aggregation ---
    lookback_days: int = 90
    decay_lambda: float = 0.1              # per day
    behavior_half_life_days: float = 7.0
    behavior_saturation: float = 5.0       # decayed engagement that maps to a full boost

    # --- Feed composition ---
    fallback_threshold: int = 3            # fewer interactions than this -> fallback feed
    candidate_pool_size: int = 200
    reason_confidence_threshold: float = 0.3

    # --- Caching and rate limiting ---
    feed_cache_ttl_seconds: int = 15 * 60
    feed_cache_capacity: int = 10_000
    rate_limit_requests: int = 10
    rate_limit_window_seconds: int = 60
    summarize_rate_limit: int = 10
    qa_rate_limit: int = 20
    invalidate_rate_limit: int = 50

    # --- LLM gateway ---
    llm_primary_provider: str = "openai"
    llm_fallback_provider: Optional[str] = "grok"
    llm_timeout_seconds: float = 20.0
    llm_cache_capacity: int = 1024


def _env(name: str, cast, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return cast(raw)


def load_settings() -> Settings:
    """Build Settings from environment variables, falling back to the defaults."""
    defaults = Settings()
    primary = _env("LLM_PROVIDER", str, defaults.llm_primary_provider)
    # openai and grok back each other up unless told otherwise
    default_fallback = "grok" if primary == "openai" else "openai"
    fallback = _env("LLM_FALLBACK_PROVIDER", str, default_fallback)
    if fallback == "none":
        fallback = None

    return Settings(
        database_url=_env("DATABASE_URL", str, defaults.database_url),
        lookback_days=_env("PROFILE_LOOKBACK_DAYS", int, defaults.lookback_days),
        decay_lambda=_env("PROFILE_DECAY_LAMBDA", float, defaults.decay_lambda),
        behavior_half_life_days=_env("BEHAVIOR_HALF_LIFE_DAYS", float, defaults.behavior_half_life_days),
        fallback_threshold=_env("FALLBACK_MIN_INTERACTIONS", int, defaults.fallback_threshold),
        candidate_pool_size=_env("CANDIDATE_POOL_SIZE", int, defaults.candidate_pool_size),
        reason_confidence_threshold=_env(
            "REASON_CONFIDENCE_THRESHOLD", float, defaults.reason_confidence_threshold
        ),
        feed_cache_ttl_seconds=_env("FEED_CACHE_TTL_SECONDS", int, defaults.feed_cache_ttl_seconds),
        feed_cache_capacity=_env("FEED_CACHE_CAPACITY", int, defaults.feed_cache_capacity),
        rate_limit_requests=_env("PERSONALIZE_RATE_LIMIT", int, defaults.rate_limit_requests),
        rate_limit_window_seconds=_env("RATE_LIMIT_WINDOW_SECONDS", int, defaults.rate_limit_window_seconds),
        summarize_rate_limit=_env("SUMMARIZE_RATE_LIMIT", int, defaults.summarize_rate_limit),
        qa_rate_limit=_env("QA_RATE_LIMIT", int, defaults.qa_rate_limit),
        invalidate_rate_limit=_env("INVALIDATE_RATE_LIMIT", int, defaults.invalidate_rate_limit),
        llm_primary_provider=primary,
        llm_fallback_provider=fallback,
        llm_timeout_seconds=_env("LLM_TIMEOUT_SECONDS", float, defaults.llm_timeout_seconds),
        llm_cache_capacity=_env("LLM_CACHE_CAPACITY", int, defaults.llm_cache_capacity),
    )


# Shared process-wide settings, imported by the services and routers
settings = load_settings()
