from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import List, Literal, Optional


class CamelModel(BaseModel):
    """Serialized with camelCase keys; accepts either camelCase or snake_case on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Interactions
# ---------------------------------------------------------------------------

class InteractionTrackRequest(BaseModel):
    """Body of POST /interactions/track. `action` is validated by the service, not the schema."""
    user_id: Optional[str] = None
    article_id: str
    action: str
    duration_seconds: Optional[float] = Field(default=None, ge=0)
    session_id: Optional[str] = None


class TrackResponse(BaseModel):
    success: bool = True


class InvalidateRequest(BaseModel):
    user_id: Optional[str] = None


class InvalidateResponse(BaseModel):
    success: bool = True
    message: str = "Cache invalidated"


# ---------------------------------------------------------------------------
# Personalized feed
# ---------------------------------------------------------------------------

class PersonalizeRequest(BaseModel):
    """Body of POST /personalize. user_id is checked by the service so a missing one reads like a blank one."""
    user_id: Optional[str] = None
    limit: int = Field(default=20, ge=1, le=50)
    categories: Optional[List[str]] = None
    location_filter: Optional[str] = None
    diversity_boost: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    exclude_seen: bool = True


class RecommendationItem(BaseModel):
    article_id: str
    title: str
    category: str
    score: float = Field(ge=0.0, le=1.0)
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)
    source: Literal["personalized", "fallback"]
    published_at: datetime
    credibility_score: float
    bucket: Optional[str] = None  # fallback bucket the item was drawn from


class FeedMetadata(CamelModel):
    total_count: int
    generated_at: datetime
    fallback_buckets: Optional[List[str]] = None


class FeedResponse(BaseModel):
    items: List[RecommendationItem]
    source: Literal["personalized", "fallback"]
    metadata: FeedMetadata


# ---------------------------------------------------------------------------
# Text generation
# ---------------------------------------------------------------------------

class SourcePassage(CamelModel):
    source: str
    url: str = ""
    excerpt: str
    score: float = 0.0


class GenerateOptions(CamelModel):
    model: str = "gpt-4-turbo"
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=500, ge=1, le=4096)
    top_p: float = Field(default=0.9, gt=0.0, le=1.0)


class GenerateRequest(CamelModel):
    prompt: str = Field(min_length=1)
    sources: List[SourcePassage] = Field(default_factory=list)
    options: GenerateOptions = Field(default_factory=GenerateOptions)
    request_id: Optional[str] = None


class LLMResponse(CamelModel):
    text: str
    provider_used: str
    model_used: str
    tokens_used: int = 0
    confidence: Literal["High", "Med", "Low"]
    provider_fallback_used: bool = False
    request_id: str
    sources: List[SourcePassage] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Summarization / Q&A
# ---------------------------------------------------------------------------

class SummarizeRequest(CamelModel):
    article_id: str = Field(min_length=1)
    user_id: Optional[str] = None
    length: Literal["short", "medium", "long"] = "medium"
    deterministic: bool = False


class QARequest(CamelModel):
    article_id: str = Field(min_length=1)
    user_id: Optional[str] = None
    question: str = Field(min_length=5)


class SummaryResponse(CamelModel):
    summary: str
    model_used: str
    provider_used: str
    tokens_used: int
    sources: List[SourcePassage]
    request_id: str
    confidence: Literal["High", "Med", "Low"]
    provider_fallback_used: bool


class AnswerResponse(CamelModel):
    answer: str
    model_used: str
    provider_used: str
    tokens_used: int
    sources: List[SourcePassage]
    request_id: str
    confidence: Literal["High", "Med", "Low"]
    provider_fallback_used: bool
