import logging
import re
from typing import Optional

from app.config import Settings, settings as default_settings
from app.gateway import LLMGateway
from app.models import Article
from app.profile import UserProfile
from app.schemas import GenerateOptions
from app.scoring import ScoreBreakdown

logger = logging.getLogger(__name__)

REASON_MAX_TOKENS = 50
REASON_MAX_WORDS = 15
REASON_MODEL = "gpt-4o"
DEFAULT_REASON = "Recommended for you"

# Article first: the gateway cache keys on the prompt prefix
PROMPT_TEMPLATE = """Article: "{title}"
User activity: {activity}

Given the user's recent reading activity above, provide a short, personalized reason (max 10 words) why this article might interest them.
Respond with ONLY the reason, nothing else. Example: "Matches your interest in climate policy\""""


def templated_reason(article: Article, breakdown: Optional[ScoreBreakdown]) -> str:
    """Deterministic reason keyed on the strongest scoring component. No network call."""
    category = (article.category or "news").lower()
    if breakdown is None:
        return DEFAULT_REASON

    dominant = breakdown.dominant()
    if dominant == "content_similarity":
        return f"Matches your interest in {category}"
    if dominant == "behavior_boost":
        return f"Trending in {category} this week"
    if dominant == "collaborative":
        return f"Similar to {category} stories you saved and shared"
    return "Recently published and highly rated."


def clean_reason(text: str) -> str:
    """First sentence only, quotes stripped, at most REASON_MAX_WORDS words."""
    text = (text or "").strip().strip('"').strip("'").strip()
    if not text:
        return ""
    first_line = text.splitlines()[0]
    sentence = re.split(r"(?<=[.!?])\s", first_line, maxsplit=1)[0].strip().strip('"').strip()
    words = sentence.split()
    if len(words) > REASON_MAX_WORDS:
        sentence = " ".join(words[:REASON_MAX_WORDS])
    return sentence


def summarize_activity(profile: UserProfile) -> str:
    categories = ", ".join(profile.top_categories()) or "none yet"
    keywords = ", ".join(profile.top_keywords()) or "none yet"
    return f"{profile.total_interactions} recent interactions; top categories: {categories}; frequent topics: {keywords}"


class ReasonGenerator:
    """Short "why this article" explanations, generated through the LLM gateway when worth the cost."""

    def __init__(self, llm: LLMGateway, config: Settings = default_settings):
        self.llm = llm
        self.config = config

    def explain(
        self,
        profile: UserProfile,
        article: Article,
        confidence: float,
        breakdown: Optional[ScoreBreakdown] = None,
    ) -> str:
        fallback = templated_reason(article, breakdown)
        if confidence <= self.config.reason_confidence_threshold:
            return fallback

        prompt = PROMPT_TEMPLATE.format(activity=summarize_activity(profile), title=article.title)
        options = GenerateOptions(model=REASON_MODEL, temperature=0.7, max_tokens=REASON_MAX_TOKENS)

        try:
            response = self.llm.generate(prompt, options)
        except Exception as e:
            logger.warning(f"[reasons] Generation failed for article '{article.id}', using template: {e}")
            return fallback

        # Extractive text is a summary of sources, not a reason
        if response.confidence == "Low":
            return fallback

        reason = clean_reason(response.text)
        return reason or fallback
