import logging
import math
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.config import INTERACTION_WEIGHTS, POSITIVE_ACTIONS, Settings, settings as default_settings
from app.models import Article
from app.stores import ArticleStore, InteractionStore, as_utc

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Keyword extraction
# ---------------------------------------------------------------------------

STOP_WORDS = {
    "the", "and", "for", "are", "but", "not", "you", "all", "any", "can", "had", "her", "was",
    "one", "our", "out", "has", "his", "how", "its", "may", "new", "now", "old", "see", "two",
    "who", "did", "get", "let", "say", "she", "too", "use", "with", "that", "this", "from",
    "they", "will", "have", "been", "were", "what", "when", "your", "into", "than", "then",
    "them", "over", "after", "about", "more", "some", "such", "their", "there", "these",
    "which", "would", "could", "should", "while", "where", "being", "also", "just", "said",
    "says", "year", "years", "week", "today",
}

TOKEN_RE = re.compile(r"[a-z]+")
CONTENT_PREFIX_CHARS = 500  # only the lead of the body feeds the keyword vector
TITLE_WEIGHT = 2.0


def extract_keywords(text: Optional[str]) -> list[str]:
    """Lower-cased alphabetic tokens of length >= 3, stop words removed."""
    return [
        token for token in TOKEN_RE.findall((text or "").lower())
        if len(token) >= 3 and token not in STOP_WORDS
    ]


def article_vector(article: Article) -> dict[str, float]:
    """
    Weighted feature vector for an article: title keywords count double,
    lead-of-body keywords count once, plus a single `category:<name>` feature.
    """
    vector: dict[str, float] = defaultdict(float)
    for token in extract_keywords(article.title):
        vector[token] += TITLE_WEIGHT
    for token in extract_keywords((article.content or "")[:CONTENT_PREFIX_CHARS]):
        vector[token] += 1.0
    if article.category:
        vector[f"category:{article.category.lower()}"] += 1.0
    return dict(vector)


def normalize(weights: dict[str, float]) -> dict[str, float]:
    total = sum(weights.values())
    if total <= 0:
        return {}
    return {key: value / total for key, value in weights.items()}


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

@dataclass
class UserProfile:
    """Derived view over a user's interaction log. Never persisted."""
    user_id: str
    category_weights: dict[str, float] = field(default_factory=dict)
    keyword_weights: dict[str, float] = field(default_factory=dict)
    recency_decayed_engagement: float = 0.0
    total_interactions: int = 0
    positive_vector: dict[str, float] = field(default_factory=dict)
    recent_category_engagement: dict[str, float] = field(default_factory=dict)
    seen_article_ids: set[str] = field(default_factory=set)

    def top_categories(self, n: int = 3) -> list[str]:
        return [c for c, _ in sorted(self.category_weights.items(), key=lambda kv: kv[1], reverse=True)[:n]]

    def top_keywords(self, n: int = 5) -> list[str]:
        return [k for k, _ in sorted(self.keyword_weights.items(), key=lambda kv: kv[1], reverse=True)[:n]]


class ProfileAggregator:
    """Builds a UserProfile from the interaction log, recency-decayed per interaction."""

    def __init__(
        self,
        interactions: InteractionStore,
        articles: ArticleStore,
        config: Settings = default_settings,
    ):
        self.interactions = interactions
        self.articles = articles
        self.config = config

    def build_profile(self, user_id: str, now: Optional[datetime] = None) -> UserProfile:
        """
        Aggregate every interaction inside the lookback window:
            weight = interaction_weight(action) * exp(-lambda * age_days)
        Category and keyword weights are normalized to sum to 1. An empty history
        yields an empty profile with total_interactions == 0.
        """
        now = as_utc(now or datetime.now(timezone.utc))
        since = now - timedelta(days=self.config.lookback_days)
        events = self.interactions.query_interactions(user_id, since)

        profile = UserProfile(user_id=user_id, total_interactions=len(events))
        if not events:
            return profile

        articles = self.articles.get_articles_by_ids(e.article_id for e in events)

        categories: dict[str, float] = defaultdict(float)
        keywords: dict[str, float] = defaultdict(float)
        positive: dict[str, float] = defaultdict(float)
        recent: dict[str, float] = defaultdict(float)

        for event in events:
            profile.seen_article_ids.add(event.article_id)

            action_weight = INTERACTION_WEIGHTS.get(event.action)
            if action_weight is None:
                logger.warning(f"[profile] Ignoring unknown action '{event.action}' for user {user_id}")
                continue

            age_days = max(0.0, (now - as_utc(event.timestamp)).total_seconds() / 86400)
            weight = action_weight * math.exp(-self.config.decay_lambda * age_days)
            profile.recency_decayed_engagement += weight

            article = articles.get(event.article_id)
            if article is None:
                # Unknown article: still counts as engagement, contributes no features
                continue

            category = (article.category or "").lower()
            if category:
                categories[category] += weight

            vector = article_vector(article)
            for token in vector:
                if not token.startswith("category:"):
                    keywords[token] += weight

            if event.action in POSITIVE_ACTIONS:
                for token, tf in vector.items():
                    positive[token] += tf * weight

            if category and age_days <= self.config.behavior_half_life_days:
                recent[category] += action_weight * 0.5 ** (age_days / self.config.behavior_half_life_days)

        profile.category_weights = normalize(categories)
        profile.keyword_weights = normalize(keywords)
        profile.positive_vector = dict(positive)
        profile.recent_category_engagement = dict(recent)

        logger.info(
            f"[profile] user={user_id} interactions={profile.total_interactions} "
            f"top_categories={profile.top_categories()}"
        )
        return profile
