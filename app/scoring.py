import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from app.config import Settings, settings as default_settings
from app.models import Article
from app.profile import UserProfile, article_vector
from app.stores import as_utc

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Component weights, must sum to 1
# ---------------------------------------------------------------------------

COLLABORATIVE_WEIGHT = 0.35
CONTENT_WEIGHT = 0.40
BEHAVIOR_WEIGHT = 0.15
FRESHNESS_WEIGHT = 0.10

# freshness = exp(-age_days / 30)
FRESHNESS_SCALE_DAYS = 30.0


def clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def freshness_score(published_at: datetime, now: Optional[datetime] = None) -> float:
    """1.0 at publication, exp(-1) after 30 days. Future-dated articles clamp to 1.0."""
    now = as_utc(now or datetime.now(timezone.utc))
    age_days = max(0.0, (now - as_utc(published_at)).total_seconds() / 86400)
    return clamp(math.exp(-age_days / FRESHNESS_SCALE_DAYS))


def cosine_similarity(a: dict[str, float], b: dict[str, float]) -> float:
    if not a or not b:
        return 0.0
    # iterate over the smaller vector
    if len(a) > len(b):
        a, b = b, a
    dot = sum(value * b.get(key, 0.0) for key, value in a.items())
    norm_a = math.sqrt(sum(v * v for v in a.values()))
    norm_b = math.sqrt(sum(v * v for v in b.values()))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


@dataclass
class ScoreBreakdown:
    collaborative: float
    content_similarity: float
    behavior_boost: float
    freshness: float

    @property
    def total(self) -> float:
        return clamp(
            COLLABORATIVE_WEIGHT * self.collaborative
            + CONTENT_WEIGHT * self.content_similarity
            + BEHAVIOR_WEIGHT * self.behavior_boost
            + FRESHNESS_WEIGHT * self.freshness
        )

    def dominant(self) -> str:
        """Name of the component contributing most to the weighted score."""
        contributions = {
            "collaborative": COLLABORATIVE_WEIGHT * self.collaborative,
            "content_similarity": CONTENT_WEIGHT * self.content_similarity,
            "behavior_boost": BEHAVIOR_WEIGHT * self.behavior_boost,
            "freshness": FRESHNESS_WEIGHT * self.freshness,
        }
        return max(contributions, key=contributions.get)


@dataclass
class ScoredCandidate:
    article: Article
    breakdown: ScoreBreakdown

    @property
    def score(self) -> float:
        return self.breakdown.total

    def sort_key(self):
        # score desc, then credibility desc, then most recent first
        return (
            -self.score,
            -(self.article.credibility_score or 0.0),
            -as_utc(self.article.published_at).timestamp(),
        )


class ScoringEngine:
    """
    Four-factor relevance model:
        score = 0.35*collaborative + 0.40*content_similarity + 0.15*behavior_boost + 0.10*freshness
    Each component is clamped to [0, 1] before weighting; the total is clamped again.
    """

    def __init__(self, config: Settings = default_settings):
        self.config = config

    def score_candidate(self, profile: UserProfile, article: Article, now: Optional[datetime] = None) -> ScoredCandidate:
        category = (article.category or "").lower()

        collaborative = cosine_similarity(article_vector(article), profile.positive_vector)
        content = profile.category_weights.get(category, 0.0)
        behavior = profile.recent_category_engagement.get(category, 0.0) / self.config.behavior_saturation
        fresh = freshness_score(article.published_at, now)

        breakdown = ScoreBreakdown(
            collaborative=clamp(collaborative),
            content_similarity=clamp(content),
            behavior_boost=clamp(behavior),
            freshness=clamp(fresh),
        )
        return ScoredCandidate(article=article, breakdown=breakdown)

    def score(
        self,
        profile: UserProfile,
        candidates: Iterable[Article],
        exclude_seen: bool = True,
        now: Optional[datetime] = None,
    ) -> List[ScoredCandidate]:
        """
        Score every candidate and return them best first.
        A candidate whose scoring raises is dropped and logged; the rest of the feed survives.
        """
        scored = []
        for article in candidates:
            if exclude_seen and article.id in profile.seen_article_ids:
                continue
            try:
                scored.append(self.score_candidate(profile, article, now))
            except Exception as e:
                logger.warning(f"[scoring] Dropping candidate '{article.id}' for user {profile.user_id}: {e}")

        scored.sort(key=ScoredCandidate.sort_key)
        return scored

    def diversify(
        self,
        scored: List[ScoredCandidate],
        diversity_boost: float,
        top_n: Optional[int] = None,
    ) -> List[ScoredCandidate]:
        """
        Greedy re-ranking over the top_n candidates: each time a category is picked,
        later candidates of that category are penalized by another (1 - diversity_boost) factor.
        Candidates beyond top_n keep their original order after the re-ranked head.
        """
        if not diversity_boost or len(scored) < 2:
            return list(scored)

        top_n = len(scored) if top_n is None else min(top_n, len(scored))
        pool = list(scored[:top_n])
        tail = list(scored[top_n:])
        decay = 1.0 - clamp(diversity_boost)
        picks_per_category: dict[str, int] = {}
        reranked = []

        while pool:
            def adjusted(candidate: ScoredCandidate) -> float:
                seen = picks_per_category.get((candidate.article.category or "").lower(), 0)
                return candidate.score * decay ** seen

            # max() keeps the first of equal values, so ties preserve the original ordering
            best = max(pool, key=adjusted)
            pool.remove(best)
            reranked.append(best)
            category = (best.article.category or "").lower()
            picks_per_category[category] = picks_per_category.get(category, 0) + 1

        return reranked + tail
