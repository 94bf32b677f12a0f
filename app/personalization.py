import logging
from datetime import datetime, timezone
from typing import List, Optional

from app.cache import FeedCache, RateLimiter
from app.config import INTERACTION_WEIGHTS, Settings, settings
from app.errors import ValidationError
from app.fallback import FallbackComposer
from app.gateway import gateway
from app.models import Interaction
from app.profile import ProfileAggregator, UserProfile
from app.reasons import ReasonGenerator, templated_reason
from app.schemas import FeedMetadata, FeedResponse, RecommendationItem
from app.scoring import ScoringEngine
from app.stores import ArticleStore, InteractionStore

logger = logging.getLogger(__name__)

# How far past `limit` the diversification pass looks for alternatives
DIVERSITY_POOL_FACTOR = 3


class PersonalizationService:
    """
    Entry point for feeds and interaction tracking.

    get_feed: rate limit -> cached feed -> profile -> fallback or scored feed -> reasons -> cache
    track_interaction: append to the log, then always invalidate the user's cached feed
    """

    def __init__(
        self,
        articles: ArticleStore,
        interactions: InteractionStore,
        cache: FeedCache,
        limiter: RateLimiter,
        reasons: ReasonGenerator,
        config: Settings = settings,
    ):
        self.articles = articles
        self.interactions = interactions
        self.cache = cache
        self.limiter = limiter
        self.reasons = reasons
        self.config = config
        self.profiles = ProfileAggregator(interactions, articles, config)
        self.engine = ScoringEngine(config)
        self.fallback = FallbackComposer(articles)

    # -----------------------------------------------------------------------
    # Feed
    # -----------------------------------------------------------------------

    def get_feed(
        self,
        user_id: Optional[str],
        limit: int = 20,
        categories: Optional[List[str]] = None,
        location: Optional[str] = None,
        diversity_boost: Optional[float] = None,
        exclude_seen: bool = True,
        now: Optional[datetime] = None,
    ) -> FeedResponse:
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")
        if limit < 1:
            raise ValidationError("limit must be at least 1")

        # Every request counts against the budget, cached or not
        self.limiter.check(
            f"personalize:{user_id}", self.config.rate_limit_requests, self.config.rate_limit_window_seconds
        )

        categories = sorted({c.lower() for c in categories}) if categories else None
        request_key = (limit, tuple(categories or ()), location, diversity_boost, exclude_seen)

        cached = self.cache.get(user_id, request_key)
        if cached is not None:
            logger.info(f"[personalize] Cache hit for user {user_id}")
            return cached

        now = now or datetime.now(timezone.utc)
        # Taken before reading the log: an interaction tracked mid-computation makes this feed stale
        generation = self.cache.begin(user_id)
        try:
            profile = self.profiles.build_profile(user_id, now=now)

            if profile.total_interactions < self.config.fallback_threshold:
                logger.info(
                    f"[personalize] user={user_id} has {profile.total_interactions} interactions "
                    f"(< {self.config.fallback_threshold}), serving fallback feed"
                )
                response = self._fallback_feed(profile, limit, categories, location, now)
            else:
                response = self._personalized_feed(
                    profile, limit, categories, location, diversity_boost, exclude_seen, now
                )

            self.cache.put(
                user_id,
                response,
                ttl=self.config.feed_cache_ttl_seconds,
                request_key=request_key,
                generation=generation,
            )
        finally:
            self.cache.finish(user_id)
        return response

    def _fallback_feed(
        self,
        profile: UserProfile,
        limit: int,
        categories: Optional[List[str]],
        location: Optional[str],
        now: datetime,
    ) -> FeedResponse:
        picks = self.fallback.compose(
            limit, exclude_ids=profile.seen_article_ids, categories=categories, location=location, now=now
        )
        items = [
            RecommendationItem(
                article_id=pick.article.id,
                title=pick.article.title,
                category=pick.article.category,
                score=pick.rank_score,
                reason=pick.reason,
                confidence=pick.rank_score,
                source="fallback",
                published_at=pick.article.published_at,
                credibility_score=pick.article.credibility_score or 0.0,
                bucket=pick.bucket,
            )
            for pick in picks
        ]
        buckets = list(dict.fromkeys(pick.bucket for pick in picks))
        return FeedResponse(
            items=items,
            source="fallback",
            metadata=FeedMetadata(total_count=len(items), generated_at=now, fallback_buckets=buckets),
        )

    def _personalized_feed(
        self,
        profile: UserProfile,
        limit: int,
        categories: Optional[List[str]],
        location: Optional[str],
        diversity_boost: Optional[float],
        exclude_seen: bool,
        now: datetime,
    ) -> FeedResponse:
        candidates = self.articles.query_articles(
            categories=categories,
            location=location,
            exclude_ids=profile.seen_article_ids if exclude_seen else None,
            limit=self.config.candidate_pool_size,
        )
        scored = self.engine.score(profile, candidates, exclude_seen=exclude_seen, now=now)

        if not scored:
            logger.info(f"[personalize] No eligible candidates for user {profile.user_id}, serving fallback feed")
            return self._fallback_feed(profile, limit, categories, location, now)

        if diversity_boost:
            scored = self.engine.diversify(scored, diversity_boost, top_n=limit * DIVERSITY_POOL_FACTOR)

        # Reasons only for what is actually served
        items = []
        for candidate in scored[:limit]:
            article = candidate.article
            try:
                reason = self.reasons.explain(profile, article, candidate.score, candidate.breakdown)
            except Exception as e:
                logger.warning(f"[personalize] Reason generation failed for '{article.id}': {e}")
                reason = templated_reason(article, candidate.breakdown)

            items.append(RecommendationItem(
                article_id=article.id,
                title=article.title,
                category=article.category,
                score=candidate.score,
                reason=reason or templated_reason(article, candidate.breakdown),
                confidence=candidate.score,
                source="personalized",
                published_at=article.published_at,
                credibility_score=article.credibility_score or 0.0,
            ))

        logger.info(
            f"[personalize] user={profile.user_id} scored {len(scored)} candidates, serving {len(items)}"
        )
        return FeedResponse(
            items=items,
            source="personalized",
            metadata=FeedMetadata(total_count=len(items), generated_at=now),
        )

    # -----------------------------------------------------------------------
    # Interactions
    # -----------------------------------------------------------------------

    def track_interaction(
        self,
        user_id: Optional[str],
        article_id: Optional[str],
        action: str,
        duration_seconds: Optional[float] = None,
        session_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Interaction:
        """Append an interaction; the user's cached feed is invalidated even if the write fails."""
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")
        if not article_id or not article_id.strip():
            raise ValidationError("article_id is required")
        if action not in INTERACTION_WEIGHTS:
            raise ValidationError(
                f"Unknown action '{action}'. Expected one of: {', '.join(INTERACTION_WEIGHTS)}"
            )
        if duration_seconds is not None and duration_seconds < 0:
            raise ValidationError("duration_seconds must be non-negative")

        interaction = Interaction(
            user_id=user_id,
            article_id=article_id,
            action=action,
            timestamp=timestamp or datetime.now(timezone.utc),
            duration_seconds=duration_seconds,
            session_id=session_id,
        )
        try:
            return self.interactions.append_interaction(interaction)
        finally:
            self.cache.invalidate(user_id)

    def invalidate(self, user_id: Optional[str]) -> bool:
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")
        self.limiter.check(
            f"invalidate:{user_id}", self.config.invalidate_rate_limit, self.config.rate_limit_window_seconds
        )
        return self.cache.invalidate(user_id)


# Process-wide shared state
feed_cache = FeedCache(settings.feed_cache_ttl_seconds, settings.feed_cache_capacity)
rate_limiter = RateLimiter()
reason_generator = ReasonGenerator(gateway)
