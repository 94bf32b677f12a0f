import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from app.models import Article
from app.scoring import clamp, freshness_score
from app.stores import ArticleStore, as_utc

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Buckets: (label, category filter, size). None means "any category".
# ---------------------------------------------------------------------------

FALLBACK_BUCKETS: list[tuple[str, Optional[str], int]] = [
    ("top-news",   None,         8),
    ("business",   "business",   4),
    ("technology", "technology", 4),
    ("sports",     "sports",     4),
]

CREDIBILITY_WEIGHT = 0.6
RECENCY_WEIGHT = 0.4

# Page size when scanning a bucket, relative to the bucket size
POOL_MULTIPLIER = 4


@dataclass
class FallbackPick:
    article: Article
    bucket: str
    rank_score: float

    @property
    def reason(self) -> str:
        return f"Popular in {self.article.category} right now."


def bucket_rank(article: Article, now: Optional[datetime] = None) -> float:
    """0.6 * credibility (0-100 scaled to 0-1) + 0.4 * recency, in [0, 1]."""
    credibility = clamp((article.credibility_score or 0.0) / 100.0)
    return clamp(CREDIBILITY_WEIGHT * credibility + RECENCY_WEIGHT * freshness_score(article.published_at, now))


class FallbackComposer:
    """Deterministic multi-bucket feed for users without enough history."""

    def __init__(self, articles: ArticleStore):
        self.articles = articles

    def compose(
        self,
        limit: int,
        exclude_ids: Optional[Iterable[str]] = None,
        categories: Optional[List[str]] = None,
        location: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[FallbackPick]:
        """
        Fill each bucket in order with its best-ranked articles, skipping anything an
        earlier bucket already took, then truncate the concatenation to `limit`.
        """
        now = as_utc(now or datetime.now(timezone.utc))
        taken: set[str] = set(exclude_ids or [])
        picks: List[FallbackPick] = []

        for label, category, size in FALLBACK_BUCKETS:
            if categories and category is not None and category not in [c.lower() for c in categories]:
                continue

            pool = self._bucket_pool(
                size,
                now,
                category=category,
                categories=categories if category is None else None,
                exclude_ids=set(taken),
                location=location,
            )
            ranked = sorted(
                pool,
                key=lambda a: (-bucket_rank(a, now), a.id),
            )

            filled = 0
            for article in ranked:
                if filled >= size:
                    break
                if article.id in taken:
                    continue
                taken.add(article.id)
                picks.append(FallbackPick(article=article, bucket=label, rank_score=bucket_rank(article, now)))
                filled += 1

            logger.info(f"[fallback] bucket={label} filled {filled}/{size}")

        return picks[:limit]

    def _bucket_pool(self, size: int, now: datetime, **filters) -> List[Article]:
        """
        Scan the bucket in credibility order, a page at a time, until no unread article
        can outrank the current top `size`. Freshness is at most 1, so an article with
        credibility c ranks no higher than 0.6 * c + 0.4.
        """
        page_size = size * POOL_MULTIPLIER
        pool: List[Article] = []
        offset = 0
        while True:
            page = self.articles.query_articles(limit=page_size, offset=offset, sort_hint="credibility", **filters)
            pool.extend(page)
            if len(page) < page_size:
                return pool

            ceiling = CREDIBILITY_WEIGHT * clamp((page[-1].credibility_score or 0.0) / 100.0) + RECENCY_WEIGHT
            ranks = sorted((bucket_rank(article, now) for article in pool), reverse=True)
            if ranks[size - 1] >= ceiling:
                return pool
            offset += page_size
