import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.models import Article, Interaction

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """SQLite hands datetimes back without tzinfo; treat those as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ArticleStore:
    """Read-only queries over the article table."""

    def __init__(self, db: Session):
        self.db = db

    def query_articles(
        self,
        category: Optional[str] = None,
        categories: Optional[Iterable[str]] = None,
        exclude_ids: Optional[Iterable[str]] = None,
        location: Optional[str] = None,
        limit: int = 50,
        sort_hint: str = "recent",
        offset: int = 0,
    ) -> List[Article]:
        query = self.db.query(Article)

        if category:
            query = query.filter(Article.category == category.lower())
        if categories:
            query = query.filter(Article.category.in_([c.lower() for c in categories]))
        if location:
            query = query.filter(Article.location == location)
        if exclude_ids:
            query = query.filter(Article.id.notin_(list(exclude_ids)))

        if sort_hint == "credibility":
            query = query.order_by(
                Article.credibility_score.desc().nulls_last(), Article.published_at.desc(), Article.id
            )
        else:
            query = query.order_by(Article.published_at.desc(), Article.id)

        return query.offset(offset).limit(limit).all()

    def get_article_by_id(self, article_id: str) -> Optional[Article]:
        return self.db.query(Article).filter(Article.id == article_id).first()

    def get_articles_by_ids(self, article_ids: Iterable[str]) -> dict[str, Article]:
        ids = list(set(article_ids))
        if not ids:
            return {}
        rows = self.db.query(Article).filter(Article.id.in_(ids)).all()
        return {article.id: article for article in rows}


class InteractionStore:
    """Append-only log of user interactions."""

    def __init__(self, db: Session):
        self.db = db

    def append_interaction(self, interaction: Interaction) -> Interaction:
        self.db.add(interaction)
        self.db.commit()
        logger.info(
            f"[interactions] user={interaction.user_id} action={interaction.action} "
            f"article={interaction.article_id}"
        )
        return interaction

    def query_interactions(self, user_id: str, since: datetime) -> List[Interaction]:
        # Stored timestamps are naive UTC on SQLite, so compare against a naive bound
        bound = as_utc(since).replace(tzinfo=None)
        return (
            self.db.query(Interaction)
            .filter(Interaction.user_id == user_id)
            .filter(Interaction.timestamp >= bound)
            .order_by(Interaction.timestamp.asc())
            .all()
        )
