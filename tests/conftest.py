"""
Shared fixtures: in-memory SQLite database and factories for articles and interactions.
"""
import itertools
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import Article, Interaction


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def add_article(db):
    """Insert an Article with sensible defaults, overridable via kwargs."""
    ids = itertools.count(1)

    def _add(**kwargs) -> Article:
        defaults = {
            "id": f"article-{next(ids)}",
            "title": "Test Article",
            "content": "Some article content.",
            "category": "technology",
            "source": "test-source",
            "published_at": datetime.now(timezone.utc) - timedelta(hours=1),
            "credibility_score": 70.0,
        }
        defaults.update(kwargs)
        article = Article(**defaults)
        db.add(article)
        db.commit()
        return article

    return _add


@pytest.fixture
def add_interaction(db):
    """Insert an Interaction directly, bypassing the service (no cache invalidation)."""

    def _add(**kwargs) -> Interaction:
        defaults = {
            "user_id": "user-1",
            "article_id": "article-1",
            "action": "view",
            "timestamp": datetime.now(timezone.utc),
        }
        defaults.update(kwargs)
        interaction = Interaction(**defaults)
        db.add(interaction)
        db.commit()
        return interaction

    return _add


CATALOG_TITLES = {
    "technology": "Chip makers unveil faster processors for laptops",
    "sports":     "Championship team wins dramatic football final",
    "business":   "Retail earnings beat forecasts as markets rally",
    "science":    "Astronomers discover water vapour on distant planet",
    "politics":   "Parliament debates new election reform bill",
}


@pytest.fixture
def catalog(add_article):
    """Eight articles per category; credibility rises with index, age grows with index."""
    now = datetime.now(timezone.utc)
    articles = {}
    for category, title in CATALOG_TITLES.items():
        articles[category] = [
            add_article(
                id=f"{category}-{i}",
                title=f"{title} {i}",
                content=f"{title}.",
                category=category,
                credibility_score=60.0 + i,
                published_at=now - timedelta(hours=i + 1),
            )
            for i in range(8)
        ]
    return articles
