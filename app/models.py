from sqlalchemy import Column, String, Float, Integer, DateTime, Text
from datetime import datetime, timezone
from app.database import Base


class Article(Base):
    __tablename__ = "articles"

    # --- Article Store fields (written by ingestion, read-only here) ---
    id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=True)
    category = Column(String, nullable=False, index=True)  # e.g. "business", "technology"
    source = Column(String, nullable=False)                # publisher name
    published_at = Column(DateTime, nullable=False, index=True)  # UTC
    credibility_score = Column(Float, default=50.0)        # 0-100
    location = Column(String, nullable=True, index=True)   # country code, used by location filters
    url = Column(String, nullable=True)


class Interaction(Base):
    __tablename__ = "interactions"

    # Append-only log, rows are never updated or deleted
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    article_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)  # one of INTERACTION_WEIGHTS
    timestamp = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
    duration_seconds = Column(Float, nullable=True)
    session_id = Column(String, nullable=True)
