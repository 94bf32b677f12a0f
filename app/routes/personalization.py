import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import PersonalizationError, error_response
from app.personalization import PersonalizationService, feed_cache, rate_limiter, reason_generator
from app.schemas import (
    FeedResponse,
    InteractionTrackRequest,
    InvalidateRequest,
    InvalidateResponse,
    PersonalizeRequest,
    TrackResponse,
)
from app.stores import ArticleStore, InteractionStore

logger = logging.getLogger(__name__)

router = APIRouter()


def get_personalization(db: Session = Depends(get_db)) -> PersonalizationService:
    """FastAPI dependency: a service bound to this request's session and the shared caches."""
    return PersonalizationService(
        articles=ArticleStore(db),
        interactions=InteractionStore(db),
        cache=feed_cache,
        limiter=rate_limiter,
        reasons=reason_generator,
    )


@router.post("/personalize", response_model=FeedResponse)
def personalize(request: PersonalizeRequest, service: PersonalizationService = Depends(get_personalization)):
    """
    Return a ranked, explained feed for the user. Users with too little history
    get the fixed-bucket fallback feed instead.
    """
    try:
        feed = service.get_feed(
            request.user_id,
            limit=request.limit,
            categories=request.categories,
            location=request.location_filter,
            diversity_boost=request.diversity_boost,
            exclude_seen=request.exclude_seen,
        )
    except PersonalizationError as e:
        logger.info(f"[/personalize] Rejected request for user={request.user_id}: {e}")
        return error_response(e)

    logger.info(f"[/personalize] user={request.user_id} source={feed.source} items={len(feed.items)}")
    return feed


@router.post("/interactions/track", response_model=TrackResponse, status_code=201)
def track_interaction(request: InteractionTrackRequest, service: PersonalizationService = Depends(get_personalization)):
    """Record an interaction. Invalidates the user's cached feed as a side effect."""
    try:
        service.track_interaction(
            request.user_id,
            request.article_id,
            request.action,
            duration_seconds=request.duration_seconds,
            session_id=request.session_id,
        )
    except PersonalizationError as e:
        logger.info(f"[/interactions/track] Rejected interaction: {e}")
        return error_response(e)
    return TrackResponse(success=True)


@router.post("/cache/invalidate", response_model=InvalidateResponse)
def invalidate_cache(request: InvalidateRequest, service: PersonalizationService = Depends(get_personalization)):
    """Drop the user's cached feed so the next request recomputes it."""
    try:
        service.invalidate(request.user_id)
    except PersonalizationError as e:
        return error_response(e)
    return InvalidateResponse()
