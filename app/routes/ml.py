import logging

from fastapi import APIRouter, Depends

from app.assistant import ArticleAssistant
from app.errors import PersonalizationError, error_response
from app.gateway import gateway
from app.personalization import PersonalizationService, feed_cache
from app.routes.personalization import get_personalization
from app.schemas import (
    AnswerResponse,
    GenerateRequest,
    LLMResponse,
    QARequest,
    SummarizeRequest,
    SummaryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ml")


def get_assistant(service: PersonalizationService = Depends(get_personalization)) -> ArticleAssistant:
    return ArticleAssistant(service, gateway)


@router.post("/generate", response_model=LLMResponse)
def generate(request: GenerateRequest):
    """Raw text generation with provider failover. Only non-retryable provider errors surface."""
    try:
        return gateway.generate(request.prompt, request.options, request.sources, request.request_id)
    except PersonalizationError as e:
        logger.error(f"[/ml/generate] Non-retryable provider failure: {e}")
        return error_response(e)


@router.post("/summarize", response_model=SummaryResponse)
def summarize(request: SummarizeRequest, assistant: ArticleAssistant = Depends(get_assistant)):
    try:
        return assistant.summarize(
            request.article_id,
            user_id=request.user_id,
            length=request.length,
            deterministic=request.deterministic,
        )
    except PersonalizationError as e:
        logger.info(f"[/ml/summarize] {request.article_id}: {e}")
        return error_response(e)


@router.post("/qa", response_model=AnswerResponse)
def qa(request: QARequest, assistant: ArticleAssistant = Depends(get_assistant)):
    try:
        return assistant.answer(request.article_id, request.question, user_id=request.user_id)
    except PersonalizationError as e:
        logger.info(f"[/ml/qa] {request.article_id}: {e}")
        return error_response(e)


@router.post("/cache/clear")
def clear_generation_cache():
    """Empty the process-wide generated-response cache."""
    gateway.clear_cache()
    return {"success": True}


@router.get("/status")
def status():
    """Provider configuration and cache sizes."""
    return {"gateway": gateway.status(), "cached_feeds": len(feed_cache)}
