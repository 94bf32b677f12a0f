import logging
import re
from typing import List, Optional

from app.config import Settings, settings
from app.errors import NotFoundError
from app.gateway import LLMGateway
from app.models import Article
from app.personalization import PersonalizationService
from app.profile import extract_keywords
from app.schemas import AnswerResponse, GenerateOptions, SourcePassage, SummaryResponse

logger = logging.getLogger(__name__)

SUMMARY_MODEL = "gpt-4-turbo"
SUMMARY_TOKENS = {"short": 100, "medium": 200, "long": 300}
SUMMARY_LENGTH_GUIDE = {"short": "2-3 sentences", "medium": "3-5 sentences", "long": "5-8 sentences"}
QA_TOKENS = 500
QA_TEMPERATURE = 0.4

PASSAGE_CHARS = 400
MAX_PASSAGES = 5

# The varying parts lead each prompt so the gateway's prefix-keyed cache tells requests apart
SUMMARY_PROMPT = """Length: {length_guide}
Article: "{title}" ({article_id})
Source: {source}
Published: {published_at}
Credibility Score: {credibility:.0f}%

You are a professional news summarizer. Summarize the article above in {length_guide}.

Key passages from the article:
{passages}

IMPORTANT RULES:
1. Use ONLY the passages provided above. Do NOT invent facts.
2. Cite up to 3 sources inline using [1], [2], [3] format.
3. Provide a certainty score at the end: (Certainty: High/Medium/Low)
4. Keep the summary factual and neutral.
5. Do not add opinions or speculation.

Summary:"""

QA_PROMPT = """Question: {question}
Article: "{title}" ({article_id})
Source: {source}
Published: {published_at}

You are a knowledgeable news analyst. Answer the question based ONLY on the provided article passages.

Key passages from the article:
{passages}

IMPORTANT RULES:
1. Use ONLY the passages provided above. Do NOT invent facts or use external knowledge.
2. If the question cannot be answered from the passages, say "This information is not available in the article."
3. Cite sources inline using [1], [2], [3] format.
4. Provide a certainty score: (Certainty: High/Medium/Low)
5. Keep your answer concise and factual.

Answer:"""


def split_passages(text: str, max_chars: int = PASSAGE_CHARS) -> List[str]:
    """Group sentences into passages of at most ~max_chars characters."""
    sentences = re.findall(r"[^.!?]+[.!?]*", text or "")
    passages, current = [], ""
    for sentence in (s.strip() for s in sentences):
        if not sentence:
            continue
        if current and len(current) + len(sentence) + 1 > max_chars:
            passages.append(current)
            current = sentence
        else:
            current = f"{current} {sentence}".strip()
    if current:
        passages.append(current)
    return passages


def build_passages(article: Article, question: Optional[str] = None, top_k: int = MAX_PASSAGES) -> List[SourcePassage]:
    """
    Passages from the article body. With a question, passages are ranked by keyword
    overlap with it; otherwise they keep document order.
    """
    chunks = split_passages(article.content or article.title)
    query_terms = set(extract_keywords(question)) if question else set()

    passages = []
    for position, chunk in enumerate(chunks):
        if query_terms:
            terms = set(extract_keywords(chunk))
            score = len(terms & query_terms) / len(query_terms)
        else:
            score = 1.0 / (position + 1)
        passages.append(SourcePassage(source=article.source, url=article.url or "", excerpt=chunk, score=score))

    if query_terms:
        # stable sort keeps document order among equally relevant passages
        passages.sort(key=lambda p: -p.score)
    return passages[:top_k]


def format_passages(passages: List[SourcePassage]) -> str:
    return "\n".join(f'[{i + 1}] "{p.excerpt}" (Source: {p.source})' for i, p in enumerate(passages))


class ArticleAssistant:
    """Grounded summaries and answers about one article, generated through the LLM gateway."""

    def __init__(self, personalization: PersonalizationService, llm: LLMGateway, config: Settings = settings):
        self.personalization = personalization
        self.articles = personalization.articles
        self.limiter = personalization.limiter
        self.llm = llm
        self.config = config

    def _get_article(self, article_id: str) -> Article:
        article = self.articles.get_article_by_id(article_id)
        if article is None:
            raise NotFoundError(f"Article '{article_id}' not found")
        return article

    def _record(self, user_id: Optional[str], article_id: str, action: str):
        if not user_id:
            return
        try:
            self.personalization.track_interaction(user_id, article_id, action)
        except Exception as e:
            logger.warning(f"[assistant] Could not record {action} for user {user_id}: {e}")

    def summarize(
        self,
        article_id: str,
        user_id: Optional[str] = None,
        length: str = "medium",
        deterministic: bool = False,
    ) -> SummaryResponse:
        if user_id:
            self.limiter.check(
                f"summarize:{user_id}", self.config.summarize_rate_limit, self.config.rate_limit_window_seconds
            )
        article = self._get_article(article_id)
        passages = build_passages(article)

        prompt = SUMMARY_PROMPT.format(
            title=article.title,
            article_id=article.id,
            source=article.source,
            published_at=article.published_at.isoformat(),
            credibility=article.credibility_score or 0.0,
            length_guide=SUMMARY_LENGTH_GUIDE[length],
            passages=format_passages(passages),
        )
        options = GenerateOptions(
            model=SUMMARY_MODEL,
            temperature=0.0 if deterministic else 0.2,
            max_tokens=SUMMARY_TOKENS[length],
        )
        response = self.llm.generate(prompt, options, passages)
        logger.info(f"[assistant] Summarized '{article_id}' via {response.model_used} ({response.confidence})")

        self._record(user_id, article_id, "summarize")
        return SummaryResponse(
            summary=response.text,
            model_used=response.model_used,
            provider_used=response.provider_used,
            tokens_used=response.tokens_used,
            sources=response.sources,
            request_id=response.request_id,
            confidence=response.confidence,
            provider_fallback_used=response.provider_fallback_used,
        )

    def answer(self, article_id: str, question: str, user_id: Optional[str] = None) -> AnswerResponse:
        if user_id:
            self.limiter.check(f"qa:{user_id}", self.config.qa_rate_limit, self.config.rate_limit_window_seconds)
        article = self._get_article(article_id)
        passages = build_passages(article, question=question)

        prompt = QA_PROMPT.format(
            title=article.title,
            article_id=article.id,
            question=question,
            source=article.source,
            published_at=article.published_at.isoformat(),
            passages=format_passages(passages),
        )
        options = GenerateOptions(model=SUMMARY_MODEL, temperature=QA_TEMPERATURE, max_tokens=QA_TOKENS)
        response = self.llm.generate(prompt, options, passages)
        logger.info(f"[assistant] Answered question on '{article_id}' via {response.model_used} ({response.confidence})")

        self._record(user_id, article_id, "qa")
        return AnswerResponse(
            answer=response.text,
            model_used=response.model_used,
            provider_used=response.provider_used,
            tokens_used=response.tokens_used,
            sources=response.sources,
            request_id=response.request_id,
            confidence=response.confidence,
            provider_fallback_used=response.provider_fallback_used,
        )
