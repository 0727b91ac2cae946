"""
AI analysis orchestration.

Turns an article's title and description into a sentiment label and up
to three topics, then writes them back through the topic registry and
``article_service.update_article`` so the same compensation rules apply
as for any other topic change.

A topic that cannot be created is logged and skipped; the article still
gets the topics that did resolve.  Upstream errors are not retried here
and propagate with their specific kind.  Only ``analyze_articles`` turns
them into per-article failure records.
"""
import asyncio
import json
import logging
import re
import uuid

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from pulsereader.config import settings
from pulsereader.exceptions import (
    ArticleNotFound,
    PulseReaderError,
    ResponseInvalidJson,
    ResponseValidationFailed,
)
from pulsereader.models import Article
from pulsereader.schemas import AiAnalysisResult, AnalysisOutcome, ArticleAnalysisInput, ArticleUpdate
from pulsereader.services import article_service, topic_service
from pulsereader.services._store import store_errors
from pulsereader.services.openrouter_client import OpenRouterClient

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")

SYSTEM_PROMPT = """You are an expert news analyst specializing in sentiment analysis and topic classification for news articles.

Analyze news articles and answer with structured JSON only.

Guidelines:
- Be objective and consistent in sentiment classification
- Focus on factual content rather than sensational headlines
- Extract meaningful, specific topics rather than generic categories
- If uncertain about sentiment, answer "neutral"
- Topics should be useful for filtering content

Return ONLY the JSON object, no additional text."""

USER_PROMPT_TEMPLATE = """Analyze this news article and provide sentiment classification and topic extraction.

Article Title: {title}

Article Content: {content}

Instructions:
1. Classify the overall sentiment as exactly one of: "positive", "neutral", "negative"
2. Extract 1-3 main topics that best describe the article
3. Return only valid JSON in this exact format:
{{
  "sentiment": "positive|neutral|negative",
  "topics": ["topic1", "topic2", "topic3"]
}}

Requirements:
- Topics are concise (1-3 words each) and unique
- Use lowercase for topics unless proper nouns are required"""


def prepare_article_for_analysis(title: str, description: str | None = None) -> ArticleAnalysisInput:
    """
    Combine title and description into the text sent to the model.

    A description that already repeats the title is used on its own.  The
    result is cut to ``AI_INPUT_MAX_CHARS`` (plus an ellipsis) and its
    whitespace collapsed.
    """
    title = title.strip()
    combined = title
    if description and description.strip():
        description = description.strip()
        if len(description) > len(title) * 2 or title not in description:
            combined = f"{title}\n\n{description}"
        else:
            combined = description

    limit = settings.AI_INPUT_MAX_CHARS
    if len(combined) > limit:
        combined = combined[:limit] + "..."
    combined = _WHITESPACE_RE.sub(" ", combined).strip()

    return ArticleAnalysisInput(
        title=title[:500],
        description=description.strip() if description and description.strip() else None,
        combined_text=combined,
    )


def _extract_json(content: str):
    text = content.strip()
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    start, end = text.find("{"), text.rfind("}") + 1
    if start != -1 and end > start:
        text = text[start:end]
    return json.loads(text)


async def analyze_text(client: OpenRouterClient, analysis_input: ArticleAnalysisInput) -> AiAnalysisResult:
    """Ask the model for sentiment and topics and validate its answer."""
    logger.info(
        "Starting AI analysis for %r (%d chars)",
        analysis_input.title[:100], len(analysis_input.combined_text),
    )
    response = await client.chat_completion(
        [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": USER_PROMPT_TEMPLATE.format(
                    title=analysis_input.title,
                    content=analysis_input.combined_text,
                ),
            },
        ]
    )
    content = response["choices"][0]["message"]["content"]

    try:
        parsed = _extract_json(content)
    except json.JSONDecodeError as exc:
        logger.error("AI response is not valid JSON: %r", content[:500])
        raise ResponseInvalidJson() from exc

    try:
        result = AiAnalysisResult.model_validate(parsed)
    except ValidationError as exc:
        logger.error("AI response failed validation: %s; raw=%r", exc, content[:500])
        raise ResponseValidationFailed(
            details=[{"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]} for e in exc.errors()]
        ) from exc

    logger.info("AI analysis result: sentiment=%s topics=%s", result.sentiment.value, result.topics)
    return result


async def _resolve_topics(db: AsyncSession, names: list[str]) -> tuple[list[uuid.UUID], list[str]]:
    """Find or create each topic; failures are skipped, not fatal."""
    topic_ids: list[uuid.UUID] = []
    resolved: list[str] = []
    for name in names:
        clean = name.strip()
        if not clean:
            continue
        try:
            topic, created = await topic_service.find_or_create_topic(db, clean)
        except PulseReaderError as exc:
            logger.warning("Failed to create/find topic %r, skipping: %s", clean, exc)
            await db.rollback()
            continue
        logger.debug("%s topic %r", "Created" if created else "Found", topic["name"])
        topic_ids.append(uuid.UUID(topic["id"]))
        resolved.append(topic["name"])
    return topic_ids, resolved


async def analyze_article(
    db: AsyncSession, client: OpenRouterClient, article_id: uuid.UUID
) -> AnalysisOutcome:
    """
    Analyze one stored article and write sentiment and topics back.

    Raises ``ArticleNotFound`` or any ``AiError`` unchanged.
    """
    with store_errors("fetch article for analysis"):
        article = await db.get(Article, article_id)
    if article is None:
        raise ArticleNotFound()

    analysis_input = prepare_article_for_analysis(article.title, article.description)
    result = await analyze_text(client, analysis_input)

    topic_ids, topic_names = await _resolve_topics(db, result.topics)
    update = ArticleUpdate(sentiment=result.sentiment)
    if topic_ids:
        update = ArticleUpdate(sentiment=result.sentiment, topic_ids=topic_ids)
    await article_service.update_article(db, article_id, update)

    logger.info(
        "Article %s analyzed: sentiment=%s, %d topic(s)",
        article_id, result.sentiment.value, len(topic_ids),
    )
    return AnalysisOutcome(
        article_id=article_id,
        success=True,
        sentiment=result.sentiment,
        topics=topic_names,
    )


async def analyze_articles(
    db: AsyncSession,
    client: OpenRouterClient,
    article_ids: list[uuid.UUID],
    delay: float | None = None,
) -> list[AnalysisOutcome]:
    """
    Analyze articles one after another.  Each article succeeds or fails
    on its own; a failure is recorded with its error code and the batch
    moves on.
    """
    delay = settings.AI_BATCH_DELAY_SECONDS if delay is None else delay
    outcomes: list[AnalysisOutcome] = []
    logger.info("Starting batch analysis of %d article(s)", len(article_ids))

    for index, article_id in enumerate(article_ids):
        if index and delay > 0:
            await asyncio.sleep(delay)
        try:
            outcome = await analyze_article(db, client, article_id)
        except PulseReaderError as exc:
            logger.error("Analysis failed for article %s: %s (%s)", article_id, exc.message, exc.code)
            outcome = AnalysisOutcome(article_id=article_id, success=False, error=exc.code)
        outcomes.append(outcome)

    succeeded = sum(1 for o in outcomes if o.success)
    logger.info(
        "Batch analysis completed: %d succeeded, %d failed",
        succeeded, len(outcomes) - succeeded,
    )
    return outcomes
