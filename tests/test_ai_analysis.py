"""
AI analysis tests.

The OpenRouter client runs against ``httpx.MockTransport`` so every
upstream failure mode can be produced without network access.
"""
import json
import uuid

import httpx
import pytest
from httpx import AsyncClient

from pulsereader.config import settings
from pulsereader.dependencies import get_ai_client
from pulsereader.exceptions import (
    AiConfigurationError,
    ArticleNotFound,
    DatabaseError,
    InsufficientCredits,
    RateLimitExceeded,
    RequestFailed,
    RequestTimeout,
    ResponseInvalidJson,
    ResponseValidationFailed,
)
from pulsereader.main import app
from pulsereader.models import Sentiment
from pulsereader.services import analysis_service, article_service, topic_service
from pulsereader.services.openrouter_client import OpenRouterClient


def _completion(content: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "id": "gen-1",
            "choices": [{"message": {"role": "assistant", "content": content}}],
            "usage": {"prompt_tokens": 120, "completion_tokens": 20},
        },
    )


def _client(handler) -> OpenRouterClient:
    return OpenRouterClient(api_key="test-key", transport=httpx.MockTransport(handler))


def _answer(sentiment="positive", topics=("climate", "renewable energy")) -> str:
    return json.dumps({"sentiment": sentiment, "topics": list(topics)})


# ---------------------------------------------------------------------------
# Input preparation
# ---------------------------------------------------------------------------

def test_prepare_uses_description_that_repeats_title():
    result = analysis_service.prepare_article_for_analysis("Storm hits coast", "Storm hits coast overnight")
    assert result.combined_text == "Storm hits coast overnight"


def test_prepare_combines_title_and_long_description():
    description = "Residents were evacuated as the storm hit the coast.   Power is out."
    result = analysis_service.prepare_article_for_analysis("Storm", description)
    assert result.combined_text == f"Storm {description.replace('   ', ' ')}"


def test_prepare_truncates_and_collapses_whitespace():
    result = analysis_service.prepare_article_for_analysis("Title", "word\n\n " * 1000)
    assert result.combined_text.endswith("...")
    assert "\n" not in result.combined_text
    assert len(result.combined_text) <= settings.AI_INPUT_MAX_CHARS + 3


def test_prepare_title_only():
    result = analysis_service.prepare_article_for_analysis("  Budget approved ", None)
    assert result.combined_text == "Budget approved"
    assert result.description is None


# ---------------------------------------------------------------------------
# OpenRouter client error mapping
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_request_carries_auth_and_model():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return _completion(_answer())

    client = _client(handler)
    await client.chat_completion([{"role": "user", "content": "hi"}])
    await client.close()

    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["model"] == settings.OPENROUTER_MODEL
    assert seen["body"]["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, expected",
    [(429, RateLimitExceeded), (402, InsufficientCredits), (500, RequestFailed), (401, RequestFailed)],
)
async def test_error_status_mapping(status, expected):
    client = _client(lambda request: httpx.Response(status, json={"error": {"message": "nope"}}))
    with pytest.raises(expected):
        await client.chat_completion([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_timeout_is_request_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(RequestTimeout) as exc_info:
        await _client(handler).chat_completion([{"role": "user", "content": "hi"}])
    assert exc_info.value.status_code == 504


@pytest.mark.asyncio
async def test_connection_error_is_request_failed():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(RequestFailed):
        await _client(handler).chat_completion([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_empty_choices_is_request_failed():
    client = _client(lambda request: httpx.Response(200, json={"choices": []}))
    with pytest.raises(RequestFailed):
        await client.chat_completion([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(settings, "OPENROUTER_API_KEY", None)
    client = OpenRouterClient(transport=httpx.MockTransport(lambda request: _completion(_answer())))
    with pytest.raises(AiConfigurationError):
        await client.chat_completion([{"role": "user", "content": "hi"}])


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_analyze_text_accepts_fenced_json():
    fenced = f"```json\n{_answer('negative', ['floods'])}\n```"
    client = _client(lambda request: _completion(fenced))
    result = await analysis_service.analyze_text(
        client, analysis_service.prepare_article_for_analysis("Floods", None)
    )
    assert result.sentiment == Sentiment.NEGATIVE
    assert result.topics == ["floods"]


@pytest.mark.asyncio
async def test_analyze_text_invalid_json():
    client = _client(lambda request: _completion("I think it is positive."))
    with pytest.raises(ResponseInvalidJson):
        await analysis_service.analyze_text(
            client, analysis_service.prepare_article_for_analysis("Floods", None)
        )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"sentiment": "angry", "topics": ["floods"]},
        {"sentiment": "neutral", "topics": []},
        {"sentiment": "neutral", "topics": ["a", "b", "c", "d"]},
        {"sentiment": "neutral", "topics": ["Floods", "floods"]},
        {"sentiment": "neutral", "topics": ["x" * 51]},
    ],
)
async def test_analyze_text_schema_violations(payload):
    client = _client(lambda request: _completion(json.dumps(payload)))
    with pytest.raises(ResponseValidationFailed):
        await analysis_service.analyze_text(
            client, analysis_service.prepare_article_for_analysis("Floods", None)
        )


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_analyze_article_writes_sentiment_and_topics(db_session, make_article, make_topic):
    existing = await make_topic("Climate")
    article = await make_article(title="Solar record", description="Solar output hit a new record.")

    client = _client(lambda request: _completion(_answer()))
    outcome = await analysis_service.analyze_article(db_session, client, article.id)

    assert outcome.success is True
    assert outcome.sentiment == Sentiment.POSITIVE
    assert outcome.topics == ["Climate", "renewable energy"]

    detail = await article_service.get_article(db_session, article.id)
    assert detail["sentiment"] == "positive"
    names = [t["name"] for t in detail["topics"]]
    assert names == ["Climate", "renewable energy"]
    assert str(existing.id) in [t["id"] for t in detail["topics"]]


@pytest.mark.asyncio
async def test_analyze_article_skips_topic_that_fails_to_resolve(db_session, make_article, monkeypatch):
    article = await make_article(title="Solar record")
    article_id = article.id
    real_find_or_create = topic_service.find_or_create_topic

    async def flaky_find_or_create(db, name):
        if name == "renewable energy":
            raise DatabaseError("Failed to create topic")
        return await real_find_or_create(db, name)

    monkeypatch.setattr(topic_service, "find_or_create_topic", flaky_find_or_create)
    client = _client(lambda request: _completion(_answer()))
    outcome = await analysis_service.analyze_article(db_session, client, article_id)

    assert outcome.success is True
    assert outcome.topics == ["climate"]

    detail = await article_service.get_article(db_session, article_id)
    assert detail["sentiment"] == "positive"
    assert [t["name"] for t in detail["topics"]] == ["climate"]


@pytest.mark.asyncio
async def test_analyze_article_keeps_topics_when_none_resolve(db_session, make_article, make_topic, monkeypatch):
    existing = await make_topic("Energy")
    existing_id = existing.id
    article = await make_article(title="Solar record", topics=[existing])
    article_id = article.id

    async def failing_find_or_create(db, name):
        raise DatabaseError("Failed to create topic")

    monkeypatch.setattr(topic_service, "find_or_create_topic", failing_find_or_create)
    client = _client(lambda request: _completion(_answer("negative")))
    outcome = await analysis_service.analyze_article(db_session, client, article_id)

    assert outcome.success is True
    assert outcome.topics == []

    detail = await article_service.get_article(db_session, article_id)
    assert detail["sentiment"] == "negative"
    assert detail["topics"] == [{"id": str(existing_id), "name": "Energy"}]


@pytest.mark.asyncio
async def test_analyze_article_leaves_article_untouched_on_upstream_error(db_session, make_article):
    article = await make_article()
    client = _client(lambda request: httpx.Response(429))

    with pytest.raises(RateLimitExceeded):
        await analysis_service.analyze_article(db_session, client, article.id)
    detail = await article_service.get_article(db_session, article.id)
    assert detail["sentiment"] is None
    assert detail["topics"] == []


@pytest.mark.asyncio
async def test_analyze_missing_article(db_session):
    client = _client(lambda request: _completion(_answer()))
    with pytest.raises(ArticleNotFound):
        await analysis_service.analyze_article(db_session, client, uuid.uuid4())


@pytest.mark.asyncio
async def test_batch_analysis_isolates_failures(db_session, make_article):
    first = await make_article(title="First")
    second = await make_article(title="Second")
    missing = uuid.uuid4()
    replies = iter([_completion(_answer("neutral", ["economy"])), httpx.Response(402)])

    client = _client(lambda request: next(replies))
    outcomes = await analysis_service.analyze_articles(
        db_session, client, [first.id, missing, second.id], delay=0
    )

    assert [o.success for o in outcomes] == [True, False, False]
    assert outcomes[1].error == "ARTICLE_NOT_FOUND"
    assert outcomes[2].error == "AI_INSUFFICIENT_CREDITS"

    detail = await article_service.get_article(db_session, first.id)
    assert detail["sentiment"] == "neutral"


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_analyze_endpoint(async_client: AsyncClient, make_article, service_headers):
    article = await make_article()
    app.dependency_overrides[get_ai_client] = lambda: _client(lambda request: _completion(_answer()))
    try:
        resp = await async_client.post(f"/api/v1/articles/{article.id}/analyze", headers=service_headers)
    finally:
        del app.dependency_overrides[get_ai_client]

    assert resp.status_code == 200
    body = resp.json()
    assert body["articleId"] == str(article.id)
    assert body["success"] is True
    assert body["sentiment"] == "positive"


@pytest.mark.asyncio
async def test_analyze_endpoint_maps_upstream_errors(async_client: AsyncClient, make_article, service_headers):
    article = await make_article()
    app.dependency_overrides[get_ai_client] = lambda: _client(lambda request: httpx.Response(429))
    try:
        resp = await async_client.post(f"/api/v1/articles/{article.id}/analyze", headers=service_headers)
    finally:
        del app.dependency_overrides[get_ai_client]

    assert resp.status_code == 429
    assert resp.json()["code"] == "AI_RATE_LIMIT_EXCEEDED"
