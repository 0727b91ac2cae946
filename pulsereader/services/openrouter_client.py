"""
OpenRouter chat-completions client.

Every failure is turned into a specific ``AiError`` subclass so that
callers can back off differently for rate limits, exhausted credits and
timeouts.  Nothing is retried here; retry policy belongs to the job that
drives the analysis.
"""
import logging

import httpx

from pulsereader.config import settings
from pulsereader.exceptions import (
    AiConfigurationError,
    InsufficientCredits,
    RateLimitExceeded,
    RequestFailed,
    RequestTimeout,
)

logger = logging.getLogger(__name__)


class OpenRouterClient:
    """Thin async wrapper over ``POST {base_url}/chat/completions``."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or settings.OPENROUTER_API_KEY
        self._model = model or settings.OPENROUTER_MODEL
        self._base_url = (base_url or settings.OPENROUTER_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.AI_TIMEOUT_SECONDS
        # Tests inject an httpx.MockTransport here.
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def model(self) -> str:
        return self._model

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def chat_completion(
        self,
        messages: list[dict],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict:
        """
        Send *messages* and return the decoded response body.

        The body is guaranteed to contain at least one choice with string
        message content; anything else is ``RequestFailed``.
        """
        if not self._api_key:
            logger.error("OpenRouter API key not available at request time")
            raise AiConfigurationError()

        payload = {
            "model": self._model,
            "messages": messages,
            "temperature": settings.AI_TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens or settings.AI_MAX_TOKENS,
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": settings.OPENROUTER_REFERER,
            "X-Title": settings.OPENROUTER_TITLE,
        }

        logger.info("OpenRouter request: model=%s messages=%d", self._model, len(messages))
        try:
            response = await self._get_client().post(
                f"{self._base_url}/chat/completions",
                headers=headers,
                json=payload,
            )
        except httpx.TimeoutException as exc:
            logger.error("OpenRouter request timed out after %ss", self._timeout)
            raise RequestTimeout() from exc
        except httpx.HTTPError as exc:
            logger.error("OpenRouter request failed: %s", exc)
            raise RequestFailed(f"AI request failed: {exc}") from exc

        if response.status_code == 429:
            logger.warning("OpenRouter rate limit exceeded")
            raise RateLimitExceeded()
        if response.status_code == 402:
            logger.warning("OpenRouter reports insufficient credits")
            raise InsufficientCredits()
        if response.is_error:
            logger.error(
                "OpenRouter API error %s: %s", response.status_code, response.text[:500]
            )
            raise RequestFailed(f"OpenRouter API error: {response.status_code}")

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            logger.error("Invalid OpenRouter response structure: %s", response.text[:500])
            raise RequestFailed("Invalid OpenRouter response structure") from exc
        if not isinstance(content, str) or not content:
            raise RequestFailed("AI response content is empty")

        logger.debug("OpenRouter usage: %s", data.get("usage"))
        return data
