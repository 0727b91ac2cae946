"""
Domain error taxonomy.

Every error a service function raises on purpose derives from
``PulseReaderError`` and carries a stable ``code`` plus the HTTP status
the router layer should answer with.  The exception handler installed in
``pulsereader.main`` turns them into JSON bodies, so routers rarely need
their own ``try``/``except`` blocks.

Categories:

- validation / referential errors are raised before any write;
- conflict errors come from unique-constraint collisions after a write
  attempt and are expected under concurrent ingestion;
- ``TopicAssociationFailed`` is only raised after the compensating action
  has already run;
- upstream errors describe the AI endpoint and keep their kind so batch
  callers can choose a backoff per kind.
"""
from __future__ import annotations

from typing import Any


class PulseReaderError(Exception):
    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, details: Any = None) -> None:
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body: dict = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


# ---------------------------------------------------------------------------
# Validation / referential
# ---------------------------------------------------------------------------

class MixedSourceBatch(PulseReaderError):
    code = "MIXED_SOURCE_BATCH"
    status_code = 400
    message = "All articles in a batch must share the same sourceId"


class SourceNotFound(PulseReaderError):
    code = "RSS_SOURCE_NOT_FOUND"
    status_code = 404
    message = "RSS source not found"


class InvalidSourceId(SourceNotFound):
    """The ``sourceId`` of a create command references no source."""

    status_code = 400


class InvalidTopicIds(PulseReaderError):
    code = "INVALID_TOPIC_IDS"
    status_code = 400
    message = "One or more topic IDs do not exist"

    def __init__(self, invalid_ids: list) -> None:
        self.invalid_ids = list(invalid_ids)
        super().__init__(details={"invalidIds": [str(i) for i in self.invalid_ids]})


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class ArticleNotFound(PulseReaderError):
    code = "ARTICLE_NOT_FOUND"
    status_code = 404
    message = "Article not found"


class TopicNotFound(PulseReaderError):
    code = "TOPIC_NOT_FOUND"
    status_code = 404
    message = "Topic not found"


class ProfileNotFound(PulseReaderError):
    code = "PROFILE_NOT_FOUND"
    status_code = 404
    message = "Profile not found. Complete profile setup to use personalization."


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------

class ArticleAlreadyExists(PulseReaderError):
    code = "ARTICLE_ALREADY_EXISTS"
    status_code = 409
    message = "An article with this link already exists"


class ProfileAlreadyExists(PulseReaderError):
    code = "PROFILE_EXISTS"
    status_code = 409
    message = "Profile already exists for this user"


class SourceUrlConflict(PulseReaderError):
    code = "DUPLICATE_URL"
    status_code = 409
    message = "An RSS source with this URL already exists"


# ---------------------------------------------------------------------------
# Consistency / internal
# ---------------------------------------------------------------------------

class TopicAssociationFailed(PulseReaderError):
    code = "TOPIC_ASSOCIATION_FAILED"
    status_code = 500
    message = "Failed to associate topics with the article; changes were reverted"


class DatabaseError(PulseReaderError):
    code = "DATABASE_ERROR"
    status_code = 500
    message = "Database operation failed"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class AuthenticationRequired(PulseReaderError):
    code = "AUTHENTICATION_REQUIRED"
    status_code = 401
    message = "Authentication required"


class Forbidden(PulseReaderError):
    code = "FORBIDDEN"
    status_code = 403
    message = "Not allowed to perform this action"


# ---------------------------------------------------------------------------
# Upstream AI endpoint
# ---------------------------------------------------------------------------

class AiError(PulseReaderError):
    code = "AI_ERROR"
    status_code = 502
    message = "AI analysis failed"


class AiConfigurationError(AiError):
    code = "AI_NOT_CONFIGURED"
    status_code = 503
    message = "OPENROUTER_API_KEY is not configured"


class RateLimitExceeded(AiError):
    code = "AI_RATE_LIMIT_EXCEEDED"
    status_code = 429
    message = "AI provider rate limit exceeded"


class InsufficientCredits(AiError):
    code = "AI_INSUFFICIENT_CREDITS"
    status_code = 402
    message = "AI provider reports insufficient credits"


class RequestTimeout(AiError):
    code = "AI_REQUEST_TIMEOUT"
    status_code = 504
    message = "AI request timed out"


class RequestFailed(AiError):
    code = "AI_REQUEST_FAILED"
    status_code = 502
    message = "AI request failed"


class ResponseInvalidJson(AiError):
    code = "AI_RESPONSE_INVALID_JSON"
    status_code = 502
    message = "AI response is not valid JSON"


class ResponseValidationFailed(AiError):
    code = "AI_RESPONSE_VALIDATION_FAILED"
    status_code = 502
    message = "AI response does not match the expected schema"
