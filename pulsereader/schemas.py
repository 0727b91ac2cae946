import uuid
from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator
from pydantic.alias_generators import to_camel

from pulsereader.models import Sentiment


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys while keeping snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


BlocklistItem = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
TopicName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]
HttpLink = Annotated[str, StringConstraints(strip_whitespace=True, max_length=2000, pattern=r"^https?://\S+$")]


# --- Caller identity ---

class Caller(BaseModel):
    """Identity resolved upstream and handed to the core with each call."""

    user_id: uuid.UUID | None = None
    role: Literal["service", "user", "anonymous"] = "anonymous"

    @property
    def is_service(self) -> bool:
        return self.role == "service"


# --- Article ---

class ArticleCreate(CamelModel):
    source_id: uuid.UUID
    title: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=1000)]
    description: str | None = Field(None, max_length=5000)
    link: HttpLink
    publication_date: datetime
    sentiment: Sentiment | None = None
    topic_ids: list[uuid.UUID] | None = Field(None, max_length=20)


class ArticleUpdate(CamelModel):
    """
    Partial update.  Only fields present in ``model_fields_set`` are
    applied, so ``sentiment`` is tri-state: absent, explicit null, value.
    """

    sentiment: Sentiment | None = None
    topic_ids: list[uuid.UUID] = Field(default_factory=list, max_length=20)


class ArticleBatchCreate(CamelModel):
    articles: list[ArticleCreate] = Field(min_length=1, max_length=100)
    skip_source_validation: bool = False


class ArticleQuery(CamelModel):
    limit: int = Field(20, ge=1, le=500)
    offset: int = Field(0, ge=0)
    sentiment: Sentiment | None = None
    topic_id: uuid.UUID | None = None
    source_id: uuid.UUID | None = None
    apply_personalization: bool = False
    sort_by: Literal["publication_date", "created_at"] = "publication_date"
    sort_order: Literal["asc", "desc"] = "desc"


class Pagination(CamelModel):
    limit: int
    offset: int
    total: int
    has_more: bool


class FiltersApplied(CamelModel):
    sentiment: Sentiment | None = None
    topic_id: uuid.UUID | None = None
    source_id: uuid.UUID | None = None
    personalization: bool = False
    blocked_items_count: int = 0
    # With blocklist filtering active ``total`` counts rows before filtering.
    total_is_upper_bound: bool = False


class ArticleListResponse(CamelModel):
    data: list
    pagination: Pagination
    filters_applied: FiltersApplied


class BatchCreateResponse(CamelModel):
    articles: list
    duplicates_skipped: int


# --- Topic ---

class TopicCreate(CamelModel):
    name: TopicName


class TopicListQuery(CamelModel):
    limit: int = Field(100, ge=1, le=500)
    offset: int = Field(0, ge=0)
    search: str | None = None

    @field_validator("search")
    @classmethod
    def _blank_search_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


# --- RSS source ---

class SourceCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    url: HttpLink


class SourceUpdate(CamelModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    url: HttpLink | None = None
    is_active: bool | None = None


# --- Profile ---

class ProfileCreate(CamelModel):
    mood: Sentiment | None = None
    blocklist: list[BlocklistItem] = Field(default_factory=list, max_length=100)
    personalization_enabled: bool = True


class ProfileUpdate(CamelModel):
    mood: Sentiment | None = None
    blocklist: list[BlocklistItem] = Field(default_factory=list, max_length=100)
    personalization_enabled: bool = True


# --- AI analysis ---

class ArticleAnalysisInput(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    combined_text: str = Field(min_length=1, max_length=2000)


class AiAnalysisResult(BaseModel):
    sentiment: Sentiment
    topics: list[Annotated[str, StringConstraints(min_length=1, max_length=50)]] = Field(
        min_length=1, max_length=3
    )

    @field_validator("topics")
    @classmethod
    def _well_formed_topics(cls, topics: list[str]) -> list[str]:
        if len({t.lower() for t in topics}) != len(topics):
            raise ValueError("Topics must be unique (case-insensitive)")
        if any(t.strip() != t for t in topics):
            raise ValueError("Topics should not have leading or trailing whitespace")
        if any("  " in t for t in topics):
            raise ValueError("Topics should not contain multiple consecutive spaces")
        return topics


class AnalysisOutcome(CamelModel):
    article_id: uuid.UUID
    success: bool
    sentiment: Sentiment | None = None
    topics: list[str] = []
    error: str | None = None


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_articles: int
    total_topics: int
    total_sources: int
    total_profiles: int
    sentiment_distribution: dict = {}
    pending_analysis: int
    cache_info: dict = {}
