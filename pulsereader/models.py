from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pulsereader.database import Base


class Sentiment(str, enum.Enum):
    """Sentiment label of an article; also the domain of a reader's mood."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


# Postgres stores the blocklist as text[]; other dialects fall back to JSON.
BlocklistType = JSON().with_variant(ARRAY(Text), "postgresql")


# ---------------------------------------------------------------------------
# Association table: Article <-> Topic (many-to-many)
# ---------------------------------------------------------------------------
article_topics = Table(
    "article_topics",
    Base.metadata,
    Column("article_id", Uuid, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True),
    Column("topic_id", Uuid, ForeignKey("topics.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
)


# ---------------------------------------------------------------------------
# RssSource
# ---------------------------------------------------------------------------
class RssSource(Base):
    __tablename__ = "rss_sources"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    url: Mapped[str] = mapped_column(String(2000), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_fetched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_fetch_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    articles: Mapped[List["Article"]] = relationship(
        "Article", back_populates="source", lazy="noload", passive_deletes=True
    )


# ---------------------------------------------------------------------------
# Topic
# ---------------------------------------------------------------------------
class Topic(Base):
    __tablename__ = "topics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    articles: Mapped[List["Article"]] = relationship(
        "Article", secondary=article_topics, back_populates="topics", lazy="noload"
    )


# "Tech" and "tech" are the same topic.
Index("uq_topics_name_lower", func.lower(Topic.name), unique=True)


# ---------------------------------------------------------------------------
# Article
# ---------------------------------------------------------------------------
class Article(Base):
    __tablename__ = "articles"

    __table_args__ = (
        # Default feed ordering
        Index("ix_articles_publication_date", "publication_date"),
        # Mood filtering
        Index("ix_articles_sentiment", "sentiment"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    source_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("rss_sources.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(1000), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    link: Mapped[str] = mapped_column(String(2000), unique=True, nullable=False)
    publication_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sentiment: Mapped[Optional[Sentiment]] = mapped_column(
        Enum(
            Sentiment,
            name="article_sentiment",
            values_callable=_enum_values,
        ),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships are lazy="noload"; services load them explicitly.
    source: Mapped["RssSource"] = relationship("RssSource", back_populates="articles", lazy="noload")
    topics: Mapped[List["Topic"]] = relationship(
        "Topic", secondary=article_topics, back_populates="articles", lazy="noload"
    )


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------
class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Identity comes from the upstream auth provider; there is no local users table.
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False, index=True)
    mood: Mapped[Optional[Sentiment]] = mapped_column(
        Enum(
            Sentiment,
            name="user_mood",
            values_callable=_enum_values,
        ),
        nullable=True,
    )
    blocklist: Mapped[List[str]] = mapped_column(BlocklistType, default=list, nullable=False)
    personalization_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
