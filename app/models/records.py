"""SQLModel mappings for persisted articles and extracted entities."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import expression
from sqlmodel import Field, SQLModel

from app.models.article import Article
from app.models.entities import CompanyMention, FundingEvent, TechnologyTrend, TopicCluster


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _plain(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value.value if isinstance(value, Enum) else value for key, value in payload.items()}


JSON_BACKING_TYPE = sa.JSON().with_variant(JSONB(astext_type=sa.Text()), "postgresql")


class UtcNow(expression.FunctionElement):
    """Dialect-aware server default that pins timestamps to UTC."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(UtcNow)
def _utc_now_default(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "CURRENT_TIMESTAMP"


@compiles(UtcNow, "postgresql")
def _utc_now_default_postgres(
    element, compiler, **kwargs
) -> str:  # pragma: no cover - trivial sql generator
    return "timezone('utc', now())"


def _timestamp_column(*, index: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=False, server_default=UtcNow(), index=index)


class ArticleRecord(SQLModel, table=True):
    """Admitted article; ``url`` is the idempotency key."""

    __tablename__ = "articles"
    __table_args__ = (sa.UniqueConstraint("url", name="uq_articles_url"),)

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    url: str = Field(sa_column=Column(String(length=2048), nullable=False))
    title: str = Field(sa_column=Column(Text, nullable=False))
    summary: str = Field(default="", sa_column=Column(Text, nullable=False))
    content: str = Field(default="", sa_column=Column(Text, nullable=False))
    source_name: str = Field(default="", sa_column=Column(String(length=255), nullable=False))
    published_at: datetime = Field(sa_column=_timestamp_column(index=True))
    is_breaking: bool = Field(default=False, sa_column=Column(Boolean, nullable=False))
    category: str = Field(default="general", sa_column=Column(String(length=64), nullable=False))
    confidence: float = Field(sa_column=Column(Float, nullable=False))
    pros: list[str] = Field(default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False))
    cons: list[str] = Field(default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False))
    impact_score: float = Field(sa_column=Column(Float, nullable=False))
    development_impact: str = Field(default="", sa_column=Column(Text, nullable=False))
    market_impact: str = Field(default="", sa_column=Column(Text, nullable=False))
    disruption_level: str = Field(sa_column=Column(String(length=32), nullable=False))
    time_to_impact: str = Field(sa_column=Column(String(length=32), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp_column())

    @classmethod
    def from_domain(cls, article: Article) -> ArticleRecord:
        return cls(**_plain(article.model_dump(mode="python")))

    def to_domain(self) -> Article:
        return Article(
            id=self.id,
            url=self.url,
            title=self.title,
            summary=self.summary,
            content=self.content,
            source_name=self.source_name,
            published_at=_aware(self.published_at),
            is_breaking=self.is_breaking,
            category=self.category,
            confidence=self.confidence,
            pros=list(self.pros or []),
            cons=list(self.cons or []),
            impact_score=self.impact_score,
            development_impact=self.development_impact,
            market_impact=self.market_impact,
            disruption_level=self.disruption_level,
            time_to_impact=self.time_to_impact,
            created_at=_aware(self.created_at),
        )


class CompanyMentionRecord(SQLModel, table=True):
    __tablename__ = "company_mentions"
    __table_args__ = (
        sa.UniqueConstraint("dedupe_key", name="uq_company_mentions_dedupe"),
        sa.Index("ix_company_mentions_company_key", "company_key"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    company_name: str = Field(sa_column=Column(String(length=255), nullable=False))
    company_key: str = Field(sa_column=Column(String(length=255), nullable=False))
    dedupe_key: str = Field(sa_column=Column(String(length=1024), nullable=False))
    mention_type: str = Field(sa_column=Column(String(length=32), nullable=False))
    sentiment: float = Field(sa_column=Column(Float, nullable=False))
    context: str = Field(default="", sa_column=Column(Text, nullable=False))
    article_id: UUID | None = Field(default=None, sa_column=Column(Uuid(as_uuid=True), nullable=True))
    mentioned_at: datetime = Field(sa_column=_timestamp_column(index=True))

    @classmethod
    def from_domain(cls, mention: CompanyMention, dedupe_key: str) -> CompanyMentionRecord:
        return cls(
            **_plain(mention.model_dump(mode="python")),
            company_key=mention.company_key,
            dedupe_key=dedupe_key,
        )

    def to_domain(self) -> CompanyMention:
        return CompanyMention(
            id=self.id,
            company_name=self.company_name,
            mention_type=self.mention_type,
            sentiment=self.sentiment,
            context=self.context,
            article_id=self.article_id,
            mentioned_at=_aware(self.mentioned_at),
        )


class FundingEventRecord(SQLModel, table=True):
    __tablename__ = "funding_events"
    __table_args__ = (
        sa.UniqueConstraint("dedupe_key", name="uq_funding_events_dedupe"),
        sa.Index("ix_funding_events_company_key", "company_key"),
    )

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    company_name: str = Field(sa_column=Column(String(length=255), nullable=False))
    company_key: str = Field(sa_column=Column(String(length=255), nullable=False))
    dedupe_key: str = Field(sa_column=Column(String(length=1024), nullable=False))
    amount: str = Field(sa_column=Column(String(length=64), nullable=False))
    amount_usd: float | None = Field(default=None, sa_column=Column(Float, nullable=True))
    round: str = Field(sa_column=Column(String(length=64), nullable=False))
    investors: list[str] = Field(
        default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    location: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    article_id: UUID | None = Field(default=None, sa_column=Column(Uuid(as_uuid=True), nullable=True))
    announced_at: datetime = Field(sa_column=_timestamp_column(index=True))

    @classmethod
    def from_domain(cls, event: FundingEvent, dedupe_key: str) -> FundingEventRecord:
        return cls(
            **_plain(event.model_dump(mode="python")),
            company_key=event.company_key,
            dedupe_key=dedupe_key,
        )

    def to_domain(self) -> FundingEvent:
        return FundingEvent(
            id=self.id,
            company_name=self.company_name,
            amount=self.amount,
            amount_usd=self.amount_usd,
            round=self.round,
            investors=list(self.investors or []),
            location=self.location,
            article_id=self.article_id,
            announced_at=_aware(self.announced_at),
        )


class TechnologyTrendRecord(SQLModel, table=True):
    """One row per technology keyed by its normalized name; mutated in place."""

    __tablename__ = "technology_trends"

    key: str = Field(sa_column=Column(String(length=255), primary_key=True, nullable=False))
    name: str = Field(sa_column=Column(String(length=255), nullable=False))
    category: str = Field(sa_column=Column(String(length=64), nullable=False))
    adoption_stage: str = Field(sa_column=Column(String(length=32), nullable=False))
    mention_count: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    avg_sentiment: float = Field(default=0.0, sa_column=Column(Float, nullable=False))
    trend_direction: str = Field(sa_column=Column(String(length=32), nullable=False))
    first_mentioned_at: datetime = Field(sa_column=_timestamp_column())
    last_mentioned_at: datetime = Field(sa_column=_timestamp_column(index=True))

    @classmethod
    def from_domain(cls, trend: TechnologyTrend) -> TechnologyTrendRecord:
        return cls(**_plain(trend.model_dump(mode="python")), key=trend.key)

    def update_from(self, trend: TechnologyTrend) -> None:
        payload = _plain(trend.model_dump(mode="python"))
        for field_name, value in payload.items():
            setattr(self, field_name, value)

    def to_domain(self) -> TechnologyTrend:
        return TechnologyTrend(
            name=self.name,
            category=self.category,
            adoption_stage=self.adoption_stage,
            mention_count=self.mention_count,
            avg_sentiment=self.avg_sentiment,
            trend_direction=self.trend_direction,
            first_mentioned_at=_aware(self.first_mentioned_at),
            last_mentioned_at=_aware(self.last_mentioned_at),
        )


class TechnologyMentionRecord(SQLModel, table=True):
    """Marks a (technology, article) pair as already counted."""

    __tablename__ = "technology_mentions"

    technology_key: str = Field(
        sa_column=Column(String(length=255), primary_key=True, nullable=False)
    )
    article_id: UUID = Field(sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False))


class TopicClusterRecord(SQLModel, table=True):
    __tablename__ = "topic_clusters"

    id: UUID = Field(
        default_factory=uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False),
    )
    title: str = Field(sa_column=Column(String(length=255), nullable=False))
    keywords: list[str] = Field(default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False))
    article_ids: list[str] = Field(
        default_factory=list, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    created_at: datetime = Field(sa_column=_timestamp_column(index=True))

    @classmethod
    def from_domain(cls, cluster: TopicCluster) -> TopicClusterRecord:
        return cls(
            id=cluster.id,
            title=cluster.title,
            keywords=list(cluster.keywords),
            article_ids=[str(article_id) for article_id in cluster.article_ids],
            created_at=cluster.created_at,
        )

    def to_domain(self) -> TopicCluster:
        return TopicCluster(
            id=self.id,
            title=self.title,
            keywords=list(self.keywords or []),
            article_ids=[UUID(article_id) for article_id in self.article_ids or []],
            created_at=_aware(self.created_at),
        )
