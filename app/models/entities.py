"""Entity models extracted from admitted articles."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.article import ensure_aware


def _utcnow() -> datetime:
    return datetime.now(UTC)


def entity_key(name: str) -> str:
    """Case-folded, whitespace-collapsed lookup key for company/technology/investor names."""
    return " ".join((name or "").casefold().split())


class MentionType(str, Enum):
    FUNDING = "funding"
    PARTNERSHIP = "partnership"
    PRODUCT_LAUNCH = "product-launch"
    ACQUISITION = "acquisition"
    HIRING = "hiring"
    RESEARCH = "research"
    GENERAL = "general-mention"


class TechnologyCategory(str, Enum):
    LLM = "LLM"
    COMPUTER_VISION = "computer-vision"
    ROBOTICS = "robotics"
    VOICE_AI = "voice-ai"
    AI_TOOLS = "AI-tools"


class AdoptionStage(str, Enum):
    EXPERIMENTAL = "experimental"
    EMERGING = "emerging"
    GROWING = "growing"
    MAINSTREAM = "mainstream"
    DECLINING = "declining"


class TrendDirection(str, Enum):
    RISING = "rising"
    STABLE = "stable"
    DECLINING = "declining"


class CompanyMention(BaseModel):
    """A single reference to a company inside an article or independent note."""

    id: UUID = Field(default_factory=uuid4)
    company_name: str = Field(..., min_length=1)
    mention_type: MentionType = MentionType.GENERAL
    sentiment: float = 0.0
    context: str = ""
    article_id: UUID | None = None
    mentioned_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("sentiment", mode="before")
    @classmethod
    def _clamp_sentiment(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
        return max(-1.0, min(1.0, number))

    @field_validator("mentioned_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @property
    def company_key(self) -> str:
        return entity_key(self.company_name)


class FundingEvent(BaseModel):
    """A funding announcement pulled from article text."""

    id: UUID = Field(default_factory=uuid4)
    company_name: str = Field(..., min_length=1)
    amount: str = "Undisclosed"
    amount_usd: float | None = Field(default=None, ge=0)
    round: str = "Strategic"
    investors: list[str] = Field(default_factory=list)
    location: str | None = None
    article_id: UUID | None = None
    announced_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("announced_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @property
    def company_key(self) -> str:
        return entity_key(self.company_name)


class TechnologyTrendPatch(BaseModel):
    """One observed technology mention to be folded into its trend row."""

    name: str = Field(..., min_length=1)
    category: TechnologyCategory = TechnologyCategory.AI_TOOLS
    adoption_stage: AdoptionStage = AdoptionStage.EMERGING
    sentiment: float = Field(default=0.0, ge=-1, le=1)
    mentioned_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def key(self) -> str:
        return entity_key(self.name)


class TechnologyTrend(BaseModel):
    """Running aggregate for a single technology, keyed by normalized name."""

    name: str
    category: TechnologyCategory = TechnologyCategory.AI_TOOLS
    adoption_stage: AdoptionStage = AdoptionStage.EMERGING
    mention_count: int = Field(default=0, ge=0)
    avg_sentiment: float = Field(default=0.0, ge=-1, le=1)
    trend_direction: TrendDirection = TrendDirection.STABLE
    first_mentioned_at: datetime = Field(default_factory=_utcnow)
    last_mentioned_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def key(self) -> str:
        return entity_key(self.name)

    @classmethod
    def from_patch(cls, patch: TechnologyTrendPatch) -> TechnologyTrend:
        return cls(
            name=patch.name,
            category=patch.category,
            adoption_stage=patch.adoption_stage,
            mention_count=1,
            avg_sentiment=patch.sentiment,
            first_mentioned_at=patch.mentioned_at,
            last_mentioned_at=patch.mentioned_at,
        )

    def apply(self, patch: TechnologyTrendPatch) -> TechnologyTrend:
        """Fold one more mention in: count + 1 and a weighted running sentiment mean."""
        count = self.mention_count
        average = (self.avg_sentiment * count + patch.sentiment) / (count + 1)
        return self.model_copy(
            update={
                "mention_count": count + 1,
                "avg_sentiment": max(-1.0, min(1.0, average)),
                "adoption_stage": patch.adoption_stage,
                "first_mentioned_at": min(self.first_mentioned_at, patch.mentioned_at),
                "last_mentioned_at": max(self.last_mentioned_at, patch.mentioned_at),
            }
        )


class TopicCluster(BaseModel):
    """Group of recent articles sharing a dominant keyword."""

    id: UUID = Field(default_factory=uuid4)
    title: str
    keywords: list[str] = Field(default_factory=list)
    article_ids: list[UUID] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True, extra="forbid")


class ExtractionResult(BaseModel):
    """Entities produced from one article."""

    funding: list[FundingEvent] = Field(default_factory=list)
    mentions: list[CompanyMention] = Field(default_factory=list)
    trends: list[TechnologyTrendPatch] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)
