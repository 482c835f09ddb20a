"""Derived market-intelligence structures produced by the accumulation engine."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from app.models.entities import AdoptionStage, FundingEvent, TrendDirection


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PotentialImpact(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class KeyValue(BaseModel):
    """Ordered map entry; map-typed insight fields travel as lists of these."""

    key: str
    value: float

    model_config = ConfigDict(frozen=True)


class SentimentPoint(BaseModel):
    date: datetime
    sentiment: float

    model_config = ConfigDict(frozen=True)


class CompanyGrowthMetric(BaseModel):
    company_name: str
    first_mentioned_at: datetime
    total_mentions: int
    growth_rate: float
    funding_history: list[FundingEvent] = Field(default_factory=list)
    sentiment_trend: list[SentimentPoint] = Field(default_factory=list)
    milestones: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class TechnologyAdoptionCurve(BaseModel):
    technology: str
    first_appearance: datetime
    adoption_phase: AdoptionStage
    monthly_mentions: list[KeyValue] = Field(default_factory=list)
    related_technologies: list[str] = Field(default_factory=list)
    industry_adoption: list[KeyValue] = Field(
        default_factory=list,
        description="Share of this technology's articles that mention each industry.",
    )
    industry_adoption_estimated: bool = True

    model_config = ConfigDict(frozen=True)


class InvestorPattern(BaseModel):
    investor: str
    investment_count: int
    average_investment: float
    preferred_stages: list[str] = Field(default_factory=list)
    sector_focus: list[str] = Field(default_factory=list)
    co_investors: list[KeyValue] = Field(default_factory=list)
    success_rate: float = Field(default=0.0, ge=0, le=1)

    model_config = ConfigDict(frozen=True)


class MarketTrendIndicator(BaseModel):
    name: str
    value: float
    trend: TrendDirection = TrendDirection.STABLE
    confidence: float = Field(default=0.5, ge=0, le=1)
    timeframe: str = "30d"

    model_config = ConfigDict(frozen=True)


class EmergingTheme(BaseModel):
    theme: str
    first_detected: datetime
    growth_rate: float
    related_articles: int
    potential_impact: PotentialImpact

    model_config = ConfigDict(frozen=True)


class AccumulatedInsights(BaseModel):
    """Full derived view; always rebuildable from the entity store."""

    company_growth: list[CompanyGrowthMetric] = Field(default_factory=list)
    technology_adoption: list[TechnologyAdoptionCurve] = Field(default_factory=list)
    investor_patterns: list[InvestorPattern] = Field(default_factory=list)
    market_indicators: list[MarketTrendIndicator] = Field(default_factory=list)
    emerging_themes: list[EmergingTheme] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)
