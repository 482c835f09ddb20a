"""Domain models for fetched and admitted news articles."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """Pin naive timestamps to UTC so comparisons never mix naive and aware values."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(low, min(high, number))


class DisruptionLevel(str, Enum):
    """How disruptive a development is expected to be."""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    REVOLUTIONARY = "revolutionary"


class TimeToImpact(str, Enum):
    """Expected horizon before a development affects the market."""

    IMMEDIATE = "immediate"
    SHORT_TERM = "short-term"
    MEDIUM_TERM = "medium-term"
    LONG_TERM = "long-term"


class CandidateArticle(BaseModel):
    """Unverified item returned by a source fetch."""

    title: str = Field(..., min_length=1)
    summary: str = ""
    content: str = ""
    url: str
    source_name: str = ""
    source_urls: list[str] = Field(default_factory=list)
    published_at: datetime = Field(default_factory=_utcnow)
    is_breaking: bool = False
    source_id: str | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("published_at")
    @classmethod
    def _aware_published_at(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @property
    def urls(self) -> list[str]:
        """Article permalink followed by any additional source URLs, without repeats."""
        ordered: list[str] = []
        for candidate in (self.url, *self.source_urls):
            if candidate and candidate not in ordered:
                ordered.append(candidate)
        return ordered

    @property
    def body(self) -> str:
        return self.content or self.summary

    @property
    def text(self) -> str:
        return f"{self.title} {self.body}".strip()


class AnalyzerJudgment(BaseModel):
    """Structured judgment returned by an article analyzer."""

    category: str = "general"
    confidence_score: float = 50.0
    summary: str = ""
    is_relevant: bool = True
    relevance_score: float = 0.0
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)
    impact_score: float = 5.0
    development_impact: str = ""
    market_impact: str = ""
    disruption_level: DisruptionLevel = DisruptionLevel.MODERATE
    time_to_impact: TimeToImpact = TimeToImpact.SHORT_TERM

    model_config = ConfigDict(frozen=True)

    @field_validator("confidence_score", "relevance_score", mode="before")
    @classmethod
    def _clamp_percentage(cls, value: Any) -> float:
        return _clamp(value, 0.0, 100.0, 0.0)

    @field_validator("impact_score", mode="before")
    @classmethod
    def _clamp_impact(cls, value: Any) -> float:
        return _clamp(value, 0.0, 10.0, 5.0)

    @field_validator("disruption_level", mode="before")
    @classmethod
    def _coerce_disruption(cls, value: Any) -> Any:
        allowed = {level.value for level in DisruptionLevel}
        if isinstance(value, DisruptionLevel) or (isinstance(value, str) and value in allowed):
            return value
        return "moderate"

    @field_validator("time_to_impact", mode="before")
    @classmethod
    def _coerce_time_to_impact(cls, value: Any) -> Any:
        allowed = {horizon.value for horizon in TimeToImpact}
        if isinstance(value, TimeToImpact) or (isinstance(value, str) and value in allowed):
            return value
        return "short-term"

    @field_validator("pros", "cons", mode="before")
    @classmethod
    def _truncate_lists(cls, value: Any) -> list[str]:
        if not isinstance(value, list | tuple):
            return []
        return [str(item) for item in value if item][:4]


class Article(BaseModel):
    """Admitted article owned by the repository."""

    id: UUID = Field(default_factory=uuid4)
    title: str
    summary: str = ""
    content: str = ""
    url: str
    source_name: str = ""
    published_at: datetime
    is_breaking: bool = False
    category: str = "general"
    confidence: float = Field(default=50.0, ge=0, le=100)
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)
    impact_score: float = Field(default=5.0, ge=0, le=10)
    development_impact: str = ""
    market_impact: str = ""
    disruption_level: DisruptionLevel = DisruptionLevel.MODERATE
    time_to_impact: TimeToImpact = TimeToImpact.SHORT_TERM
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("published_at", "created_at")
    @classmethod
    def _aware_timestamps(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @property
    def text(self) -> str:
        return f"{self.title} {self.content or self.summary}".strip()

    @classmethod
    def admit(
        cls,
        candidate: CandidateArticle,
        *,
        confidence: float,
        judgment: AnalyzerJudgment | None = None,
    ) -> Article:
        """Build the admitted record from a verified candidate and optional judgment."""
        payload: dict[str, Any] = {
            "title": candidate.title,
            "summary": candidate.summary,
            "content": candidate.content,
            "url": candidate.url,
            "source_name": candidate.source_name,
            "published_at": candidate.published_at,
            "is_breaking": candidate.is_breaking,
            "confidence": _clamp(confidence, 0.0, 100.0, 0.0),
        }
        if judgment is not None:
            payload.update(
                category=judgment.category,
                summary=judgment.summary or candidate.summary,
                pros=list(judgment.pros),
                cons=list(judgment.cons),
                impact_score=judgment.impact_score,
                development_impact=judgment.development_impact,
                market_impact=judgment.market_impact,
                disruption_level=judgment.disruption_level,
                time_to_impact=judgment.time_to_impact,
            )
        return cls(**payload)
