"""Read-only market summaries over the entity store (funding, company mentions, technologies)."""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Sequence
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field

from app.models.entities import CompanyMention, FundingEvent, TechnologyTrend, entity_key
from app.models.insights import KeyValue
from app.services.ingestion.amounts import parse_amount
from app.services.ingestion.repositories import EntityRepository, EntityType


class FundingSummary(BaseModel):
    total_events: int
    disclosed_total_usd: float
    by_round: list[KeyValue] = Field(default_factory=list)
    top_investors: list[KeyValue] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class CompanyActivity(BaseModel):
    company_name: str
    mentions: int
    avg_sentiment: float
    mention_types: list[KeyValue] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class TechnologySummary(BaseModel):
    top: list[TechnologyTrend] = Field(default_factory=list)
    by_category: list[KeyValue] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class MarketSummary(BaseModel):
    window_days: int
    generated_at: datetime
    funding: FundingSummary
    companies: list[CompanyActivity] = Field(default_factory=list)
    technologies: TechnologySummary

    model_config = ConfigDict(frozen=True)


def _ranked(counter: Counter[str], limit: int | None = None) -> list[KeyValue]:
    ordered = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    return [KeyValue(key=key, value=count) for key, count in ordered[:limit]]


def summarize_funding(events: Sequence[FundingEvent], *, top_investors: int = 10) -> FundingSummary:
    investors: Counter[str] = Counter()
    for event in events:
        investors.update({name.strip() for name in event.investors if name.strip()})
    disclosed = 0.0
    for event in events:
        amount = event.amount_usd if event.amount_usd is not None else parse_amount(event.amount)
        disclosed += amount or 0.0
    return FundingSummary(
        total_events=len(events),
        disclosed_total_usd=round(disclosed, 2),
        by_round=_ranked(Counter(event.round for event in events)),
        top_investors=_ranked(investors, top_investors),
    )


def summarize_companies(mentions: Sequence[CompanyMention], *, limit: int = 20) -> list[CompanyActivity]:
    grouped: dict[str, list[CompanyMention]] = defaultdict(list)
    for mention in mentions:
        grouped[entity_key(mention.company_name)].append(mention)
    activity = [
        CompanyActivity(
            company_name=items[0].company_name,
            mentions=len(items),
            avg_sentiment=round(sum(item.sentiment for item in items) / len(items), 4),
            mention_types=_ranked(Counter(item.mention_type.value for item in items)),
        )
        for items in grouped.values()
    ]
    activity.sort(key=lambda item: (-item.mentions, item.company_name))
    return activity[:limit]


def summarize_technologies(trends: Sequence[TechnologyTrend], *, limit: int = 10) -> TechnologySummary:
    top = sorted(trends, key=lambda trend: (-trend.mention_count, trend.name))[:limit]
    by_category: Counter[str] = Counter()
    for trend in trends:
        by_category[trend.category.value] += trend.mention_count
    return TechnologySummary(top=top, by_category=_ranked(by_category))


def build_market_summary(repository: EntityRepository, *, now: datetime, days: int = 30) -> MarketSummary:
    since = now - timedelta(days=days)
    return MarketSummary(
        window_days=days,
        generated_at=now,
        funding=summarize_funding(repository.query_recent(EntityType.FUNDING, since=since)),
        companies=summarize_companies(repository.query_recent(EntityType.MENTIONS, since=since)),
        technologies=summarize_technologies(repository.query_recent(EntityType.TECHNOLOGIES, since=since)),
    )
