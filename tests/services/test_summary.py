from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

from app.models.entities import CompanyMention, FundingEvent, MentionType, TechnologyCategory, TechnologyTrendPatch
from app.models.insights import KeyValue
from app.services.accumulation.summary import build_market_summary, summarize_companies, summarize_funding
from app.services.ingestion.repositories import InMemoryEntityRepository
from tests.conftest import NOW


def test_funding_summary_totals_disclosed_amounts() -> None:
    events = [
        FundingEvent(company_name="Acme", amount="$10.0M", round="Series A", investors=["Accel", "GV"]),
        FundingEvent(company_name="Beta", amount_usd=5_000_000.0, round="Seed", investors=["Accel"]),
        FundingEvent(company_name="Gamma", round="Series A"),
    ]

    summary = summarize_funding(events)

    assert summary.total_events == 3
    assert summary.disclosed_total_usd == 15_000_000.0
    assert summary.by_round == [KeyValue(key="Series A", value=2), KeyValue(key="Seed", value=1)]
    assert summary.top_investors[0] == KeyValue(key="Accel", value=2)


def test_company_activity_groups_case_insensitively() -> None:
    mentions = [
        CompanyMention(company_name="OpenAI", sentiment=0.4, mention_type=MentionType.FUNDING),
        CompanyMention(company_name="openai", sentiment=0.0, mention_type=MentionType.FUNDING),
        CompanyMention(company_name="Cohere", sentiment=-0.2),
    ]

    activity = summarize_companies(mentions)

    assert [item.company_name for item in activity] == ["OpenAI", "Cohere"]
    assert activity[0].mentions == 2
    assert activity[0].avg_sentiment == 0.2
    assert activity[0].mention_types == [KeyValue(key="funding", value=2)]


def test_market_summary_honours_window() -> None:
    repository = InMemoryEntityRepository()
    repository.insert_funding(
        FundingEvent(company_name="Acme", amount_usd=1_000_000.0, round="Seed", announced_at=NOW - timedelta(days=3))
    )
    repository.insert_funding(
        FundingEvent(company_name="Old", amount_usd=9_000_000.0, round="Seed", announced_at=NOW - timedelta(days=90))
    )
    repository.insert_mention(
        CompanyMention(company_name="Anthropic", article_id=uuid4(), mentioned_at=NOW - timedelta(days=1))
    )
    repository.record_technology_mention(
        TechnologyTrendPatch(name="Claude", category=TechnologyCategory.LLM, mentioned_at=NOW), uuid4()
    )

    summary = build_market_summary(repository, now=NOW, days=30)

    assert summary.window_days == 30
    assert summary.funding.total_events == 1
    assert summary.funding.disclosed_total_usd == 1_000_000.0
    assert [item.company_name for item in summary.companies] == ["Anthropic"]
    assert [trend.name for trend in summary.technologies.top] == ["Claude"]
    assert summary.technologies.by_category == [KeyValue(key="LLM", value=1)]
