from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest

from app.models.article import Article
from app.models.entities import (
    AdoptionStage,
    CompanyMention,
    FundingEvent,
    TechnologyTrend,
    TechnologyTrendPatch,
    TopicCluster,
    TrendDirection,
)
from app.models.insights import AccumulatedInsights, KeyValue, PotentialImpact
from app.services.accumulation import engine as engine_module
from app.services.accumulation.engine import (
    INSIGHTS_CACHE_KEY,
    AccumulationEngine,
    adoption_phase,
    company_growth_rate,
    funding_velocity,
    market_sentiment,
    monthly_histogram,
    potential_impact,
    theme_growth_rate,
)
from app.services.ingestion.cache import SourceCache
from app.services.ingestion.repositories import InMemoryEntityRepository
from tests.conftest import NOW
from tests.helpers.metrics_stub import StubMetrics


def _article(title: str, *, days_ago: float = 0, category: str = "startups", summary: str = "") -> Article:
    return Article(
        title=title,
        summary=summary,
        url=f"https://techcrunch.com/{uuid4()}",
        source_name="TechCrunch AI",
        published_at=NOW - timedelta(days=days_ago),
        category=category,
        confidence=90,
    )


def _funding(company: str, round_label: str, *, days_ago: float, investors: list[str], **extra) -> FundingEvent:
    return FundingEvent(
        company_name=company,
        round=round_label,
        investors=investors,
        announced_at=NOW - timedelta(days=days_ago),
        **extra,
    )


@pytest.fixture
def repository() -> InMemoryEntityRepository:
    return InMemoryEntityRepository()


@pytest.fixture
def engine(repository: InMemoryEntityRepository) -> AccumulationEngine:
    return AccumulationEngine(repository, SourceCache(), ttl_seconds=3600, clock=lambda: NOW)


@pytest.mark.parametrize(
    ("histogram", "expected"),
    [
        ([2, 2, 2, 1, 1, 20, 22, 25], AdoptionStage.GROWING),
        ([5, 5], AdoptionStage.EMERGING),
        ([10, 10, 10, 2, 2, 2], AdoptionStage.DECLINING),
        ([12, 12, 12, 12, 12, 12], AdoptionStage.MAINSTREAM),
        ([3, 3, 3, 3, 3, 3], AdoptionStage.EMERGING),
    ],
)
def test_adoption_phase(histogram: list[int], expected: AdoptionStage) -> None:
    assert adoption_phase(histogram) is expected


def test_company_growth_rate_floors_span_at_one_month() -> None:
    assert company_growth_rate(5, NOW, NOW + timedelta(hours=1)) == 400
    assert company_growth_rate(3, NOW - timedelta(days=60), NOW) == pytest.approx(100)
    assert company_growth_rate(1, NOW, NOW) == 0


def test_theme_growth_and_impact_buckets() -> None:
    assert theme_growth_rate(6, NOW - timedelta(days=3), NOW) == pytest.approx(60)
    assert theme_growth_rate(6, NOW, NOW) == 0
    assert potential_impact(60, 21) is PotentialImpact.HIGH
    assert potential_impact(60, 5) is PotentialImpact.MEDIUM
    assert potential_impact(5, 11) is PotentialImpact.MEDIUM
    assert potential_impact(5, 5) is PotentialImpact.LOW


def test_funding_velocity_compares_trailing_windows() -> None:
    events = [_funding("A", "Seed", days_ago=day % 30, investors=[]) for day in range(15)]
    events += [_funding("B", "Seed", days_ago=31 + day, investors=[]) for day in range(10)]
    events.append(_funding("C", "Seed", days_ago=90, investors=[]))

    indicator = funding_velocity(events, NOW)

    assert indicator.value == 15
    assert indicator.trend is TrendDirection.RISING
    assert indicator.confidence == 0.85


def test_market_sentiment_uses_last_week_only() -> None:
    mentions = [
        CompanyMention(company_name="OpenAI", sentiment=0.6, mentioned_at=NOW - timedelta(days=1)),
        CompanyMention(company_name="OpenAI", sentiment=0.2, mentioned_at=NOW - timedelta(days=2)),
        CompanyMention(company_name="OpenAI", sentiment=-1.0, mentioned_at=NOW - timedelta(days=20)),
    ]

    indicator = market_sentiment(mentions, NOW)

    assert indicator.value == pytest.approx(70)
    assert indicator.trend is TrendDirection.RISING
    assert indicator.timeframe == "7d"


def test_monthly_histogram_fills_empty_months() -> None:
    articles = [
        _article("Claude update", days_ago=100),
        _article("Claude again", days_ago=95),
        _article("Unrelated", days_ago=50),
        _article("Claude returns", days_ago=10),
    ]

    histogram = monthly_histogram("Claude", articles)

    assert [entry.key for entry in histogram] == ["2026-07", "2026-08", "2026-09", "2026-10"]
    assert [entry.value for entry in histogram] == [2, 0, 0, 1]
    assert monthly_histogram("Sora", articles) == []


def test_company_growth_collects_funding_milestones(engine: AccumulationEngine) -> None:
    mentions = [
        CompanyMention(company_name="OpenAI", sentiment=0.2, mentioned_at=NOW - timedelta(days=60 - day))
        for day in range(51)
    ]
    mentions.append(CompanyMention(company_name="Cohere", mentioned_at=NOW))
    funding = [_funding("OpenAI", "Strategic", days_ago=5, investors=[], amount="$6.6B")]

    growth = engine.company_growth(mentions, funding)

    assert [metric.company_name for metric in growth] == ["OpenAI", "Cohere"]
    openai = growth[0]
    assert openai.total_mentions == 51
    assert openai.first_mentioned_at == NOW - timedelta(days=60)
    assert openai.milestones == ["Raised $6.6B in Strategic round", "Reached 51 mentions"]
    assert len(openai.sentiment_trend) == 51
    assert growth[1].growth_rate == 0


def test_investor_patterns(engine: AccumulationEngine) -> None:
    seed_article = _article("Acme series A", category="startups")
    funding = [
        _funding(
            "Acme",
            "Series A",
            days_ago=40,
            investors=["Sequoia Capital", "Accel"],
            amount_usd=10_000_000.0,
            article_id=seed_article.id,
        ),
        _funding("Acme", "Series B", days_ago=5, investors=["Sequoia Capital"], amount_usd=30_000_000.0),
        _funding("Beta", "Seed", days_ago=3, investors=["Accel", "Index Ventures"], amount="$2.0M"),
    ]

    patterns = {pattern.investor: pattern for pattern in engine.investor_patterns(funding, [seed_article])}

    assert list(patterns) == ["Accel", "Sequoia Capital", "Index Ventures"]
    sequoia = patterns["Sequoia Capital"]
    assert sequoia.investment_count == 2
    assert sequoia.average_investment == 20_000_000.0
    assert sequoia.preferred_stages == ["Series A", "Series B"]
    assert sequoia.sector_focus == ["startups"]
    assert sequoia.co_investors == [KeyValue(key="Accel", value=1)]
    assert sequoia.success_rate == 1.0
    accel = patterns["Accel"]
    assert accel.average_investment == 6_000_000.0
    assert [entry.key for entry in accel.co_investors] == ["Index Ventures", "Sequoia Capital"]
    assert accel.success_rate == 0.5


def test_technology_adoption_relates_co_mentioned_technologies(engine: AccumulationEngine) -> None:
    technologies = [
        TechnologyTrend(name="Claude", mention_count=2, first_mentioned_at=NOW - timedelta(days=3)),
        TechnologyTrend(name="Gemini", mention_count=1),
        TechnologyTrend(name="Sora", mention_count=1),
    ]
    articles = [
        _article("Claude and Gemini face off in hospital triage", days_ago=3),
        _article("Claude lands at a bank", days_ago=1),
        _article("Sora makes movies", days_ago=1),
    ]

    curves = {curve.technology: curve for curve in engine.technology_adoption(technologies, articles)}

    assert curves["Claude"].related_technologies == ["Gemini"]
    assert curves["Sora"].related_technologies == []
    shares = {entry.key: entry.value for entry in curves["Claude"].industry_adoption}
    assert shares["Healthcare"] == 50.0
    assert shares["Finance"] == 50.0
    assert shares["Retail"] == 0.0
    assert curves["Claude"].adoption_phase is AdoptionStage.EMERGING
    assert curves["Claude"].industry_adoption_estimated is True


def test_emerging_themes_from_recent_clusters(engine: AccumulationEngine) -> None:
    cluster = TopicCluster(title="Agents", keywords=["agents", "coding"], created_at=NOW - timedelta(days=3))
    articles = [_article(f"Coding agents wave {index}", days_ago=index % 3) for index in range(3)]
    articles.append(_article("Agents before the cluster", days_ago=10))

    themes = engine.emerging_themes([cluster], articles, NOW)

    assert len(themes) == 1
    assert themes[0].related_articles == 3
    assert themes[0].growth_rate == pytest.approx(30)
    assert themes[0].potential_impact is PotentialImpact.MEDIUM


def test_one_failing_indicator_does_not_abort_the_rest(
    engine: AccumulationEngine, monkeypatch: pytest.MonkeyPatch
) -> None:
    stub = StubMetrics()
    monkeypatch.setattr(engine_module, "metrics", stub)

    def explode(*args, **kwargs):
        raise ZeroDivisionError("bad window")

    monkeypatch.setattr(engine_module, "funding_velocity", explode)

    indicators = engine.market_indicators([], [], [], NOW)

    assert [indicator.name for indicator in indicators] == [
        "Funding Velocity",
        "Technology Diversity",
        "Market Sentiment",
        "Innovation Rate",
    ]
    assert indicators[0].value == 0
    assert indicators[0].trend is TrendDirection.STABLE
    assert indicators[0].confidence == 0.5
    assert indicators[2].value == 50
    assert stub.counted("accumulation.indicator.failed") == 1


def _seed(repository: InMemoryEntityRepository) -> None:
    article = _article("OpenAI ships Claude rival", days_ago=1)
    repository.create_articles([article])
    repository.insert_mention(
        CompanyMention(company_name="OpenAI", sentiment=0.4, article_id=article.id, mentioned_at=NOW - timedelta(days=1))
    )
    repository.record_technology_mention(TechnologyTrendPatch(name="Claude", mentioned_at=NOW), article.id)


def test_build_insights_is_cached_until_forced(
    engine: AccumulationEngine, repository: InMemoryEntityRepository, monkeypatch: pytest.MonkeyPatch
) -> None:
    stub = StubMetrics()
    monkeypatch.setattr(engine_module, "metrics", stub)
    _seed(repository)

    first = engine.build_insights()
    repository.insert_mention(CompanyMention(company_name="Cohere", mentioned_at=NOW))
    cached = engine.build_insights()
    rebuilt = engine.build_insights(force=True)

    assert cached is first
    assert [metric.company_name for metric in first.company_growth] == ["OpenAI"]
    assert {metric.company_name for metric in rebuilt.company_growth} == {"OpenAI", "Cohere"}
    assert rebuilt.generated_at == NOW
    assert len(stub.timing_calls) == 2


def test_invalidate_forces_recompute(engine: AccumulationEngine, repository: InMemoryEntityRepository) -> None:
    first = engine.build_insights()
    _seed(repository)

    engine.invalidate()
    second = engine.build_insights()

    assert first.company_growth == []
    assert second is not first
    assert second.company_growth[0].company_name == "OpenAI"


def test_corrupt_cache_entry_is_recomputed(repository: InMemoryEntityRepository) -> None:
    cache = SourceCache()
    cache.set(INSIGHTS_CACHE_KEY, {"company_growth": "garbage"}, 3600)
    engine = AccumulationEngine(repository, cache, clock=lambda: NOW)

    insights = engine.build_insights()

    assert isinstance(insights, AccumulatedInsights)
    assert cache.get(INSIGHTS_CACHE_KEY) is insights
