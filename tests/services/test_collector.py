from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from app.models.article import AnalyzerJudgment, CandidateArticle
from app.models.source import NewsSource, SourceKind
from app.services.analysis.analyzer import OpenAIArticleAnalyzer
from app.services.ingestion import collector as collector_module
from app.services.ingestion.cache import SourceCache
from app.services.ingestion.collector import (
    NO_ACTIVE_SOURCES_WARNING,
    NO_SOURCES_WARNING,
    IngestionPipeline,
)
from app.services.ingestion.errors import RepositoryError, SourceFetchError
from app.services.ingestion.extraction import ExtractionOrchestrator
from app.services.ingestion.repositories import EntityType, InMemoryEntityRepository
from app.services.ingestion.retry import RetryPolicy
from app.services.ingestion.verification import Verifier
from tests.conftest import NOW
from tests.helpers.metrics_stub import StubMetrics


class RelevantAnalyzer:
    def analyze(self, title: str, body: str) -> AnalyzerJudgment:
        return AnalyzerJudgment(category="startups", relevance_score=90, summary=f"Judged: {title}")


class StubFetcher:
    """Per-source behaviours: a list of candidates, an exception, or a coroutine factory."""

    def __init__(self, behaviours: dict[str, object]) -> None:
        self._behaviours = behaviours
        self.calls: list[str] = []

    async def fetch(self, source: NewsSource) -> list[CandidateArticle]:
        self.calls.append(source.id)
        behaviour = self._behaviours.get(source.id, [])
        if isinstance(behaviour, Exception):
            raise behaviour
        if callable(behaviour):
            return await behaviour()
        return list(behaviour)


class FailingRepository(InMemoryEntityRepository):
    def create_articles(self, articles):
        raise RepositoryError("database unavailable", code="500_INTERNAL")


def _source(source_id: str, **extra) -> NewsSource:
    return NewsSource(id=source_id, name=source_id.title(), kind=SourceKind.FEED, url=f"https://{source_id}.com/feed", **extra)


@pytest.fixture
def metrics_stub(monkeypatch: pytest.MonkeyPatch) -> StubMetrics:
    stub = StubMetrics()
    monkeypatch.setattr(collector_module, "metrics", stub)
    return stub


@pytest.fixture
def build_pipeline() -> Callable[..., IngestionPipeline]:
    def _build(fetcher, *, repository=None, cache=None, **overrides) -> IngestionPipeline:
        cache = cache or SourceCache()
        options = {
            "fetcher": fetcher,
            "cache": cache,
            "repository": repository or InMemoryEntityRepository(),
            "orchestrator": ExtractionOrchestrator(RelevantAnalyzer(), cache, delay_seconds=0),
            "verifier": Verifier(clock=lambda: NOW),
            "retry_policy": RetryPolicy(max_attempts=1),
            "fetch_timeout_seconds": 1.0,
            "min_interval_minutes": 15,
            "clock": lambda: NOW,
        }
        options.update(overrides)
        return IngestionPipeline(**options)

    return _build


@pytest.mark.asyncio
async def test_failed_and_slow_sources_do_not_abort_the_cycle(build_pipeline, make_candidate, metrics_stub) -> None:
    async def too_slow() -> list[CandidateArticle]:
        await asyncio.sleep(5)
        return []

    repository = InMemoryEntityRepository()
    fetcher = StubFetcher(
        {
            "broken": SourceFetchError("503 from upstream", code="FEED_503"),
            "slow": too_slow,
            "healthy": [
                make_candidate(),
                make_candidate(
                    title="Anthropic opens Tokyo research office for Claude",
                    url="https://techcrunch.com/2026/10/19/anthropic-tokyo/",
                ),
            ],
        }
    )
    pipeline = build_pipeline(fetcher, repository=repository, fetch_timeout_seconds=0.05)

    result = await pipeline.run_cycle([_source("broken"), _source("slow"), _source("healthy")])

    assert result.articles_added == 2
    assert result.sources_processed == 1
    assert result.sources_failed == 2
    assert result.warning is None
    failure_codes = {call["tags"]["code"] for call in metrics_stub.increment_calls if call["metric"] == "ingestion.source.failed"}
    assert failure_codes == {"FEED_503", "FETCH_TIMEOUT"}
    stored = repository.query_recent(EntityType.ARTICLES)
    assert {article.summary for article in stored} == {
        "Judged: Acme AI raises $10 million in Series A led by Sequoia Capital",
        "Judged: Anthropic opens Tokyo research office for Claude",
    }
    assert all(article.confidence == 100 for article in stored)


@pytest.mark.asyncio
async def test_transient_fetch_failure_is_retried(build_pipeline, make_candidate, metrics_stub) -> None:
    attempts: list[int] = []

    async def flaky() -> list[CandidateArticle]:
        attempts.append(1)
        if len(attempts) == 1:
            raise SourceFetchError("rate limited", code="FEED_429")
        return [make_candidate()]

    fetcher = StubFetcher({"flaky": flaky})
    pipeline = build_pipeline(fetcher, retry_policy=RetryPolicy(max_attempts=3, base_delay=0, jitter=0))

    result = await pipeline.run_cycle([_source("flaky")])

    assert len(attempts) == 2
    assert result.sources_processed == 1
    assert result.articles_added == 1
    assert metrics_stub.counted("ingestion.source.failed") == 0


@pytest.mark.asyncio
async def test_all_sources_unreachable_reports_warning(build_pipeline, metrics_stub) -> None:
    fetcher = StubFetcher({"a": SourceFetchError("down", code="FEED_HTTP_ERROR"), "b": RuntimeError("bug")})
    cache = SourceCache()
    pipeline = build_pipeline(fetcher, cache=cache)

    result = await pipeline.run_cycle([_source("a"), _source("b")])

    assert result.articles_added == 0
    assert result.sources_failed == 2
    assert result.warning == NO_SOURCES_WARNING
    # Failed sources stay due for the next cycle.
    assert cache.should_fetch("a", 15) is True


@pytest.mark.asyncio
async def test_no_active_sources(build_pipeline) -> None:
    result = await build_pipeline(StubFetcher({})).run_cycle([_source("off", is_active=False)])

    assert result.warning == NO_ACTIVE_SOURCES_WARNING
    assert result.sources_processed == 0


@pytest.mark.asyncio
async def test_recently_fetched_sources_are_skipped_unless_forced(build_pipeline, make_candidate, metrics_stub) -> None:
    fetcher = StubFetcher({"feed": [make_candidate()]})
    pipeline = build_pipeline(fetcher)
    sources = [_source("feed")]

    first = await pipeline.run_cycle(sources)
    second = await pipeline.run_cycle(sources)
    forced = await pipeline.run_cycle(sources, force=True)

    assert first.articles_added == 1
    assert second.skipped == 1
    assert second.sources_processed == 0
    assert forced.sources_processed == 1
    assert forced.articles_added == 0
    assert fetcher.calls == ["feed", "feed"]


@pytest.mark.asyncio
async def test_cross_source_duplicates_collapse_before_persisting(build_pipeline, make_candidate) -> None:
    original = make_candidate(url="https://techcrunch.com/2026/10/19/acme/", source_name="TechCrunch AI")
    echo = make_candidate(
        title="Acme AI Raises $10M in Series A Led by Sequoia Capital",
        url="https://venturebeat.com/ai/acme-raises/",
        source_name="VentureBeat AI",
    )
    feed_index = make_candidate(title="TechCrunch feed", url="https://techcrunch.com/feed/")
    repository = InMemoryEntityRepository()
    pipeline = build_pipeline(StubFetcher({"tc": [original, feed_index], "vb": [echo]}), repository=repository)

    result = await pipeline.run_cycle([_source("tc"), _source("vb")])

    assert result.articles_added == 1
    assert [article.url for article in repository.query_recent(EntityType.ARTICLES)] == [original.url]


@pytest.mark.asyncio
async def test_rejected_and_irrelevant_items_are_counted(build_pipeline, make_candidate) -> None:
    class PickyAnalyzer:
        def analyze(self, title: str, body: str) -> AnalyzerJudgment:
            return AnalyzerJudgment(relevance_score=90 if "Acme" in title else 10)

    cache = SourceCache()
    fake = make_candidate(title="Breaking: AI Becomes Sentient", url="https://shock.example/sentient", source_name="Shock")
    off_topic = make_candidate(title="Local bakery wins award", url="https://techcrunch.com/bakery/")
    pipeline = build_pipeline(
        StubFetcher({"mixed": [make_candidate(), fake, off_topic]}),
        cache=cache,
        orchestrator=ExtractionOrchestrator(PickyAnalyzer(), cache, delay_seconds=0),
    )

    result = await pipeline.run_cycle([_source("mixed")])

    assert result.articles_added == 1
    assert result.rejected == 1
    assert result.irrelevant == 1
    assert cache.is_seen(fake.url) is True


@pytest.mark.asyncio
async def test_new_articles_feed_entities_and_invalidate_insights(build_pipeline, make_candidate) -> None:
    cache = SourceCache()
    cache.set("insights:accumulated", "stale", 3600)
    repository = InMemoryEntityRepository()
    pipeline = build_pipeline(StubFetcher({"feed": [make_candidate()]}), cache=cache, repository=repository)

    await pipeline.run_cycle([_source("feed")])

    assert cache.get("insights:accumulated") is None
    funding = repository.query_recent(EntityType.FUNDING)
    assert len(funding) == 1
    assert funding[0].company_name == "Acme AI"
    assert funding[0].investors == ["Sequoia Capital"]


@pytest.mark.asyncio
async def test_repository_failure_returns_warning_without_marking_seen(build_pipeline, make_candidate) -> None:
    cache = SourceCache()
    candidate = make_candidate()
    pipeline = build_pipeline(StubFetcher({"feed": [candidate]}), cache=cache, repository=FailingRepository())

    result = await pipeline.run_cycle([_source("feed")])

    assert result.articles_added == 0
    assert result.warning == "Persisting articles failed (500_INTERNAL)."
    assert cache.is_seen(candidate.url) is False
    assert cache.should_fetch("feed", 15) is True


class SchemaBreakingChatClient:
    """Chat client whose JSON parses but does not match the judgment schema."""

    def __init__(self) -> None:
        self.calls = 0

    def generate(self, *, system_prompt: str, user_prompt: str, model: str, temperature: float) -> str:
        self.calls += 1
        return '{"relevance_score": 90, "summary": ["a", "b"]}'


@pytest.mark.asyncio
async def test_mistyped_analyzer_output_falls_back_instead_of_aborting(build_pipeline, make_candidate) -> None:
    cache = SourceCache()
    client = SchemaBreakingChatClient()
    orchestrator = ExtractionOrchestrator(
        OpenAIArticleAnalyzer(client, retry_backoff_seconds=0), cache, delay_seconds=0
    )
    candidate = make_candidate()
    pipeline = build_pipeline(StubFetcher({"feed": [candidate]}), cache=cache, orchestrator=orchestrator)

    result = await pipeline.run_cycle([_source("feed")])

    assert client.calls == 1
    assert result.sources_processed == 1
    assert result.articles_added == 1
    assert cache.should_fetch("feed", 15) is False
    assert cache.is_seen(candidate.url) is True


def test_concurrency_must_be_positive(build_pipeline) -> None:
    with pytest.raises(ValueError):
        build_pipeline(StubFetcher({}), concurrency=-1)
