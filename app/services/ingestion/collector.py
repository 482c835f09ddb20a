"""One collection cycle: due sources, concurrent fetch, dedupe, verify, analyze, persist, extract."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from app.config import settings
from app.models.article import Article, CandidateArticle
from app.models.source import NewsSource
from app.observability.metrics import metrics
from app.services.accumulation.clusters import TopicClusterer
from app.services.ingestion.cache import InsightCache, SourceCache
from app.services.ingestion.dedup import Deduplicator
from app.services.ingestion.errors import RepositoryError, SourceFetchError
from app.services.ingestion.extraction import ExtractionOrchestrator
from app.services.ingestion.repositories import EntityRepository, EntityType
from app.services.ingestion.retry import RetryPolicy
from app.services.ingestion.verification import Verifier

logger = logging.getLogger(__name__)

NO_SOURCES_WARNING = "No sources were reachable during this collection cycle."
NO_ACTIVE_SOURCES_WARNING = "No active sources are configured."


class Fetcher(Protocol):
    """Returns candidates for one source; may raise SourceFetchError."""

    async def fetch(self, source: NewsSource) -> list[CandidateArticle]:
        ...


@dataclass(frozen=True)
class CycleResult:
    articles_added: int
    sources_processed: int
    sources_failed: int
    rejected: int
    skipped: int = 0
    irrelevant: int = 0
    warning: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class _FetchOutcome:
    source: NewsSource
    candidates: list[CandidateArticle]
    error_code: str | None = None


class IngestionPipeline:
    """Coordinates the per-cycle flow between fetchers, cache, verifier and repository."""

    def __init__(
        self,
        *,
        fetcher: Fetcher,
        cache: SourceCache,
        repository: EntityRepository,
        orchestrator: ExtractionOrchestrator,
        deduplicator: Deduplicator | None = None,
        verifier: Verifier | None = None,
        clusterer: TopicClusterer | None = None,
        insight_cache: InsightCache | None = None,
        concurrency: int | None = None,
        fetch_timeout_seconds: float | None = None,
        retry_policy: RetryPolicy | None = None,
        min_interval_minutes: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._repository = repository
        self._orchestrator = orchestrator
        self._deduplicator = deduplicator or Deduplicator()
        self._verifier = verifier or Verifier()
        self._clusterer = clusterer or TopicClusterer()
        self._insight_cache = insight_cache if insight_cache is not None else cache
        self._concurrency = concurrency or settings.fetch_concurrency
        self._timeout = fetch_timeout_seconds or settings.fetch_timeout_seconds
        self._retry = retry_policy or RetryPolicy(max_attempts=settings.fetch_retry_attempts)
        self._min_interval = (
            settings.source_min_interval_minutes if min_interval_minutes is None else min_interval_minutes
        )
        self._clock = clock or (lambda: datetime.now(UTC))
        if self._concurrency < 1:
            raise ValueError("concurrency must be >= 1")

    async def run_cycle(self, sources: Sequence[NewsSource], *, force: bool = False) -> CycleResult:
        start = time.perf_counter()
        active = [source for source in sources if source.is_active]
        if not active:
            logger.warning("ingestion.cycle_no_sources")
            return CycleResult(0, 0, 0, 0, warning=NO_ACTIVE_SOURCES_WARNING)

        due = [source for source in active if force or self._cache.should_fetch(source.id, self._min_interval)]
        skipped = len(active) - len(due)
        if skipped:
            metrics.increment("ingestion.source.skipped", value=skipped)
        if not due:
            logger.info("ingestion.cycle_nothing_due", extra={"skipped": skipped})
            return CycleResult(0, 0, 0, 0, skipped=skipped)

        outcomes = await self._fetch_all(due)
        reached = [outcome for outcome in outcomes if outcome.error_code is None]
        failed = len(outcomes) - len(reached)
        if not reached:
            logger.warning("ingestion.cycle_unreachable", extra={"sources": len(due), "failed": failed})
            self._record_latency(start)
            return CycleResult(0, 0, failed, 0, skipped=skipped, warning=NO_SOURCES_WARNING)

        merged = [candidate for outcome in reached for candidate in outcome.candidates]
        fresh = [candidate for candidate in merged if not self._cache.is_seen(candidate.url)]
        survivors = self._deduplicator.filter_valid_urls(self._deduplicator.dedupe(fresh))
        dropped = len(fresh) - len(survivors)
        if dropped:
            metrics.increment("ingestion.dedupe.dropped", value=dropped)

        admitted, rejected, irrelevant = await self._admit(survivors)

        try:
            created = await asyncio.to_thread(self._repository.create_articles, admitted)
        except RepositoryError as exc:
            logger.exception("ingestion.persist_failed", extra={"code": exc.code, "articles": len(admitted)})
            self._record_latency(start)
            return CycleResult(
                0,
                len(reached),
                failed,
                rejected,
                skipped=skipped,
                irrelevant=irrelevant,
                warning=f"Persisting articles failed ({exc.code}).",
            )

        self._cache.mark_seen(url for candidate in fresh for url in candidate.urls)
        for outcome in reached:
            self._cache.mark_fetched(outcome.source.id, outcome.source.name, len(outcome.candidates))

        if created:
            await asyncio.to_thread(self._persist_entities, created)
            await asyncio.to_thread(self._refresh_clusters)
            self._insight_cache.invalidate("insights")

        result = CycleResult(
            articles_added=len(created),
            sources_processed=len(reached),
            sources_failed=failed,
            rejected=rejected,
            skipped=skipped,
            irrelevant=irrelevant,
        )
        elapsed_ms = self._record_latency(start)
        logger.info(
            "ingestion.cycle_complete",
            extra={**result.as_dict(), "candidates": len(merged), "duplicates": dropped, "elapsed_ms": elapsed_ms},
        )
        return result

    async def _fetch_all(self, sources: Sequence[NewsSource]) -> list[_FetchOutcome]:
        semaphore = asyncio.Semaphore(self._concurrency)
        coroutines = [self._with_semaphore(semaphore, source) for source in sources]
        responses = await asyncio.gather(*coroutines, return_exceptions=True)

        outcomes: list[_FetchOutcome] = []
        for source, response in zip(sources, responses, strict=False):
            if isinstance(response, _FetchOutcome):
                outcomes.append(response)
                continue
            logger.error(
                "ingestion.source_unhandled_exception",
                extra={"source_id": source.id, "error": repr(response)},
            )
            metrics.increment("ingestion.source.failed", tags={"source": source.id, "code": "UNHANDLED"})
            outcomes.append(_FetchOutcome(source=source, candidates=[], error_code="UNHANDLED"))
        return outcomes

    async def _with_semaphore(self, semaphore: asyncio.Semaphore, source: NewsSource) -> _FetchOutcome:
        async with semaphore:
            return await self._fetch_source(source)

    async def _fetch_source(self, source: NewsSource) -> _FetchOutcome:
        error_code = "FETCH_FAILED"
        for attempt, delay in self._retry.schedule():
            try:
                candidates = await asyncio.wait_for(self._fetcher.fetch(source), timeout=self._timeout)
            except TimeoutError:
                error_code = "FETCH_TIMEOUT"
            except SourceFetchError as exc:
                error_code = exc.code
            else:
                metrics.increment("ingestion.source.fetched", tags={"source": source.id})
                logger.info(
                    "ingestion.source_fetched",
                    extra={"source_id": source.id, "candidates": len(candidates), "attempt": attempt},
                )
                return _FetchOutcome(source=source, candidates=list(candidates))

            logger.warning(
                "ingestion.source_fetch_failed",
                extra={"source_id": source.id, "code": error_code, "attempt": attempt},
            )
            if not self._retry.is_last(attempt):
                await asyncio.sleep(delay)

        metrics.increment("ingestion.source.failed", tags={"source": source.id, "code": error_code})
        return _FetchOutcome(source=source, candidates=[], error_code=error_code)

    async def _admit(self, candidates: Sequence[CandidateArticle]) -> tuple[list[Article], int, int]:
        admitted: list[Article] = []
        rejected = 0
        irrelevant = 0
        for candidate in candidates:
            verdict = self._verifier.verify(candidate)
            if not verdict.is_valid:
                rejected += 1
                metrics.increment("ingestion.verify.rejected")
                continue
            judgment = await self._orchestrator.analyze(candidate)
            if judgment is None:
                irrelevant += 1
                continue
            metrics.increment("ingestion.verify.admitted")
            admitted.append(Article.admit(candidate, confidence=verdict.confidence_percent, judgment=judgment))
        return admitted, rejected, irrelevant

    def _persist_entities(self, articles: Sequence[Article]) -> None:
        for article in articles:
            extracted = self._orchestrator.extract(article)
            self._isolated("funding", article, lambda: [self._repository.insert_funding(e) for e in extracted.funding])
            self._isolated(
                "mentions", article, lambda: [self._repository.insert_mention(m) for m in extracted.mentions]
            )
            self._isolated(
                "technologies",
                article,
                lambda: [
                    self._repository.record_technology_mention(patch, article_id=article.id)
                    for patch in extracted.trends
                ],
            )

    def _isolated(self, stage: str, article: Article, func: Callable[[], Any]) -> None:
        try:
            func()
        except RepositoryError as exc:
            logger.exception(
                "ingestion.entity_persist_failed",
                extra={"stage": stage, "article_id": str(article.id), "code": exc.code},
            )
            metrics.increment("extraction.failed", tags={"stage": f"persist_{stage}", "code": exc.code})

    def _refresh_clusters(self) -> None:
        now = self._clock()
        try:
            recent = self._repository.query_recent(EntityType.ARTICLES, since=now - timedelta(days=7))
            self._repository.replace_clusters(self._clusterer.build(recent, now))
        except RepositoryError as exc:
            logger.exception("ingestion.cluster_refresh_failed", extra={"code": exc.code})

    @staticmethod
    def _record_latency(start: float) -> float:
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        metrics.timing("ingestion.cycle.latency_ms", elapsed_ms)
        return elapsed_ms
