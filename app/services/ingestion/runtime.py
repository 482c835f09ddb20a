"""Process-wide wiring of cache, repository, pipeline and accumulation engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from app.config import settings
from app.models.source import NewsSource, SourcePurpose, load_sources, select_sources
from app.services.accumulation.engine import AccumulationEngine
from app.services.accumulation.summary import MarketSummary, build_market_summary
from app.services.analysis.analyzer import build_article_analyzer
from app.services.ingestion.cache import SourceCache
from app.services.ingestion.collector import CycleResult, Fetcher, IngestionPipeline
from app.services.ingestion.errors import IngestionError
from app.services.ingestion.extraction import ExtractionOrchestrator
from app.services.ingestion.repositories import EntityRepository, build_entity_repository
from app.services.ingestion.verification import Verifier
from pipelines.news_client import build_fetcher

logger = logging.getLogger(__name__)


@dataclass
class MarketSignalService:
    """Shared collaborators behind the API and CLI entry points."""

    cache: SourceCache
    repository: EntityRepository
    pipeline: IngestionPipeline
    engine: AccumulationEngine
    verifier: Verifier
    sources_path: Path

    def sources(self, purpose: SourcePurpose | None = None) -> list[NewsSource]:
        if not self.sources_path.exists():
            raise IngestionError(f"Source registry not found: {self.sources_path}", code="404_SOURCES_NOT_FOUND")
        try:
            registry = load_sources(self.sources_path)
        except ValueError as exc:
            raise IngestionError(f"Invalid source registry: {exc}", code="422_INVALID_SOURCES") from exc
        return select_sources(registry, purpose)

    async def collect(self, *, purpose: SourcePurpose | None = None, force: bool = False) -> CycleResult:
        return await self.pipeline.run_cycle(self.sources(purpose), force=force)

    def market_summary(self, *, days: int = 30) -> MarketSummary:
        return build_market_summary(self.repository, now=datetime.now(UTC), days=days)


def build_market_signal_service(
    *,
    fetcher: Fetcher | None = None,
    repository: EntityRepository | None = None,
    cache: SourceCache | None = None,
    sources_path: Path | None = None,
) -> MarketSignalService:
    cache = cache or SourceCache()
    repository = repository or build_entity_repository()
    verifier = Verifier()
    orchestrator = ExtractionOrchestrator(build_article_analyzer(), cache)
    pipeline = IngestionPipeline(
        fetcher=fetcher or build_fetcher(),
        cache=cache,
        repository=repository,
        orchestrator=orchestrator,
        verifier=verifier,
    )
    return MarketSignalService(
        cache=cache,
        repository=repository,
        pipeline=pipeline,
        engine=AccumulationEngine(repository, cache),
        verifier=verifier,
        sources_path=sources_path or Path(settings.news_sources_path),
    )


_SERVICE_INSTANCE: MarketSignalService | None = None


def get_market_signal_service() -> MarketSignalService:
    """Singleton accessor used by API routes."""
    global _SERVICE_INSTANCE  # noqa: PLW0603
    if _SERVICE_INSTANCE is None:
        _SERVICE_INSTANCE = build_market_signal_service()
        logger.info("market_signal.service_ready", extra={"sources_path": str(_SERVICE_INSTANCE.sources_path)})
    return _SERVICE_INSTANCE
