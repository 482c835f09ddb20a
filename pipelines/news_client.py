"""Runtime fetcher selection for online vs. fixture modes."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from app.clients.feeds import FeedFetcher
from app.clients.parsing import is_breaking_news, parse_timestamp
from app.clients.search import SearchApiFetcher
from app.config import settings
from app.models.article import CandidateArticle
from app.models.source import NewsSource, SourceKind
from app.services.ingestion.collector import Fetcher
from app.services.ingestion.errors import IngestionError, SourceFetchError

logger = logging.getLogger("pipelines.news_client")

MODE_ENV = "MARKET_SIGNAL_MODE"
FIXTURE_DIR_ENV = "MARKET_SIGNAL_FIXTURE_DIR"


class RuntimeMode(str, Enum):
    """Available runtime behaviors."""

    ONLINE = "online"
    FIXTURE = "fixture"


class ModeError(IngestionError):
    """Raised when runtime mode configuration is invalid."""

    def __init__(self, message: str, code: str = "E_MODE_UNSUPPORTED") -> None:
        super().__init__(message, code=code)


class FixtureNotFoundError(SourceFetchError):
    """Raised when a source has no fixture snapshot on disk."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Fixture not found: {path}", code="E_FIXTURE_NOT_FOUND")
        self.path = path


@dataclass(frozen=True)
class RuntimeConfig:
    """Resolved runtime configuration."""

    mode: RuntimeMode
    fixture_base: Path | None = None


def _parse_mode(value: str | None, *, default: RuntimeMode) -> RuntimeMode:
    if not value:
        return default
    normalized = value.strip().lower()
    for mode in RuntimeMode:
        if normalized == mode.value:
            return mode
    raise ModeError(f"Unsupported {MODE_ENV} value: {value}")


_LOGGED_CONFIG = False


def get_runtime_config() -> RuntimeConfig:
    """Resolve runtime configuration from environment variables, then settings."""
    global _LOGGED_CONFIG  # noqa: PLW0603
    mode = _parse_mode(
        os.getenv(MODE_ENV) or settings.market_signal_mode,
        default=RuntimeMode.FIXTURE,
    )
    fixture_base: Path | None = None
    if mode is RuntimeMode.FIXTURE:
        fixture_dir = os.getenv(FIXTURE_DIR_ENV) or settings.market_signal_fixture_dir
        fixture_base = Path(fixture_dir).expanduser()

    config = RuntimeConfig(mode=mode, fixture_base=fixture_base)
    if not _LOGGED_CONFIG:
        logger.info("Market Signal runtime mode=%s", config.mode.value)
        _LOGGED_CONFIG = True
    return config


class FixtureFetcher:
    """Serves ``<fixture_dir>/<source_id>.json`` snapshots instead of hitting the network."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir

    async def fetch(self, source: NewsSource) -> list[CandidateArticle]:
        target = (self._base_dir / f"{source.id}.json").resolve()
        if not target.exists():
            raise FixtureNotFoundError(str(target))
        with target.open("r", encoding="utf-8") as infile:
            try:
                payload = json.load(infile)
            except json.JSONDecodeError as exc:
                raise SourceFetchError(f"Invalid fixture JSON: {target}", code="E_FIXTURE_SCHEMA") from exc
        if isinstance(payload, Mapping):
            payload = payload.get("articles", [])
        if not isinstance(payload, list):
            raise SourceFetchError(f"Fixture must hold a list of articles: {target}", code="E_FIXTURE_SCHEMA")

        now = datetime.now(UTC)
        return [
            candidate
            for candidate in (_candidate_from_fixture(item, source, now=now) for item in payload[: source.max_items])
            if candidate is not None
        ]


class RoutingFetcher:
    """Dispatches each source to the fetcher registered for its kind."""

    def __init__(self, fetchers: Mapping[SourceKind, Fetcher]) -> None:
        self._fetchers = dict(fetchers)

    async def fetch(self, source: NewsSource) -> list[CandidateArticle]:
        fetcher = self._fetchers.get(source.kind)
        if fetcher is None:
            raise SourceFetchError(
                f"No fetcher configured for {source.kind.value} source {source.id}",
                code="E_FETCHER_UNAVAILABLE",
            )
        return await fetcher.fetch(source)

    async def aclose(self) -> None:
        for fetcher in {id(f): f for f in self._fetchers.values()}.values():
            closer = getattr(fetcher, "aclose", None)
            if closer is not None:
                await closer()


def build_fetcher(config: RuntimeConfig | None = None) -> Fetcher:
    """Fixture snapshots in fixture mode; live feed and search clients online."""
    config = config or get_runtime_config()
    if config.mode is RuntimeMode.FIXTURE:
        if not config.fixture_base:
            raise ModeError("Fixture base path is required in fixture mode.")
        return FixtureFetcher(config.fixture_base)

    fetchers: dict[SourceKind, Fetcher] = {SourceKind.FEED: FeedFetcher()}
    if settings.tavily_api_key:
        search = SearchApiFetcher.from_settings()
        fetchers[SourceKind.SEARCH] = search
        fetchers[SourceKind.FINANCIAL] = search
    else:
        logger.warning("news_client.search_disabled", extra={"reason": "TAVILY_API_KEY missing"})
    return RoutingFetcher(fetchers)


def _candidate_from_fixture(item: Any, source: NewsSource, *, now: datetime) -> CandidateArticle | None:
    if not isinstance(item, Mapping):
        return None
    title = (item.get("title") or "").strip()
    url = (item.get("url") or item.get("link") or "").strip()
    if not title or not url:
        return None
    published = parse_timestamp(item.get("published_at") or item.get("published"))
    breaking = item.get("is_breaking")
    return CandidateArticle(
        title=title,
        summary=item.get("summary") or "",
        content=item.get("content") or "",
        url=url,
        source_name=item.get("source_name") or source.name,
        source_urls=list(item.get("source_urls") or []),
        published_at=published or now,
        is_breaking=bool(breaking) if breaking is not None else is_breaking_news(title, published, now=now),
        source_id=source.id,
    )
