"""RSS/Atom fetcher that turns feed entries into candidate articles."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import feedparser
import httpx

from app.clients.parsing import is_breaking_news, parse_timestamp, strip_html
from app.config import settings
from app.models.article import CandidateArticle
from app.models.source import NewsSource
from app.services.ingestion.errors import SourceFetchError
from app.services.ingestion.urls import is_article_permalink

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; MarketSignalBot/1.0; +https://example.com/bot)"
_SUMMARY_LIMIT = 500


class FeedFetcher:
    """Fetches one feed per call; the caller owns scheduling and retries."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._timeout = timeout or settings.fetch_timeout_seconds
        self._client = http_client
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self, source: NewsSource) -> list[CandidateArticle]:
        if not source.url:
            raise SourceFetchError(f"Feed source {source.id} has no url.", code="FEED_CONFIG_ERR")
        client = self._http()
        try:
            response = await client.get(source.url, follow_redirects=True, headers={"User-Agent": USER_AGENT})
        except httpx.TimeoutException as exc:
            raise SourceFetchError(f"Timed out fetching {source.url}", code="FEED_TIMEOUT") from exc
        except httpx.HTTPError as exc:
            raise SourceFetchError(f"HTTP error fetching {source.url}: {exc}", code="FEED_HTTP_ERROR") from exc

        if response.status_code == 429:
            raise SourceFetchError(f"Rate limited by {source.url}", code="FEED_429")
        if response.status_code >= 400:
            raise SourceFetchError(
                f"Feed request failed: {response.status_code}", code=f"FEED_{response.status_code}"
            )

        feed = feedparser.parse(response.text)
        entries = list(feed.get("entries") or [])
        if not entries and feed.get("bozo"):
            raise SourceFetchError(
                f"Unparseable feed at {source.url}: {feed.get('bozo_exception')}", code="FEED_SCHEMA_ERR"
            )

        now = datetime.now(UTC)
        candidates: list[CandidateArticle] = []
        for entry in entries[: source.max_items]:
            candidate = candidate_from_entry(entry, source, now=now)
            if candidate is not None:
                candidates.append(candidate)
        logger.info(
            "sources.feed_parsed",
            extra={"source_id": source.id, "entries": len(entries), "candidates": len(candidates)},
        )
        return candidates

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client


def candidate_from_entry(entry: Any, source: NewsSource, *, now: datetime) -> CandidateArticle | None:
    title = strip_html(entry.get("title"))
    link = (entry.get("link") or "").strip()
    if not title or not is_article_permalink(link):
        return None
    summary = strip_html(entry.get("summary") or entry.get("description"))[:_SUMMARY_LIMIT]
    content = ""
    for block in entry.get("content") or []:
        value = block.get("value") if hasattr(block, "get") else None
        if value:
            content = strip_html(value)
            break
    published = (
        parse_timestamp(entry.get("published_parsed"))
        or parse_timestamp(entry.get("updated_parsed"))
        or parse_timestamp(entry.get("published"))
    )
    return CandidateArticle(
        title=title,
        summary=summary,
        content=content,
        url=link,
        source_name=source.name,
        published_at=published or now,
        is_breaking=is_breaking_news(title, published, now=now),
        source_id=source.id,
    )
