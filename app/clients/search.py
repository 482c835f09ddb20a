"""Search-API fetcher (Tavily) for query-driven news sources."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from app.clients.parsing import is_breaking_news, parse_timestamp, strip_html
from app.config import settings
from app.models.article import CandidateArticle
from app.models.source import NewsSource
from app.services.ingestion.errors import SourceFetchError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.tavily.com"
DEFAULT_DAYS_LIMIT = 3


class SearchApiFetcher:
    """Runs a source's query against the search API and maps results to candidates."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float | None = None,
        days_limit: int | None = DEFAULT_DAYS_LIMIT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("TAVILY_API_KEY is required to create a SearchApiFetcher.")
        self._api_key = api_key
        self._days_limit = days_limit
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout or settings.fetch_timeout_seconds
        )

    @classmethod
    def from_settings(cls) -> SearchApiFetcher:
        return cls(api_key=settings.tavily_api_key or "")

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def fetch(self, source: NewsSource) -> list[CandidateArticle]:
        query = source.query or source.name
        results = await self.search(query=query, max_results=source.max_items)
        now = datetime.now(UTC)
        candidates = [
            candidate
            for candidate in (candidate_from_result(item, source, now=now) for item in results)
            if candidate is not None
        ]
        logger.info(
            "sources.search_parsed",
            extra={"source_id": source.id, "results": len(results), "candidates": len(candidates)},
        )
        return candidates

    async def search(self, *, query: str, max_results: int) -> list[dict[str, Any]]:
        if max_results <= 0:
            raise ValueError("max_results must be a positive integer.")

        payload: dict[str, Any] = {
            "api_key": self._api_key,
            "query": query,
            "topic": "news",
            "search_depth": "basic",
            "max_results": max_results,
        }
        if self._days_limit:
            payload["days"] = self._days_limit

        try:
            response = await self._http.post("/search", json=payload)
        except httpx.TimeoutException as exc:
            raise SourceFetchError("Search request timed out", code="SEARCH_TIMEOUT") from exc
        except httpx.HTTPError as exc:
            raise SourceFetchError(f"HTTP error calling search API: {exc}", code="SEARCH_HTTP_ERROR") from exc

        if response.status_code == 429:
            raise SourceFetchError("Rate limited by search API", code="SEARCH_429")
        if response.status_code in (408, 504):
            raise SourceFetchError("Search request timed out", code="SEARCH_TIMEOUT")
        if response.status_code >= 400:
            detail = response.text[:200]
            try:
                detail_json = response.json()
                detail = detail_json.get("message") or detail_json.get("detail") or detail
            except ValueError:
                pass
            raise SourceFetchError(
                f"Search request failed: {response.status_code} - {detail}", code=f"SEARCH_{response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise SourceFetchError("Failed to decode search response JSON.", code="SEARCH_SCHEMA_ERR") from exc

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list) or not all(isinstance(item, dict) for item in results):
            raise SourceFetchError("`results` missing from search response.", code="SEARCH_SCHEMA_ERR")
        return results


def candidate_from_result(item: dict[str, Any], source: NewsSource, *, now: datetime) -> CandidateArticle | None:
    title = strip_html(item.get("title"))
    url = (item.get("url") or "").strip()
    if not title or not url:
        return None
    content = strip_html(item.get("content") or item.get("snippet"))
    published = parse_timestamp(item.get("published_date") or item.get("date"))
    return CandidateArticle(
        title=title,
        summary=content[:500],
        content=strip_html(item.get("raw_content")),
        url=url,
        source_name=item.get("source") or source.name,
        published_at=published or now,
        is_breaking=is_breaking_news(title, published, now=now),
        source_id=source.id,
    )
