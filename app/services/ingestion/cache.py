"""Process-wide TTL cache for source throttling, seen URLs, analyses and insight payloads."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from threading import Lock
from typing import Any, Protocol

from app.config import settings
from app.models.article import AnalyzerJudgment
from app.observability.metrics import metrics
from app.services.ingestion.urls import canonicalize_url

logger = logging.getLogger(__name__)

_SOURCE_PREFIX = "source:"
_SEEN_PREFIX = "seen:"
_ANALYSIS_PREFIX = "analysis:"


class InsightCache(Protocol):
    """Get/set/invalidate port for derived insight payloads."""

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ...

    def invalidate(self, prefix: str | None = None) -> int:
        ...


@dataclass(frozen=True)
class _CacheEntry:
    expires_at: float
    value: Any


@dataclass(frozen=True)
class SourceFetchRecord:
    source_id: str
    name: str
    fetched_at: float
    count: int


class SourceCache(InsightCache):
    """Lock-protected keyed map with per-entry expiry.

    A cold cache means every source is due and no URL has been seen; that is
    slower but still correct.
    """

    def __init__(
        self,
        *,
        default_ttl_seconds: float | None = None,
        seen_ttl_seconds: float | None = None,
        source_ttl_seconds: float | None = None,
        analysis_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._default_ttl = default_ttl_seconds or settings.default_cache_ttl_seconds
        self._seen_ttl = seen_ttl_seconds or settings.seen_url_ttl_seconds
        self._source_ttl = source_ttl_seconds or settings.source_fetch_ttl_seconds
        self._analysis_ttl = analysis_ttl_seconds or settings.analysis_cache_ttl_seconds
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._lock = Lock()

    # Generic keyed payloads -------------------------------------------------

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                hit = False
            elif entry.expires_at <= now:
                self._entries.pop(key, None)
                hit = False
            else:
                hit = True
        if not key.startswith((_SEEN_PREFIX, _SOURCE_PREFIX)):
            metrics.increment("cache.hit" if hit else "cache.miss", tags={"key": _namespace(key)})
        return entry.value if hit else None

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        expires_at = self._clock() + max(ttl, 0.0)
        with self._lock:
            self._entries[key] = _CacheEntry(expires_at=expires_at, value=value)

    def invalidate(self, prefix: str | None = None) -> int:
        """Drop every key starting with ``prefix`` (everything when unset)."""
        with self._lock:
            if prefix is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                doomed = [key for key in self._entries if key.startswith(prefix)]
                for key in doomed:
                    del self._entries[key]
                removed = len(doomed)
        logger.info("cache.invalidated", extra={"prefix": prefix, "removed": removed})
        return removed

    # Source throttling ------------------------------------------------------

    def should_fetch(self, source_id: str, min_interval_minutes: float | None = None) -> bool:
        interval = (
            settings.source_min_interval_minutes
            if min_interval_minutes is None
            else min_interval_minutes
        )
        record = self.get(f"{_SOURCE_PREFIX}{source_id}")
        if record is None:
            return True
        elapsed = self._clock() - record.fetched_at
        return elapsed >= interval * 60

    def mark_fetched(self, source_id: str, name: str, count_fetched: int) -> None:
        record = SourceFetchRecord(
            source_id=source_id, name=name, fetched_at=self._clock(), count=count_fetched
        )
        self.set(f"{_SOURCE_PREFIX}{source_id}", record, self._source_ttl)
        logger.debug(
            "cache.source_marked",
            extra={"source_id": source_id, "source": name, "count": count_fetched},
        )

    # Seen URLs --------------------------------------------------------------

    def is_seen(self, url: str) -> bool:
        return self.get(_seen_key(url)) is not None

    def mark_seen(self, urls: Iterable[str]) -> None:
        expires_at = self._clock() + self._seen_ttl
        with self._lock:
            for url in urls:
                if url:
                    self._entries[_seen_key(url)] = _CacheEntry(expires_at=expires_at, value=True)

    # Analyzer results -------------------------------------------------------

    def get_analysis(self, url: str) -> AnalyzerJudgment | None:
        return self.get(f"{_ANALYSIS_PREFIX}{canonicalize_url(url) or url}")

    def cache_analysis(self, url: str, analysis: AnalyzerJudgment) -> None:
        self.set(f"{_ANALYSIS_PREFIX}{canonicalize_url(url) or url}", analysis, self._analysis_ttl)

    # Maintenance ------------------------------------------------------------

    def cleanup_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info("cache.cleanup", extra={"removed": len(expired)})
        return len(expired)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            keys = list(self._entries)
        return {
            "total_entries": len(keys),
            "seen_urls": sum(1 for key in keys if key.startswith(_SEEN_PREFIX)),
            "keys": [key for key in keys if not key.startswith(_SEEN_PREFIX)],
        }


def _seen_key(url: str) -> str:
    return f"{_SEEN_PREFIX}{canonicalize_url(url) or url}"


def _namespace(key: str) -> str:
    return key.split(":", 1)[0] if ":" in key else key
