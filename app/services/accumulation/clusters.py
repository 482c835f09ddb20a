"""Keyword clustering of recent articles used for emerging-theme detection."""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timedelta
from uuid import NAMESPACE_URL, uuid5

from app.models.article import Article
from app.models.entities import TopicCluster

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"[a-z0-9][a-z0-9\-\.]*[a-z0-9]")
_MIN_TOKEN_LENGTH = 4

STOP_WORDS = frozenset(
    {
        "about",
        "after",
        "again",
        "against",
        "also",
        "amid",
        "announces",
        "before",
        "being",
        "between",
        "could",
        "does",
        "from",
        "have",
        "here",
        "into",
        "just",
        "more",
        "most",
        "news",
        "over",
        "says",
        "should",
        "some",
        "than",
        "that",
        "their",
        "there",
        "these",
        "they",
        "this",
        "today",
        "under",
        "week",
        "what",
        "when",
        "where",
        "which",
        "while",
        "will",
        "with",
        "without",
        "would",
        "year",
        "your",
    }
)


def title_tokens(title: str) -> set[str]:
    return {
        token
        for token in _TOKEN.findall(title.lower())
        if len(token) >= _MIN_TOKEN_LENGTH and token not in STOP_WORDS and not token.isdigit()
    }


class TopicClusterer:
    """Groups recent articles by their most widely shared title keyword.

    Keywords are visited from most to least frequent; each article joins at most
    one cluster, and only groups of ``min_size`` or more survive.
    """

    def __init__(self, *, window_days: int = 7, min_size: int = 3, max_keywords: int = 5) -> None:
        self._window = timedelta(days=window_days)
        self._min_size = min_size
        self._max_keywords = max_keywords

    def build(self, articles: Sequence[Article], now: datetime) -> list[TopicCluster]:
        recent = [article for article in articles if now - self._window <= article.published_at <= now]
        tokens = {article.id: title_tokens(article.title) for article in recent}
        frequency = Counter(token for token_set in tokens.values() for token in token_set)
        assigned: set = set()
        clusters: list[TopicCluster] = []
        for keyword, _ in sorted(frequency.items(), key=lambda item: (-item[1], item[0])):
            members = [
                article
                for article in recent
                if article.id not in assigned and keyword in tokens[article.id]
            ]
            if len(members) < self._min_size:
                continue
            assigned.update(article.id for article in members)
            co_occurring = Counter(
                token for article in members for token in tokens[article.id] if token != keyword
            )
            related = [
                token
                for token, count in sorted(co_occurring.items(), key=lambda item: (-item[1], item[0]))
                if count >= 2
            ][: self._max_keywords - 1]
            created_at = min(article.published_at for article in members)
            clusters.append(
                TopicCluster(
                    id=uuid5(NAMESPACE_URL, f"cluster:{keyword}:{created_at.isoformat()}"),
                    title=keyword.title(),
                    keywords=[keyword, *related],
                    article_ids=[article.id for article in members],
                    created_at=created_at,
                )
            )
        logger.info("accumulation.clusters_built", extra={"articles": len(recent), "clusters": len(clusters)})
        return clusters
