"""Near-duplicate suppression for merged candidate batches."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from app.config import settings
from app.models.article import CandidateArticle
from app.services.ingestion.urls import canonicalize_url, is_article_permalink

logger = logging.getLogger(__name__)

_AMOUNT_PATTERN = re.compile(r"\$?(\d+(?:\.\d+)?)\s*(million|billion|m|b)\b")
_PUNCTUATION = re.compile(r"[^\w\s]")
_KEY_WORDS = 8
_MIN_WORD_LENGTH = 3


def title_words(title: str) -> list[str]:
    """Significant words of a normalized title; ``$500M`` and ``$500 million`` both become ``500m``."""
    lowered = (title or "").lower()
    lowered = _AMOUNT_PATTERN.sub(lambda match: f"{match.group(1)}{match.group(2)[0]}", lowered)
    lowered = _PUNCTUATION.sub("", lowered)
    return [word for word in lowered.split() if len(word) >= _MIN_WORD_LENGTH]


def title_key(title: str) -> str:
    return " ".join(title_words(title)[:_KEY_WORDS])


def title_similarity(words: Sequence[str], existing_key: str) -> float:
    existing = existing_key.split()
    longest = max(len(words), len(existing))
    if not longest:
        return 0.0
    common = [word for word in words if word in existing]
    return len(common) / longest


class Deduplicator:
    """Collapses candidates describing the same story, keeping the first one seen."""

    def __init__(self, similarity_threshold: float | None = None) -> None:
        self._threshold = (
            settings.dedupe_similarity_threshold
            if similarity_threshold is None
            else similarity_threshold
        )

    def dedupe(self, articles: Sequence[CandidateArticle]) -> list[CandidateArticle]:
        survivors: list[CandidateArticle] = []
        seen_urls: set[str] = set()
        seen_keys: list[str] = []
        for article in articles:
            canonical = canonicalize_url(article.url)
            if canonical and canonical in seen_urls:
                logger.debug("dedupe.url_duplicate", extra={"url": canonical})
                continue
            words = title_words(article.title)
            key = " ".join(words[:_KEY_WORDS])
            if key and (key in seen_keys or self._similar_to_any(words[:_KEY_WORDS], seen_keys)):
                logger.debug("dedupe.title_duplicate", extra={"title": article.title[:80]})
                continue
            survivors.append(article)
            if canonical:
                seen_urls.add(canonical)
            if key:
                seen_keys.append(key)
        dropped = len(articles) - len(survivors)
        if dropped:
            logger.info(
                "dedupe.collapsed",
                extra={"input": len(articles), "survivors": len(survivors), "dropped": dropped},
            )
        return survivors

    def filter_valid_urls(self, articles: Sequence[CandidateArticle]) -> list[CandidateArticle]:
        """Drop candidates whose URL is a feed or index endpoint rather than a permalink."""
        valid: list[CandidateArticle] = []
        for article in articles:
            if is_article_permalink(article.url):
                valid.append(article)
            else:
                logger.info(
                    "dedupe.feed_url_filtered",
                    extra={"url": article.url, "title": article.title[:80]},
                )
        return valid

    def _similar_to_any(self, words: Sequence[str], keys: Sequence[str]) -> bool:
        return any(title_similarity(words, existing) > self._threshold for existing in keys)
