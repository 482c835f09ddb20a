"""Helpers shared by the source fetchers when turning raw items into candidates."""

from __future__ import annotations

import html
import logging
import re
import time
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Any

logger = logging.getLogger(__name__)

BREAKING_KEYWORDS = ("breaking", "urgent", "just in", "developing", "live")
BREAKING_WINDOW = timedelta(hours=6)

_BREAKING = re.compile(r"\b(?:" + "|".join(re.escape(word) for word in BREAKING_KEYWORDS) + r")\b", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def strip_html(value: str | None) -> str:
    if not value:
        return ""
    return _WHITESPACE.sub(" ", html.unescape(_TAG.sub(" ", value))).strip()


def parse_timestamp(value: Any) -> datetime | None:
    """Accept ISO-8601 strings, RFC 822 dates and ``time.struct_time`` values."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, time.struct_time):
        return datetime(*value[:6], tzinfo=UTC)
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        try:
            parsed = parsedate_to_datetime(normalized)
        except (TypeError, ValueError):
            logger.warning("sources.timestamp_parse_failed", extra={"value": value})
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def is_breaking_news(title: str, published_at: datetime | None, *, now: datetime | None = None) -> bool:
    """Headline carries an urgency keyword or the item is less than six hours old."""
    if _BREAKING.search(title):
        return True
    if published_at is None:
        return False
    current = now or datetime.now(UTC)
    return timedelta(0) <= current - published_at < BREAKING_WINDOW
