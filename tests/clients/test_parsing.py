from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta

import pytest

from app.clients.parsing import is_breaking_news, parse_timestamp, strip_html

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def test_strip_html_unescapes_and_collapses_whitespace():
    assert strip_html("<p>Acme &amp; Co</p>\n<p>raise</p>") == "Acme & Co raise"
    assert strip_html(None) == ""


@pytest.mark.parametrize(
    "value",
    [
        "2026-10-19T08:00:00Z",
        "2026-10-19T08:00:00+00:00",
        "Mon, 19 Oct 2026 08:00:00 GMT",
        time.struct_time((2026, 10, 19, 8, 0, 0, 0, 292, 0)),
        datetime(2026, 10, 19, 8, 0),
    ],
)
def test_parse_timestamp_formats(value):
    assert parse_timestamp(value) == datetime(2026, 10, 19, 8, 0, tzinfo=UTC)


def test_parse_timestamp_rejects_garbage():
    assert parse_timestamp("yesterday-ish") is None
    assert parse_timestamp("") is None
    assert parse_timestamp(12345) is None


def test_breaking_by_keyword_or_recency():
    assert is_breaking_news("Just in: OpenAI restructures", None) is True
    assert is_breaking_news("Acme delivers quarterly update", NOW - timedelta(days=2), now=NOW) is False
    assert is_breaking_news("Acme ships agents", NOW - timedelta(hours=2), now=NOW) is True
    assert is_breaking_news("Acme ships agents", NOW + timedelta(hours=1), now=NOW) is False
