import asyncio
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.article import CandidateArticle

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


class _SyncASGIClient:
    """Minimal synchronous wrapper around httpx.AsyncClient for ASGI apps."""

    def __init__(self, app):
        transport = httpx.ASGITransport(app=app)
        self._client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._client.request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def close(self) -> None:
        asyncio.run(self._client.aclose())


@pytest.fixture
def client():
    """Create test client compatible with older/newer httpx releases."""
    try:
        test_client = TestClient(app)
        yield test_client
    except TypeError:
        fallback_client = _SyncASGIClient(app)
        try:
            yield fallback_client
        finally:
            fallback_client.close()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_candidate():
    """Factory for a credible TechCrunch candidate; override any field per test."""

    def _make(**overrides) -> CandidateArticle:
        payload = {
            "title": "Acme AI raises $10 million in Series A led by Sequoia Capital",
            "summary": (
                "Acme AI, a machine learning startup automating finance workflows, closed a "
                "$10 million Series A round led by Sequoia Capital this week."
            ),
            "url": "https://techcrunch.com/2026/10/19/acme-ai-series-a/",
            "source_name": "TechCrunch AI",
            "published_at": NOW - timedelta(hours=2),
        }
        payload.update(overrides)
        return CandidateArticle(**payload)

    return _make
