from __future__ import annotations

from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from app.config import settings
from app.main import app
from app.services.ingestion.repositories import InMemoryEntityRepository
from app.services.ingestion.runtime import MarketSignalService, build_market_signal_service, get_market_signal_service
from pipelines.news_client import FixtureFetcher

REPO_ROOT = Path(__file__).resolve().parents[2]
SOURCES = REPO_ROOT / "configs" / "sources.json"
FIXTURES = REPO_ROOT / "fixtures" / "sources"


@pytest.fixture(autouse=True)
def offline_settings(monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", None)
    monkeypatch.setattr(settings, "analyzer_delay_seconds", 0.0)


def _build_service(sources_path: Path = SOURCES) -> MarketSignalService:
    return build_market_signal_service(
        fetcher=FixtureFetcher(FIXTURES),
        repository=InMemoryEntityRepository(),
        sources_path=sources_path,
    )


@contextmanager
def _override_service(service: MarketSignalService):
    app.dependency_overrides[get_market_signal_service] = lambda: service
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_market_signal_service, None)


def test_collect_then_read_insights(client):
    service = _build_service()
    with _override_service(service):
        collected = client.post("/api/collect", params={"force": "true"})
        insights = client.get("/api/insights")
        summary = client.get("/api/market/summary", params={"days": 365})

    assert collected.status_code == 200
    body = collected.json()
    assert body["sources_processed"] == 4
    assert body["articles_added"] >= 3
    assert body["warning"] is None

    assert insights.status_code == 200
    payload = insights.json()
    assert {indicator["name"] for indicator in payload["market_indicators"]} == {
        "Funding Velocity",
        "Technology Diversity",
        "Market Sentiment",
        "Innovation Rate",
    }
    assert any(metric["company_name"] == "OpenAI" for metric in payload["company_growth"])
    assert all(isinstance(entry, dict) for curve in payload["technology_adoption"] for entry in curve["monthly_mentions"])

    assert summary.status_code == 200
    assert summary.json()["funding"]["total_events"] >= 1


def test_second_collect_skips_recently_fetched_sources(client):
    service = _build_service()
    with _override_service(service):
        client.post("/api/collect")
        again = client.post("/api/collect")

    assert again.status_code == 200
    assert again.json()["skipped"] == 4
    assert again.json()["articles_added"] == 0


def test_collect_with_missing_registry_is_404(client, tmp_path):
    service = _build_service(tmp_path / "missing.json")
    with _override_service(service):
        response = client.post("/api/collect")

    assert response.status_code == 404


def test_collect_with_invalid_registry_is_422(client, tmp_path):
    registry = tmp_path / "sources.json"
    registry.write_text('[{"id": "x", "name": "X", "kind": "feed"}]', encoding="utf-8")
    service = _build_service(registry)
    with _override_service(service):
        response = client.post("/api/collect")

    assert response.status_code == 422


def test_verify_reports_percent_confidence_and_issues(client):
    now = datetime.now(UTC)
    with _override_service(_build_service()):
        fake = client.post(
            "/api/verify",
            json={
                "title": "Breaking: AI Becomes Sentient",
                "summary": "A shocking claim from an anonymous blog with no sources at all.",
                "url": "https://ai-shock-news.example/sentient",
                "source_name": "Shock Daily",
                "published_at": (now - timedelta(hours=2)).isoformat(),
            },
        )
        credible = client.post(
            "/api/verify",
            json={
                "title": "Acme AI raises $10 million in Series A",
                "summary": "x" * 120,
                "url": "https://techcrunch.com/2026/10/19/acme-ai-series-a/",
                "source_name": "TechCrunch AI",
                "published_at": (now - timedelta(hours=2)).isoformat(),
            },
        )

    assert fake.status_code == 200
    assert fake.json()["is_valid"] is False
    assert fake.json()["confidence"] <= 20
    assert fake.json()["issues"]
    assert credible.json()["is_valid"] is True
    assert credible.json()["confidence"] >= 90
    assert credible.json()["verified_urls"] == ["https://techcrunch.com/2026/10/19/acme-ai-series-a/"]


def test_verify_rejects_unknown_fields(client):
    with _override_service(_build_service()):
        response = client.post("/api/verify", json={"title": "t", "url": "https://a.com", "rating": 5})

    assert response.status_code == 422


def test_insights_refresh_and_cache_stats(client):
    service = _build_service()
    with _override_service(service):
        first = client.get("/api/insights")
        stats = client.get("/api/cache/stats")
        refreshed = client.get("/api/insights", params={"refresh": "true"})

    assert first.status_code == refreshed.status_code == 200
    assert "insights:accumulated" in stats.json()["keys"]
    assert refreshed.json()["generated_at"] >= first.json()["generated_at"]


def test_summary_window_is_bounded(client):
    with _override_service(_build_service()):
        response = client.get("/api/market/summary", params={"days": 0})

    assert response.status_code == 422
