from __future__ import annotations

import json
from pathlib import Path

import pytest

from app.config import settings
from app.services.ingestion.repositories import InMemoryEntityRepository
from app.services.ingestion.runtime import build_market_signal_service
from pipelines import collect
from pipelines import news_client
from pipelines.news_client import FixtureFetcher

REPO_ROOT = Path(__file__).resolve().parents[2]
SOURCES = REPO_ROOT / "configs" / "sources.json"
FIXTURES = REPO_ROOT / "fixtures" / "sources"


@pytest.fixture(autouse=True)
def offline_settings(monkeypatch):
    monkeypatch.setattr(settings, "openai_api_key", None)
    monkeypatch.setattr(settings, "database_url", None)
    monkeypatch.setattr(settings, "analyzer_delay_seconds", 0.0)
    monkeypatch.setenv(news_client.MODE_ENV, "fixture")
    monkeypatch.setenv(news_client.FIXTURE_DIR_ENV, str(FIXTURES))


def _service():
    return build_market_signal_service(
        fetcher=FixtureFetcher(FIXTURES),
        repository=InMemoryEntityRepository(),
        sources_path=SOURCES,
    )


def test_collect_from_fixtures_then_summarize():
    service = _service()

    cycle = collect.run(collect.parse_args(["--sources", str(SOURCES), "collect", "--force"]), service)
    summary = collect.run(collect.parse_args(["summary", "--days", "3650"]), service)

    assert cycle["cycle"]["sources_processed"] == 4
    assert cycle["cycle"]["articles_added"] >= 3
    assert cycle["cycle"]["rejected"] >= 1
    assert summary["window_days"] == 3650
    assert summary["funding"]["total_events"] >= 1


def test_purpose_filter_limits_sources():
    service = _service()

    payload = collect.run(
        collect.parse_args(["collect", "--force", "--purpose", "market-intelligence", "--with-insights"]), service
    )

    # Sources serving "both" plus the market-intelligence search source.
    assert payload["cycle"]["sources_processed"] == 3
    assert set(payload["insights"]) >= {"company_growth", "market_indicators", "emerging_themes"}


def test_main_writes_output_file(tmp_path):
    output = tmp_path / "out" / "cycle.json"

    exit_code = collect.main(["--sources", str(SOURCES), "--output", str(output), "collect", "--force"])

    assert exit_code == 0
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["cycle"]["articles_added"] >= 1


def test_main_reports_missing_registry(tmp_path):
    exit_code = collect.main(["--sources", str(tmp_path / "missing.json"), "collect"])

    assert exit_code == 1
