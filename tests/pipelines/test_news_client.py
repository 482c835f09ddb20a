from __future__ import annotations

import json
from pathlib import Path

import pytest

from app.models.source import NewsSource, SourceKind
from app.services.ingestion.errors import SourceFetchError
from pipelines import news_client
from pipelines.news_client import (
    FixtureFetcher,
    FixtureNotFoundError,
    ModeError,
    RoutingFetcher,
    RuntimeConfig,
    RuntimeMode,
    build_fetcher,
    get_runtime_config,
)

REPO_ROOT = Path(__file__).resolve().parents[2]


def _source(source_id: str = "techcrunch-ai", **overrides) -> NewsSource:
    payload = {"id": source_id, "name": "TechCrunch AI", "url": "https://techcrunch.com/feed/"}
    payload.update(overrides)
    return NewsSource(**payload)


def test_mode_parsing_defaults_and_rejects_unknown_values():
    assert news_client._parse_mode(None, default=RuntimeMode.FIXTURE) is RuntimeMode.FIXTURE
    assert news_client._parse_mode(" Online ", default=RuntimeMode.FIXTURE) is RuntimeMode.ONLINE
    with pytest.raises(ModeError) as excinfo:
        news_client._parse_mode("staging", default=RuntimeMode.FIXTURE)
    assert excinfo.value.code == "E_MODE_UNSUPPORTED"


def test_runtime_config_prefers_environment(monkeypatch, tmp_path):
    monkeypatch.setenv(news_client.MODE_ENV, "fixture")
    monkeypatch.setenv(news_client.FIXTURE_DIR_ENV, str(tmp_path))

    config = get_runtime_config()

    assert config.mode is RuntimeMode.FIXTURE
    assert config.fixture_base == tmp_path


def test_online_mode_has_no_fixture_base(monkeypatch):
    monkeypatch.setenv(news_client.MODE_ENV, "online")

    assert get_runtime_config().fixture_base is None


@pytest.mark.asyncio
async def test_fixture_fetcher_reads_shipped_snapshots():
    fetcher = FixtureFetcher(REPO_ROOT / "fixtures" / "sources")

    candidates = await fetcher.fetch(_source())

    assert candidates
    assert candidates[0].title.startswith("Acme AI raises")
    assert all(candidate.source_id == "techcrunch-ai" for candidate in candidates)
    assert all(candidate.published_at.tzinfo is not None for candidate in candidates)


@pytest.mark.asyncio
async def test_fixture_fetcher_accepts_wrapped_payload_and_skips_bad_items(tmp_path):
    (tmp_path / "wrapped.json").write_text(
        json.dumps(
            {
                "articles": [
                    {"title": "Valid", "link": "https://a.com/1", "published": "Mon, 19 Oct 2026 08:00:00 GMT"},
                    {"title": "", "url": "https://a.com/2"},
                    "not an object",
                    {"title": "Second", "url": "https://a.com/3", "is_breaking": True},
                ]
            }
        ),
        encoding="utf-8",
    )

    candidates = await FixtureFetcher(tmp_path).fetch(_source("wrapped"))

    assert [candidate.url for candidate in candidates] == ["https://a.com/1", "https://a.com/3"]
    assert candidates[1].is_breaking is True
    assert candidates[0].source_name == "TechCrunch AI"


@pytest.mark.asyncio
async def test_fixture_fetcher_errors(tmp_path):
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    fetcher = FixtureFetcher(tmp_path)

    with pytest.raises(FixtureNotFoundError) as missing:
        await fetcher.fetch(_source("absent"))
    with pytest.raises(SourceFetchError) as broken:
        await fetcher.fetch(_source("broken"))

    assert missing.value.code == "E_FIXTURE_NOT_FOUND"
    assert broken.value.code == "E_FIXTURE_SCHEMA"


class _RecordingFetcher:
    def __init__(self, label: str) -> None:
        self.label = label
        self.closed = 0

    async def fetch(self, source):
        return [self.label]

    async def aclose(self):
        self.closed += 1


@pytest.mark.asyncio
async def test_routing_fetcher_dispatches_by_kind():
    feed, search = _RecordingFetcher("feed"), _RecordingFetcher("search")
    router = RoutingFetcher({SourceKind.FEED: feed, SourceKind.SEARCH: search, SourceKind.FINANCIAL: search})
    financial = NewsSource(id="fin", name="Fin", kind=SourceKind.FINANCIAL, query="ai stocks")

    assert await router.fetch(_source()) == ["feed"]
    assert await router.fetch(financial) == ["search"]

    await router.aclose()
    assert feed.closed == 1
    assert search.closed == 1


@pytest.mark.asyncio
async def test_routing_fetcher_without_search_key_fails_that_source(monkeypatch):
    monkeypatch.setattr(news_client.settings, "tavily_api_key", None)
    router = build_fetcher(RuntimeConfig(mode=RuntimeMode.ONLINE))
    search_source = NewsSource(id="q", name="Query", kind=SourceKind.SEARCH, query="ai funding")

    with pytest.raises(SourceFetchError) as excinfo:
        await router.fetch(search_source)

    assert excinfo.value.code == "E_FETCHER_UNAVAILABLE"
    await router.aclose()


def test_build_fetcher_in_fixture_mode(tmp_path):
    fetcher = build_fetcher(RuntimeConfig(mode=RuntimeMode.FIXTURE, fixture_base=tmp_path))

    assert isinstance(fetcher, FixtureFetcher)
    with pytest.raises(ModeError):
        build_fetcher(RuntimeConfig(mode=RuntimeMode.FIXTURE, fixture_base=None))
