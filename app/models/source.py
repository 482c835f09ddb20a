"""Registry entries describing where candidate articles come from."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SourceKind(str, Enum):
    FEED = "feed"
    SEARCH = "search"
    FINANCIAL = "financial"


class SourcePurpose(str, Enum):
    DASHBOARD = "dashboard"
    MARKET_INTELLIGENCE = "market-intelligence"
    BOTH = "both"


class NewsSource(BaseModel):
    """Configured source; feeds need a URL and search/financial sources need a query."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    kind: SourceKind = SourceKind.FEED
    url: str | None = None
    query: str | None = None
    is_active: bool = True
    purpose: SourcePurpose = SourcePurpose.BOTH
    categories: list[str] = Field(default_factory=list)
    max_items: int = Field(default=20, ge=1)
    last_fetch: datetime | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _require_locator(self) -> NewsSource:
        if self.kind is SourceKind.FEED and not self.url:
            raise ValueError(f"Feed source {self.id} requires a url.")
        if self.kind is not SourceKind.FEED and not (self.query or self.url):
            raise ValueError(f"Source {self.id} requires a query or url.")
        return self

    def serves(self, purpose: SourcePurpose | None) -> bool:
        if purpose is None:
            return True
        return self.purpose in (purpose, SourcePurpose.BOTH)


def load_sources(path: Path) -> list[NewsSource]:
    """Load the JSON source registry (a list of source objects)."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("sources", [])
    return [NewsSource.model_validate(item) for item in payload]


def select_sources(
    sources: list[NewsSource], purpose: SourcePurpose | None = None
) -> list[NewsSource]:
    """Active sources that serve ``purpose`` (or all active sources when unset)."""
    return [source for source in sources if source.is_active and source.serves(purpose)]
