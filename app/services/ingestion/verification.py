"""Multi-factor credibility scoring for candidate articles."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field

from app.config import settings
from app.models.article import CandidateArticle
from app.services.ingestion.urls import domain_matches, host_of

logger = logging.getLogger(__name__)

TRUSTED_DOMAINS: tuple[str, ...] = tuple(
    dict.fromkeys(
        [
            "wired.com",
            "techcrunch.com",
            "nature.com",
            "mit.edu",
            "technologyreview.com",
            "stanford.edu",
            "ieee.org",
            "openai.com",
            "anthropic.com",
            "deepmind.com",
            "deepmind.google",
            "blog.google",
            "research.google",
            "ai.meta.com",
            "research.fb.com",
            "microsoft.com",
            "nvidia.com",
            "arxiv.org",
            "papers.nips.cc",
            "proceedings.mlr.press",
            "towardsdatascience.com",
            "huggingface.co",
            "paperswithcode.com",
            "venturebeat.com",
            "theverge.com",
            "arstechnica.com",
            "reuters.com",
            "bloomberg.com",
            "wsj.com",
            "nytimes.com",
            "washingtonpost.com",
            "bbc.com",
            "cnn.com",
            "forbes.com",
            "businessinsider.com",
            "aiethicslab.com",
            "ainowinstitute.org",
            "brookings.edu",
            "partnershiponai.org",
            "analyticsvidhya.com",
            "machinelearningmastery.com",
            "kdnuggets.com",
            "gigazine.net",
            "economymiddleeast.com",
            "berkeley.edu",
            "yale.edu",
            "harvard.edu",
            "magnitt.com",
            "wamda.com",
            "tahawultech.com",
            "technode.com",
            "nikkei.com",
            "dailynewsegypt.com",
            "bensbites.co",
            "bensbites.com",
            "tldrnewsletter.com",
            "tldr.tech",
            "therundown.ai",
            "thegradient.pub",
            "ft.com",
            "gizmodo.com",
            "businesstoday.in",
            "indianstartupnews.com",
            "biometricupdate.com",
            "economictimes.indiatimes.com",
            "westislandblog.com",
            "dealstreetasia.com",
            "krasia.com",
            "techinasia.com",
            "e27.co",
        ]
    )
)

LEGITIMATE_SOURCES: tuple[str, ...] = (
    "Wired AI",
    "TechCrunch AI",
    "Nature Machine Intelligence",
    "MIT Technology Review",
    "Stanford HAI",
    "IEEE Spectrum",
    "Google AI",
    "OpenAI",
    "DeepMind",
    "Anthropic",
    "Microsoft Research",
    "Meta AI",
    "NVIDIA AI",
    "Towards Data Science",
    "Hugging Face",
    "Papers With Code",
    "VentureBeat AI",
    "AI Business News",
    "McKinsey AI",
    "The Verge",
    "Ars Technica",
    "Reuters",
    "Bloomberg",
    "Wall Street Journal",
    "New York Times",
    "Washington Post",
    "BBC",
    "CNN",
    "Forbes",
    "Business Insider",
    "AI Ethics Lab",
    "AI Now Institute",
    "Brookings AI Policy",
    "Partnership on AI",
)

SUSPICIOUS_TITLE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"GPT-[5-9]",
        r"breakthrough.*AGI",
        r"revolutionary.*AI.*released",
        r"AI.*takes over",
        r"sentient.*AI",
        r"AI.*sentient",
        r"AI.*consciousness",
        r"world.*first.*AGI",
    )
)

FAKE_NEWS_INDICATORS: tuple[str, ...] = (
    "exclusive leak",
    "insider reveals",
    "shocking truth",
    "they don't want you to know",
    "breaking: ai becomes sentient",
    "robots take over",
    "end of humanity",
    "ai apocalypse",
)

SUSPICIOUS_PATTERN_PENALTY = 0.3
UNVERIFIED_DOMAIN_PENALTY = 0.4
NO_URL_PENALTY = 0.2
UNKNOWN_SOURCE_PENALTY = 0.1
STALE_PENALTY = 0.1
FUTURE_DATE_PENALTY = 0.5
SHORT_SUMMARY_PENALTY = 0.1
FAKE_NEWS_PENALTY = 0.3
ADMISSION_THRESHOLD = 0.5
MIN_SUMMARY_LENGTH = 50


class VerificationResult(BaseModel):
    """Outcome of scoring one candidate; ``confidence`` is on a 0-1 scale."""

    is_valid: bool
    confidence: float = Field(..., ge=0, le=1)
    issues: list[str] = Field(default_factory=list)
    verified_urls: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def confidence_percent(self) -> float:
        return round(self.confidence * 100, 2)


class Verifier:
    """Pure scorer over a candidate plus static allow-lists; no network access."""

    def __init__(
        self,
        *,
        trusted_domains: Iterable[str] = TRUSTED_DOMAINS,
        legitimate_sources: Iterable[str] = LEGITIMATE_SOURCES,
        max_age_days: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._trusted_domains = tuple(domain.lower() for domain in trusted_domains)
        self._legitimate_sources = tuple(source.lower() for source in legitimate_sources)
        self._max_age = timedelta(days=max_age_days or settings.verification_max_age_days)
        self._clock = clock or (lambda: datetime.now(UTC))

    def verify(self, article: CandidateArticle) -> VerificationResult:
        issues: list[str] = []
        confidence = 1.0
        verified_urls: list[str] = []

        for pattern in SUSPICIOUS_TITLE_PATTERNS:
            if pattern.search(article.title):
                issues.append(f"Suspicious pattern in title: {pattern.pattern}")
                confidence -= SUSPICIOUS_PATTERN_PENALTY

        urls = [url for url in (article.source_urls or [article.url]) if url]
        if urls:
            for url in urls:
                reason = self._check_url(url)
                if reason:
                    issues.append(f"Invalid source URL: {url} - {reason}")
                    confidence -= UNVERIFIED_DOMAIN_PENALTY
                else:
                    verified_urls.append(url)
        else:
            issues.append("No source URLs provided")
            confidence -= NO_URL_PENALTY

        if not self.is_legitimate_source(article.source_name):
            issues.append(f"Questionable source: {article.source_name or '<missing>'}")
            confidence -= UNKNOWN_SOURCE_PENALTY

        now = self._clock()
        if now - article.published_at > self._max_age:
            issues.append(f"Article is older than {self._max_age.days} days")
            confidence -= STALE_PENALTY
        if article.published_at > now:
            issues.append("Article has future publication date")
            confidence -= FUTURE_DATE_PENALTY

        if len(article.summary.strip()) < MIN_SUMMARY_LENGTH:
            issues.append("Summary too short for credible news")
            confidence -= SHORT_SUMMARY_PENALTY

        if self.contains_fake_news_indicators(article):
            issues.append("Contains indicators of potential misinformation")
            confidence -= FAKE_NEWS_PENALTY

        confidence = round(max(0.0, confidence), 4)
        is_valid = confidence >= ADMISSION_THRESHOLD and bool(verified_urls)
        if not is_valid:
            logger.info(
                "verification.rejected",
                extra={
                    "title": article.title[:120],
                    "url": article.url,
                    "confidence": confidence,
                    "issues": issues,
                },
            )
        return VerificationResult(
            is_valid=is_valid, confidence=confidence, issues=issues, verified_urls=verified_urls
        )

    def is_trusted_domain(self, host: str) -> bool:
        return any(domain_matches(host, domain) for domain in self._trusted_domains)

    def is_legitimate_source(self, source: str | None) -> bool:
        """Case-insensitive containment either way against the known outlet list."""
        lowered = (source or "").strip().lower()
        if not lowered:
            return False
        return any(
            lowered in legitimate or legitimate in lowered
            for legitimate in self._legitimate_sources
        )

    @staticmethod
    def contains_fake_news_indicators(article: CandidateArticle) -> bool:
        content = f"{article.title} {article.summary}".lower()
        return any(indicator in content for indicator in FAKE_NEWS_INDICATORS)

    def _check_url(self, url: str) -> str | None:
        host = host_of(url)
        if not host or not url.lower().startswith(("http://", "https://")):
            return "Invalid URL format"
        if not self.is_trusted_domain(host):
            return f"Unverified domain: {host}"
        return None
