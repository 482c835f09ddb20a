"""Entity extraction: analyzer-backed judgments plus deterministic pattern matching."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import TypeVar

from app.config import settings
from app.models.article import AnalyzerJudgment, Article, CandidateArticle
from app.models.entities import (
    AdoptionStage,
    CompanyMention,
    ExtractionResult,
    FundingEvent,
    MentionType,
    TechnologyCategory,
    TechnologyTrendPatch,
)
from app.observability.metrics import metrics
from app.services.analysis.analyzer import ArticleAnalyzer, KeywordArticleAnalyzer
from app.services.ingestion.amounts import AMOUNT_PATTERN, find_amount, format_amount
from app.services.ingestion.cache import SourceCache
from app.services.ingestion.errors import AnalyzerError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

KNOWN_COMPANIES: tuple[str, ...] = (
    "OpenAI",
    "Google",
    "Microsoft",
    "Meta",
    "Facebook",
    "Amazon",
    "Apple",
    "Tesla",
    "NVIDIA",
    "Anthropic",
    "Stability AI",
    "Midjourney",
    "Cohere",
    "Hugging Face",
    "DeepMind",
    "Waymo",
    "Uber",
    "Spotify",
    "Netflix",
    "Salesforce",
    "Adobe",
    "IBM",
    "Oracle",
    "SAP",
    "Palantir",
    "Databricks",
    "Scale AI",
    "Replicate",
    "Runway",
    "Character.AI",
    "Perplexity",
    "Jasper",
    "Copy.ai",
    "Grammarly",
    "Notion",
    "Figma",
    "Canva",
)

KNOWN_INVESTORS: tuple[str, ...] = (
    "Sequoia Capital",
    "Andreessen Horowitz",
    "Google Ventures",
    "Microsoft Ventures",
    "Khosla Ventures",
    "Accel",
    "Benchmark",
    "Greylock Partners",
    "Index Ventures",
    "a16z",
    "GV",
    "Kleiner Perkins",
    "NEA",
    "Bessemer Venture Partners",
)

KNOWN_TECHNOLOGIES: tuple[str, ...] = (
    "GPT-4",
    "GPT-4o",
    "ChatGPT",
    "Claude",
    "Gemini",
    "LLaMA",
    "Mistral",
    "DALL-E",
    "Midjourney",
    "Stable Diffusion",
    "Sora",
    "Whisper",
    "GitHub Copilot",
)

FUNDING_KEYWORDS: tuple[str, ...] = (
    "series a",
    "series b",
    "series c",
    "series d",
    "pre-seed",
    "seed",
    "funding",
    "investment",
    "raised",
    "raises",
    "valuation",
    "venture",
    "round",
    "acquisition",
    "merger",
    "ipo",
    "public offering",
    "financing",
)

# Checked in order; the first hit wins.
ROUND_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Series A", re.compile(r"\bseries\s+a\b")),
    ("Series B", re.compile(r"\bseries\s+b\b")),
    ("Series C", re.compile(r"\bseries\s+c\b")),
    ("Series D", re.compile(r"\bseries\s+d\b")),
    ("Pre-Seed", re.compile(r"\bpre-?seed\b")),
    ("Seed", re.compile(r"\bseed\b")),
    ("Strategic", re.compile(r"\bstrategic\b")),
    ("Acquisition", re.compile(r"\b(?:acquisition|acquired|acquires)\b")),
    ("Merger", re.compile(r"\bmerger\b")),
    ("IPO", re.compile(r"\b(?:ipo|public offering)\b")),
)
DEFAULT_ROUND = "Strategic"

MENTION_RULES: tuple[tuple[MentionType, tuple[str, ...]], ...] = (
    (MentionType.PARTNERSHIP, ("partnership", "collaboration", "partners with")),
    (MentionType.FUNDING, ("funding", "investment", "raised", "raises")),
    (MentionType.PRODUCT_LAUNCH, ("product", "launch", "release")),
    (MentionType.ACQUISITION, ("acquisition", "acquired", "acquires", "merger")),
    (MentionType.HIRING, ("hiring", "hires", "employee")),
)

POSITIVE_WORDS: tuple[str, ...] = (
    "breakthrough",
    "innovative",
    "successful",
    "growth",
    "leading",
    "advanced",
    "revolutionary",
)
NEGATIVE_WORDS: tuple[str, ...] = (
    "controversy",
    "concern",
    "criticism",
    "problem",
    "issue",
    "challenge",
    "decline",
)

STAGE_RULES: tuple[tuple[AdoptionStage, tuple[str, ...]], ...] = (
    (AdoptionStage.MAINSTREAM, ("mainstream", "widespread", "adopted")),
    (AdoptionStage.EMERGING, ("emerging", "growing", "expanding")),
    (AdoptionStage.EXPERIMENTAL, ("experimental", "prototype", "research")),
)

CATEGORY_RULES: tuple[tuple[TechnologyCategory, tuple[str, ...]], ...] = (
    (TechnologyCategory.LLM, ("gpt", "claude", "gemini", "llama", "mistral")),
    (TechnologyCategory.COMPUTER_VISION, ("dall-e", "midjourney", "stable diffusion", "sora")),
    (TechnologyCategory.ROBOTICS, ("robot", "autonomous")),
    (TechnologyCategory.VOICE_AI, ("voice", "speech", "whisper")),
)

_FUNDING_VERBS = frozenset(
    {"raises", "raised", "secures", "secured", "lands", "closes", "funding", "investment", "series", "nabs", "bags"}
)
_HEADLINE_PREFIXES = frozenset({"breaking", "exclusive", "update", "report", "analysis", "just in"})
_INVESTOR_PATTERN = re.compile(
    r"\b([A-Z][a-z]+\s+(?:Capital|Ventures|Partners|Fund)|[A-Z][a-z]+\s+Venture\s+Partners?)\b"
)
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_MAX_COMPANY_WORDS = 6


def whole_word(name: str) -> re.Pattern[str]:
    """Case-insensitive whole-word matcher that tolerates punctuation inside names."""
    return re.compile(rf"(?<!\w){re.escape(name)}(?!\w)", re.IGNORECASE)


_COMPANY_MATCHERS = tuple((name, whole_word(name)) for name in KNOWN_COMPANIES)
# Investor names such as "Benchmark" or "Accel" are ordinary words in lower case.
_INVESTOR_MATCHERS = tuple(
    (name, re.compile(rf"(?<!\w){re.escape(name)}(?!\w)")) for name in KNOWN_INVESTORS
)
_TECHNOLOGY_MATCHERS = tuple((name, whole_word(name)) for name in KNOWN_TECHNOLOGIES)


def score_sentiment(text: str) -> float:
    """+0.2 per positive lexicon word present, -0.2 per negative one, clamped to [-1, 1]."""
    lowered = text.lower()
    score = sum(0.2 for word in POSITIVE_WORDS if word in lowered)
    score -= sum(0.2 for word in NEGATIVE_WORDS if word in lowered)
    return round(max(-1.0, min(1.0, score)), 4)


def classify_mention(text: str) -> MentionType:
    lowered = text.lower()
    for mention_type, keywords in MENTION_RULES:
        if any(keyword in lowered for keyword in keywords):
            return mention_type
    return MentionType.GENERAL


def classify_technology(name: str) -> TechnologyCategory:
    lowered = name.lower()
    for category, needles in CATEGORY_RULES:
        if any(needle in lowered for needle in needles):
            return category
    return TechnologyCategory.AI_TOOLS


def infer_adoption_stage(text: str) -> AdoptionStage:
    lowered = text.lower()
    for stage, keywords in STAGE_RULES:
        if any(keyword in lowered for keyword in keywords):
            return stage
    return AdoptionStage.EMERGING


def detect_round(text: str) -> str | None:
    lowered = text.lower()
    for label, pattern in ROUND_RULES:
        if pattern.search(lowered):
            return label
    return None


def company_from_title(title: str, text: str) -> str:
    prefix, sep, rest = title.partition(":")
    prefix = prefix.strip()
    if sep and prefix.lower() in _HEADLINE_PREFIXES:
        title = rest.strip()
    elif sep and prefix and len(prefix.split()) <= _MAX_COMPANY_WORDS:
        return prefix
    words = title.split()
    for index, word in enumerate(words):
        if word.strip(",.;:!?\"'").lower() in _FUNDING_VERBS:
            if 0 < index <= _MAX_COMPANY_WORDS:
                return " ".join(words[:index]).strip(",;: ")
            break
    for name, matcher in _COMPANY_MATCHERS:
        if matcher.search(text):
            return name
    return "Unknown Company"


def extract_investors(text: str) -> list[str]:
    found = [name for name, matcher in _INVESTOR_MATCHERS if matcher.search(text)]
    found.extend(match.group(1) for match in _INVESTOR_PATTERN.finditer(text))
    unique: dict[str, str] = {}
    for name in found:
        unique.setdefault(name.casefold(), name)
    return list(unique.values())


def sentence_containing(text: str, name: str) -> str:
    lowered = name.lower()
    for sentence in _SENTENCE_SPLIT.split(text):
        if lowered in sentence.lower():
            return sentence.strip()
    return text[:200].strip()


class PatternExtractor:
    """Deterministic funding, company and technology extraction over raw text."""

    def extract_funding(self, title: str, text: str, *, when: datetime, article_id=None) -> list[FundingEvent]:
        lowered = text.lower()
        if not any(keyword in lowered for keyword in FUNDING_KEYWORDS):
            return []
        round_label = detect_round(text)
        if not AMOUNT_PATTERN.search(text) and round_label is None:
            return []
        amount_usd = find_amount(text)
        return [
            FundingEvent(
                company_name=company_from_title(title, text),
                amount=format_amount(amount_usd),
                amount_usd=amount_usd,
                round=round_label or DEFAULT_ROUND,
                investors=extract_investors(text),
                location=None,
                article_id=article_id,
                announced_at=when,
            )
        ]

    def extract_mentions(self, text: str, *, when: datetime, article_id=None) -> list[CompanyMention]:
        mentions: list[CompanyMention] = []
        mention_type = classify_mention(text)
        sentiment = score_sentiment(text)
        for name, matcher in _COMPANY_MATCHERS:
            if matcher.search(text):
                mentions.append(
                    CompanyMention(
                        company_name=name,
                        mention_type=mention_type,
                        sentiment=sentiment,
                        context=sentence_containing(text, name),
                        article_id=article_id,
                        mentioned_at=when,
                    )
                )
        return mentions

    def extract_technologies(self, text: str, *, when: datetime) -> list[TechnologyTrendPatch]:
        stage = infer_adoption_stage(text)
        sentiment = score_sentiment(text)
        return [
            TechnologyTrendPatch(
                name=name,
                category=classify_technology(name),
                adoption_stage=stage,
                sentiment=sentiment,
                mentioned_at=when,
            )
            for name, matcher in _TECHNOLOGY_MATCHERS
            if matcher.search(text)
        ]


class ExtractionOrchestrator:
    """Drives the analyzer per candidate and runs pattern extraction per admitted article."""

    def __init__(
        self,
        analyzer: ArticleAnalyzer,
        cache: SourceCache,
        *,
        extractor: PatternExtractor | None = None,
        fallback: ArticleAnalyzer | None = None,
        min_relevance: float | None = None,
        delay_seconds: float | None = None,
    ) -> None:
        self._analyzer = analyzer
        self._cache = cache
        self._extractor = extractor or PatternExtractor()
        self._fallback = fallback if fallback is not None else KeywordArticleAnalyzer()
        self._min_relevance = settings.min_relevance_score if min_relevance is None else min_relevance
        self._delay = settings.analyzer_delay_seconds if delay_seconds is None else delay_seconds
        self._pace = asyncio.Lock()

    async def analyze(self, candidate: CandidateArticle) -> AnalyzerJudgment | None:
        """Return the judgment, or None when the analyzer reports the item as off-topic."""
        judgment = self._cache.get_analysis(candidate.url)
        if judgment is None:
            judgment = await self._judge(candidate)
            self._cache.cache_analysis(candidate.url, judgment)
        if not judgment.is_relevant or judgment.relevance_score < self._min_relevance:
            logger.info(
                "extraction.irrelevant",
                extra={"url": candidate.url, "relevance": judgment.relevance_score, "is_relevant": judgment.is_relevant},
            )
            return None
        return judgment

    def extract(self, article: Article) -> ExtractionResult:
        """Pattern extraction; each entity type fails independently of the others."""
        text = article.text
        when = article.published_at
        funding = self._isolated(
            "funding",
            article,
            lambda: self._extractor.extract_funding(article.title, text, when=when, article_id=article.id),
        )
        mentions = self._isolated(
            "mentions",
            article,
            lambda: self._extractor.extract_mentions(text, when=when, article_id=article.id),
        )
        trends = self._isolated(
            "technologies",
            article,
            lambda: self._extractor.extract_technologies(text, when=when),
        )
        return ExtractionResult(funding=funding, mentions=mentions, trends=trends)

    async def _judge(self, candidate: CandidateArticle) -> AnalyzerJudgment:
        async with self._pace:
            try:
                judgment = await asyncio.to_thread(self._analyzer.analyze, candidate.title, candidate.body)
            except AnalyzerError as exc:
                logger.warning(
                    "extraction.analyzer_failed",
                    extra={"url": candidate.url, "code": exc.code, "fallback": "keyword"},
                )
                metrics.increment("extraction.failed", tags={"stage": "analyzer", "code": exc.code})
                judgment = self._fallback.analyze(candidate.title, candidate.body)
            if self._delay > 0:
                await asyncio.sleep(self._delay)
        return judgment

    def _isolated(self, stage: str, article: Article, func: Callable[[], Iterable[_T]]) -> list[_T]:
        try:
            return list(func())
        except Exception:
            logger.exception("extraction.failed", extra={"stage": stage, "article_id": str(article.id)})
            metrics.increment("extraction.failed", tags={"stage": stage})
            return []
