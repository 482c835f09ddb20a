"""Turns the growing entity store into growth curves, adoption phases and market signals."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

from app.config import settings
from app.models.article import Article
from app.models.entities import (
    AdoptionStage,
    CompanyMention,
    FundingEvent,
    TechnologyTrend,
    TopicCluster,
    TrendDirection,
    entity_key,
)
from app.models.insights import (
    AccumulatedInsights,
    CompanyGrowthMetric,
    EmergingTheme,
    InvestorPattern,
    KeyValue,
    MarketTrendIndicator,
    PotentialImpact,
    SentimentPoint,
    TechnologyAdoptionCurve,
)
from app.observability.metrics import metrics
from app.services.ingestion.amounts import parse_amount
from app.services.ingestion.cache import InsightCache
from app.services.ingestion.repositories import EntityRepository, EntityType

logger = logging.getLogger(__name__)

INSIGHTS_CACHE_KEY = "insights:accumulated"
MENTION_MILESTONE_THRESHOLD = 50
MAX_THEME_CLUSTERS = 20

# Keyword buckets behind the estimated industry-adoption shares.
INDUSTRY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Finance": ("finance", "financial", "bank", "fintech", "trading", "insurance"),
    "Healthcare": ("health", "medical", "hospital", "clinical", "patient", "drug"),
    "Retail": ("retail", "e-commerce", "ecommerce", "shopping", "consumer", "store"),
    "Manufacturing": ("manufactur", "factory", "industrial", "supply chain"),
}


def adoption_phase(histogram: Sequence[float]) -> AdoptionStage:
    """Classify a monthly mention series by comparing the last 3 months to the 3 before."""
    values = list(histogram)
    if len(values) < 3:
        return AdoptionStage.EMERGING
    recent = values[-3:]
    earlier = values[-6:-3]
    recent_avg = sum(recent) / len(recent)
    earlier_avg = sum(earlier) / len(earlier) if earlier else 0.0
    if recent_avg > earlier_avg * 1.5:
        return AdoptionStage.GROWING
    if recent_avg < earlier_avg * 0.7:
        return AdoptionStage.DECLINING
    if recent_avg > 10:
        return AdoptionStage.MAINSTREAM
    return AdoptionStage.EMERGING


def company_growth_rate(mention_count: int, first: datetime, last: datetime) -> float:
    months = max(1.0, (last - first).total_seconds() / (86400 * 30))
    return (mention_count - 1) / months * 100


def theme_growth_rate(related_articles: int, created_at: datetime, now: datetime) -> float:
    days = (now - created_at).total_seconds() / 86400
    return related_articles / days * 30 if days > 0 else 0.0


def potential_impact(growth_rate: float, related_articles: int) -> PotentialImpact:
    if growth_rate > 50 and related_articles > 20:
        return PotentialImpact.HIGH
    if growth_rate > 20 or related_articles > 10:
        return PotentialImpact.MEDIUM
    return PotentialImpact.LOW


def funding_velocity(events: Sequence[FundingEvent], now: datetime) -> MarketTrendIndicator:
    """Events in the trailing 30 days against the 30 days before that."""
    recent_start = now - timedelta(days=30)
    previous_start = now - timedelta(days=60)
    recent = sum(1 for event in events if recent_start <= event.announced_at <= now)
    previous = sum(1 for event in events if previous_start <= event.announced_at < recent_start)
    if recent > previous * 1.1:
        trend = TrendDirection.RISING
    elif recent < previous * 0.9:
        trend = TrendDirection.DECLINING
    else:
        trend = TrendDirection.STABLE
    return MarketTrendIndicator(name="Funding Velocity", value=recent, trend=trend, confidence=0.85)


def technology_diversity(technologies: Sequence[TechnologyTrend]) -> MarketTrendIndicator:
    value = len({trend.key for trend in technologies})
    trend = TrendDirection.RISING if value > 100 else TrendDirection.STABLE
    return MarketTrendIndicator(name="Technology Diversity", value=value, trend=trend, confidence=0.9, timeframe="all")


def market_sentiment(mentions: Sequence[CompanyMention], now: datetime) -> MarketTrendIndicator:
    """Mean sentiment of the last 7 days of mentions, mapped from [-1, 1] onto 0-100."""
    window = [m.sentiment for m in mentions if now - timedelta(days=7) <= m.mentioned_at <= now]
    mean = sum(window) / len(window) if window else 0.0
    if mean > 0.2:
        trend = TrendDirection.RISING
    elif mean < -0.2:
        trend = TrendDirection.DECLINING
    else:
        trend = TrendDirection.STABLE
    return MarketTrendIndicator(
        name="Market Sentiment", value=round((mean + 1) * 50, 2), trend=trend, confidence=0.8, timeframe="7d"
    )


def innovation_rate(technologies: Sequence[TechnologyTrend], now: datetime) -> MarketTrendIndicator:
    value = sum(1 for trend in technologies if trend.first_mentioned_at >= now - timedelta(days=30))
    trend = TrendDirection.RISING if value > 5 else TrendDirection.STABLE
    return MarketTrendIndicator(name="Innovation Rate", value=value, trend=trend, confidence=0.75)


def monthly_histogram(name: str, articles: Sequence[Article]) -> list[KeyValue]:
    """Per-month count of articles naming ``name``; months without mentions count as zero."""
    needle = name.lower()
    counts: Counter[tuple[int, int]] = Counter(
        (article.published_at.year, article.published_at.month)
        for article in articles
        if needle in article.text.lower()
    )
    if not counts:
        return []
    year, month = min(counts)
    last = max(counts)
    histogram: list[KeyValue] = []
    while (year, month) <= last:
        histogram.append(KeyValue(key=f"{year:04d}-{month:02d}", value=counts.get((year, month), 0)))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return histogram


def _top(counter: Counter[str], limit: int) -> list[str]:
    return [key for key, _ in counter.most_common(limit)]


def _fallback_indicator(name: str) -> MarketTrendIndicator:
    return MarketTrendIndicator(name=name, value=0, trend=TrendDirection.STABLE, confidence=0.5)


class AccumulationEngine:
    """Rebuilds AccumulatedInsights from the repository, guarded by a TTL'd insight cache."""

    def __init__(
        self,
        repository: EntityRepository,
        cache: InsightCache,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._cache = cache
        self._ttl = settings.insight_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock or (lambda: datetime.now(UTC))

    def build_insights(self, *, force: bool = False) -> AccumulatedInsights:
        if not force:
            cached = self._cached()
            if cached is not None:
                return cached

        now = self._clock()
        with metrics.timer("accumulation.build.latency_ms"):
            articles = self._repository.query_recent(EntityType.ARTICLES)
            mentions = self._repository.query_recent(EntityType.MENTIONS)
            funding = self._repository.query_recent(EntityType.FUNDING)
            technologies = self._repository.query_recent(EntityType.TECHNOLOGIES)
            clusters = self._repository.query_recent(EntityType.CLUSTERS)

            insights = AccumulatedInsights(
                company_growth=self.company_growth(mentions, funding),
                technology_adoption=self.technology_adoption(technologies, articles),
                investor_patterns=self.investor_patterns(funding, articles),
                market_indicators=self.market_indicators(funding, mentions, technologies, now),
                emerging_themes=self.emerging_themes(clusters, articles, now),
                generated_at=now,
            )
        self._cache.set(INSIGHTS_CACHE_KEY, insights, self._ttl)
        logger.info(
            "accumulation.insights_built",
            extra={
                "articles": len(articles),
                "companies": len(insights.company_growth),
                "technologies": len(insights.technology_adoption),
                "investors": len(insights.investor_patterns),
                "themes": len(insights.emerging_themes),
            },
        )
        return insights

    def invalidate(self) -> None:
        self._cache.invalidate("insights")

    def company_growth(
        self, mentions: Sequence[CompanyMention], funding: Sequence[FundingEvent]
    ) -> list[CompanyGrowthMetric]:
        grouped: dict[str, list[CompanyMention]] = defaultdict(list)
        for mention in mentions:
            grouped[mention.company_key].append(mention)
        funding_by_company: dict[str, list[FundingEvent]] = defaultdict(list)
        for event in funding:
            funding_by_company[event.company_key].append(event)

        results: list[CompanyGrowthMetric] = []
        for key, company_mentions in grouped.items():
            ordered = sorted(company_mentions, key=lambda mention: mention.mentioned_at)
            history = sorted(funding_by_company.get(key, []), key=lambda event: event.announced_at)
            milestones = [f"Raised {event.amount} in {event.round} round" for event in history]
            if len(ordered) > MENTION_MILESTONE_THRESHOLD:
                milestones.append(f"Reached {len(ordered)} mentions")
            results.append(
                CompanyGrowthMetric(
                    company_name=ordered[0].company_name,
                    first_mentioned_at=ordered[0].mentioned_at,
                    total_mentions=len(ordered),
                    growth_rate=round(
                        company_growth_rate(len(ordered), ordered[0].mentioned_at, ordered[-1].mentioned_at), 2
                    ),
                    funding_history=history,
                    sentiment_trend=[
                        SentimentPoint(date=mention.mentioned_at, sentiment=mention.sentiment) for mention in ordered
                    ],
                    milestones=milestones,
                )
            )
        return sorted(results, key=lambda metric: (-metric.total_mentions, metric.company_name))

    def technology_adoption(
        self, technologies: Sequence[TechnologyTrend], articles: Sequence[Article]
    ) -> list[TechnologyAdoptionCurve]:
        mentioned_in: dict[str, list[Article]] = {
            trend.key: [article for article in articles if trend.name.lower() in article.text.lower()]
            for trend in technologies
        }
        names = {trend.key: trend.name for trend in technologies}
        curves: list[TechnologyAdoptionCurve] = []
        for trend in technologies:
            histogram = monthly_histogram(trend.name, articles)
            own_ids = {article.id for article in mentioned_in[trend.key]}
            co_occurrence = Counter(
                {
                    names[other]: len(own_ids & {article.id for article in others})
                    for other, others in mentioned_in.items()
                    if other != trend.key
                }
            )
            related = [
                name
                for name, count in sorted(co_occurrence.items(), key=lambda item: (-item[1], item[0]))
                if count > 0
            ][:5]
            curves.append(
                TechnologyAdoptionCurve(
                    technology=trend.name,
                    first_appearance=trend.first_mentioned_at,
                    adoption_phase=adoption_phase([entry.value for entry in histogram]),
                    monthly_mentions=histogram,
                    related_technologies=related,
                    industry_adoption=self._industry_adoption(mentioned_in[trend.key]),
                )
            )
        return sorted(curves, key=lambda curve: curve.technology.lower())

    def investor_patterns(
        self, funding: Sequence[FundingEvent], articles: Sequence[Article]
    ) -> list[InvestorPattern]:
        categories = {article.id: article.category for article in articles}
        grouped: dict[str, list[FundingEvent]] = defaultdict(list)
        display: dict[str, str] = {}
        for event in funding:
            for investor in dict.fromkeys(entity_key(name) for name in event.investors if name.strip()):
                grouped[investor].append(event)
        for event in funding:
            for name in event.investors:
                display.setdefault(entity_key(name), name.strip())

        patterns: list[InvestorPattern] = []
        for investor, events in grouped.items():
            amounts = [amount for amount in (_event_amount(event) for event in events) if amount and amount > 0]
            co_investors: Counter[str] = Counter()
            for event in events:
                others = {entity_key(name) for name in event.investors} - {investor}
                co_investors.update(display[other] for other in others if other)
            sectors = Counter(
                categories[event.article_id]
                for event in events
                if event.article_id is not None and event.article_id in categories
            )
            patterns.append(
                InvestorPattern(
                    investor=display[investor],
                    investment_count=len(events),
                    average_investment=round(sum(amounts) / len(amounts), 2) if amounts else 0.0,
                    preferred_stages=_top(Counter(event.round for event in events), 3),
                    sector_focus=_top(sectors, 3),
                    co_investors=[
                        KeyValue(key=name, value=count)
                        for name, count in sorted(co_investors.items(), key=lambda item: (-item[1], item[0]))
                    ],
                    success_rate=_follow_on_rate(events, funding),
                )
            )
        return sorted(patterns, key=lambda pattern: (-pattern.investment_count, pattern.investor))

    def market_indicators(
        self,
        funding: Sequence[FundingEvent],
        mentions: Sequence[CompanyMention],
        technologies: Sequence[TechnologyTrend],
        now: datetime,
    ) -> list[MarketTrendIndicator]:
        """Each indicator is computed on its own; a failure yields a neutral placeholder."""
        calculators: tuple[tuple[str, Callable[[], MarketTrendIndicator]], ...] = (
            ("Funding Velocity", lambda: funding_velocity(funding, now)),
            ("Technology Diversity", lambda: technology_diversity(technologies)),
            ("Market Sentiment", lambda: market_sentiment(mentions, now)),
            ("Innovation Rate", lambda: innovation_rate(technologies, now)),
        )
        indicators: list[MarketTrendIndicator] = []
        for name, calculate in calculators:
            try:
                indicators.append(calculate())
            except Exception:
                logger.exception("accumulation.indicator_failed", extra={"indicator": name})
                metrics.increment("accumulation.indicator.failed", tags={"indicator": name})
                indicators.append(_fallback_indicator(name))
        return indicators

    def emerging_themes(
        self, clusters: Sequence[TopicCluster], articles: Sequence[Article], now: datetime
    ) -> list[EmergingTheme]:
        recent_clusters = sorted(clusters, key=lambda cluster: cluster.created_at, reverse=True)
        themes: list[EmergingTheme] = []
        for cluster in recent_clusters[:MAX_THEME_CLUSTERS]:
            if not cluster.keywords:
                continue
            keyword = cluster.keywords[0].lower()
            related = sum(
                1
                for article in articles
                if keyword in article.title.lower() and article.published_at >= cluster.created_at
            )
            growth = theme_growth_rate(related, cluster.created_at, now)
            themes.append(
                EmergingTheme(
                    theme=cluster.title,
                    first_detected=cluster.created_at,
                    growth_rate=round(growth, 2),
                    related_articles=related,
                    potential_impact=potential_impact(growth, related),
                )
            )
        return themes

    def _cached(self) -> AccumulatedInsights | None:
        try:
            cached = self._cache.get(INSIGHTS_CACHE_KEY)
        except Exception:
            logger.warning("accumulation.cache_unavailable", exc_info=True)
            return None
        if cached is None:
            return None
        if not isinstance(cached, AccumulatedInsights):
            logger.warning("accumulation.cache_corrupt", extra={"type": type(cached).__name__})
            return None
        return cached

    @staticmethod
    def _industry_adoption(articles: Sequence[Article]) -> list[KeyValue]:
        total = len(articles)
        shares: list[KeyValue] = []
        for industry, keywords in INDUSTRY_KEYWORDS.items():
            hits = sum(1 for article in articles if any(word in article.text.lower() for word in keywords))
            shares.append(KeyValue(key=industry, value=round(hits / total * 100, 2) if total else 0.0))
        return shares


def _event_amount(event: FundingEvent) -> float | None:
    return event.amount_usd if event.amount_usd is not None else parse_amount(event.amount)


def _follow_on_rate(events: Sequence[FundingEvent], funding: Sequence[FundingEvent]) -> float:
    """Share of portfolio companies that raised again after this investor first backed them."""
    entry_points: dict[str, datetime] = {}
    for event in events:
        current = entry_points.get(event.company_key)
        if current is None or event.announced_at < current:
            entry_points[event.company_key] = event.announced_at
    if not entry_points:
        return 0.0
    followed = sum(
        1
        for company, entered in entry_points.items()
        if any(other.company_key == company and other.announced_at > entered for other in funding)
    )
    return round(followed / len(entry_points), 4)
