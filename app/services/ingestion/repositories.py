"""Persistence backends for admitted articles and extracted entities."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Any, NoReturn, Protocol
from uuid import UUID

from sqlalchemy import delete, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from app.config import settings
from app.models.article import Article
from app.models.entities import (
    CompanyMention,
    FundingEvent,
    TechnologyTrend,
    TechnologyTrendPatch,
    TopicCluster,
    entity_key,
)
from app.models.records import (
    ArticleRecord,
    CompanyMentionRecord,
    FundingEventRecord,
    TechnologyMentionRecord,
    TechnologyTrendRecord,
    TopicClusterRecord,
)
from app.observability.metrics import metrics
from app.services.ingestion.errors import RepositoryError

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    ARTICLES = "articles"
    MENTIONS = "mentions"
    FUNDING = "funding"
    TECHNOLOGIES = "technologies"
    CLUSTERS = "clusters"


def mention_dedupe_key(mention: CompanyMention) -> str:
    """(company, article); independent mentions also key on their context."""
    if mention.article_id is not None:
        return f"{mention.company_key}|{mention.article_id}"
    return f"{mention.company_key}|-|{entity_key(mention.context)[:512]}"


def funding_dedupe_key(event: FundingEvent) -> str:
    if event.article_id is not None:
        return f"{event.company_key}|{event.article_id}"
    return f"{event.company_key}|-|{entity_key(event.round)}|{entity_key(event.amount)}"


class EntityRepository(Protocol):
    """Persistence contract for the append-only entity store."""

    def create_articles(self, articles: Sequence[Article]) -> list[Article]:
        ...

    def insert_mention(self, mention: CompanyMention) -> bool:
        ...

    def insert_funding(self, event: FundingEvent) -> bool:
        ...

    def record_technology_mention(
        self, patch: TechnologyTrendPatch, article_id: UUID | None = None
    ) -> TechnologyTrend:
        ...

    def get_technology(self, name: str) -> TechnologyTrend | None:
        ...

    def replace_clusters(self, clusters: Sequence[TopicCluster]) -> None:
        ...

    def query_recent(self, entity_type: EntityType, since: datetime | None = None) -> list[Any]:
        ...

    def ping(self) -> bool:
        ...


class InMemoryEntityRepository(EntityRepository):
    """Thread-safe repository used for API/local development and tests."""

    def __init__(self) -> None:
        self._articles: dict[str, Article] = {}
        self._mentions: dict[str, CompanyMention] = {}
        self._funding: dict[str, FundingEvent] = {}
        self._technologies: dict[str, TechnologyTrend] = {}
        self._applied: set[tuple[str, UUID]] = set()
        self._clusters: list[TopicCluster] = []
        self._lock = Lock()

    def create_articles(self, articles: Sequence[Article]) -> list[Article]:
        created: list[Article] = []
        with self._lock:
            for article in articles:
                if article.url in self._articles:
                    continue
                self._articles[article.url] = article
                created.append(article)
        _log_persisted("articles", len(created), len(articles), backend="memory")
        return created

    def insert_mention(self, mention: CompanyMention) -> bool:
        key = mention_dedupe_key(mention)
        with self._lock:
            if key in self._mentions:
                return False
            self._mentions[key] = mention
        return True

    def insert_funding(self, event: FundingEvent) -> bool:
        key = funding_dedupe_key(event)
        with self._lock:
            if key in self._funding:
                return False
            self._funding[key] = event
        return True

    def record_technology_mention(
        self, patch: TechnologyTrendPatch, article_id: UUID | None = None
    ) -> TechnologyTrend:
        key = patch.key
        with self._lock:
            existing = self._technologies.get(key)
            if article_id is not None and (key, article_id) in self._applied and existing:
                return existing
            updated = existing.apply(patch) if existing else TechnologyTrend.from_patch(patch)
            self._technologies[key] = updated
            if article_id is not None:
                self._applied.add((key, article_id))
        return updated

    def get_technology(self, name: str) -> TechnologyTrend | None:
        with self._lock:
            return self._technologies.get(entity_key(name))

    def replace_clusters(self, clusters: Sequence[TopicCluster]) -> None:
        with self._lock:
            self._clusters = list(clusters)

    def query_recent(self, entity_type: EntityType, since: datetime | None = None) -> list[Any]:
        with self._lock:
            if entity_type is EntityType.ARTICLES:
                rows = [(item.published_at, item) for item in self._articles.values()]
            elif entity_type is EntityType.MENTIONS:
                rows = [(item.mentioned_at, item) for item in self._mentions.values()]
            elif entity_type is EntityType.FUNDING:
                rows = [(item.announced_at, item) for item in self._funding.values()]
            elif entity_type is EntityType.TECHNOLOGIES:
                rows = [(item.last_mentioned_at, item) for item in self._technologies.values()]
            else:
                rows = [(item.created_at, item) for item in self._clusters]
        ordered = sorted(rows, key=lambda row: row[0])
        return [item for stamp, item in ordered if since is None or stamp >= since]

    def ping(self) -> bool:
        return True


class SQLModelEntityRepository(EntityRepository):
    """SQLModel-backed repository that persists to Postgres or SQLite."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_min_size: int | None = None,
        pool_max_size: int | None = None,
        auto_create_schema: bool = False,
    ) -> None:
        if not database_url:
            raise ValueError("DATABASE_URL is required for SQLModelEntityRepository.")

        parsed_url = make_url(database_url)
        sync_url, connect_args, drivername = coerce_sync_database_url(parsed_url)
        pool_min = max(pool_min_size or settings.db_pool_min_size, 1)
        pool_max = max(pool_max_size or settings.db_pool_max_size, pool_min)
        is_sqlite = drivername.startswith("sqlite")
        engine_kwargs: dict[str, Any] = {
            "echo": False,
            "connect_args": connect_args,
            "pool_pre_ping": not is_sqlite,
        }
        if not is_sqlite:
            engine_kwargs["pool_size"] = pool_min
            engine_kwargs["max_overflow"] = max(pool_max - pool_min, 0)

        self._engine: Engine = create_engine(sync_url, **engine_kwargs)
        if auto_create_schema:
            SQLModel.metadata.create_all(self._engine)
        self._backend = "sqlite" if is_sqlite else "postgres"
        self._lock = Lock()

    def dispose(self) -> None:
        """Close the underlying SQLAlchemy engine."""
        self._engine.dispose()

    def create_articles(self, articles: Sequence[Article]) -> list[Article]:
        created: list[Article] = []
        try:
            with self._session() as session:
                urls = [article.url for article in articles]
                existing = set(
                    session.exec(select(ArticleRecord.url).where(ArticleRecord.url.in_(urls))).all()
                ) if urls else set()
                for article in articles:
                    if article.url in existing:
                        continue
                    session.add(ArticleRecord.from_domain(article))
                    existing.add(article.url)
                    created.append(article)
                session.commit()
        except SQLAlchemyError as exc:
            self._raise("articles", exc, "Failed to persist articles.")
        _log_persisted("articles", len(created), len(articles), backend=self._backend)
        return created

    def insert_mention(self, mention: CompanyMention) -> bool:
        key = mention_dedupe_key(mention)
        try:
            with self._session() as session:
                statement = select(CompanyMentionRecord).where(CompanyMentionRecord.dedupe_key == key)
                if session.exec(statement).first():
                    return False
                session.add(CompanyMentionRecord.from_domain(mention, key))
                session.commit()
                return True
        except SQLAlchemyError as exc:
            self._raise("mentions", exc, "Failed to persist company mention.")

    def insert_funding(self, event: FundingEvent) -> bool:
        key = funding_dedupe_key(event)
        try:
            with self._session() as session:
                statement = select(FundingEventRecord).where(FundingEventRecord.dedupe_key == key)
                if session.exec(statement).first():
                    return False
                session.add(FundingEventRecord.from_domain(event, key))
                session.commit()
                return True
        except SQLAlchemyError as exc:
            self._raise("funding", exc, "Failed to persist funding event.")

    def record_technology_mention(
        self, patch: TechnologyTrendPatch, article_id: UUID | None = None
    ) -> TechnologyTrend:
        key = patch.key
        try:
            # Serialize read-modify-write so concurrent mentions never lose an increment.
            with self._lock, self._session() as session:
                record = session.get(TechnologyTrendRecord, key)
                if article_id is not None and record is not None:
                    applied = session.get(TechnologyMentionRecord, (key, article_id))
                    if applied is not None:
                        return record.to_domain()
                if record is None:
                    trend = TechnologyTrend.from_patch(patch)
                    session.add(TechnologyTrendRecord.from_domain(trend))
                else:
                    trend = record.to_domain().apply(patch)
                    record.update_from(trend)
                    session.add(record)
                if article_id is not None:
                    session.merge(TechnologyMentionRecord(technology_key=key, article_id=article_id))
                session.commit()
                return trend
        except SQLAlchemyError as exc:
            self._raise("technologies", exc, "Failed to record technology mention.")

    def get_technology(self, name: str) -> TechnologyTrend | None:
        try:
            with self._session() as session:
                record = session.get(TechnologyTrendRecord, entity_key(name))
                return record.to_domain() if record else None
        except SQLAlchemyError as exc:
            self._raise("technologies", exc, "Failed to load technology trend.")

    def replace_clusters(self, clusters: Sequence[TopicCluster]) -> None:
        try:
            with self._session() as session:
                session.execute(delete(TopicClusterRecord))
                for cluster in clusters:
                    session.add(TopicClusterRecord.from_domain(cluster))
                session.commit()
        except SQLAlchemyError as exc:
            self._raise("clusters", exc, "Failed to persist topic clusters.")

    def query_recent(self, entity_type: EntityType, since: datetime | None = None) -> list[Any]:
        model, column = _QUERY_TARGETS[entity_type]
        try:
            with self._session() as session:
                statement = select(model)
                if since is not None:
                    statement = statement.where(column >= since)
                statement = statement.order_by(column)
                return [record.to_domain() for record in session.exec(statement).all()]
        except SQLAlchemyError as exc:
            self._raise(entity_type.value, exc, "Failed to query entity store.")

    def ping(self) -> bool:
        """True when the database answers a trivial query."""
        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("ingestion.persistence.ping_failed", extra={"backend": self._backend})
            return False
        return True

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self._engine) as session:
            yield session

    def _raise(self, entity: str, exc: SQLAlchemyError, message: str) -> NoReturn:
        logger.exception("ingestion.persistence.error", extra={"entity": entity, "backend": self._backend})
        metrics.increment("ingestion.persistence.error", tags={"entity": entity, "backend": self._backend})
        raise RepositoryError(message, code="500_INTERNAL") from exc


_QUERY_TARGETS: dict[EntityType, tuple[type[SQLModel], Any]] = {
    EntityType.ARTICLES: (ArticleRecord, ArticleRecord.published_at),
    EntityType.MENTIONS: (CompanyMentionRecord, CompanyMentionRecord.mentioned_at),
    EntityType.FUNDING: (FundingEventRecord, FundingEventRecord.announced_at),
    EntityType.TECHNOLOGIES: (TechnologyTrendRecord, TechnologyTrendRecord.last_mentioned_at),
    EntityType.CLUSTERS: (TopicClusterRecord, TopicClusterRecord.created_at),
}


def _log_persisted(entity: str, created: int, requested: int, *, backend: str) -> None:
    metrics.increment("ingestion.persistence.persisted", value=created, tags={"entity": entity, "repository": backend})
    logger.info(
        "ingestion.persistence.persisted",
        extra={"entity": entity, "created": created, "skipped": requested - created, "backend": backend},
    )


def coerce_sync_database_url(url: URL) -> tuple[str, dict[str, Any], str]:
    """Convert async connection strings into sync SQLAlchemy URLs."""
    drivername = url.drivername
    connect_args: dict[str, Any] = {}
    if drivername.endswith("+asyncpg"):
        drivername = drivername.replace("+asyncpg", "+psycopg2")
    elif drivername.endswith("+aiosqlite"):
        drivername = drivername.replace("+aiosqlite", "")
    sync_url = url.set(drivername=drivername)
    query = dict(sync_url.query) if sync_url.query else {}
    removed_ssl = "ssl" in query
    query.pop("ssl", None)
    sync_url = sync_url.set(query=query)
    if drivername.startswith("postgresql") and removed_ssl and "sslmode" not in query:
        connect_args["sslmode"] = "require"
    if drivername.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    return sync_url.render_as_string(hide_password=False), connect_args, drivername


def build_entity_repository(database_url: str | None = None) -> EntityRepository:
    """Instantiate an EntityRepository using DATABASE_URL when available."""
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        logger.info("ingestion.repository.initialized", extra={"backend": "memory"})
        return InMemoryEntityRepository()
    try:
        repository = SQLModelEntityRepository(
            resolved_url,
            pool_min_size=settings.db_pool_min_size,
            pool_max_size=settings.db_pool_max_size,
            auto_create_schema=settings.db_auto_create_schema,
        )
        logger.info("ingestion.repository.initialized", extra={"backend": "database"})
        return repository
    except Exception:
        logger.exception("ingestion.repository.init_failed", extra={"backend": "database"})
        raise
