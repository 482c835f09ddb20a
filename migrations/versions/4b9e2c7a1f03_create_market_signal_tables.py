"""Create article, entity and topic-cluster tables.

Articles are unique on url; mentions and funding events are unique on their
dedupe key so repeated extraction of one article is a no-op.
"""

from __future__ import annotations

import logging

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "4b9e2c7a1f03"
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger(__name__)

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.current_timestamp())


def upgrade() -> None:
    op.create_table(
        "articles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("source_name", sa.String(length=255), nullable=False),
        _timestamp("published_at"),
        sa.Column("is_breaking", sa.Boolean(), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("pros", JSON_TYPE, nullable=False),
        sa.Column("cons", JSON_TYPE, nullable=False),
        sa.Column("impact_score", sa.Float(), nullable=False),
        sa.Column("development_impact", sa.Text(), nullable=False),
        sa.Column("market_impact", sa.Text(), nullable=False),
        sa.Column("disruption_level", sa.String(length=32), nullable=False),
        sa.Column("time_to_impact", sa.String(length=32), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_articles"),
        sa.UniqueConstraint("url", name="uq_articles_url"),
    )
    op.create_index("ix_articles_published_at", "articles", ["published_at"], unique=False)

    op.create_table(
        "company_mentions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        sa.Column("company_key", sa.String(length=255), nullable=False),
        sa.Column("dedupe_key", sa.String(length=1024), nullable=False),
        sa.Column("mention_type", sa.String(length=32), nullable=False),
        sa.Column("sentiment", sa.Float(), nullable=False),
        sa.Column("context", sa.Text(), nullable=False),
        sa.Column("article_id", sa.Uuid(), nullable=True),
        _timestamp("mentioned_at"),
        sa.PrimaryKeyConstraint("id", name="pk_company_mentions"),
        sa.UniqueConstraint("dedupe_key", name="uq_company_mentions_dedupe"),
    )
    op.create_index("ix_company_mentions_company_key", "company_mentions", ["company_key"], unique=False)
    op.create_index("ix_company_mentions_mentioned_at", "company_mentions", ["mentioned_at"], unique=False)

    op.create_table(
        "funding_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        sa.Column("company_key", sa.String(length=255), nullable=False),
        sa.Column("dedupe_key", sa.String(length=1024), nullable=False),
        sa.Column("amount", sa.String(length=64), nullable=False),
        sa.Column("amount_usd", sa.Float(), nullable=True),
        sa.Column("round", sa.String(length=64), nullable=False),
        sa.Column("investors", JSON_TYPE, nullable=False),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("article_id", sa.Uuid(), nullable=True),
        _timestamp("announced_at"),
        sa.PrimaryKeyConstraint("id", name="pk_funding_events"),
        sa.UniqueConstraint("dedupe_key", name="uq_funding_events_dedupe"),
    )
    op.create_index("ix_funding_events_company_key", "funding_events", ["company_key"], unique=False)
    op.create_index("ix_funding_events_announced_at", "funding_events", ["announced_at"], unique=False)

    op.create_table(
        "technology_trends",
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("adoption_stage", sa.String(length=32), nullable=False),
        sa.Column("mention_count", sa.Integer(), nullable=False),
        sa.Column("avg_sentiment", sa.Float(), nullable=False),
        sa.Column("trend_direction", sa.String(length=32), nullable=False),
        _timestamp("first_mentioned_at"),
        _timestamp("last_mentioned_at"),
        sa.PrimaryKeyConstraint("key", name="pk_technology_trends"),
    )
    op.create_index(
        "ix_technology_trends_last_mentioned_at", "technology_trends", ["last_mentioned_at"], unique=False
    )

    op.create_table(
        "technology_mentions",
        sa.Column("technology_key", sa.String(length=255), nullable=False),
        sa.Column("article_id", sa.Uuid(), nullable=False),
        sa.PrimaryKeyConstraint("technology_key", "article_id", name="pk_technology_mentions"),
    )

    op.create_table(
        "topic_clusters",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("keywords", JSON_TYPE, nullable=False),
        sa.Column("article_ids", JSON_TYPE, nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_topic_clusters"),
    )
    op.create_index("ix_topic_clusters_created_at", "topic_clusters", ["created_at"], unique=False)
    logger.info("market_signal.migration.applied", extra={"revision": revision})


def downgrade() -> None:
    op.drop_index("ix_topic_clusters_created_at", table_name="topic_clusters")
    op.drop_table("topic_clusters")
    op.drop_table("technology_mentions")
    op.drop_index("ix_technology_trends_last_mentioned_at", table_name="technology_trends")
    op.drop_table("technology_trends")
    op.drop_index("ix_funding_events_announced_at", table_name="funding_events")
    op.drop_index("ix_funding_events_company_key", table_name="funding_events")
    op.drop_table("funding_events")
    op.drop_index("ix_company_mentions_mentioned_at", table_name="company_mentions")
    op.drop_index("ix_company_mentions_company_key", table_name="company_mentions")
    op.drop_table("company_mentions")
    op.drop_index("ix_articles_published_at", table_name="articles")
    op.drop_table("articles")
