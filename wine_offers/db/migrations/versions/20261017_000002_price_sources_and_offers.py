"""Price sources and external offers.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-17

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create price_sources table
    op.create_table(
        "price_sources",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("base_url", sa.String(500), nullable=False),
        sa.Column("search_url_template", sa.String(500), nullable=True),
        sa.Column("sitemap_url", sa.String(500), nullable=True),
        sa.Column("adapter_type", sa.String(50), nullable=False, server_default="shopify"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("rate_limit_delay_ms", sa.Integer(), nullable=False, server_default="2000"),
        sa.Column("last_crawled_at", sa.DateTime(), nullable=True),
        sa.Column("config_json", sa.Text(), nullable=False, server_default="{}"),
    )
    op.create_index("ix_price_sources_is_active", "price_sources", ["is_active"])

    # Create external_offers table
    op.create_table(
        "external_offers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("wine_id", sa.String(36), nullable=False),
        sa.Column(
            "price_source_id",
            sa.String(36),
            sa.ForeignKey("price_sources.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("pdp_url", sa.String(1000), nullable=False),
        sa.Column("price_amount", sa.Float(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="SEK"),
        sa.Column("available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("title_raw", sa.Text(), nullable=True),
        sa.Column("match_confidence", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_fetched_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("wine_id", "price_source_id", name="uq_external_offers_wine_source"),
    )
    op.create_index("ix_external_offers_wine_id", "external_offers", ["wine_id"])
    op.create_index("ix_external_offers_price_source_id", "external_offers", ["price_source_id"])
    op.create_index("ix_external_offers_last_fetched_at", "external_offers", ["last_fetched_at"])


def downgrade() -> None:
    op.drop_index("ix_external_offers_last_fetched_at", table_name="external_offers")
    op.drop_index("ix_external_offers_price_source_id", table_name="external_offers")
    op.drop_index("ix_external_offers_wine_id", table_name="external_offers")
    op.drop_table("external_offers")
    op.drop_index("ix_price_sources_is_active", table_name="price_sources")
    op.drop_table("price_sources")
