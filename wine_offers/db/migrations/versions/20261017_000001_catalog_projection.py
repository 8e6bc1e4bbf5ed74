"""Catalog projection tables (producers, wines).

Revision ID: 0001
Revises:
Create Date: 2026-10-17

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "producers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
    )

    op.create_table(
        "wines",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("wine_name", sa.String(255), nullable=False),
        sa.Column("vintage", sa.String(20), default=""),
        sa.Column("grape_varieties", sa.String(255), nullable=True),
        sa.Column("color", sa.String(20), nullable=True),
        sa.Column("producer_id", sa.String(36), sa.ForeignKey("producers.id"), nullable=True),
    )
    op.create_index("ix_wines_producer_id", "wines", ["producer_id"])


def downgrade() -> None:
    op.drop_index("ix_wines_producer_id", table_name="wines")
    op.drop_table("wines")
    op.drop_table("producers")
