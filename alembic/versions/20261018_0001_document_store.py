"""Document store and tracked KOL wallet registry.

Revision ID: 001_document_store
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_document_store"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    # Results, market snapshots, run records and KOL position sightings
    op.create_table(
        "documents",
        sa.Column("collection", sa.String(64), nullable=False),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("document", _JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("collection", "key"),
    )
    op.create_index(
        "idx_documents_collection_updated", "documents", ["collection", "updated_at"]
    )

    op.create_table(
        "tracked_wallets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("wallet_addresses", _JSON, nullable=False),
        sa.Column("influence_score", sa.Numeric(6, 4), nullable=False),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("twitter_handle", sa.String(64), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("idx_tracked_wallets_active", "tracked_wallets", ["active"])


def downgrade() -> None:
    op.drop_index("idx_tracked_wallets_active", table_name="tracked_wallets")
    op.drop_table("tracked_wallets")
    op.drop_index("idx_documents_collection_updated", table_name="documents")
    op.drop_table("documents")
