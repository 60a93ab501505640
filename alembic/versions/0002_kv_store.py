"""Add key/value store for users, tenants, and audit entries.

Revision ID: 0002_kv_store
Revises: 0001_graph_tables
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_kv_store"
down_revision = "0001_graph_tables"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "kv_store",
        sa.Column("key", sa.String(length=512), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_kv_store_expires_at", "kv_store", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_kv_store_expires_at", table_name="kv_store")
    op.drop_table("kv_store")
