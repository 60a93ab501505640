"""Create knowledge graph tables.

Revision ID: 0001_graph_tables
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_graph_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "entity",
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=255)),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("owner_id", "name", name="entity_pkey"),
    )

    # No primary keys: duplicate relations and observations are legal rows.
    op.create_table(
        "relation",
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("from", sa.String(length=255), nullable=False),
        sa.Column("to", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=255)),
    )
    op.create_index("ix_relation_owner_id", "relation", ["owner_id"])

    op.create_table(
        "entity_observation",
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("entity_name", sa.String(length=255), nullable=False),
        sa.Column("observation", sa.Text(), nullable=False),
    )
    op.create_index(
        "ix_entity_observation_owner_entity",
        "entity_observation",
        ["owner_id", "entity_name"],
    )


def downgrade() -> None:
    op.drop_index("ix_entity_observation_owner_entity", table_name="entity_observation")
    op.drop_table("entity_observation")
    op.drop_index("ix_relation_owner_id", table_name="relation")
    op.drop_table("relation")
    op.drop_table("entity")
