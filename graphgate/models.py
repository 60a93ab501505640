"""
GraphGate Database Models
Tenant-scoped knowledge graph tables plus the key/value blob table.
"""

from datetime import datetime

from sqlalchemy import (
    Column, String, Text, DateTime, Index, PrimaryKeyConstraint, Table, func
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# =============================================================================
# Entities
# =============================================================================

class GraphEntity(Base):
    __tablename__ = "entity"

    owner_id = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    type = Column(String(255))
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        PrimaryKeyConstraint("owner_id", "name", name="entity_pkey"),
    )


# =============================================================================
# Relations and observations
# =============================================================================
# Neither table has a primary key: duplicate rows are legal, so they are
# mapped as Core tables and read with select() rather than through the ORM
# identity map.

relation_table = Table(
    "relation",
    Base.metadata,
    Column("owner_id", String(255), nullable=False),
    Column("from", String(255), nullable=False),
    Column("to", String(255), nullable=False),
    Column("type", String(255)),
    Index("ix_relation_owner_id", "owner_id"),
)

entity_observation_table = Table(
    "entity_observation",
    Base.metadata,
    Column("owner_id", String(255), nullable=False),
    Column("entity_name", String(255), nullable=False),
    Column("observation", Text, nullable=False),
    Index("ix_entity_observation_owner_entity", "owner_id", "entity_name"),
)


# =============================================================================
# Key/value blobs (users, tenants, audit)
# =============================================================================

class KeyValueEntry(Base):
    __tablename__ = "kv_store"

    key = Column(String(512), primary_key=True)
    value = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_kv_store_expires_at", "expires_at"),
    )


__all__ = [
    "Base",
    "GraphEntity",
    "relation_table",
    "entity_observation_table",
    "KeyValueEntry",
]
