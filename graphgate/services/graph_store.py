"""
Tenant-scoped knowledge graph services.

Every operation derives the graph owner id from the authenticated
``UserContext`` and filters all three graph tables by it. Results use the
``{"success": bool, "data" | "error"}`` envelope produced by ``service_tool``;
storage exceptions never escape.

Graph semantics are deliberately loose:
- relations and observations may reference entity names that do not exist
  (unless ``GRAPHGATE_REQUIRE_EXISTING_ENDPOINTS`` is enabled);
- ``delete_entities`` leaves observations and relations behind;
  ``delete_entities_cascade`` is the explicit variant that removes them.
"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import delete, insert, or_, select
from sqlalchemy.exc import IntegrityError

import graphgate.config as config
from graphgate.context import UserContext, get_current_user_context, resolve_owner_id, utcnow
from graphgate.db import open_session
from graphgate.errors import ConflictError, NotFoundError
from graphgate.models import GraphEntity, entity_observation_table, relation_table
from graphgate.services.shared import escape_like, ok, service_tool
from graphgate.validators import (
    validate_entity_name,
    validate_entity_payloads,
    validate_names,
    validate_observations,
    validate_relation_payloads,
    validate_required_text,
)

obs_t = entity_observation_table
rel_t = relation_table


def _owner_id(context: Optional[UserContext]) -> str:
    return resolve_owner_id(context or get_current_user_context())


def _relation_record(row) -> dict:
    return {
        "from": row._mapping["from"],
        "to": row._mapping["to"],
        "relationType": row._mapping["type"],
    }


def _group_observations(rows) -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = {}
    for row in rows:
        grouped.setdefault(row.entity_name, []).append(row.observation)
    return grouped


def _hydrate_entities(entities: Iterable[GraphEntity], observation_rows) -> list[dict]:
    grouped = _group_observations(observation_rows)
    return [
        {
            "name": entity.name,
            "entityType": entity.type,
            "observations": grouped.get(entity.name, []),
        }
        for entity in entities
    ]


def _missing_entity_names(db, owner_id: str, names: set[str]) -> list[str]:
    if not names:
        return []
    existing = set(
        db.execute(
            select(GraphEntity.name)
            .where(GraphEntity.owner_id == owner_id)
            .where(GraphEntity.name.in_(names))
        ).scalars()
    )
    return sorted(names - existing)


@service_tool
def create_entities(entities: list[dict], context: Optional[UserContext] = None) -> dict:
    """
    Create entities and their initial observations.

    The batch is written in a single transaction: if any name already exists
    for the owner (or repeats inside the batch) nothing is written and a
    conflict listing the offending names is returned.
    """
    payloads = validate_entity_payloads(entities)
    owner_id = _owner_id(context)
    names = [payload["name"] for payload in payloads]

    repeated = sorted({name for name in names if names.count(name) > 1})
    if repeated:
        raise ConflictError(f"Entity names repeated in batch: {', '.join(repeated)}", names=repeated)

    if not payloads:
        return ok({"entities": []})

    db = open_session()
    try:
        existing = sorted(
            db.execute(
                select(GraphEntity.name)
                .where(GraphEntity.owner_id == owner_id)
                .where(GraphEntity.name.in_(names))
            ).scalars()
        )
        if existing:
            raise ConflictError(f"Entities already exist: {', '.join(existing)}", names=existing)

        created_at = utcnow()
        for payload in payloads:
            db.add(
                GraphEntity(
                    owner_id=owner_id,
                    name=payload["name"],
                    type=payload["entityType"],
                    created_at=created_at,
                )
            )
        # The primary key settles concurrent creators of the same name.
        db.flush()

        observation_rows = [
            {"owner_id": owner_id, "entity_name": payload["name"], "observation": text}
            for payload in payloads
            for text in payload["observations"]
        ]
        if observation_rows:
            db.execute(insert(obs_t), observation_rows)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        contested = sorted(
            db.execute(
                select(GraphEntity.name)
                .where(GraphEntity.owner_id == owner_id)
                .where(GraphEntity.name.in_(names))
            ).scalars()
        )
        if not contested:
            raise ConflictError(
                f"One or more entities already exist: {', '.join(names)}",
                names=names,
            ) from exc
        raise ConflictError(
            f"Entities already exist: {', '.join(contested)}",
            names=contested,
        ) from exc
    finally:
        db.close()

    config.logger.info(
        "graph_entities_created",
        extra={"owner_id": owner_id, "count": len(payloads)},
    )
    return ok({"entities": payloads})


@service_tool
def create_relations(relations: list[dict], context: Optional[UserContext] = None) -> dict:
    """Insert relations unconditionally; duplicates are permitted."""
    payloads = validate_relation_payloads(relations)
    owner_id = _owner_id(context)
    if not payloads:
        return ok({"relations": []})

    db = open_session()
    try:
        if config.REQUIRE_EXISTING_ENDPOINTS:
            endpoints = {p["from"] for p in payloads} | {p["to"] for p in payloads}
            missing = _missing_entity_names(db, owner_id, endpoints)
            if missing:
                raise NotFoundError(f"Relation endpoints not found: {', '.join(missing)}", names=missing)

        db.execute(
            insert(rel_t),
            [
                {
                    "owner_id": owner_id,
                    "from": payload["from"],
                    "to": payload["to"],
                    "type": payload["relationType"],
                }
                for payload in payloads
            ],
        )
        db.commit()
    finally:
        db.close()
    return ok({"relations": payloads})


@service_tool
def add_observations(
    entity_name: str,
    observations: list[str],
    context: Optional[UserContext] = None,
) -> dict:
    """Append observation rows for an entity name."""
    validate_entity_name(entity_name, "entityName")
    validate_observations(observations)
    owner_id = _owner_id(context)
    if not observations:
        return ok({"entityName": entity_name, "addedObservations": []})

    db = open_session()
    try:
        if config.REQUIRE_EXISTING_ENDPOINTS and _missing_entity_names(db, owner_id, {entity_name}):
            raise NotFoundError(f"Entity not found: {entity_name}", names=[entity_name])

        db.execute(
            insert(obs_t),
            [
                {"owner_id": owner_id, "entity_name": entity_name, "observation": text}
                for text in observations
            ],
        )
        db.commit()
    finally:
        db.close()
    return ok({"entityName": entity_name, "addedObservations": list(observations)})


@service_tool
def delete_entities(names: list[str], context: Optional[UserContext] = None) -> dict:
    """Delete entity rows only; their observations and relations remain."""
    names = validate_names(names)
    owner_id = _owner_id(context)
    if not names:
        return ok({"deleted_count": 0})

    db = open_session()
    try:
        result = db.execute(
            delete(GraphEntity)
            .where(GraphEntity.owner_id == owner_id)
            .where(GraphEntity.name.in_(names))
        )
        db.commit()
        deleted = result.rowcount or 0
    finally:
        db.close()
    return ok({"deleted_count": deleted})


@service_tool
def delete_entities_cascade(names: list[str], context: Optional[UserContext] = None) -> dict:
    """
    Delete entities together with their observations and every relation that
    starts or ends at one of them.
    """
    names = validate_names(names)
    owner_id = _owner_id(context)
    if not names:
        return ok({"deleted_count": 0, "deleted_observations": 0, "deleted_relations": 0})

    db = open_session()
    try:
        entity_result = db.execute(
            delete(GraphEntity)
            .where(GraphEntity.owner_id == owner_id)
            .where(GraphEntity.name.in_(names))
        )
        observation_result = db.execute(
            delete(obs_t)
            .where(obs_t.c.owner_id == owner_id)
            .where(obs_t.c.entity_name.in_(names))
        )
        relation_result = db.execute(
            delete(rel_t)
            .where(rel_t.c.owner_id == owner_id)
            .where(or_(rel_t.c["from"].in_(names), rel_t.c["to"].in_(names)))
        )
        db.commit()
        counts = {
            "deleted_count": entity_result.rowcount or 0,
            "deleted_observations": observation_result.rowcount or 0,
            "deleted_relations": relation_result.rowcount or 0,
        }
    finally:
        db.close()
    return ok(counts)


@service_tool
def delete_relations(relations: list[dict], context: Optional[UserContext] = None) -> dict:
    """Delete relations matching from, to and relationType exactly."""
    payloads = validate_relation_payloads(relations)
    owner_id = _owner_id(context)

    deleted = 0
    db = open_session()
    try:
        for payload in payloads:
            result = db.execute(
                delete(rel_t)
                .where(rel_t.c.owner_id == owner_id)
                .where(rel_t.c["from"] == payload["from"])
                .where(rel_t.c["to"] == payload["to"])
                .where(rel_t.c.type == payload["relationType"])
            )
            deleted += result.rowcount or 0
        db.commit()
    finally:
        db.close()
    return ok({"deleted_count": deleted})


@service_tool
def delete_observations(
    entity_name: str,
    observations: list[str],
    context: Optional[UserContext] = None,
) -> dict:
    """Delete observations by exact text; identical duplicates all go."""
    validate_entity_name(entity_name, "entityName")
    validate_observations(observations)
    owner_id = _owner_id(context)
    if not observations:
        return ok({"deleted_count": 0})

    db = open_session()
    try:
        result = db.execute(
            delete(obs_t)
            .where(obs_t.c.owner_id == owner_id)
            .where(obs_t.c.entity_name == entity_name)
            .where(obs_t.c.observation.in_(set(observations)))
        )
        db.commit()
        deleted = result.rowcount or 0
    finally:
        db.close()
    return ok({"deleted_count": deleted})


@service_tool
def read_graph(context: Optional[UserContext] = None) -> dict:
    """Materialize the owner's whole graph."""
    owner_id = _owner_id(context)
    db = open_session()
    try:
        entities = (
            db.execute(
                select(GraphEntity)
                .where(GraphEntity.owner_id == owner_id)
                .order_by(GraphEntity.created_at, GraphEntity.name)
            )
            .scalars()
            .all()
        )
        observation_rows = db.execute(
            select(obs_t.c.entity_name, obs_t.c.observation).where(obs_t.c.owner_id == owner_id)
        ).all()
        relation_rows = db.execute(select(rel_t).where(rel_t.c.owner_id == owner_id)).all()
        graph = {
            "entities": _hydrate_entities(entities, observation_rows),
            "relations": [_relation_record(row) for row in relation_rows],
        }
    finally:
        db.close()
    return ok(graph)


def _search_folded(db, owner_id: str, query: str) -> tuple[list, list, list]:
    # SQLite only folds ASCII case in LIKE, so match with str.casefold instead.
    needle = query.casefold()
    entities = (
        db.execute(select(GraphEntity).where(GraphEntity.owner_id == owner_id).order_by(GraphEntity.name))
        .scalars()
        .all()
    )
    observations = db.execute(
        select(obs_t.c.entity_name, obs_t.c.observation).where(obs_t.c.owner_id == owner_id)
    ).all()
    return (
        [e for e in entities if needle in e.name.casefold()],
        [e for e in entities if needle in e.type.casefold()],
        [row for row in observations if needle in row.observation.casefold()],
    )


def _search_like(db, owner_id: str, query: str) -> tuple[list, list, list]:
    pattern = f"%{escape_like(query)}%"
    name_matches = (
        db.execute(
            select(GraphEntity)
            .where(GraphEntity.owner_id == owner_id)
            .where(GraphEntity.name.ilike(pattern, escape="\\"))
            .order_by(GraphEntity.name)
        )
        .scalars()
        .all()
    )
    type_matches = (
        db.execute(
            select(GraphEntity)
            .where(GraphEntity.owner_id == owner_id)
            .where(GraphEntity.type.ilike(pattern, escape="\\"))
            .order_by(GraphEntity.name)
        )
        .scalars()
        .all()
    )
    observation_matches = db.execute(
        select(obs_t.c.entity_name, obs_t.c.observation)
        .where(obs_t.c.owner_id == owner_id)
        .where(obs_t.c.observation.ilike(pattern, escape="\\"))
    ).all()
    return name_matches, type_matches, observation_matches


@service_tool
def search_nodes(query: str, context: Optional[UserContext] = None) -> dict:
    """
    Case-insensitive substring search over entity names, entity types and
    observation text. The three match sets are returned separately.
    """
    validate_required_text(query, "query", config.MAX_QUERY_LENGTH)
    owner_id = _owner_id(context)

    db = open_session()
    try:
        if db.get_bind().dialect.name == "sqlite":
            name_matches, type_matches, observation_matches = _search_folded(db, owner_id, query)
        else:
            name_matches, type_matches, observation_matches = _search_like(db, owner_id, query)
        result = {
            "nameMatches": [{"name": e.name, "entityType": e.type} for e in name_matches],
            "typeMatches": [{"name": e.name, "entityType": e.type} for e in type_matches],
            "observationMatches": [
                {"entityName": row.entity_name, "observation": row.observation}
                for row in observation_matches
            ],
        }
    finally:
        db.close()
    return ok(result)


@service_tool
def open_nodes(names: list[str], context: Optional[UserContext] = None) -> dict:
    """Return the requested entities with observations; unknown names are skipped."""
    names = validate_names(names)
    owner_id = _owner_id(context)
    if not names:
        return ok({"entities": []})

    db = open_session()
    try:
        entities = (
            db.execute(
                select(GraphEntity)
                .where(GraphEntity.owner_id == owner_id)
                .where(GraphEntity.name.in_(names))
                .order_by(GraphEntity.created_at, GraphEntity.name)
            )
            .scalars()
            .all()
        )
        observation_rows = db.execute(
            select(obs_t.c.entity_name, obs_t.c.observation)
            .where(obs_t.c.owner_id == owner_id)
            .where(obs_t.c.entity_name.in_(names))
        ).all()
        result = {"entities": _hydrate_entities(entities, observation_rows)}
    finally:
        db.close()
    return ok(result)


@service_tool
def read_observations(entity_name: str, context: Optional[UserContext] = None) -> dict:
    """Observation rows stored under a name, whether or not the entity exists."""
    validate_entity_name(entity_name, "entityName")
    owner_id = _owner_id(context)
    db = open_session()
    try:
        rows = db.execute(
            select(obs_t.c.observation)
            .where(obs_t.c.owner_id == owner_id)
            .where(obs_t.c.entity_name == entity_name)
        ).scalars().all()
    finally:
        db.close()
    return ok({"entityName": entity_name, "observations": list(rows)})


__all__ = [
    "create_entities",
    "create_relations",
    "add_observations",
    "delete_entities",
    "delete_entities_cascade",
    "delete_relations",
    "delete_observations",
    "read_graph",
    "search_nodes",
    "open_nodes",
    "read_observations",
]
