"""
Shared validation helpers for GraphGate services.
"""

from __future__ import annotations

import json
from typing import Any, Optional, Sequence

from graphgate.config import (
    MAX_LIST_ITEMS,
    MAX_METADATA_BYTES,
    MAX_NAME_LENGTH,
    MAX_OBSERVATION_LENGTH,
    MAX_TYPE_LENGTH,
)
from graphgate.context import Role
from graphgate.errors import ValidationIssue


def validate_required_text(value: str, field: str, max_len: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_list(values: Any, field: str, max_items: int = MAX_LIST_ITEMS) -> None:
    if not isinstance(values, (list, tuple)):
        raise ValidationIssue(f"{field} must be a list", field=field, error_type="invalid_type")
    if len(values) > max_items:
        raise ValidationIssue(f"{field} exceeds max items {max_items}", field=field, error_type="max_items")


def validate_string_list(
    values: Any,
    field: str,
    max_items: int,
    max_item_length: int,
) -> None:
    validate_list(values, field, max_items)
    for item in values:
        if not isinstance(item, str):
            raise ValidationIssue(f"{field} must contain only strings", field=field, error_type="invalid_type")
        if len(item) > max_item_length:
            raise ValidationIssue(
                f"{field} item exceeds max length {max_item_length}",
                field=field,
                error_type="max_length",
            )


def validate_metadata(metadata: Optional[dict], field: str) -> None:
    if metadata is None:
        return
    if not isinstance(metadata, dict):
        raise ValidationIssue(f"{field} must be an object", field=field, error_type="invalid_type")
    try:
        size = len(json.dumps(metadata))
    except (TypeError, ValueError) as exc:
        raise ValidationIssue(f"{field} must be JSON-serializable", field=field, error_type="invalid_type") from exc
    if size > MAX_METADATA_BYTES:
        raise ValidationIssue(
            f"{field} exceeds max size {MAX_METADATA_BYTES} bytes",
            field=field,
            error_type="max_bytes",
        )


def validate_entity_name(value: str, field: str = "name") -> None:
    validate_required_text(value, field, MAX_NAME_LENGTH)


def validate_observations(values: Any, field: str = "observations") -> None:
    validate_string_list(values, field, MAX_LIST_ITEMS, MAX_OBSERVATION_LENGTH)


def validate_entity_payloads(entities: Any) -> list[dict]:
    """Check create_entities input and return it normalized to plain dicts."""
    validate_list(entities, "entities")
    normalized = []
    for index, entity in enumerate(entities):
        prefix = f"entities[{index}]"
        if not isinstance(entity, dict):
            raise ValidationIssue(f"{prefix} must be an object", field=prefix, error_type="invalid_type")
        validate_entity_name(entity.get("name"), f"{prefix}.name")
        validate_required_text(entity.get("entityType"), f"{prefix}.entityType", MAX_TYPE_LENGTH)
        observations = entity.get("observations")
        if observations is None:
            observations = []
        validate_observations(observations, f"{prefix}.observations")
        normalized.append(
            {
                "name": entity["name"],
                "entityType": entity["entityType"],
                "observations": list(observations),
            }
        )
    return normalized


def validate_relation_payloads(relations: Any) -> list[dict]:
    validate_list(relations, "relations")
    normalized = []
    for index, relation in enumerate(relations):
        prefix = f"relations[{index}]"
        if not isinstance(relation, dict):
            raise ValidationIssue(f"{prefix} must be an object", field=prefix, error_type="invalid_type")
        validate_entity_name(relation.get("from"), f"{prefix}.from")
        validate_entity_name(relation.get("to"), f"{prefix}.to")
        validate_required_text(relation.get("relationType"), f"{prefix}.relationType", MAX_TYPE_LENGTH)
        normalized.append(
            {
                "from": relation["from"],
                "to": relation["to"],
                "relationType": relation["relationType"],
            }
        )
    return normalized


def validate_names(names: Any, field: str = "names") -> list[str]:
    validate_string_list(names, field, MAX_LIST_ITEMS, MAX_NAME_LENGTH)
    return list(names)


def validate_role_names(values: Optional[Sequence[str]], field: str = "allowedRoles") -> None:
    if values is None:
        return
    validate_list(values, field)
    for value in values:
        Role.parse(value, field)
