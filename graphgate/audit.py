"""
Audit logging helpers (key/value backed, metadata-only).

Entries are written under ``audit:{tenant}:{epoch_ms}:{uuid}`` with a TTL so
they age out on their own; the key layout makes a prefix scan return them
newest first.
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Optional

import graphgate.config as config
from graphgate.context import UserContext, utcnow
from graphgate.kv import KeyValueStore

EVENT_TOOL_INVOKED = "tool.invoked"
EVENT_TENANT_UPDATED = "admin.tenant_updated"
EVENT_TOOL_CONFIGURED = "admin.tool_configured"
EVENT_TOOL_DISABLED = "admin.tool_disabled"
EVENT_USER_UPDATED = "admin.user_updated"

FORBIDDEN_METADATA_KEYS = {
    "content",
    "observation",
    "entity_name",
    "query",
    "description",
    "raw_text",
    "token",
}
MAX_METADATA_STRING_LENGTH = 500


def _normalize_key(key: str) -> str:
    return key.strip().lower().replace("-", "_")


def _metadata_key_forbidden(key: str) -> bool:
    normalized = _normalize_key(key)
    for token in FORBIDDEN_METADATA_KEYS:
        if token in normalized:
            return True
    return False


def _validate_metadata_value(value: Any, path: str = "") -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError("metadata keys must be strings")
            if _metadata_key_forbidden(key):
                raise ValueError(f"metadata key '{key}' is not allowed")
            next_path = f"{path}.{key}" if path else key
            _validate_metadata_value(item, next_path)
        return
    if isinstance(value, list):
        for item in value:
            _validate_metadata_value(item, path)
        return
    if isinstance(value, str) and len(value) > MAX_METADATA_STRING_LENGTH:
        raise ValueError(f"metadata value too long at '{path or 'value'}'")


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def audit_prefix(tenant_id: str) -> str:
    return f"audit:{tenant_id}:"


def log_tool_usage(
    kv: KeyValueStore,
    ctx: UserContext,
    tool_name: str,
    metadata: Optional[dict] = None,
    event_type: str = EVENT_TOOL_INVOKED,
) -> str:
    """
    Append an audit entry for the context's tenant and return its key.
    """
    if not tool_name or not isinstance(tool_name, str):
        raise ValueError("tool_name must be a non-empty string")
    if metadata is not None:
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be a dict")
        _validate_metadata_value(metadata)

    key = f"{audit_prefix(ctx.tenant.id)}{_epoch_ms():013d}:{uuid.uuid4()}"
    record = {
        "event_type": event_type,
        "tool": tool_name,
        "tenant_id": ctx.tenant.id,
        "user_id": ctx.user.id,
        "session_id": ctx.session_id,
        "created_at": utcnow().isoformat(),
        "metadata": metadata or {},
    }
    kv.put(key, json.dumps(record), ttl=config.AUDIT_TTL_SECONDS)
    return key


def list_audit_events(kv: KeyValueStore, tenant_id: str, limit: int = 100) -> dict:
    if limit <= 0:
        raise ValueError("limit must be positive")
    limit = min(limit, config.AUDIT_LIST_LIMIT_MAX)

    events = []
    for key, raw in kv.scan(audit_prefix(tenant_id), limit=limit):
        try:
            record = json.loads(raw)
        except ValueError:
            config.logger.warning("audit_entry_unreadable", extra={"key": key})
            continue
        record["event_id"] = key.rsplit(":", 1)[-1]
        events.append(record)
    return {"status": "ok", "count": len(events), "events": events}


__all__ = [
    "EVENT_TENANT_UPDATED",
    "EVENT_TOOL_CONFIGURED",
    "EVENT_TOOL_DISABLED",
    "EVENT_TOOL_INVOKED",
    "EVENT_USER_UPDATED",
    "FORBIDDEN_METADATA_KEYS",
    "audit_prefix",
    "list_audit_events",
    "log_tool_usage",
]
