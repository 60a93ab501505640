import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from graphgate import audit


def test_audit_rejects_content_metadata(kv, make_context):
    ctx = make_context("alice")
    with pytest.raises(ValueError):
        audit.log_tool_usage(kv, ctx, "add_observations", {"observations": ["secret text"]})
    with pytest.raises(ValueError):
        audit.log_tool_usage(kv, ctx, "search_nodes", {"details": {"query": "secret"}})
    assert kv.scan(audit.audit_prefix(ctx.tenant.id)) == []


def test_audit_rejects_long_strings(kv, make_context):
    ctx = make_context("alice")
    with pytest.raises(ValueError):
        audit.log_tool_usage(kv, ctx, "read_graph", {"note": "x" * 600})
    assert kv.scan(audit.audit_prefix(ctx.tenant.id)) == []


def test_audit_lists_newest_first_per_tenant(kv, make_context, monkeypatch):
    alice = make_context("alice")
    bob = make_context("bob")
    ticks = iter([1_700_000_000_000, 1_700_000_001_000, 1_700_000_002_000])
    monkeypatch.setattr(audit, "_epoch_ms", lambda: next(ticks))

    audit.log_tool_usage(kv, alice, "create_entities", {"item_count": 2})
    audit.log_tool_usage(kv, bob, "read_graph")
    audit.log_tool_usage(kv, alice, "read_graph", {"success": True})
    monkeypatch.undo()

    listing = audit.list_audit_events(kv, "alice")
    assert listing["count"] == 2
    assert [event["tool"] for event in listing["events"]] == ["read_graph", "create_entities"]
    first = listing["events"][1]
    assert first["user_id"] == "alice"
    assert first["session_id"] == "session-alice"
    assert first["metadata"] == {"item_count": 2}

    assert audit.list_audit_events(kv, "alice", limit=1)["count"] == 1
    with pytest.raises(ValueError):
        audit.list_audit_events(kv, "alice", limit=0)
