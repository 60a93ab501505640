import os
from datetime import timedelta

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest

from graphgate.context import utcnow
from graphgate.errors import StorageError
from graphgate.kv import SqlKeyValueStore
from graphgate.models import KeyValueEntry


def test_put_get_delete(kv):
    assert kv.get("user:alice") is None
    kv.put("user:alice", "v1")
    kv.put("user:alice", "v2")
    assert kv.get("user:alice") == "v2"
    assert kv.delete("user:alice") is True
    assert kv.delete("user:alice") is False
    assert kv.get("user:alice") is None


def test_put_if_absent_keeps_first_value(kv):
    assert kv.put_if_absent("tenant:acme", "first") == "first"
    assert kv.put_if_absent("tenant:acme", "second") == "first"
    assert kv.get("tenant:acme") == "first"


def test_expired_entries_read_as_absent(kv, db_session):
    db_session.add(
        KeyValueEntry(key="audit:acme:old", value="stale", expires_at=utcnow() - timedelta(seconds=5))
    )
    db_session.commit()

    assert kv.get("audit:acme:old") is None
    assert kv.scan("audit:acme:") == []
    assert kv.put_if_absent("audit:acme:old", "fresh") == "fresh"


def test_ttl_must_be_positive(kv):
    with pytest.raises(ValueError):
        kv.put("k", "v", ttl=0)


def test_scan_is_prefix_literal_and_newest_first(kv):
    kv.put("audit:a%b:001", "one")
    kv.put("audit:a%b:002", "two")
    kv.put("audit:axb:001", "other")

    assert kv.scan("audit:a%b:") == [("audit:a%b:002", "two"), ("audit:a%b:001", "one")]
    assert kv.scan("audit:a%b:", limit=1) == [("audit:a%b:002", "two")]


def test_uninitialized_database_raises_storage_error():
    store = SqlKeyValueStore(session_factory=None)
    from graphgate.db import DB

    previous = DB.SessionLocal
    DB.SessionLocal = None
    try:
        with pytest.raises(StorageError):
            store.get("anything")
    finally:
        DB.SessionLocal = previous
