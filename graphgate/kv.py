"""
Key/value blob store used for users, tenants, and audit entries.

The ``KeyValueStore`` protocol is the narrow contract the core consumes;
``SqlKeyValueStore`` implements it on the ``kv_store`` table with a
request-scoped session per call.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Callable, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import graphgate.config as config
from graphgate.context import utcnow
from graphgate.db import open_session
from graphgate.errors import StorageError
from graphgate.models import KeyValueEntry


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    def put_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> str:
        """Store value unless a live entry exists; return the stored value."""
        ...

    def delete(self, key: str) -> bool:
        ...

    def scan(self, prefix: str, limit: Optional[int] = None) -> list[tuple[str, str]]:
        ...


def _is_live(entry: KeyValueEntry, now) -> bool:
    if entry.expires_at is None:
        return True
    expires_at = entry.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=now.tzinfo)
    return expires_at > now


def _expiry(ttl: Optional[int]):
    if ttl is None:
        return None
    if ttl <= 0:
        raise ValueError("ttl must be positive")
    return utcnow() + timedelta(seconds=ttl)


class SqlKeyValueStore:
    """SQL-backed blob store; expired rows read as absent."""

    def __init__(self, session_factory: Optional[Callable] = None):
        self._session_factory = session_factory or open_session

    def _session(self):
        return self._session_factory()

    def get(self, key: str) -> Optional[str]:
        db = self._session()
        try:
            entry = db.get(KeyValueEntry, key)
            if entry is None or not _is_live(entry, utcnow()):
                return None
            return entry.value
        except SQLAlchemyError as exc:
            raise StorageError(f"key/value read failed for {key}") from exc
        finally:
            db.close()

    def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = _expiry(ttl)
        db = self._session()
        try:
            entry = db.get(KeyValueEntry, key)
            if entry is None:
                db.add(KeyValueEntry(key=key, value=value, expires_at=expires_at, updated_at=utcnow()))
            else:
                entry.value = value
                entry.expires_at = expires_at
                entry.updated_at = utcnow()
            db.commit()
        except IntegrityError:
            # Lost an insert race for the same key; last writer wins.
            db.rollback()
            entry = db.get(KeyValueEntry, key)
            entry.value = value
            entry.expires_at = expires_at
            entry.updated_at = utcnow()
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"key/value write failed for {key}") from exc
        finally:
            db.close()

    def put_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> str:
        expires_at = _expiry(ttl)
        db = self._session()
        try:
            entry = db.get(KeyValueEntry, key)
            if entry is not None and _is_live(entry, utcnow()):
                return entry.value
            if entry is not None:
                entry.value = value
                entry.expires_at = expires_at
                entry.updated_at = utcnow()
            else:
                db.add(KeyValueEntry(key=key, value=value, expires_at=expires_at, updated_at=utcnow()))
            db.commit()
            return value
        except IntegrityError:
            # Another request created the key first; its value is authoritative.
            db.rollback()
            winner = db.get(KeyValueEntry, key, populate_existing=True)
            if winner is None:
                raise StorageError(f"key/value entry vanished during create: {key}")
            config.logger.info("kv_put_if_absent_race", extra={"key": key})
            return winner.value
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"key/value write failed for {key}") from exc
        finally:
            db.close()

    def delete(self, key: str) -> bool:
        db = self._session()
        try:
            result = db.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
            db.commit()
            return bool(result.rowcount)
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError(f"key/value delete failed for {key}") from exc
        finally:
            db.close()

    def scan(self, prefix: str, limit: Optional[int] = None) -> list[tuple[str, str]]:
        """Live entries whose key starts with prefix, newest key first."""
        db = self._session()
        try:
            query = (
                select(KeyValueEntry)
                .where(KeyValueEntry.key.startswith(prefix, autoescape=True))
                .order_by(KeyValueEntry.key.desc())
            )
            now = utcnow()
            # LIKE is case-insensitive on some backends; keep the match exact.
            rows = [
                entry
                for entry in db.execute(query).scalars()
                if entry.key.startswith(prefix) and _is_live(entry, now)
            ]
            if limit is not None:
                rows = rows[:limit]
            return [(entry.key, entry.value) for entry in rows]
        except SQLAlchemyError as exc:
            raise StorageError(f"key/value scan failed for {prefix}") from exc
        finally:
            db.close()


__all__ = ["KeyValueStore", "SqlKeyValueStore"]
