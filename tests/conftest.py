import os
from dataclasses import replace

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("GRAPHGATE_JWT_SECRET", "test-secret")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from graphgate.context import Role, UserContext
from graphgate.db import DB
from graphgate.kv import SqlKeyValueStore
from graphgate.models import Base
from graphgate.services.identity import set_identity_resolver
from graphgate.services.rate_limiter import get_rate_limiter
from graphgate.services.tenant_config import TenantConfigStore

TEST_JWT_SECRET = "test-secret"


@pytest.fixture
def server_db(tmp_path):
    db_path = tmp_path / "graphgate.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    DB.engine = engine
    DB.SessionLocal = SessionLocal
    try:
        yield SessionLocal
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    session = server_db()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def kv(server_db):
    return SqlKeyValueStore()


@pytest.fixture
def tenant_store(kv):
    return TenantConfigStore(kv)


@pytest.fixture
def make_context(tenant_store):
    def _make(user_id="alice", tenant_id=None, role=Role.user):
        tenant_id = tenant_id or user_id
        role = Role.parse(role)
        user = tenant_store.ensure_user_exists(user_id, tenant_id)
        if user.role is not role:
            user = tenant_store.put_user(replace(user, role=role))
        tenant = tenant_store.ensure_tenant_exists(tenant_id, owner_id=user_id)
        return UserContext.compose(user, tenant, session_id=f"session-{user_id}")

    return _make


@pytest.fixture(autouse=True)
def _reset_process_state():
    limiter = get_rate_limiter()
    limiter.reset()
    set_identity_resolver(None)
    yield
    limiter.reset()
    set_identity_resolver(None)
