import os
import time
from dataclasses import replace

os.environ.setdefault("DB_BACKEND", "sqlite")

import httpx
import jwt
import pytest

from graphgate.context import Role
from graphgate.errors import AuthError
from graphgate.services.identity import (
    IdentityResolver,
    IntrospectionCredentialValidator,
    JwtCredentialValidator,
    extract_bearer_token,
    payload_from_claims,
)
from graphgate.services.tenant_config import DEFAULT_USER_PERMISSIONS

SECRET = "test-secret"


def _token(claims, secret=SECRET):
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def resolver(tenant_store):
    return IdentityResolver(validator=JwtCredentialValidator(SECRET), store=tenant_store)


def test_extract_bearer_token():
    assert extract_bearer_token("Bearer abc.def") == "abc.def"
    assert extract_bearer_token("bearer   abc") == "abc"
    assert extract_bearer_token("Basic abc") is None
    assert extract_bearer_token("Bearer ") is None
    assert extract_bearer_token(None) is None


def test_payload_defaults():
    payload = payload_from_claims({"sub": "alice", "scope": "read write"}, now=1_000)
    assert payload.user_id == "alice"
    assert payload.tenant_id == "alice"
    assert payload.scope == ("read", "write")
    assert payload.exp == 1_000 + 3600
    assert payload.iat == 1_000
    assert payload.session_id

    other = payload_from_claims({"sub": "alice"}, now=1_000)
    assert other.session_id != payload.session_id


def test_payload_prefers_explicit_claims():
    payload = payload_from_claims(
        {"userId": "u1", "sub": "ignored", "tenantId": "acme", "sessionId": "s1", "exp": 5_000},
        now=1_000,
    )
    assert (payload.user_id, payload.tenant_id, payload.session_id, payload.exp) == ("u1", "acme", "s1", 5_000)


def test_payload_rejects_expired_and_malformed():
    with pytest.raises(AuthError):
        payload_from_claims({"sub": "alice", "exp": 999}, now=1_000)
    with pytest.raises(AuthError):
        payload_from_claims({"tenantId": "acme"}, now=1_000)
    with pytest.raises(AuthError):
        payload_from_claims(["not", "a", "dict"], now=1_000)


def test_jwt_validator_rejects_bad_signature_and_expiry(resolver):
    with pytest.raises(AuthError):
        resolver.resolve_credential(_token({"sub": "alice"}, secret="wrong-secret"))
    with pytest.raises(AuthError, match="expired"):
        resolver.resolve_credential(_token({"sub": "alice", "exp": int(time.time()) - 10}))
    with pytest.raises(AuthError):
        resolver.resolve_credential("not-a-jwt")


def test_authenticate_creates_default_user_and_tenant(resolver, tenant_store):
    ctx = resolver.authenticate(_token({"sub": "alice", "tenantId": "acme", "scope": "graph"}))

    assert ctx.user.id == "alice"
    assert ctx.user.role is Role.user
    assert ctx.permissions == DEFAULT_USER_PERMISSIONS
    assert ctx.owner_id == "acme"
    assert ctx.scope == ("graph",)
    assert ctx.tenant.name == "Tenant acme"
    assert ctx.tenant.owner_id == "alice"
    assert ctx.tenant.tool_config["create_entities"].enabled

    stored = tenant_store.get_user("alice")
    assert stored.last_active_at is not None
    assert tenant_store.get_tenant("acme") is not None


def test_authenticate_reuses_existing_records(resolver, tenant_store):
    first = resolver.authenticate(_token({"sub": "alice"}))
    second = resolver.authenticate(_token({"sub": "alice", "tenantId": "elsewhere"}))

    assert first.user.created_at == second.user.created_at
    # The stored user record decides the tenant, not later claims.
    assert second.owner_id == "alice"
    assert tenant_store.get_tenant("elsewhere") is None


def test_inactive_user_or_tenant_is_forbidden(resolver, tenant_store):
    resolver.authenticate(_token({"sub": "alice"}))
    tenant_store.put_user(replace(tenant_store.get_user("alice"), is_active=False))
    with pytest.raises(AuthError) as excinfo:
        resolver.authenticate(_token({"sub": "alice"}))
    assert excinfo.value.status_code == 403

    resolver.authenticate(_token({"sub": "bob"}))
    tenant_store.put_tenant(replace(tenant_store.get_tenant("bob"), is_active=False))
    with pytest.raises(AuthError) as excinfo:
        resolver.authenticate(_token({"sub": "bob"}))
    assert excinfo.value.status_code == 403


def _introspection(handler):
    return IntrospectionCredentialValidator(
        "https://auth.example.com/introspect",
        client_id="graphgate",
        client_secret="s3cret",
        transport=httpx.MockTransport(handler),
    )


def test_introspection_validator_active_token(tenant_store):
    seen = {}

    def handler(request):
        seen["body"] = request.content.decode()
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"active": True, "sub": "carol", "tenantId": "initech"})

    resolver = IdentityResolver(validator=_introspection(handler), store=tenant_store)
    ctx = resolver.authenticate("opaque-token")

    assert "token=opaque-token" in seen["body"]
    assert seen["auth"].startswith("Basic ")
    assert ctx.user.id == "carol"
    assert ctx.owner_id == "initech"


def test_introspection_validator_inactive_or_malformed(tenant_store):
    inactive = IdentityResolver(
        validator=_introspection(lambda request: httpx.Response(200, json={"active": False})),
        store=tenant_store,
    )
    with pytest.raises(AuthError):
        inactive.authenticate("opaque-token")

    malformed = IdentityResolver(
        validator=_introspection(lambda request: httpx.Response(200, content=b"<html>")),
        store=tenant_store,
    )
    with pytest.raises(AuthError):
        malformed.authenticate("opaque-token")


def test_introspection_validator_unreachable(tenant_store):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    resolver = IdentityResolver(validator=_introspection(handler), store=tenant_store)
    with pytest.raises(AuthError) as excinfo:
        resolver.authenticate("opaque-token")
    assert excinfo.value.status_code == 503


def test_activity_refresh_does_not_undo_deactivation(tenant_store, make_context):
    admin = make_context("alice", tenant_id="acme", role=Role.admin)

    class DeactivateMidRequest(type(tenant_store)):
        def ensure_tenant_exists(self, tenant_id, owner_id):
            if owner_id == "bob":
                self.update_user(admin, "bob", role="readonly", is_active=False)
            return super().ensure_tenant_exists(tenant_id, owner_id)

    resolver = IdentityResolver(
        validator=JwtCredentialValidator(SECRET),
        store=DeactivateMidRequest(tenant_store.kv),
    )
    resolver.authenticate(_token({"sub": "bob", "tenantId": "acme"}))

    stored = tenant_store.get_user("bob")
    assert stored.is_active is False
    assert stored.role is Role.readonly
    with pytest.raises(AuthError) as excinfo:
        resolver.authenticate(_token({"sub": "bob", "tenantId": "acme"}))
    assert excinfo.value.status_code == 403
