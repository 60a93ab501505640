import os
from concurrent.futures import ThreadPoolExecutor

os.environ.setdefault("DB_BACKEND", "sqlite")

import jwt

from graphgate.services import graph_store
from graphgate.services.identity import IdentityResolver, JwtCredentialValidator


def test_concurrent_tenant_bootstrap_converges(tenant_store, kv):
    def bootstrap(owner):
        return tenant_store.ensure_tenant_exists("acme", owner_id=owner)

    with ThreadPoolExecutor(max_workers=4) as executor:
        tenants = list(executor.map(bootstrap, ["alice", "bob", "carol", "dave"]))

    assert len({tenant.created_at for tenant in tenants}) == 1
    assert len({tenant.owner_id for tenant in tenants}) == 1
    assert len(kv.scan("tenant:acme")) == 1


def test_concurrent_create_same_name_single_winner(server_db, make_context):
    ctx = make_context("alice")

    def create(entity_type):
        return graph_store.create_entities([{"name": "Racer", "entityType": entity_type}], context=ctx)

    with ThreadPoolExecutor(max_workers=2) as executor:
        results = list(executor.map(create, ["First", "Second"]))

    winners = [result for result in results if result["success"]]
    losers = [result for result in results if not result["success"]]
    assert len(winners) == 1
    assert [loser["error"]["type"] for loser in losers] == ["conflict"]

    entities = graph_store.read_graph(context=ctx)["data"]["entities"]
    assert len(entities) == 1
    assert entities[0]["entityType"] == winners[0]["data"]["entities"][0]["entityType"]


def test_concurrent_first_authentication_converges(tenant_store, kv):
    resolver = IdentityResolver(validator=JwtCredentialValidator("test-secret"), store=tenant_store)
    token = jwt.encode({"sub": "newcomer", "tenantId": "fresh"}, "test-secret", algorithm="HS256")

    def login(_):
        return resolver.authenticate(token)

    with ThreadPoolExecutor(max_workers=4) as executor:
        contexts = list(executor.map(login, range(8)))

    assert len({ctx.user.created_at for ctx in contexts}) == 1
    assert len({ctx.tenant.created_at for ctx in contexts}) == 1
    assert {ctx.owner_id for ctx in contexts} == {"fresh"}
    assert [key for key, _ in kv.scan("user:")] == ["user:newcomer"]
    assert [key for key, _ in kv.scan("tenant:")] == ["tenant:fresh"]
