import json
import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import jwt
from fastapi.testclient import TestClient

import app.main as app_main
from graphgate.services import graph_store
from graphgate.services.identity import IdentityResolver, JwtCredentialValidator, set_identity_resolver

SECRET = "test-secret"


def _call_tool(client, token, name, arguments=None, request_id=1):
    resp = client.post(
        "/mcp/",
        json={
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments or {}},
        },
        headers={
            "Authorization": f"Bearer {token}",
            "Accept": "application/json, text/event-stream",
        },
    )
    assert resp.status_code == 200, resp.text
    result = resp.json()["result"]
    assert result["isError"] is False
    return json.loads(result["content"][0]["text"])


# The streamable HTTP session manager starts once per process, so every
# transport-level check lives in this single lifespan.
def test_tools_over_http_use_token_tenant(server_db, make_context, tenant_store, monkeypatch):
    acme = make_context("alice", tenant_id="acme")
    graph_store.create_entities(
        [{"name": "Acme Secret", "entityType": "Plan", "observations": ["launch in May"]}],
        context=acme,
    )
    make_context("gina", tenant_id="globex")

    set_identity_resolver(IdentityResolver(validator=JwtCredentialValidator(SECRET), store=tenant_store))
    monkeypatch.setattr(app_main, "init_db", lambda: None)
    alice_token = jwt.encode({"sub": "alice", "tenantId": "acme"}, SECRET, algorithm="HS256")
    gina_token = jwt.encode({"sub": "gina", "tenantId": "globex"}, SECRET, algorithm="HS256")

    with TestClient(app_main.asgi_app) as client:
        unauthenticated = client.post(
            "/mcp/",
            json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"},
            headers={"Accept": "application/json, text/event-stream"},
        )
        assert unauthenticated.status_code == 401

        alice_graph = _call_tool(client, alice_token, "read_graph")
        assert alice_graph["success"] is True
        assert [entity["name"] for entity in alice_graph["data"]["entities"]] == ["Acme Secret"]

        gina_graph = _call_tool(client, gina_token, "read_graph", request_id=2)
        assert gina_graph["data"] == {"entities": [], "relations": []}

        gina_search = _call_tool(client, gina_token, "search_nodes", {"query": "secret"}, request_id=3)
        assert gina_search["data"]["nameMatches"] == []
