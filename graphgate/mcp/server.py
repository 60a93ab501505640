"""
MCP server wiring and tool registration.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Optional

from fastmcp import FastMCP

import graphgate.config as config
from graphgate import audit
from graphgate.context import UserContext, get_current_user_context
from graphgate.errors import PermissionDenied, StorageError
from graphgate.kv import SqlKeyValueStore
from graphgate.services import graph_store
from graphgate.services.access_control import authorize_tool
from graphgate.services.rate_limiter import get_rate_limiter
from graphgate.services.shared import error_payload, ok
from graphgate.mcp.auth_middleware import MCPAuthMiddleware

READ_ONLY_TOOL_ANNOTATIONS = {"readOnlyHint": True}
DESTRUCTIVE_TOOL_ANNOTATIONS = {"destructiveHint": True}

mcp = FastMCP("GraphGate")

_REGISTERED_TOOLS: list[tuple[Callable[..., dict], tuple[Any, ...], dict[str, Any]]] = []
_TOOL_REGISTRY_LOCK = threading.Lock()
_LAST_TOOL_COUNT: Optional[int] = None


def mcp_tool(*args, **kwargs):
    """Register a tool with FastMCP and keep a local registry for inventory checks."""
    def decorator(fn: Callable[..., dict]):
        _REGISTERED_TOOLS.append((fn, args, kwargs))
        mcp.tool(*args, **kwargs)(fn)
        return fn
    return decorator


def registered_tool_names() -> list[str]:
    return sorted(fn.__name__ for fn, _, _ in _REGISTERED_TOOLS)


def _record_tool_inventory_count(tool_count: int) -> None:
    global _LAST_TOOL_COUNT
    with _TOOL_REGISTRY_LOCK:
        if tool_count == 0 and (_LAST_TOOL_COUNT is None or _LAST_TOOL_COUNT > 0):
            config.logger.warning("tool_inventory_empty", extra={"tool_count": tool_count})
        elif tool_count > 0 and _LAST_TOOL_COUNT == 0:
            config.logger.info("tool_inventory_restored", extra={"tool_count": tool_count})
        _LAST_TOOL_COUNT = tool_count


async def tool_inventory_status() -> dict:
    """Return the tool names FastMCP currently exposes."""
    tools = await mcp.get_tools()
    tool_names = sorted(tools.keys())
    _record_tool_inventory_count(len(tool_names))
    missing = sorted(set(registered_tool_names()) - set(tool_names))
    return {
        "tool_count": len(tool_names),
        "tools": tool_names,
        "missing": missing,
    }


def _audit_tool_call(ctx: UserContext, tool_name: str, result: dict, item_count: int) -> None:
    metadata = {"success": bool(result.get("success")), "item_count": item_count}
    if not result.get("success"):
        metadata["error_type"] = (result.get("error") or {}).get("type")
    try:
        audit.log_tool_usage(SqlKeyValueStore(), ctx, tool_name, metadata)
    except StorageError as exc:
        config.logger.error(
            "tool_audit_write_failed",
            extra={"tool": tool_name, "tenant_id": ctx.tenant.id, "detail": str(exc)},
        )


def _invoke(tool_name: str, operation: Callable[..., dict], item_count: int = 0, **kwargs) -> dict:
    ctx = get_current_user_context()
    try:
        authorize_tool(ctx, tool_name, limiter=get_rate_limiter())
    except PermissionDenied as exc:
        return error_payload(tool_name, exc)
    result = operation(context=ctx, **kwargs)
    _audit_tool_call(ctx, tool_name, result, item_count)
    return result


def _count(values: Any) -> int:
    return len(values) if isinstance(values, (list, tuple)) else 0


@mcp_tool()
def create_entities(entities: list[dict]) -> dict:
    """Create entities (name, entityType, observations) in the caller's graph."""
    return _invoke("create_entities", graph_store.create_entities, _count(entities), entities=entities)


@mcp_tool()
def create_relations(relations: list[dict]) -> dict:
    """Create directed relations (from, to, relationType) between entity names."""
    return _invoke("create_relations", graph_store.create_relations, _count(relations), relations=relations)


@mcp_tool()
def add_observations(entity_name: str, observations: list[str]) -> dict:
    return _invoke(
        "add_observations",
        graph_store.add_observations,
        _count(observations),
        entity_name=entity_name,
        observations=observations,
    )


@mcp_tool(annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def delete_entities(names: list[str]) -> dict:
    """Delete entity rows only; their observations and relations are kept."""
    return _invoke("delete_entities", graph_store.delete_entities, _count(names), names=names)


@mcp_tool(annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def delete_entities_cascade(names: list[str]) -> dict:
    """Delete entities together with their observations and every touching relation."""
    return _invoke("delete_entities_cascade", graph_store.delete_entities_cascade, _count(names), names=names)


@mcp_tool(annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def delete_relations(relations: list[dict]) -> dict:
    return _invoke("delete_relations", graph_store.delete_relations, _count(relations), relations=relations)


@mcp_tool(annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def delete_observations(entity_name: str, observations: list[str]) -> dict:
    return _invoke(
        "delete_observations",
        graph_store.delete_observations,
        _count(observations),
        entity_name=entity_name,
        observations=observations,
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def read_graph() -> dict:
    """Return every entity (with observations) and every relation in the caller's graph."""
    return _invoke("read_graph", graph_store.read_graph)


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def search_nodes(query: str) -> dict:
    """Case-insensitive substring search over entity names, types, and observations."""
    return _invoke("search_nodes", graph_store.search_nodes, query=query)


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def open_nodes(names: list[str]) -> dict:
    return _invoke("open_nodes", graph_store.open_nodes, _count(names), names=names)


def _user_info(context: Optional[UserContext] = None) -> dict:
    user = context.user
    tenant = context.tenant
    return ok(
        {
            "user": {
                "id": user.id,
                "email": user.email,
                "role": user.role.value,
                "permissions": sorted(context.permissions),
                "isActive": user.is_active,
            },
            "tenant": {"id": tenant.id, "name": tenant.name},
            "session_id": context.session_id,
            "scope": list(context.scope),
        }
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def get_user_info() -> dict:
    """Describe the authenticated user, tenant, and session."""
    return _invoke("get_user_info", _user_info)


mcp_stream_app = MCPAuthMiddleware(mcp.http_app(
    path="/",
    transport="streamable-http",
    stateless_http=True,
    json_response=True,
))


class MCPRouteNormalizerASGI:
    """Pure ASGI middleware - no response buffering, SSE-safe."""
    def __init__(self, wrapped_app):
        self.wrapped_app = wrapped_app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope.get("path") == "/mcp":
            scope = dict(scope)
            scope["path"] = "/mcp/"
            scope["raw_path"] = b"/mcp/"
        await self.wrapped_app(scope, receive, send)
