"""
Tenant administration endpoints (admin role only).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

import graphgate.config as config
from graphgate import audit
from graphgate.context import UserContext
from graphgate.errors import GraphGateError, NotFoundError, StorageError, ValidationIssue
from graphgate.kv import KeyValueStore
from graphgate.services.tenant_config import TenantConfigStore
from app.deps import get_admin_context, get_kv_store, get_tenant_store


router = APIRouter(prefix="/api/admin", tags=["admin"])


class TenantUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    settings: Optional[dict] = None
    tool_config: Optional[dict] = Field(None, alias="toolConfig")


class ToolUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: Optional[bool] = None
    allowed_roles: Optional[list[str]] = Field(None, alias="allowedRoles")
    rate_limits: Optional[dict] = Field(None, alias="rateLimits")
    custom_config: Optional[dict] = Field(None, alias="customConfig")


class UserUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Optional[str] = None
    permissions: Optional[list[str]] = None
    is_active: Optional[bool] = Field(None, alias="isActive")


def _http_error(exc: GraphGateError) -> HTTPException:
    if isinstance(exc, ValidationIssue):
        return HTTPException(status_code=400, detail={"error": str(exc), "field": exc.field})
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail={"error": str(exc)})
    if isinstance(exc, StorageError):
        config.logger.error("admin_storage_error", extra={"detail": str(exc)})
        return HTTPException(status_code=503, detail={"error": "storage unavailable"})
    return HTTPException(status_code=400, detail={"error": str(exc)})


def _audit_admin_action(kv: KeyValueStore, ctx: UserContext, event_type: str, target: str) -> None:
    try:
        audit.log_tool_usage(kv, ctx, target, {"admin_id": ctx.user.id}, event_type=event_type)
    except StorageError as exc:
        config.logger.error("admin_audit_write_failed", extra={"event_type": event_type, "detail": str(exc)})


@router.get("/tenant")
def get_tenant(
    ctx: UserContext = Depends(get_admin_context),
    store: TenantConfigStore = Depends(get_tenant_store),
):
    """Current tenant record including tool configuration."""
    tenant = store.get_tenant(ctx.tenant.id)
    if tenant is None:
        raise HTTPException(status_code=404, detail={"error": "tenant not found"})
    return {"tenant": tenant.to_record()}


@router.put("/tenant")
def update_tenant(
    body: TenantUpdate,
    ctx: UserContext = Depends(get_admin_context),
    store: TenantConfigStore = Depends(get_tenant_store),
    kv: KeyValueStore = Depends(get_kv_store),
):
    try:
        tenant = store.update_tenant(
            ctx.tenant.id,
            name=body.name,
            settings=body.settings,
            tool_config=body.tool_config,
        )
    except GraphGateError as exc:
        raise _http_error(exc)
    _audit_admin_action(kv, ctx, audit.EVENT_TENANT_UPDATED, "tenant")
    return {"tenant": tenant.to_record()}


@router.put("/tools/{tool_name}")
def configure_tool(
    tool_name: str,
    body: ToolUpdate,
    ctx: UserContext = Depends(get_admin_context),
    store: TenantConfigStore = Depends(get_tenant_store),
    kv: KeyValueStore = Depends(get_kv_store),
):
    """Replace one tool's configuration; omitted fields take their defaults."""
    try:
        tenant = store.configure_tool(
            ctx.tenant.id,
            tool_name,
            enabled=body.enabled,
            allowed_roles=body.allowed_roles,
            rate_limits=body.rate_limits,
            custom_config=body.custom_config,
        )
    except GraphGateError as exc:
        raise _http_error(exc)
    _audit_admin_action(kv, ctx, audit.EVENT_TOOL_CONFIGURED, tool_name)
    return {"tool": tool_name, "config": tenant.tool_config[tool_name].to_record()}


@router.delete("/tools/{tool_name}")
def disable_tool(
    tool_name: str,
    ctx: UserContext = Depends(get_admin_context),
    store: TenantConfigStore = Depends(get_tenant_store),
    kv: KeyValueStore = Depends(get_kv_store),
):
    try:
        tenant = store.disable_tool(ctx.tenant.id, tool_name)
    except GraphGateError as exc:
        raise _http_error(exc)
    if tool_name not in tenant.tool_config:
        raise HTTPException(status_code=404, detail={"error": f"tool not configured: {tool_name}"})
    _audit_admin_action(kv, ctx, audit.EVENT_TOOL_DISABLED, tool_name)
    return {"tool": tool_name, "config": tenant.tool_config[tool_name].to_record()}


@router.get("/users")
def list_users(
    ctx: UserContext = Depends(get_admin_context),
    store: TenantConfigStore = Depends(get_tenant_store),
):
    """Users of the caller's tenant."""
    try:
        users = store.list_users(ctx.tenant.id)
    except GraphGateError as exc:
        raise _http_error(exc)
    return {"count": len(users), "users": [user.to_record() for user in users]}


@router.put("/users/{user_id}")
def update_user(
    user_id: str,
    body: UserUpdate,
    ctx: UserContext = Depends(get_admin_context),
    store: TenantConfigStore = Depends(get_tenant_store),
    kv: KeyValueStore = Depends(get_kv_store),
):
    try:
        user = store.update_user(
            ctx,
            user_id,
            role=body.role,
            permissions=body.permissions,
            is_active=body.is_active,
        )
    except GraphGateError as exc:
        raise _http_error(exc)
    _audit_admin_action(kv, ctx, audit.EVENT_USER_UPDATED, "user")
    return {"user": user.to_record()}


@router.get("/audit-logs")
def audit_logs(
    limit: int = Query(100, ge=1),
    ctx: UserContext = Depends(get_admin_context),
    kv: KeyValueStore = Depends(get_kv_store),
):
    try:
        return audit.list_audit_events(kv, ctx.tenant.id, limit=limit)
    except GraphGateError as exc:
        raise _http_error(exc)
