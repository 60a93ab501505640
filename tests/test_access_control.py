import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest

import graphgate.config as config
from graphgate.context import RateLimits, Role, Tenant, ToolPermission, User, UserContext
from graphgate.errors import PermissionDenied, RateLimitExceeded
from graphgate.services.access_control import (
    authorize_tool,
    can_access_tool,
    has_permission,
    require_admin,
)
from graphgate.services.rate_limiter import SlidingWindowRateLimiter
from graphgate.services.tenant_config import default_tool_config


def _ctx(role=Role.user, tool_config=None, permissions=frozenset({"read_data"}), tenant_id="acme"):
    user = User(id=f"{role.value}-1", email="u@example.com", tenant_id=tenant_id, role=role, permissions=permissions)
    tenant = Tenant(
        id=tenant_id,
        name="Acme",
        owner_id=user.id,
        tool_config=default_tool_config() if tool_config is None else tool_config,
    )
    return UserContext.compose(user, tenant, "session-1")


def test_has_permission():
    assert has_permission(_ctx(), "read_data")
    assert not has_permission(_ctx(), "write_data")
    assert has_permission(_ctx(Role.admin, permissions=frozenset()), "anything")


def test_readonly_denied_for_user_tools():
    tool_config = {"create_entities": ToolPermission(enabled=True, allowed_roles=frozenset({Role.admin, Role.user}))}
    assert not can_access_tool(_ctx(Role.readonly, tool_config), "create_entities")
    assert can_access_tool(_ctx(Role.user, tool_config), "create_entities")


def test_readonly_allowed_read_tools_by_default():
    ctx = _ctx(Role.readonly)
    assert can_access_tool(ctx, "read_graph")
    assert can_access_tool(ctx, "search_nodes")
    assert not can_access_tool(ctx, "delete_entities")


def test_admin_passes_regardless_of_roles():
    tool_config = {"read_graph": ToolPermission(enabled=True, allowed_roles=frozenset())}
    assert can_access_tool(_ctx(Role.admin, tool_config), "read_graph")


def test_absent_or_disabled_tool_denied_for_everyone():
    tool_config = {"read_graph": ToolPermission(enabled=False)}
    for role in Role:
        ctx = _ctx(role, tool_config)
        assert not can_access_tool(ctx, "read_graph")
        assert not can_access_tool(ctx, "not_configured")


def test_authorize_tool_raises_permission_denied():
    with pytest.raises(PermissionDenied) as excinfo:
        authorize_tool(_ctx(Role.readonly), "create_entities")
    assert excinfo.value.tool == "create_entities"

    with pytest.raises(PermissionDenied):
        authorize_tool(None, "read_graph")


def test_authorize_tool_applies_rate_limits():
    limits = RateLimits(per_minute=2, per_hour=100, per_day=100)
    tool_config = {"read_graph": ToolPermission(enabled=True, rate_limits=limits)}
    limiter = SlidingWindowRateLimiter(max_entries=10, clock=lambda: 1000.0)
    ctx = _ctx(Role.user, tool_config)

    authorize_tool(ctx, "read_graph", limiter=limiter)
    authorize_tool(ctx, "read_graph", limiter=limiter)
    with pytest.raises(RateLimitExceeded) as excinfo:
        authorize_tool(ctx, "read_graph", limiter=limiter)
    assert excinfo.value.window == "minute"
    assert excinfo.value.retry_after_seconds == 60

    other_tenant = _ctx(Role.user, tool_config, tenant_id="globex")
    authorize_tool(other_tenant, "read_graph", limiter=limiter)


def test_rate_limits_can_be_switched_off(monkeypatch):
    monkeypatch.setattr(config, "ENFORCE_TOOL_RATE_LIMITS", False)
    limits = RateLimits(per_minute=0, per_hour=0, per_day=0)
    tool_config = {"read_graph": ToolPermission(enabled=True, rate_limits=limits)}
    limiter = SlidingWindowRateLimiter(max_entries=10)
    authorize_tool(_ctx(Role.user, tool_config), "read_graph", limiter=limiter)


def test_require_admin():
    assert require_admin(_ctx(Role.admin)).user.role is Role.admin
    with pytest.raises(PermissionDenied):
        require_admin(_ctx(Role.user))
    with pytest.raises(PermissionDenied):
        require_admin(None)
