"""
Role and tool authorization for an authenticated ``UserContext``.
"""

from __future__ import annotations

from typing import Optional

import graphgate.config as config
from graphgate.context import Role, UserContext
from graphgate.errors import PermissionDenied, RateLimitExceeded
from graphgate.services.rate_limiter import SlidingWindowRateLimiter

logger = config.logger


def has_permission(ctx: UserContext, permission: str) -> bool:
    if ctx.user.role is Role.admin:
        return True
    return permission in ctx.permissions


def can_access_tool(ctx: UserContext, tool_name: str) -> bool:
    tool = ctx.tenant.tool_config.get(tool_name)
    if tool is None or not tool.enabled:
        return False
    if ctx.user.role is Role.admin:
        return True
    return ctx.user.role in tool.allowed_roles


def authorize_tool(
    ctx: Optional[UserContext],
    tool_name: str,
    limiter: Optional[SlidingWindowRateLimiter] = None,
) -> None:
    """Raise ``PermissionDenied`` unless ctx may call tool_name right now."""
    if ctx is None:
        raise PermissionDenied("authentication required", tool=tool_name)
    if not can_access_tool(ctx, tool_name):
        logger.info(
            "tool_access_denied",
            extra={"tenant_id": ctx.tenant.id, "user_id": ctx.user.id, "tool": tool_name},
        )
        raise PermissionDenied(f"access to tool '{tool_name}' is denied", tool=tool_name)

    if limiter is None or not config.ENFORCE_TOOL_RATE_LIMITS:
        return
    limits = ctx.tenant.tool_config[tool_name].rate_limits
    decision = limiter.hit(ctx.tenant.id, tool_name, limits)
    if not decision.allowed:
        logger.warning(
            "tool_rate_limited",
            extra={
                "tenant_id": ctx.tenant.id,
                "tool": tool_name,
                "window": decision.window,
                "retry_after_seconds": decision.retry_after_seconds,
            },
        )
        raise RateLimitExceeded(
            f"rate limit exceeded for tool '{tool_name}' ({decision.window})",
            tool=tool_name,
            window=decision.window,
            retry_after_seconds=decision.retry_after_seconds,
        )


def require_admin(ctx: Optional[UserContext]) -> UserContext:
    if ctx is None or ctx.user.role is not Role.admin:
        raise PermissionDenied("admin role required")
    return ctx


__all__ = ["authorize_tool", "can_access_tool", "has_permission", "require_admin"]
