"""
MCP authentication middleware for multi-tenant isolation.

Resolves the bearer token on each MCP request, builds the caller's
``UserContext`` and sets it in a contextvar (async-safe) for the duration of
the request.
"""

from __future__ import annotations

import json
from typing import Callable, Optional

import graphgate.config as config
from graphgate.context import reset_current_user_context, set_current_user_context
from graphgate.errors import AuthError, GraphGateError
from graphgate.services.identity import extract_bearer_token, get_identity_resolver


class MCPAuthMiddleware:
    """
    ASGI middleware that authenticates bearer tokens and sets the user context.

    Wraps MCP endpoints to provide per-request authentication and tenant isolation.
    """

    def __init__(self, app, resolver_factory: Optional[Callable] = None, require_auth: Optional[bool] = None):
        self.app = app
        self.resolver_factory = resolver_factory or get_identity_resolver
        self.require_auth = config.REQUIRE_MCP_AUTH if require_auth is None else require_auth

    def __getattr__(self, name):
        return getattr(self.app, name)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # Extract headers (ASGI headers are bytes tuples)
        headers = {}
        for header_name, header_value in scope.get("headers", []):
            headers[header_name.decode("latin1").lower()] = header_value.decode("latin1")

        token = extract_bearer_token(headers.get("authorization"))
        if token is None:
            if self.require_auth:
                await self._send_error(send, 401, "Bearer token required")
                return
            await self.app(scope, receive, send)
            return

        try:
            user_ctx = self.resolver_factory().authenticate(token)
        except AuthError as exc:
            config.logger.info(
                "mcp_auth_rejected",
                extra={"status_code": exc.status_code, "detail": str(exc)},
            )
            await self._send_error(send, exc.status_code, str(exc))
            return
        except GraphGateError as exc:
            config.logger.error(
                "mcp_auth_middleware_error",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            await self._send_error(send, 500, "Internal server error")
            return

        context_token = set_current_user_context(user_ctx)
        try:
            await self.app(scope, receive, send)
        finally:
            reset_current_user_context(context_token)

    async def _send_error(self, send, status_code: int, detail: str):
        """Send JSON error response."""
        body = json.dumps({"error": detail}).encode("utf-8")
        headers = [
            [b"content-type", b"application/json"],
            [b"content-length", str(len(body)).encode("latin1")],
        ]
        if status_code == 401:
            headers.append([b"www-authenticate", b"Bearer"])

        await send({
            "type": "http.response.start",
            "status": status_code,
            "headers": headers,
        })

        await send({
            "type": "http.response.body",
            "body": body,
        })
