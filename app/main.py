"""
Standalone FastAPI app wiring for GraphGate.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from graphgate.db import DB, init_db
from graphgate.mcp import mcp_stream_app, MCPRouteNormalizerASGI
from app.middleware import configure_middleware
from app.routes.admin import router as admin_router
from app.routes.health import router as health_router
from app.routes.root import router as root_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    init_db()
    try:
        async with mcp_stream_app.lifespan(mcp_stream_app):
            yield
    finally:
        if DB.engine:
            DB.engine.dispose()


app = FastAPI(title="GraphGate", redirect_slashes=False, lifespan=lifespan)
configure_middleware(app)

# Health and root endpoints
app.include_router(health_router)
app.include_router(root_router)

# Tenant administration
app.include_router(admin_router)

# MCP streamable HTTP endpoint (bearer auth handled inside mcp_stream_app)
app.mount("/mcp/", mcp_stream_app)


# =============================================================================
# ASGI Application (module-level for production deployment)
# =============================================================================

asgi_app = MCPRouteNormalizerASGI(app)
