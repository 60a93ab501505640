"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import graphgate.config as config
from graphgate import __version__


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "GraphGate",
        "version": __version__,
        "description": "Multi-tenant knowledge graph over MCP",
        "credential_validator": config.CREDENTIAL_VALIDATOR,
        "endpoints": {
            "health": "/health",
            "health_tools": "/health/tools",
            "mcp": "/mcp",
            "admin": "/api/admin",
        },
    }
