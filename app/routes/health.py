"""
Health and dependency endpoints.
"""

from __future__ import annotations

import os

from fastapi import APIRouter, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

import graphgate.config as config
from graphgate import __version__
from graphgate.db import DB, _get_schema_revisions
from graphgate.mcp import tool_inventory_status


router = APIRouter()


def _check_db_health() -> dict:
    if DB.engine is None:
        return {"ok": False, "error": "db_not_initialized"}

    try:
        with DB.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        current_rev, head_rev = _get_schema_revisions(DB.engine)
    except SQLAlchemyError as exc:
        return {"ok": False, "error": str(exc)}

    schema_ok = head_rev is None or current_rev == head_rev
    return {
        "ok": schema_ok,
        "backend": config.DB_BACKEND,
        "schema_revision": current_rev,
        "schema_expected": head_rev,
        "schema_up_to_date": schema_ok,
    }


@router.get("/health")
async def health():
    """Health check endpoint."""
    db_health = _check_db_health()
    if not db_health.get("ok"):
        raise HTTPException(status_code=503, detail={"database": db_health})

    return {
        "status": "healthy",
        "service": "GraphGate",
        "version": __version__,
        "instance_id": os.environ.get("GRAPHGATE_INSTANCE_ID", "graphgate-1"),
        "database": db_health,
    }


@router.get("/health/tools")
async def health_tools():
    """Tool inventory health check."""
    tool_inventory = await tool_inventory_status()
    if tool_inventory.get("tool_count", 0) == 0:
        raise HTTPException(status_code=503, detail={"tool_inventory": tool_inventory})

    return {
        "status": "healthy",
        "service": "GraphGate",
        "tool_inventory": tool_inventory,
    }
