"""
Shared configuration for GraphGate.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("graphgate")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/graphgate.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Credential validation
CREDENTIAL_VALIDATOR = os.environ.get("GRAPHGATE_CREDENTIAL_VALIDATOR", "jwt").strip().lower()
JWT_SECRET = os.environ.get("GRAPHGATE_JWT_SECRET")
JWT_ALGORITHM = os.environ.get("GRAPHGATE_JWT_ALGORITHM", "HS256")
INTROSPECTION_URL = os.environ.get("GRAPHGATE_INTROSPECTION_URL")
INTROSPECTION_CLIENT_ID = os.environ.get("GRAPHGATE_INTROSPECTION_CLIENT_ID")
INTROSPECTION_CLIENT_SECRET = os.environ.get("GRAPHGATE_INTROSPECTION_CLIENT_SECRET")
INTROSPECTION_TIMEOUT_SECONDS = _get_float("GRAPHGATE_INTROSPECTION_TIMEOUT_SECONDS", 10.0)
DEFAULT_TOKEN_TTL_SECONDS = _get_int("GRAPHGATE_DEFAULT_TOKEN_TTL_SECONDS", 3600)

# Request/input limits
MAX_NAME_LENGTH = _get_int("GRAPHGATE_MAX_NAME_LENGTH", 255)
MAX_TYPE_LENGTH = _get_int("GRAPHGATE_MAX_TYPE_LENGTH", 100)
MAX_OBSERVATION_LENGTH = _get_int("GRAPHGATE_MAX_OBSERVATION_LENGTH", 8000)
MAX_QUERY_LENGTH = _get_int("GRAPHGATE_MAX_QUERY_LENGTH", 1000)
MAX_LIST_ITEMS = _get_int("GRAPHGATE_MAX_LIST_ITEMS", 500)
MAX_METADATA_BYTES = _get_int("GRAPHGATE_MAX_METADATA_BYTES", 20000)

# Graph semantics switches (defaults keep loose graph behaviour)
REQUIRE_EXISTING_ENDPOINTS = _get_bool("GRAPHGATE_REQUIRE_EXISTING_ENDPOINTS", False)

# Tool rate limits
ENFORCE_TOOL_RATE_LIMITS = _get_bool("GRAPHGATE_ENFORCE_TOOL_RATE_LIMITS", True)
RATE_LIMIT_MAX_ENTRIES = _get_int("GRAPHGATE_RATE_LIMIT_MAX_ENTRIES", 10000)

# Audit log retention (30 days)
AUDIT_TTL_SECONDS = _get_int("GRAPHGATE_AUDIT_TTL_SECONDS", 30 * 24 * 60 * 60)
AUDIT_LIST_LIMIT_MAX = _get_int("GRAPHGATE_AUDIT_LIST_LIMIT_MAX", 500)

# HTTP surface
REQUIRE_MCP_AUTH = _get_bool("REQUIRE_MCP_AUTH", True)
CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ALLOWED_ORIGINS", "").split(",")
    if origin.strip()
]
TRUSTED_HOSTS = [
    host.strip() for host in os.environ.get("TRUSTED_HOSTS", "").split(",") if host.strip()
]


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        url_lower = DATABASE_URL.lower()
        is_sqlite_url = url_lower.startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    if CREDENTIAL_VALIDATOR not in {"jwt", "introspection"}:
        errors.append("GRAPHGATE_CREDENTIAL_VALIDATOR must be 'jwt' or 'introspection'")
    if CREDENTIAL_VALIDATOR == "jwt" and not JWT_SECRET:
        errors.append("GRAPHGATE_JWT_SECRET is required when GRAPHGATE_CREDENTIAL_VALIDATOR=jwt")
    if CREDENTIAL_VALIDATOR == "introspection" and not INTROSPECTION_URL:
        errors.append(
            "GRAPHGATE_INTROSPECTION_URL is required when GRAPHGATE_CREDENTIAL_VALIDATOR=introspection"
        )

    if not ENFORCE_TOOL_RATE_LIMITS:
        logger.warning("Tool rate limits are configuration-only (GRAPHGATE_ENFORCE_TOOL_RATE_LIMITS=false)")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
