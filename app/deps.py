"""
Dependency helpers for the standalone FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException

from graphgate.context import UserContext
from graphgate.errors import AuthError, PermissionDenied
from graphgate.kv import KeyValueStore, SqlKeyValueStore
from graphgate.services.access_control import require_admin
from graphgate.services.identity import IdentityResolver, extract_bearer_token, get_identity_resolver
from graphgate.services.tenant_config import TenantConfigStore


def get_kv_store() -> KeyValueStore:
    return SqlKeyValueStore()


def get_tenant_store(kv: KeyValueStore = Depends(get_kv_store)) -> TenantConfigStore:
    return TenantConfigStore(kv)


def get_resolver() -> IdentityResolver:
    return get_identity_resolver()


def get_user_context(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    resolver: IdentityResolver = Depends(get_resolver),
) -> UserContext:
    token = extract_bearer_token(authorization)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail="Bearer token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return resolver.authenticate(token)
    except AuthError as exc:
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        raise HTTPException(status_code=exc.status_code, detail=str(exc), headers=headers)


def get_admin_context(ctx: UserContext = Depends(get_user_context)) -> UserContext:
    try:
        return require_admin(ctx)
    except PermissionDenied as exc:
        raise HTTPException(status_code=403, detail=str(exc))
