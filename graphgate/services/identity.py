"""
Credential resolution and user/tenant materialization.

A ``CredentialValidator`` turns a bearer token into raw claims (or rejects
it); ``IdentityResolver`` normalizes those claims into an
``AuthTokenPayload`` and then get-or-creates the matching user and tenant
records to build a request-scoped ``UserContext``.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Optional, Protocol

import httpx
import jwt

import graphgate.config as config
from graphgate.context import AuthTokenPayload, UserContext
from graphgate.errors import AuthError
from graphgate.services.tenant_config import TenantConfigStore

logger = config.logger


class CredentialValidator(Protocol):
    def validate(self, token: str) -> Optional[dict]:
        """Return the token's claims, or None when the token is rejected."""
        ...


class JwtCredentialValidator:
    """HS256 (or configured algorithm) shared-secret JWT validation via PyJWT."""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        if not secret:
            raise ValueError("JWT secret is required")
        self.secret = secret
        self.algorithm = algorithm

    def validate(self, token: str) -> Optional[dict]:
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise AuthError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            logger.info("credential_rejected", extra={"validator": "jwt", "error_type": type(exc).__name__})
            return None


class IntrospectionCredentialValidator:
    """RFC 7662 token introspection against an external authorization server."""

    def __init__(
        self,
        url: str,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url
        self.auth = (client_id, client_secret or "") if client_id else None
        self.timeout = httpx.Timeout(timeout_seconds)
        self.transport = transport

    def validate(self, token: str) -> Optional[dict]:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    self.url,
                    data={"token": token, "token_type_hint": "access_token"},
                    auth=self.auth,
                    headers={"Accept": "application/json"},
                )
        except httpx.RequestError as exc:
            logger.error(
                "introspection_unavailable",
                extra={"url": self.url, "error_type": type(exc).__name__},
            )
            raise AuthError("credential validator unavailable", status_code=503) from exc

        if response.status_code != 200:
            logger.warning("introspection_rejected", extra={"status_code": response.status_code})
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise AuthError("malformed introspection response") from exc
        if not isinstance(body, dict):
            raise AuthError("malformed introspection response")
        if not body.get("active"):
            return None
        return body


def build_credential_validator() -> CredentialValidator:
    if config.CREDENTIAL_VALIDATOR == "introspection":
        return IntrospectionCredentialValidator(
            config.INTROSPECTION_URL,
            client_id=config.INTROSPECTION_CLIENT_ID,
            client_secret=config.INTROSPECTION_CLIENT_SECRET,
            timeout_seconds=config.INTROSPECTION_TIMEOUT_SECONDS,
        )
    return JwtCredentialValidator(config.JWT_SECRET, config.JWT_ALGORITHM)


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, credentials = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    credentials = credentials.strip()
    return credentials or None


def _optional_str(claims: dict, *names: str) -> Optional[str]:
    for name in names:
        value = claims.get(name)
        if value is None or value == "":
            continue
        if not isinstance(value, (str, int)) or isinstance(value, bool):
            raise AuthError(f"malformed credential claim: {name}")
        return str(value)
    return None


def _optional_int(claims: dict, name: str) -> Optional[int]:
    value = claims.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise AuthError(f"malformed credential claim: {name}")
    return int(value)


def payload_from_claims(claims: Any, now: Optional[int] = None) -> AuthTokenPayload:
    if not isinstance(claims, dict):
        raise AuthError("malformed credential response")
    now = int(time.time()) if now is None else now

    user_id = _optional_str(claims, "userId", "sub")
    if not user_id:
        raise AuthError("credential has no subject")
    scope = claims.get("scope") or ""
    if isinstance(scope, (list, tuple)):
        scopes = tuple(str(item) for item in scope)
    elif isinstance(scope, str):
        scopes = tuple(scope.split())
    else:
        raise AuthError("malformed credential claim: scope")

    exp = _optional_int(claims, "exp")
    iat = _optional_int(claims, "iat")
    payload = AuthTokenPayload(
        user_id=user_id,
        tenant_id=_optional_str(claims, "tenantId", "tenant_id") or user_id,
        session_id=_optional_str(claims, "sessionId", "sid") or str(uuid.uuid4()),
        scope=scopes,
        exp=exp if exp is not None else now + config.DEFAULT_TOKEN_TTL_SECONDS,
        iat=iat if iat is not None else now,
        email=_optional_str(claims, "email"),
    )
    if payload.exp <= now:
        raise AuthError("Token has expired")
    return payload


class IdentityResolver:
    def __init__(
        self,
        validator: Optional[CredentialValidator] = None,
        store: Optional[TenantConfigStore] = None,
    ):
        self.validator = validator or build_credential_validator()
        self.store = store or TenantConfigStore()

    def resolve_credential(self, token: str) -> AuthTokenPayload:
        if not token:
            raise AuthError("Bearer token required")
        claims = self.validator.validate(token)
        if claims is None:
            raise AuthError("Invalid or expired token")
        return payload_from_claims(claims)

    def materialize_user_context(self, payload: AuthTokenPayload) -> UserContext:
        user = self.store.ensure_user_exists(payload.user_id, payload.tenant_id, email=payload.email)
        if not user.is_active:
            raise AuthError("User account inactive", status_code=403)
        tenant = self.store.ensure_tenant_exists(user.tenant_id, owner_id=user.id)
        if not tenant.is_active:
            raise AuthError("Tenant inactive", status_code=403)
        user = self.store.touch_user(user)
        return UserContext.compose(user, tenant, payload.session_id, payload.scope)

    def authenticate(self, token: str) -> UserContext:
        return self.materialize_user_context(self.resolve_credential(token))


_default_resolver: Optional[IdentityResolver] = None


def get_identity_resolver() -> IdentityResolver:
    global _default_resolver
    if _default_resolver is None:
        _default_resolver = IdentityResolver()
    return _default_resolver


def set_identity_resolver(resolver: Optional[IdentityResolver]) -> None:
    global _default_resolver
    _default_resolver = resolver


def authenticate(token: str) -> UserContext:
    return get_identity_resolver().authenticate(token)


__all__ = [
    "CredentialValidator",
    "IdentityResolver",
    "IntrospectionCredentialValidator",
    "JwtCredentialValidator",
    "authenticate",
    "build_credential_validator",
    "extract_bearer_token",
    "get_identity_resolver",
    "payload_from_claims",
    "set_identity_resolver",
]
