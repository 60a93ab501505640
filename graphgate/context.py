"""
Identity, tenant, and request-scoped context objects.

Users and tenants are stored as JSON blobs in the key/value store; the
``to_record``/``from_record`` pairs define that on-disk shape (camelCase keys).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Any, Optional, Sequence
import contextvars

from graphgate.errors import ValidationIssue


class Role(str, PyEnum):
    admin = "admin"
    user = "user"
    readonly = "readonly"

    @classmethod
    def parse(cls, value: Any, field: str = "role") -> "Role":
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            allowed = ", ".join(role.value for role in cls)
            raise ValidationIssue(
                f"{field} must be one of: {allowed}",
                field=field,
                error_type="invalid_value",
            ) from exc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class RateLimits:
    per_minute: int = 60
    per_hour: int = 1000
    per_day: int = 10000

    def to_record(self) -> dict:
        return {
            "requestsPerMinute": self.per_minute,
            "requestsPerHour": self.per_hour,
            "requestsPerDay": self.per_day,
        }

    @staticmethod
    def from_record(record: Optional[dict]) -> "RateLimits":
        if not record:
            return RateLimits()
        if not isinstance(record, dict):
            raise ValidationIssue("rateLimits must be an object", field="rateLimits", error_type="invalid_type")
        values = {}
        for key, attr in (
            ("requestsPerMinute", "per_minute"),
            ("requestsPerHour", "per_hour"),
            ("requestsPerDay", "per_day"),
        ):
            if key not in record:
                continue
            value = record[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationIssue(
                    f"rateLimits.{key} must be a non-negative integer",
                    field=f"rateLimits.{key}",
                    error_type="invalid_value",
                )
            values[attr] = value
        return RateLimits(**values)


@dataclass(frozen=True)
class ToolPermission:
    enabled: bool = True
    allowed_roles: frozenset[Role] = frozenset({Role.admin, Role.user})
    rate_limits: RateLimits = field(default_factory=RateLimits)
    custom_config: dict = field(default_factory=dict)

    def to_record(self) -> dict:
        return {
            "enabled": self.enabled,
            "allowedRoles": sorted(role.value for role in self.allowed_roles),
            "rateLimits": self.rate_limits.to_record(),
            "customConfig": dict(self.custom_config),
        }

    @staticmethod
    def from_record(record: dict) -> "ToolPermission":
        roles = record.get("allowedRoles")
        return ToolPermission(
            enabled=bool(record.get("enabled", False)),
            allowed_roles=frozenset(Role.parse(role, "allowedRoles") for role in (roles or [])),
            rate_limits=RateLimits.from_record(record.get("rateLimits")),
            custom_config=dict(record.get("customConfig") or {}),
        )


@dataclass(frozen=True)
class TenantSettings:
    max_users: int = 10
    allowed_domains: tuple[str, ...] = ()
    session_timeout_minutes: int = 60
    require_mfa: bool = False

    def to_record(self) -> dict:
        return {
            "maxUsers": self.max_users,
            "allowedDomains": list(self.allowed_domains),
            "sessionTimeoutMinutes": self.session_timeout_minutes,
            "requireMFA": self.require_mfa,
        }

    @staticmethod
    def from_record(record: Optional[dict]) -> "TenantSettings":
        record = record or {}
        domains = record.get("allowedDomains") or []
        if not isinstance(domains, list) or not all(isinstance(domain, str) for domain in domains):
            raise ValidationIssue(
                "settings.allowedDomains must be a list of strings",
                field="settings.allowedDomains",
                error_type="invalid_type",
            )
        return TenantSettings(
            max_users=int(record.get("maxUsers", 10)),
            allowed_domains=tuple(domains),
            session_timeout_minutes=int(record.get("sessionTimeoutMinutes", 60)),
            require_mfa=bool(record.get("requireMFA", False)),
        )


@dataclass(frozen=True)
class User:
    id: str
    email: str
    tenant_id: str
    role: Role = Role.user
    permissions: frozenset[str] = frozenset()
    is_active: bool = True
    created_at: Optional[datetime] = None
    last_active_at: Optional[datetime] = None

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "tenantId": self.tenant_id,
            "role": self.role.value,
            "permissions": sorted(self.permissions),
            "isActive": self.is_active,
            "createdAt": _format_dt(self.created_at),
            "lastActiveAt": _format_dt(self.last_active_at),
        }

    @staticmethod
    def from_record(record: dict) -> "User":
        return User(
            id=record["id"],
            email=record.get("email") or record["id"],
            tenant_id=record.get("tenantId") or record["id"],
            role=Role.parse(record.get("role", Role.user.value)),
            permissions=frozenset(record.get("permissions") or ()),
            is_active=bool(record.get("isActive", True)),
            created_at=_parse_dt(record.get("createdAt")),
            last_active_at=_parse_dt(record.get("lastActiveAt")),
        )


@dataclass(frozen=True)
class Tenant:
    id: str
    name: str
    owner_id: str
    settings: TenantSettings = field(default_factory=TenantSettings)
    tool_config: dict[str, ToolPermission] = field(default_factory=dict)
    is_active: bool = True
    created_at: Optional[datetime] = None

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "ownerId": self.owner_id,
            "settings": self.settings.to_record(),
            "toolConfig": {name: perm.to_record() for name, perm in sorted(self.tool_config.items())},
            "isActive": self.is_active,
            "createdAt": _format_dt(self.created_at),
        }

    @staticmethod
    def from_record(record: dict) -> "Tenant":
        return Tenant(
            id=record["id"],
            name=record.get("name") or f"Tenant {record['id']}",
            owner_id=record.get("ownerId") or record["id"],
            settings=TenantSettings.from_record(record.get("settings")),
            tool_config={
                name: ToolPermission.from_record(perm)
                for name, perm in (record.get("toolConfig") or {}).items()
            },
            is_active=bool(record.get("isActive", True)),
            created_at=_parse_dt(record.get("createdAt")),
        )

    def with_tool(self, tool_name: str, permission: ToolPermission) -> "Tenant":
        tool_config = dict(self.tool_config)
        tool_config[tool_name] = permission
        return replace(self, tool_config=tool_config)


@dataclass(frozen=True)
class AuthTokenPayload:
    user_id: str
    tenant_id: str
    session_id: str
    scope: tuple[str, ...] = ()
    exp: int = 0
    iat: int = 0
    email: Optional[str] = None


@dataclass(frozen=True)
class UserContext:
    user: User
    tenant: Tenant
    session_id: str
    permissions: frozenset[str] = frozenset()
    scope: tuple[str, ...] = ()

    @staticmethod
    def compose(
        user: User,
        tenant: Tenant,
        session_id: str,
        scope: Optional[Sequence[str]] = None,
    ) -> "UserContext":
        return UserContext(
            user=user,
            tenant=tenant,
            session_id=session_id,
            permissions=frozenset(user.permissions),
            scope=tuple(scope or ()),
        )

    @property
    def owner_id(self) -> str:
        """Graph owner id: every graph row is keyed by the user's tenant."""
        return self.user.tenant_id


_CURRENT_USER_CONTEXT: contextvars.ContextVar[Optional[UserContext]] = contextvars.ContextVar(
    "graphgate_user_context",
    default=None,
)


def get_current_user_context() -> Optional[UserContext]:
    return _CURRENT_USER_CONTEXT.get()


def set_current_user_context(context: Optional[UserContext]) -> contextvars.Token:
    return _CURRENT_USER_CONTEXT.set(context)


def reset_current_user_context(token: contextvars.Token) -> None:
    _CURRENT_USER_CONTEXT.reset(token)


def resolve_owner_id(context: Optional[UserContext]) -> str:
    if context is None or not context.owner_id:
        raise ValidationIssue(
            "an authenticated tenant is required for this operation",
            field="tenant_id",
            error_type="required",
        )
    return context.owner_id


__all__ = [
    "Role",
    "RateLimits",
    "ToolPermission",
    "TenantSettings",
    "User",
    "Tenant",
    "AuthTokenPayload",
    "UserContext",
    "utcnow",
    "get_current_user_context",
    "set_current_user_context",
    "reset_current_user_context",
    "resolve_owner_id",
]
