"""
Tenant and user records plus per-tenant tool configuration.

Records live in the key/value store as JSON under ``tenant:{id}`` and
``user:{id}``. Updates are full-record read-modify-write; concurrent admin
edits resolve last-writer-wins. Request activity is kept apart under
``user-activity:{id}`` so that refreshing it never rewrites the user record.
"""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

import graphgate.config as config
from graphgate.context import (
    RateLimits,
    Role,
    Tenant,
    TenantSettings,
    ToolPermission,
    User,
    UserContext,
    utcnow,
)
from graphgate.errors import NotFoundError, ValidationIssue
from graphgate.kv import KeyValueStore, SqlKeyValueStore
from graphgate.validators import (
    validate_metadata,
    validate_optional_text,
    validate_required_text,
    validate_role_names,
    validate_string_list,
)

logger = config.logger

GRAPH_TOOLS = (
    "create_entities",
    "create_relations",
    "add_observations",
    "delete_entities",
    "delete_entities_cascade",
    "delete_relations",
    "delete_observations",
    "read_graph",
    "search_nodes",
    "open_nodes",
    "get_user_info",
)

READ_ONLY_TOOLS = frozenset({"read_graph", "search_nodes", "open_nodes", "get_user_info"})

DEFAULT_USER_PERMISSIONS = frozenset({"read_profile", "read_data", "write_data"})


def tenant_key(tenant_id: str) -> str:
    return f"tenant:{tenant_id}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def user_activity_key(user_id: str) -> str:
    return f"user-activity:{user_id}"


def default_tool_config() -> dict[str, ToolPermission]:
    tool_config = {}
    for tool_name in GRAPH_TOOLS:
        roles = {Role.admin, Role.user}
        if tool_name in READ_ONLY_TOOLS:
            roles.add(Role.readonly)
        tool_config[tool_name] = ToolPermission(enabled=True, allowed_roles=frozenset(roles))
    return tool_config


def _dump(record: dict) -> str:
    return json.dumps(record, sort_keys=True)


def _load(raw: str, key: str) -> dict:
    try:
        record = json.loads(raw)
    except ValueError as exc:
        raise ValidationIssue(f"stored record {key} is not valid JSON", field=key, error_type="corrupt") from exc
    if not isinstance(record, dict):
        raise ValidationIssue(f"stored record {key} is not an object", field=key, error_type="corrupt")
    return record


class TenantConfigStore:
    """Tenant/user persistence over a ``KeyValueStore``."""

    def __init__(self, kv: Optional[KeyValueStore] = None):
        self.kv = kv or SqlKeyValueStore()

    # Tenants

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        raw = self.kv.get(tenant_key(tenant_id))
        if raw is None:
            return None
        return Tenant.from_record(_load(raw, tenant_key(tenant_id)))

    def put_tenant(self, tenant: Tenant) -> Tenant:
        self.kv.put(tenant_key(tenant.id), _dump(tenant.to_record()))
        return tenant

    def ensure_tenant_exists(self, tenant_id: str, owner_id: str) -> Tenant:
        """Return the tenant, creating it with defaults if no record exists yet."""
        existing = self.get_tenant(tenant_id)
        if existing is not None:
            return existing
        candidate = Tenant(
            id=tenant_id,
            name=f"Tenant {tenant_id}",
            owner_id=owner_id,
            settings=TenantSettings(),
            tool_config=default_tool_config(),
            is_active=True,
            created_at=utcnow(),
        )
        dumped = _dump(candidate.to_record())
        raw = self.kv.put_if_absent(tenant_key(tenant_id), dumped)
        if raw == dumped:
            logger.info("tenant_created", extra={"tenant_id": tenant_id, "owner_id": owner_id})
        return Tenant.from_record(_load(raw, tenant_key(tenant_id)))

    def _require_tenant(self, tenant_id: str) -> Tenant:
        tenant = self.get_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError(f"tenant not found: {tenant_id}", names=[tenant_id])
        return tenant

    def configure_tool(
        self,
        tenant_id: str,
        tool_name: str,
        enabled: Optional[bool] = None,
        allowed_roles: Optional[list[str]] = None,
        rate_limits: Optional[dict] = None,
        custom_config: Optional[dict] = None,
    ) -> Tenant:
        validate_required_text(tool_name, "tool_name", config.MAX_TYPE_LENGTH)
        validate_role_names(allowed_roles)
        validate_metadata(custom_config, "customConfig")
        if enabled is not None and not isinstance(enabled, bool):
            raise ValidationIssue("enabled must be a boolean", field="enabled", error_type="invalid_type")

        tenant = self._require_tenant(tenant_id)
        permission = ToolPermission(
            enabled=True if enabled is None else enabled,
            allowed_roles=(
                frozenset(Role.parse(role, "allowedRoles") for role in allowed_roles)
                if allowed_roles is not None
                else frozenset({Role.admin, Role.user})
            ),
            rate_limits=RateLimits.from_record(rate_limits),
            custom_config=dict(custom_config or {}),
        )
        updated = self.put_tenant(tenant.with_tool(tool_name, permission))
        logger.info(
            "tool_configured",
            extra={"tenant_id": tenant_id, "tool": tool_name, "enabled": permission.enabled},
        )
        return updated

    def disable_tool(self, tenant_id: str, tool_name: str) -> Tenant:
        tenant = self._require_tenant(tenant_id)
        current = tenant.tool_config.get(tool_name)
        if current is None:
            return tenant
        updated = self.put_tenant(tenant.with_tool(tool_name, replace(current, enabled=False)))
        logger.info("tool_disabled", extra={"tenant_id": tenant_id, "tool": tool_name})
        return updated

    def update_tenant(
        self,
        tenant_id: str,
        name: Optional[str] = None,
        settings: Optional[dict] = None,
        tool_config: Optional[dict] = None,
    ) -> Tenant:
        validate_optional_text(name, "name", config.MAX_NAME_LENGTH)
        if name is not None and not name.strip():
            raise ValidationIssue("name must be a non-empty string", field="name", error_type="required")
        if settings is not None and not isinstance(settings, dict):
            raise ValidationIssue("settings must be an object", field="settings", error_type="invalid_type")
        if tool_config is not None and not isinstance(tool_config, dict):
            raise ValidationIssue("toolConfig must be an object", field="toolConfig", error_type="invalid_type")

        tenant = self._require_tenant(tenant_id)
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if settings is not None:
            merged = tenant.settings.to_record()
            merged.update(settings)
            try:
                changes["settings"] = TenantSettings.from_record(merged)
            except ValidationIssue:
                raise
            except (TypeError, ValueError) as exc:
                raise ValidationIssue(str(exc), field="settings", error_type="invalid_value") from exc
        if tool_config is not None:
            parsed = {}
            for tool_name, record in tool_config.items():
                if not isinstance(record, dict):
                    raise ValidationIssue(
                        f"toolConfig.{tool_name} must be an object",
                        field=f"toolConfig.{tool_name}",
                        error_type="invalid_type",
                    )
                parsed[tool_name] = ToolPermission.from_record(record)
            changes["tool_config"] = parsed
        if not changes:
            return tenant
        updated = self.put_tenant(replace(tenant, **changes))
        logger.info("tenant_updated", extra={"tenant_id": tenant_id, "fields": sorted(changes)})
        return updated

    # Users

    def _with_activity(self, user: User) -> User:
        raw = self.kv.get(user_activity_key(user.id))
        if raw is None:
            return user
        return replace(user, last_active_at=datetime.fromisoformat(raw))

    def get_user(self, user_id: str) -> Optional[User]:
        raw = self.kv.get(user_key(user_id))
        if raw is None:
            return None
        return self._with_activity(User.from_record(_load(raw, user_key(user_id))))

    def list_users(self, tenant_id: str) -> list[User]:
        """Users whose record belongs to tenant_id, ordered by id."""
        users = []
        for key, raw in self.kv.scan("user:"):
            user = User.from_record(_load(raw, key))
            if user.tenant_id == tenant_id:
                users.append(self._with_activity(user))
        return sorted(users, key=lambda user: user.id)

    def put_user(self, user: User) -> User:
        self.kv.put(user_key(user.id), _dump(user.to_record()))
        return user

    def ensure_user_exists(self, user_id: str, tenant_id: str, email: Optional[str] = None) -> User:
        existing = self.get_user(user_id)
        if existing is not None:
            return existing
        now = utcnow()
        candidate = User(
            id=user_id,
            email=email or user_id,
            tenant_id=tenant_id,
            role=Role.user,
            permissions=DEFAULT_USER_PERMISSIONS,
            is_active=True,
            created_at=now,
            last_active_at=now,
        )
        raw = self.kv.put_if_absent(user_key(user_id), _dump(candidate.to_record()))
        return User.from_record(_load(raw, user_key(user_id)))

    def touch_user(self, user: User) -> User:
        """Record request activity without rewriting the user record."""
        now = utcnow()
        self.kv.put(user_activity_key(user.id), now.isoformat())
        return replace(user, last_active_at=now)

    def update_user(
        self,
        actor: UserContext,
        user_id: str,
        role: Optional[str] = None,
        permissions: Optional[list[str]] = None,
        is_active: Optional[bool] = None,
    ) -> User:
        validate_required_text(user_id, "user_id", config.MAX_NAME_LENGTH)
        new_role = Role.parse(role) if role is not None else None
        if permissions is not None:
            validate_string_list(permissions, "permissions", config.MAX_LIST_ITEMS, config.MAX_TYPE_LENGTH)
        if is_active is not None and not isinstance(is_active, bool):
            raise ValidationIssue("isActive must be a boolean", field="isActive", error_type="invalid_type")

        target = self.get_user(user_id)
        if target is None or target.tenant_id != actor.user.tenant_id:
            raise NotFoundError(f"user not found: {user_id}", names=[user_id])

        if target.id == actor.user.id and actor.user.role is Role.admin and new_role not in (None, Role.admin):
            raise ValidationIssue(
                "cannot remove admin role from yourself",
                field="role",
                error_type="self_demotion",
            )

        changes: dict[str, Any] = {}
        if new_role is not None:
            changes["role"] = new_role
        if permissions is not None:
            changes["permissions"] = frozenset(permissions)
        if is_active is not None:
            changes["is_active"] = is_active
        if not changes:
            return target
        updated = self.put_user(replace(target, **changes))
        logger.info(
            "user_updated",
            extra={
                "tenant_id": target.tenant_id,
                "user_id": target.id,
                "actor_id": actor.user.id,
                "fields": sorted(changes),
            },
        )
        return updated


__all__ = [
    "DEFAULT_USER_PERMISSIONS",
    "GRAPH_TOOLS",
    "READ_ONLY_TOOLS",
    "TenantConfigStore",
    "default_tool_config",
    "tenant_key",
    "user_activity_key",
    "user_key",
]
