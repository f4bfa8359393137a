"""Immutable access-policy configuration.

One ``AccessPolicyConfig`` instance is built at startup and handed to the
authorization gate and the lifecycle services. Nothing in the decision
pipeline reads global settings directly.
"""

import copy
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from core import permissions as perms
from core.constants import ROLE_HIERARCHY, IntegrationRole, IntegrationStatus


DEFAULT_ROLES: dict[str, str] = {
    "admin": "Full access to all resources",
    "user": "Standard user access",
    "guest": "Limited read-only access",
    "service": "Service account access",
    "readonly": "Read-only access to all resources",
}

DEFAULT_PERMISSION_RESOURCES: dict[str, tuple[str, ...]] = {
    "users": ("create", "read", "update", "delete"),
    "posts": ("create", "read", "update", "delete"),
    "comments": ("create", "read", "update", "delete"),
    "analytics": ("read",),
    "admin": ("settings", "users", "system"),
    "files": ("upload", "download", "delete"),
    "webhooks": ("create", "read", "update", "delete"),
}

DEFAULT_SCOPES: dict[str, str] = {
    "read": "Read access to basic information",
    "write": "Write access to create/update resources",
    "delete": "Delete access to remove resources",
    "admin": "Administrative access",
    "user": "User profile access",
    "posts": "Posts management access",
    "analytics": "Analytics data access",
    "files": "File management access",
    "webhooks": "Webhook management access",
}


class AccessPolicyConfig(BaseModel):
    """Configuration consumed by the gate and the lifecycle services.

    Example:
        >>> config = AccessPolicyConfig(secret_length=64)
        >>> config.role_rank("admin")
        4
    """

    model_config = ConfigDict(frozen=True)

    roles: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_ROLES))
    role_hierarchy: dict[str, int] = Field(default_factory=lambda: dict(ROLE_HIERARCHY))
    permission_resources: dict[str, tuple[str, ...]] = Field(
        default_factory=lambda: dict(DEFAULT_PERMISSION_RESOURCES)
    )
    scopes: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_SCOPES))

    client_id_length: int = 40
    secret_length: int = 80

    default_status: IntegrationStatus = IntegrationStatus.ACTIVE
    default_role: Optional[IntegrationRole] = IntegrationRole.USER
    default_permissions: dict[str, list[str]] = Field(default_factory=dict)
    default_allowed_scopes: list[str] = Field(default_factory=list)
    default_scopes_granted: list[str] = Field(default_factory=list)

    default_ip_whitelist: dict[str, Any] = Field(
        default_factory=lambda: {
            "require_whitelist": False,
            "allowed_ips": [],
            "blocked_ips": [],
        }
    )
    default_geo_restrictions: dict[str, Any] = Field(
        default_factory=lambda: {"allowed_countries": [], "blocked_countries": []}
    )
    default_time_restrictions: dict[str, Any] = Field(default_factory=dict)
    default_rate_limits: dict[str, Any] = Field(
        default_factory=lambda: {
            "requests_per_minute": 60,
            "requests_per_hour": 1000,
            "requests_per_day": 10000,
            "burst_limit": 100,
        }
    )

    per_page: int = 15
    max_per_page: int = 100

    @classmethod
    def from_settings(cls, settings) -> "AccessPolicyConfig":
        """Build the config from application settings."""
        return cls(
            client_id_length=settings.INTEGRATION_CLIENT_ID_LENGTH,
            secret_length=settings.INTEGRATION_SECRET_LENGTH,
            default_status=IntegrationStatus(settings.INTEGRATION_DEFAULT_STATUS),
            default_role=IntegrationRole.parse(settings.INTEGRATION_DEFAULT_ROLE),
            per_page=settings.INTEGRATION_PER_PAGE,
            max_per_page=settings.INTEGRATION_MAX_PER_PAGE,
        )

    def role_rank(self, role: Optional[str]) -> int:
        """Rank of a role in the hierarchy; unknown roles rank 0."""
        return perms.role_rank(role, self.role_hierarchy)

    def is_known_role(self, role: str) -> bool:
        return role in self.roles

    def allowed_actions(self, resource: str) -> tuple[str, ...]:
        return tuple(self.permission_resources.get(resource, ()))

    def defaults_for_new_integration(self) -> dict[str, Any]:
        """Fresh copies of every default policy struct."""
        return {
            "status": self.default_status.value,
            "role": self.default_role.value if self.default_role else None,
            "permissions": copy.deepcopy(self.default_permissions),
            "allowed_scopes": list(self.default_allowed_scopes),
            "default_scopes": list(self.default_scopes_granted),
            "ip_whitelist": copy.deepcopy(self.default_ip_whitelist),
            "geo_restrictions": copy.deepcopy(self.default_geo_restrictions),
            "time_restrictions": copy.deepcopy(self.default_time_restrictions),
            "rate_limits": copy.deepcopy(self.default_rate_limits),
        }
