"""Integration model: a registered API client and its access policy.

Policy structs (permissions, scopes, IP / geo / time restrictions, rate
limits) are JSON columns. The predicate helpers below parse them on demand
and delegate to ``core.permissions``, ``core.restrictions`` and
``core.rate_limit``.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core import permissions as perms
from core.constants import IntegrationStatus
from core.rate_limit import get_rate_limit
from core.restrictions import GeoRestrictions, IpWhitelist, is_time_allowed
from db.base import BaseModel

if TYPE_CHECKING:
    from db.models.integration_secret import IntegrationSecret


class Integration(BaseModel):
    """Integration (API client) record.

    Attributes:
        id: UUID primary key
        name / description: Human-readable labels
        client_id: Unique, immutable public identifier
        client_secret: Legacy single secret (never serialized)
        redirect_uris: Ordered list of absolute URLs
        status: "active" or "inactive"
        role: Optional role from the configured role set
        permissions: {resource: [action, ...]}
        allowed_scopes / default_scopes: Scope name lists
        ip_whitelist: {require_whitelist, allowed_ips, blocked_ips}
        geo_restrictions: {allowed_countries, blocked_countries}
        time_restrictions: {timezone, allowed_days?, allowed_hours?}
        rate_limits: {requests_per_minute/hour/day, burst_limit, scope_limits?}
        user_id: Owning user (managed outside this service)
    """

    __tablename__ = "integrations"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    client_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    client_secret: Mapped[str] = mapped_column(String(255), nullable=False)
    redirect_uris: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(
        String(16), default=IntegrationStatus.ACTIVE.value, index=True
    )
    role: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    permissions: Mapped[dict] = mapped_column(JSON, default=dict)
    allowed_scopes: Mapped[list] = mapped_column(JSON, default=list)
    default_scopes: Mapped[list] = mapped_column(JSON, default=list)
    ip_whitelist: Mapped[dict] = mapped_column(JSON, default=dict)
    geo_restrictions: Mapped[dict] = mapped_column(JSON, default=dict)
    time_restrictions: Mapped[dict] = mapped_column(JSON, default=dict)
    rate_limits: Mapped[dict] = mapped_column(JSON, default=dict)
    extra_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    # Relationships
    secrets: Mapped[list["IntegrationSecret"]] = relationship(
        "IntegrationSecret",
        back_populates="integration",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )

    # ─── Status ────────────────────────────────────────────

    def is_active(self) -> bool:
        return self.status == IntegrationStatus.ACTIVE.value

    def is_inactive(self) -> bool:
        return self.status == IntegrationStatus.INACTIVE.value

    # ─── Role / permissions / scopes ───────────────────────

    def has_role(self, role: str) -> bool:
        return self.role == role

    def has_permission(self, resource: str, action: str) -> bool:
        return perms.has_permission(self.permissions, resource, action)

    def get_resource_permissions(self, resource: str) -> list[str]:
        return perms.get_resource_permissions(self.permissions, resource)

    def has_scope(self, scope: str) -> bool:
        return perms.has_scope(self.allowed_scopes, scope)

    def validate_scopes(self, requested: list[str]) -> list[str]:
        return perms.validate_scopes(requested, self.allowed_scopes)

    # ─── Restrictions ──────────────────────────────────────

    def is_ip_allowed(self, ip: Optional[str]) -> bool:
        return IpWhitelist.model_validate(self.ip_whitelist or {}).is_ip_allowed(ip)

    def is_country_allowed(self, country_code: str) -> bool:
        return GeoRestrictions.model_validate(self.geo_restrictions or {}).is_country_allowed(country_code)

    def is_time_allowed(self, now: Optional[datetime] = None) -> bool:
        return is_time_allowed(self.time_restrictions, now)

    def get_rate_limit(self, key: str = "default") -> dict[str, Optional[int]]:
        return get_rate_limit(self.rate_limits, key)

    # ─── Redirect URIs ─────────────────────────────────────

    def is_valid_redirect_uri(self, uri: str) -> bool:
        return uri in (self.redirect_uris or [])

    def to_dict(self) -> dict[str, Any]:
        """Public representation; the client secret is never included."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "client_id": self.client_id,
            "redirect_uris": list(self.redirect_uris or []),
            "status": self.status,
            "role": self.role,
            "permissions": dict(self.permissions or {}),
            "allowed_scopes": list(self.allowed_scopes or []),
            "default_scopes": list(self.default_scopes or []),
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Integration {self.client_id} ({self.status})>"
