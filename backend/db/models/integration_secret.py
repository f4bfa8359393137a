"""Integration secret model.

An integration can hold many secrets so credentials can be rotated without
downtime. A secret is valid while it is active and not past ``expires_at``.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import DateTime, ForeignKey, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import SecretStatus
from core.credentials import mask_secret
from core.utils import ensure_utc, utc_now
from db.base import BaseModel

if TYPE_CHECKING:
    from db.models.integration import Integration


class IntegrationSecret(BaseModel):
    """Rotation-friendly secret bound to an integration.

    Attributes:
        id: UUID primary key
        integration_id: Owning integration
        name: Label, "Secret Key N" when not given
        secret_key: Raw key (never serialized, only masked)
        status: "active" or "inactive"
        last_used_at: Last successful authentication with this key
        expires_at: Optional expiry; null never expires
    """

    __tablename__ = "integration_secrets"

    integration_id: Mapped[str] = mapped_column(
        ForeignKey("integrations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    secret_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(16), default=SecretStatus.ACTIVE.value, index=True
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    extra_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    # Relationships
    integration: Mapped["Integration"] = relationship(
        "Integration", back_populates="secrets"
    )

    def is_active(self) -> bool:
        return self.status == SecretStatus.ACTIVE.value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once ``expires_at`` is reached; null never expires."""
        expires_at = ensure_utc(self.expires_at)
        if expires_at is None:
            return False
        return expires_at <= (now or utc_now())

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return self.is_active() and not self.is_expired(now)

    @property
    def masked_secret(self) -> str:
        return mask_secret(self.secret_key)

    def to_dict(self) -> dict[str, Any]:
        """Public representation with the key masked."""
        return {
            "id": self.id,
            "integration_id": self.integration_id,
            "name": self.name,
            "masked_secret": self.masked_secret,
            "status": self.status,
            "is_valid": self.is_valid(),
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "metadata": self.extra_metadata or {},
        }

    def __repr__(self) -> str:
        return f"<IntegrationSecret {self.name} ({self.status})>"
