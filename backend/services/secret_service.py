"""Secret lifecycle: creation, rotation, expiry and validation of secrets.

Secrets are soft-deleted, never removed by normal flow. Rotation
deactivates every existing secret and creates exactly one new active
secret in the same transaction; the caller owns the commit.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import SecretStatus
from core.credentials import generate_token, mask_secret
from core.events import LifecycleResult, SecretsRotated
from core.exceptions import NotFoundError, ValidationError
from core.policy_config import AccessPolicyConfig
from core.utils import ensure_utc, utc_now
from db.models.integration import Integration
from db.models.integration_secret import IntegrationSecret

logger = logging.getLogger(__name__)


class SecretLifecycleManager:
    """Manages the secrets bound to an integration."""

    def __init__(self, db: AsyncSession, config: Optional[AccessPolicyConfig] = None):
        self.db = db
        self.config = config or AccessPolicyConfig()

    # ─── Create ────────────────────────────────────────────

    async def create_secret(
        self,
        integration: Integration,
        name: Optional[str] = None,
        secret_key: Optional[str] = None,
        status: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> IntegrationSecret:
        """Create a secret, filling key, name and status when absent.

        The generated name is "Secret Key N" where N is one more than the
        number of secrets the integration already has, inactive included.
        """
        if status is not None and status not in {s.value for s in SecretStatus}:
            raise ValidationError(f"Invalid secret status: {status}")

        if not name:
            existing = await self._count_secrets(integration.id)
            name = f"Secret Key {existing + 1}"

        secret = IntegrationSecret(
            integration_id=integration.id,
            name=name,
            secret_key=secret_key or generate_token(self.config.secret_length),
            status=status or SecretStatus.ACTIVE.value,
            expires_at=expires_at,
            extra_metadata=metadata,
        )
        self.db.add(secret)
        await self.db.flush()

        logger.info(
            "Secret created: integration=%s name=%s key=%s",
            integration.client_id,
            secret.name,
            secret.masked_secret,
        )
        return secret

    # ─── Validity and usage ────────────────────────────────

    @staticmethod
    def validate(secret: IntegrationSecret, now: Optional[datetime] = None) -> bool:
        """A secret is valid iff it is active and not expired."""
        return secret.is_valid(now)

    async def mark_used(self, secret: IntegrationSecret) -> IntegrationSecret:
        secret.last_used_at = utc_now()
        await self.db.flush()
        return secret

    async def set_expiration(self, secret: IntegrationSecret, expires_at: datetime) -> IntegrationSecret:
        secret.expires_at = ensure_utc(expires_at)
        await self.db.flush()
        return secret

    async def remove_expiration(self, secret: IntegrationSecret) -> IntegrationSecret:
        secret.expires_at = None
        await self.db.flush()
        return secret

    async def activate_secret(self, secret: IntegrationSecret) -> IntegrationSecret:
        secret.status = SecretStatus.ACTIVE.value
        await self.db.flush()
        return secret

    async def deactivate_secret(self, secret: IntegrationSecret) -> IntegrationSecret:
        secret.status = SecretStatus.INACTIVE.value
        await self.db.flush()
        return secret

    async def delete_secret(self, secret: IntegrationSecret) -> None:
        secret.soft_delete()
        await self.db.flush()

    @staticmethod
    def mask(secret: IntegrationSecret) -> str:
        return mask_secret(secret.secret_key)

    # ─── Rotation and cleanup ──────────────────────────────

    async def rotate(self, integration: Integration, new_name: Optional[str] = None) -> LifecycleResult[IntegrationSecret]:
        """Deactivate every secret of ``integration`` and issue a fresh one.

        The integration row is locked first (``FOR UPDATE``) so concurrent
        rotations of the same integration serialise; both writes belong to
        the caller's transaction.
        """
        await self.db.execute(
            select(Integration.id)
            .where(Integration.id == integration.id)
            .with_for_update()
        )

        result = await self.db.execute(
            update(IntegrationSecret)
            .where(
                IntegrationSecret.integration_id == integration.id,
                IntegrationSecret.not_deleted(),
                IntegrationSecret.status == SecretStatus.ACTIVE.value,
            )
            .values(status=SecretStatus.INACTIVE.value)
            .execution_options(synchronize_session="fetch")
        )
        deactivated = result.rowcount or 0

        name = new_name or f"Rotated Secret {utc_now().strftime('%Y-%m-%d %H:%M:%S')}"
        secret = await self.create_secret(integration, name=name)

        logger.info(
            "Secrets rotated: integration=%s deactivated=%d new=%s",
            integration.client_id,
            deactivated,
            secret.id,
        )
        event = SecretsRotated.for_integration(
            integration, new_secret_id=secret.id, deactivated_count=deactivated
        )
        return LifecycleResult(entity=secret, events=[event])

    async def cleanup_expired(self, integration: Integration, now: Optional[datetime] = None) -> int:
        """Soft-delete secrets whose ``expires_at`` has passed.

        Secrets without an expiry are never removed.

        Returns:
            Number of secrets removed
        """
        now = now or utc_now()
        result = await self.db.execute(
            select(IntegrationSecret).where(
                IntegrationSecret.integration_id == integration.id,
                IntegrationSecret.not_deleted(),
                IntegrationSecret.expires_at.is_not(None),
            )
        )
        removed = 0
        for secret in result.scalars().all():
            if secret.is_expired(now):
                secret.soft_delete(now)
                removed += 1
        await self.db.flush()

        if removed:
            logger.info(
                "Expired secrets cleaned up: integration=%s removed=%d",
                integration.client_id,
                removed,
            )
        return removed

    # ─── Queries ───────────────────────────────────────────

    async def list_secrets(
        self,
        integration: Integration,
        status: Optional[str] = None,
        include_expired: bool = False,
    ) -> Sequence[IntegrationSecret]:
        """Secrets of an integration, newest first; expired ones hidden by default."""
        query = select(IntegrationSecret).where(
            IntegrationSecret.integration_id == integration.id,
            IntegrationSecret.not_deleted(),
        )
        if status:
            query = query.where(IntegrationSecret.status == status)
        query = query.order_by(IntegrationSecret.created_at.desc())

        result = await self.db.execute(query)
        secrets = result.scalars().all()
        if include_expired:
            return secrets
        now = utc_now()
        return [secret for secret in secrets if not secret.is_expired(now)]

    async def get_valid_secrets(self, integration: Integration) -> Sequence[IntegrationSecret]:
        return await self.list_secrets(integration, status=SecretStatus.ACTIVE.value)

    async def get_secret(self, integration: Integration, secret_id: str) -> IntegrationSecret:
        """Fetch a secret that must belong to ``integration``.

        Raises:
            NotFoundError: If missing, deleted or owned by another integration
        """
        result = await self.db.execute(
            select(IntegrationSecret).where(
                IntegrationSecret.id == secret_id,
                IntegrationSecret.integration_id == integration.id,
                IntegrationSecret.not_deleted(),
            )
        )
        secret = result.scalar_one_or_none()
        if secret is None:
            raise NotFoundError("Secret not found")
        return secret

    async def _count_secrets(self, integration_id: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(IntegrationSecret)
            .where(
                IntegrationSecret.integration_id == integration_id,
                IntegrationSecret.not_deleted(),
            )
        )
        return result.scalar() or 0
