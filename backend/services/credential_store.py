"""Credential store: the persistence collaborator of the authorization gate.

The gate only needs three operations, captured by the ``CredentialStore``
protocol. ``SQLAlchemyCredentialStore`` implements them over an async
session; any database failure surfaces as ``StoreUnavailableError`` so
that it is never mistaken for a denial.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import StoreUnavailableError
from core.utils import utc_now
from db.models.integration import Integration
from db.models.integration_secret import IntegrationSecret

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Lookups and writes the gate performs per request."""

    async def find_by_client_id(self, client_id: str) -> Optional[Integration]:
        ...

    async def find_secret_by_key(self, integration_id: str, secret_key: str) -> Optional[IntegrationSecret]:
        ...

    async def mark_secret_used(self, secret: IntegrationSecret) -> None:
        ...


@asynccontextmanager
async def _store_errors(operation: str):
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Credential store %s failed: %s", operation, exc)
        raise StoreUnavailableError() from exc


class SQLAlchemyCredentialStore:
    """Credential store backed by the integrations tables.

    Soft-deleted integrations and secrets are invisible.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_client_id(self, client_id: str) -> Optional[Integration]:
        async with _store_errors("lookup"):
            result = await self.db.execute(
                select(Integration).where(
                    Integration.client_id == client_id,
                    Integration.not_deleted(),
                )
            )
            return result.scalar_one_or_none()

    async def find_secret_by_key(self, integration_id: str, secret_key: str) -> Optional[IntegrationSecret]:
        async with _store_errors("secret lookup"):
            result = await self.db.execute(
                select(IntegrationSecret).where(
                    IntegrationSecret.integration_id == integration_id,
                    IntegrationSecret.secret_key == secret_key,
                    IntegrationSecret.not_deleted(),
                )
            )
            return result.scalars().first()

    async def mark_secret_used(self, secret: IntegrationSecret) -> None:
        async with _store_errors("write"):
            secret.last_used_at = utc_now()
            await self.db.flush()
