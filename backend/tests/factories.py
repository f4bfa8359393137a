"""Transient model builders and an in-memory credential store for tests."""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import db.models  # noqa: F401
from db.models.integration import Integration
from db.models.integration_secret import IntegrationSecret


def make_integration(**overrides) -> Integration:
    """Build an Integration that is never persisted."""
    values = dict(
        id=str(uuid4()),
        name="Fake Integration",
        client_id="client-" + uuid4().hex,
        client_secret="legacy-" + uuid4().hex,
        status="active",
        role="user",
        permissions={},
        allowed_scopes=[],
        default_scopes=[],
        ip_whitelist={},
        geo_restrictions={},
        time_restrictions={},
        rate_limits={},
        redirect_uris=[],
    )
    values.update(overrides)
    return Integration(**values)


def make_secret(integration: Integration, **overrides) -> IntegrationSecret:
    values = dict(
        id=str(uuid4()),
        integration_id=integration.id,
        name="Secret Key 1",
        secret_key="child-" + uuid4().hex,
        status="active",
        expires_at=None,
        last_used_at=None,
    )
    values.update(overrides)
    return IntegrationSecret(**values)


class FakeCredentialStore:
    """In-memory credential store recording every call."""

    def __init__(self, integrations=(), secrets=(), fail_with: Optional[Exception] = None):
        self.integrations = {i.client_id: i for i in integrations}
        self.secrets = list(secrets)
        self.fail_with = fail_with
        self.lookups: list[str] = []
        self.used: list[str] = []

    async def find_by_client_id(self, client_id):
        self.lookups.append(client_id)
        if self.fail_with:
            raise self.fail_with
        return self.integrations.get(client_id)

    async def find_secret_by_key(self, integration_id, secret_key):
        for secret in self.secrets:
            if secret.integration_id == integration_id and secret.secret_key == secret_key:
                return secret
        return None

    async def mark_secret_used(self, secret):
        secret.last_used_at = datetime.now(timezone.utc)
        self.used.append(secret.id)
