"""Authorization gate: the ordered allow/deny pipeline for integrations.

Every protected request runs through ``AuthorizationGate.authorize``:

    credentials -> active status -> role -> permissions -> IP -> geo -> time

The first failing check decides the denial reason and later checks are
never evaluated. Store failures propagate as ``StoreUnavailableError``;
they are not denials.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence

from core import permissions as perms
from core.constants import DenyReason
from core.credentials import secrets_match
from core.policy_config import AccessPolicyConfig
from core.utils import utc_now
from db.models.integration import Integration
from db.models.integration_secret import IntegrationSecret
from services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """What the HTTP layer extracted from one inbound request."""

    client_id: Optional[str]
    client_secret: Optional[str]
    caller_ip: Optional[str] = None
    caller_country: Optional[str] = None
    required_role: Optional[str] = None
    required_permissions: Sequence[str] = field(default_factory=tuple)


@dataclass
class AuthorizationVerdict:
    """ALLOW (with the resolved integration) or DENY (with a reason)."""

    allowed: bool
    reason: Optional[DenyReason] = None
    integration: Optional[Integration] = None

    @classmethod
    def allow(cls, integration: Integration) -> "AuthorizationVerdict":
        return cls(allowed=True, integration=integration)

    @classmethod
    def deny(cls, reason: DenyReason) -> "AuthorizationVerdict":
        return cls(allowed=False, reason=reason)

    @property
    def integration_id(self) -> Optional[str]:
        return self.integration.id if self.integration else None

    @property
    def role(self) -> Optional[str]:
        return self.integration.role if self.integration else None

    @property
    def scopes(self) -> list[str]:
        return list(self.integration.allowed_scopes or []) if self.integration else []

    @property
    def http_status(self) -> int:
        return 200 if self.allowed else self.reason.http_status


async def match_credentials(
    store: CredentialStore,
    client_id: Optional[str],
    client_secret: Optional[str],
    now: Optional[datetime] = None,
) -> tuple[Optional[Integration], Optional[IntegrationSecret]]:
    """Resolve an integration from a client id and a presented secret.

    The legacy secret on the integration is tried first, then the
    integration's child secrets. Returns ``(integration, secret)`` where
    ``secret`` is the matched child secret (None for the legacy secret),
    or ``(None, None)`` on any mismatch. Nothing is written.
    """
    if not client_id or not client_secret:
        return None, None

    integration = await store.find_by_client_id(client_id)
    if integration is None:
        return None, None

    if secrets_match(integration.client_secret, client_secret):
        return integration, None

    secret = await store.find_secret_by_key(integration.id, client_secret)
    if secret is None or not secret.is_valid(now):
        return None, None
    return integration, secret


class AuthorizationGate:
    """Turns a request context and stored policy into a verdict.

    Args:
        store: Credential store used for the integration / secret lookups
        config: Access policy configuration (role hierarchy etc.)
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        store: CredentialStore,
        config: Optional[AccessPolicyConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.config = config or AccessPolicyConfig()
        self.clock = clock
        self._policy_checks = (
            (DenyReason.INACTIVE, self._check_active),
            (DenyReason.INSUFFICIENT_ROLE, self._check_role),
            (DenyReason.INSUFFICIENT_PERMISSION, self._check_permissions),
            (DenyReason.IP_NOT_ALLOWED, self._check_ip),
            (DenyReason.GEO_NOT_ALLOWED, self._check_geo),
            (DenyReason.TIME_NOT_ALLOWED, self._check_time),
        )

    async def authorize(self, ctx: RequestContext) -> AuthorizationVerdict:
        integration = await self._authenticate(ctx)
        if integration is None:
            return self._deny(DenyReason.INVALID_CREDENTIALS, ctx)

        for reason, check in self._policy_checks:
            if not check(integration, ctx):
                return self._deny(reason, ctx, integration)

        logger.debug(
            "Integration authorized: client_id=%s ip=%s",
            integration.client_id,
            ctx.caller_ip,
        )
        return AuthorizationVerdict.allow(integration)

    async def _authenticate(self, ctx: RequestContext) -> Optional[Integration]:
        integration, secret = await match_credentials(
            self.store, ctx.client_id, ctx.client_secret, self.clock()
        )
        if secret is not None:
            await self.store.mark_secret_used(secret)
        return integration

    # ─── Policy checks ─────────────────────────────────────

    def _check_active(self, integration: Integration, ctx: RequestContext) -> bool:
        return integration.is_active()

    def _check_role(self, integration: Integration, ctx: RequestContext) -> bool:
        return perms.role_satisfies(
            integration.role, ctx.required_role, self.config.role_hierarchy
        )

    def _check_permissions(self, integration: Integration, ctx: RequestContext) -> bool:
        return perms.holds_all_permissions(integration.permissions, ctx.required_permissions)

    def _check_ip(self, integration: Integration, ctx: RequestContext) -> bool:
        return integration.is_ip_allowed(ctx.caller_ip)

    def _check_geo(self, integration: Integration, ctx: RequestContext) -> bool:
        # Unknown country: geography is not evaluated
        if not ctx.caller_country:
            return True
        return integration.is_country_allowed(ctx.caller_country)

    def _check_time(self, integration: Integration, ctx: RequestContext) -> bool:
        return integration.is_time_allowed(self.clock())

    def _deny(
        self,
        reason: DenyReason,
        ctx: RequestContext,
        integration: Optional[Integration] = None,
    ) -> AuthorizationVerdict:
        logger.warning(
            "Integration access denied: reason=%s client_id=%s ip=%s",
            reason.value,
            ctx.client_id,
            ctx.caller_ip,
            extra={
                "reason": reason.value,
                "integration_id": integration.id if integration else None,
            },
        )
        return AuthorizationVerdict.deny(reason)
