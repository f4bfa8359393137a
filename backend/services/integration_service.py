"""Integration lifecycle service: create, update, delete and policy edits.

Every mutating call returns a ``LifecycleResult`` carrying the entity and
the domain events it produced. Callers dispatch the events (see
``core.events``) once their transaction has committed.
"""

import copy
import logging
from typing import Any, Iterable, Optional, Sequence

import pydantic
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core import permissions as perms
from core.constants import IntegrationStatus
from core.credentials import generate_token
from core.events import (
    IntegrationCreated,
    IntegrationDeleted,
    IntegrationUpdated,
    LifecycleResult,
)
from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.policy_config import AccessPolicyConfig
from core.rate_limit import RateLimits
from core.restrictions import GeoRestrictions, IpWhitelist, TimeRestrictions, is_valid_ip_entry
from core.utils import calculate_offset, is_absolute_url, utc_now
from db.models.integration import Integration
from db.models.integration_secret import IntegrationSecret
from services.authorization import match_credentials
from services.credential_store import SQLAlchemyCredentialStore
from services.secret_service import SecretLifecycleManager

logger = logging.getLogger(__name__)

# Attributes callers may set through create() / update()
EDITABLE_FIELDS = (
    "name",
    "description",
    "redirect_uris",
    "status",
    "role",
    "permissions",
    "allowed_scopes",
    "default_scopes",
    "ip_whitelist",
    "geo_restrictions",
    "time_restrictions",
    "rate_limits",
    "metadata",
)

_POLICY_STRUCTS = {
    "ip_whitelist": IpWhitelist,
    "geo_restrictions": GeoRestrictions,
    "time_restrictions": TimeRestrictions,
    "rate_limits": RateLimits,
}


class IntegrationService:
    """Creates integrations and edits their credentials and access policy."""

    def __init__(self, db: AsyncSession, config: Optional[AccessPolicyConfig] = None):
        self.db = db
        self.config = config or AccessPolicyConfig()
        self.secrets = SecretLifecycleManager(db, self.config)

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(self, integration_id: str) -> Integration:
        result = await self.db.execute(
            select(Integration).where(
                Integration.id == integration_id,
                Integration.not_deleted(),
            )
        )
        integration = result.scalar_one_or_none()
        if integration is None:
            raise NotFoundError("Integration not found")
        return integration

    async def find_by_client_id(self, client_id: str) -> Optional[Integration]:
        result = await self.db.execute(
            select(Integration).where(
                Integration.client_id == client_id,
                Integration.not_deleted(),
            )
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        per_page: Optional[int] = None,
    ) -> tuple[Sequence[Integration], int]:
        """List integrations, newest first.

        Returns:
            Tuple of (items, total_count)
        """
        per_page = min(per_page or self.config.per_page, self.config.max_per_page)

        filters = [Integration.not_deleted()]
        if user_id is not None:
            filters.append(Integration.user_id == user_id)
        if status:
            filters.append(Integration.status == status)
        if search:
            pattern = f"%{search.lower()}%"
            filters.append(
                or_(
                    func.lower(Integration.name).like(pattern),
                    func.lower(Integration.description).like(pattern),
                )
            )

        query = (
            select(Integration)
            .where(*filters)
            .order_by(Integration.created_at.desc(), Integration.name)
            .offset(calculate_offset(page, per_page))
            .limit(per_page)
        )
        count_query = select(func.count()).select_from(Integration).where(*filters)

        items = (await self.db.execute(query)).scalars().all()
        total = (await self.db.execute(count_query)).scalar() or 0
        return items, total

    # ─── Credentials ───────────────────────────────────────

    async def validate_credentials(self, client_id: str, client_secret: str) -> bool:
        """True for an active integration whose legacy or child secret matches."""
        integration, _ = await self._match_credentials(client_id, client_secret)
        return integration is not None

    async def validate_credentials_and_get(self, client_id: str, client_secret: str) -> Optional[Integration]:
        """Return the integration for valid credentials, marking a child secret used."""
        integration, secret = await self._match_credentials(client_id, client_secret)
        if integration is not None and secret is not None:
            await self.secrets.mark_used(secret)
        return integration

    async def _match_credentials(
        self, client_id: str, client_secret: str
    ) -> tuple[Optional[Integration], Optional[IntegrationSecret]]:
        integration, secret = await match_credentials(
            SQLAlchemyCredentialStore(self.db), client_id, client_secret
        )
        if integration is None or not integration.is_active():
            return None, None
        return integration, secret

    async def regenerate_client_secret(self, integration: Integration) -> LifecycleResult[Integration]:
        integration.client_secret = generate_token(self.config.secret_length)
        return await self._saved(integration, ["client_secret"])

    # ─── Create / update / delete ──────────────────────────

    async def create(self, attrs: dict[str, Any], user_id: Optional[str] = None) -> LifecycleResult[Integration]:
        """Create an integration, filling credentials and policy defaults.

        Raises:
            ValidationError: On missing name or invalid policy values
            ConflictError: If an explicit client_id is already taken
        """
        if not attrs.get("name"):
            raise ValidationError("Integration name is required")

        values = self.config.defaults_for_new_integration()
        values.update(self._clean(attrs))

        client_id = attrs.get("client_id")
        if client_id:
            if await self._client_id_exists(client_id):
                raise ConflictError(f"Client ID already in use: {client_id}")
        else:
            client_id = await self._generate_client_id()

        integration = Integration(
            client_id=client_id,
            client_secret=attrs.get("client_secret") or generate_token(self.config.secret_length),
            user_id=user_id if user_id is not None else attrs.get("user_id"),
            name=values.pop("name"),
            description=values.pop("description", None),
            redirect_uris=values.pop("redirect_uris", []),
            extra_metadata=values.pop("metadata", None),
            **values,
        )
        self.db.add(integration)
        await self.db.flush()

        return LifecycleResult(entity=integration, events=[IntegrationCreated.for_integration(integration)])

    async def update(self, integration: Integration, attrs: dict[str, Any]) -> LifecycleResult[Integration]:
        """Apply editable attributes. The client_id can never change.

        Raises:
            ValidationError: On a client_id change or invalid policy values
        """
        if "client_id" in attrs and attrs["client_id"] != integration.client_id:
            raise ValidationError("client_id is immutable")

        changed = []
        for key, value in self._clean(attrs).items():
            column = "extra_metadata" if key == "metadata" else key
            if getattr(integration, column) != value:
                setattr(integration, column, value)
                changed.append(key)
        return await self._saved(integration, changed)

    async def delete(self, integration: Integration) -> LifecycleResult[Integration]:
        """Soft-delete the integration together with its secrets."""
        result = await self.db.execute(
            select(IntegrationSecret).where(
                IntegrationSecret.integration_id == integration.id,
                IntegrationSecret.not_deleted(),
            )
        )
        deleted_at = utc_now()
        for secret in result.scalars().all():
            secret.soft_delete(deleted_at)
        integration.soft_delete(deleted_at)
        await self.db.flush()
        return LifecycleResult(entity=integration, events=[IntegrationDeleted.for_integration(integration)])

    async def activate(self, integration: Integration) -> LifecycleResult[Integration]:
        return await self.update(integration, {"status": IntegrationStatus.ACTIVE.value})

    async def deactivate(self, integration: Integration) -> LifecycleResult[Integration]:
        return await self.update(integration, {"status": IntegrationStatus.INACTIVE.value})

    # ─── Redirect URIs ─────────────────────────────────────

    async def add_redirect_uri(self, integration: Integration, uri: str) -> LifecycleResult[Integration]:
        uris = list(integration.redirect_uris or [])
        if uri in uris:
            return LifecycleResult(entity=integration)
        self._check_redirect_uris([uri])
        uris.append(uri)
        return await self.update(integration, {"redirect_uris": uris})

    async def remove_redirect_uri(self, integration: Integration, uri: str) -> LifecycleResult[Integration]:
        uris = [u for u in (integration.redirect_uris or []) if u != uri]
        return await self.update(integration, {"redirect_uris": uris})

    # ─── Role / permissions / scopes ───────────────────────

    async def set_role(self, integration: Integration, role: Optional[str]) -> LifecycleResult[Integration]:
        return await self.update(integration, {"role": role})

    async def grant_permission(self, integration: Integration, resource: str, action: str) -> LifecycleResult[Integration]:
        perms.validate_permission(self.config.permission_resources, resource, [action])
        updated = perms.grant_permission(integration.permissions, resource, action)
        return await self.update(integration, {"permissions": updated})

    async def revoke_permission(self, integration: Integration, resource: str, action: str) -> LifecycleResult[Integration]:
        updated = perms.revoke_permission(integration.permissions, resource, action)
        return await self.update(integration, {"permissions": updated})

    async def set_resource_permissions(
        self, integration: Integration, resource: str, actions: Iterable[str]
    ) -> LifecycleResult[Integration]:
        actions = list(actions)
        perms.validate_permission(self.config.permission_resources, resource, actions)
        updated = perms.set_resource_permissions(integration.permissions, resource, actions)
        return await self.update(integration, {"permissions": updated})

    async def add_scope(self, integration: Integration, scope: str) -> LifecycleResult[Integration]:
        scopes = list(integration.allowed_scopes or [])
        if scope in scopes:
            return LifecycleResult(entity=integration)
        return await self.update(integration, {"allowed_scopes": scopes + [scope]})

    async def remove_scope(self, integration: Integration, scope: str) -> LifecycleResult[Integration]:
        scopes = [s for s in (integration.allowed_scopes or []) if s != scope]
        return await self.update(integration, {"allowed_scopes": scopes})

    # ─── IP lists ──────────────────────────────────────────

    async def add_allowed_ip(self, integration: Integration, entry: str) -> LifecycleResult[Integration]:
        return await self._edit_ip_list(integration, "allowed_ips", entry, add=True)

    async def remove_allowed_ip(self, integration: Integration, entry: str) -> LifecycleResult[Integration]:
        return await self._edit_ip_list(integration, "allowed_ips", entry, add=False)

    async def add_blocked_ip(self, integration: Integration, entry: str) -> LifecycleResult[Integration]:
        return await self._edit_ip_list(integration, "blocked_ips", entry, add=True)

    async def _edit_ip_list(self, integration: Integration, key: str, entry: str, add: bool) -> LifecycleResult[Integration]:
        whitelist = copy.deepcopy(integration.ip_whitelist or {})
        entries = list(whitelist.get(key, []))
        if add and entry not in entries:
            entries.append(entry)
        elif not add:
            entries = [e for e in entries if e != entry]
        whitelist[key] = entries
        return await self.update(integration, {"ip_whitelist": whitelist})

    # ─── Helpers ───────────────────────────────────────────

    async def _saved(self, integration: Integration, changed: list[str]) -> LifecycleResult[Integration]:
        if not changed:
            return LifecycleResult(entity=integration)
        await self.db.flush()
        event = IntegrationUpdated.for_integration(integration, changed_fields=changed)
        return LifecycleResult(entity=integration, events=[event])

    def _clean(self, attrs: dict[str, Any]) -> dict[str, Any]:
        """Validate editable attributes and return them normalised."""
        cleaned: dict[str, Any] = {}
        for key in EDITABLE_FIELDS:
            if key not in attrs:
                continue
            value = attrs[key]

            if key == "status":
                if value not in {s.value for s in IntegrationStatus}:
                    raise ValidationError(f"Invalid status: {value}")
            elif key == "role":
                if value is not None and not self.config.is_known_role(value):
                    raise ValidationError(f"Unknown role: {value}")
            elif key == "redirect_uris":
                value = list(value or [])
                self._check_redirect_uris(value)
            elif key == "permissions":
                value = {resource: list(dict.fromkeys(actions)) for resource, actions in (value or {}).items()}
                for resource, actions in value.items():
                    perms.validate_permission(self.config.permission_resources, resource, actions)
            elif key in ("allowed_scopes", "default_scopes"):
                value = list(dict.fromkeys(value or []))
                unknown = [scope for scope in value if scope not in self.config.scopes]
                if unknown:
                    raise ValidationError(f"Unknown scope(s): {', '.join(unknown)}")
            elif key in _POLICY_STRUCTS:
                value = self._check_struct(key, value or {})

            cleaned[key] = value
        return cleaned

    @staticmethod
    def _check_struct(key: str, value: dict[str, Any]) -> dict[str, Any]:
        try:
            parsed = _POLICY_STRUCTS[key].model_validate(value)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid {key}: {exc.errors()[0]['msg']}") from exc
        value = copy.deepcopy(value)
        if key == "ip_whitelist":
            for entry in list(value.get("allowed_ips", [])) + list(value.get("blocked_ips", [])):
                if not is_valid_ip_entry(entry):
                    raise ValidationError(f"Invalid IP or CIDR entry: {entry}")
        elif key == "geo_restrictions":
            # Country codes are stored upper-case
            for field_name in ("allowed_countries", "blocked_countries"):
                if field_name in value:
                    value[field_name] = list(getattr(parsed, field_name))
        return value

    @staticmethod
    def _check_redirect_uris(uris: Iterable[str]) -> None:
        for uri in uris:
            if not is_absolute_url(uri):
                raise ValidationError(f"Redirect URI must be an absolute URL: {uri}")

    async def _client_id_exists(self, client_id: str) -> bool:
        result = await self.db.execute(
            select(func.count()).select_from(Integration).where(Integration.client_id == client_id)
        )
        return (result.scalar() or 0) > 0

    async def _generate_client_id(self) -> str:
        while True:
            client_id = generate_token(self.config.client_id_length)
            if not await self._client_id_exists(client_id):
                return client_id
