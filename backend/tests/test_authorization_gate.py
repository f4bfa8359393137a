"""Tests for the authorization gate decision pipeline.

The gate runs against an in-memory credential store, so every check is
exercised without a database.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.constants import DenyReason
from core.exceptions import StoreUnavailableError
from services.authorization import AuthorizationGate, RequestContext
from tests.factories import FakeCredentialStore, make_integration, make_secret

# 2024-01-01 was a Monday
MONDAY_NOON = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _gate(store, now=MONDAY_NOON):
    return AuthorizationGate(store, clock=lambda: now)


def _ctx(integration, secret=None, **overrides):
    values = dict(
        client_id=integration.client_id,
        client_secret=secret if secret is not None else integration.client_secret,
        caller_ip="10.1.2.3",
    )
    values.update(overrides)
    return RequestContext(**values)


class TestCredentials:

    @pytest.mark.asyncio
    async def test_legacy_secret_allows(self):
        integration = make_integration()
        verdict = await _gate(FakeCredentialStore([integration])).authorize(_ctx(integration))

        assert verdict.allowed is True
        assert verdict.integration_id == integration.id
        assert verdict.http_status == 200

    @pytest.mark.asyncio
    async def test_unknown_client_id(self):
        store = FakeCredentialStore()
        verdict = await _gate(store).authorize(RequestContext(client_id="ghost", client_secret="x"))

        assert verdict.allowed is False
        assert verdict.reason == DenyReason.INVALID_CREDENTIALS
        assert verdict.http_status == 401

    @pytest.mark.asyncio
    async def test_wrong_secret(self):
        integration = make_integration()
        verdict = await _gate(FakeCredentialStore([integration])).authorize(
            _ctx(integration, secret="wrong")
        )
        assert verdict.reason == DenyReason.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_missing_credentials_skip_lookup(self):
        store = FakeCredentialStore()
        verdict = await _gate(store).authorize(RequestContext(client_id=None, client_secret=None))

        assert verdict.reason == DenyReason.INVALID_CREDENTIALS
        assert store.lookups == []

    @pytest.mark.asyncio
    async def test_child_secret_allows_and_is_marked_used(self):
        integration = make_integration()
        secret = make_secret(integration)
        store = FakeCredentialStore([integration], [secret])

        verdict = await _gate(store).authorize(_ctx(integration, secret=secret.secret_key))

        assert verdict.allowed is True
        assert store.used == [secret.id]
        assert secret.last_used_at is not None

    @pytest.mark.asyncio
    async def test_inactive_child_secret_denied(self):
        integration = make_integration()
        secret = make_secret(integration, status="inactive")
        store = FakeCredentialStore([integration], [secret])

        verdict = await _gate(store).authorize(_ctx(integration, secret=secret.secret_key))

        assert verdict.reason == DenyReason.INVALID_CREDENTIALS
        assert store.used == []

    @pytest.mark.asyncio
    async def test_expired_child_secret_denied(self):
        integration = make_integration()
        secret = make_secret(integration, expires_at=MONDAY_NOON)
        store = FakeCredentialStore([integration], [secret])

        verdict = await _gate(store).authorize(_ctx(integration, secret=secret.secret_key))
        assert verdict.reason == DenyReason.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_secret_of_other_integration_denied(self):
        mine = make_integration()
        theirs = make_integration()
        secret = make_secret(theirs)
        store = FakeCredentialStore([mine, theirs], [secret])

        verdict = await _gate(store).authorize(_ctx(mine, secret=secret.secret_key))
        assert verdict.reason == DenyReason.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self):
        integration = make_integration()
        store = FakeCredentialStore([integration], fail_with=StoreUnavailableError())

        with pytest.raises(StoreUnavailableError):
            await _gate(store).authorize(_ctx(integration))


class TestPolicyChecks:

    @pytest.mark.asyncio
    async def test_inactive(self):
        integration = make_integration(status="inactive")
        verdict = await _gate(FakeCredentialStore([integration])).authorize(_ctx(integration))

        assert verdict.reason == DenyReason.INACTIVE
        assert verdict.http_status == 401

    @pytest.mark.asyncio
    async def test_insufficient_role(self):
        integration = make_integration(role="user")
        verdict = await _gate(FakeCredentialStore([integration])).authorize(
            _ctx(integration, required_role="admin")
        )
        assert verdict.reason == DenyReason.INSUFFICIENT_ROLE
        assert verdict.http_status == 403

    @pytest.mark.asyncio
    async def test_role_without_hierarchy_entry(self):
        integration = make_integration(role="superuser")
        verdict = await _gate(FakeCredentialStore([integration])).authorize(
            _ctx(integration, required_role="guest")
        )
        assert verdict.reason == DenyReason.INSUFFICIENT_ROLE

    @pytest.mark.asyncio
    async def test_no_role_is_unrestricted(self):
        integration = make_integration(role=None)
        verdict = await _gate(FakeCredentialStore([integration])).authorize(
            _ctx(integration, required_role="admin")
        )
        assert verdict.allowed is True

    @pytest.mark.asyncio
    async def test_insufficient_permission(self):
        integration = make_integration(permissions={"posts": ["read"]})
        verdict = await _gate(FakeCredentialStore([integration])).authorize(
            _ctx(integration, required_permissions=["posts:read", "posts:delete"])
        )
        assert verdict.reason == DenyReason.INSUFFICIENT_PERMISSION

    @pytest.mark.asyncio
    async def test_permissions_held(self):
        integration = make_integration(permissions={"posts": ["read", "delete"]})
        verdict = await _gate(FakeCredentialStore([integration])).authorize(
            _ctx(integration, required_permissions=["posts:read", "posts:delete"])
        )
        assert verdict.allowed is True

    @pytest.mark.asyncio
    async def test_ip_not_allowed(self):
        integration = make_integration(
            ip_whitelist={"require_whitelist": True, "allowed_ips": ["192.168.0.0/16"]}
        )
        verdict = await _gate(FakeCredentialStore([integration])).authorize(_ctx(integration))
        assert verdict.reason == DenyReason.IP_NOT_ALLOWED

    @pytest.mark.asyncio
    async def test_ip_in_cidr_allowed(self):
        integration = make_integration(
            ip_whitelist={"require_whitelist": True, "allowed_ips": ["10.0.0.0/8"]}
        )
        verdict = await _gate(FakeCredentialStore([integration])).authorize(_ctx(integration))
        assert verdict.allowed is True

    @pytest.mark.asyncio
    async def test_geo_not_allowed(self):
        integration = make_integration(geo_restrictions={"blocked_countries": ["RU"]})
        verdict = await _gate(FakeCredentialStore([integration])).authorize(
            _ctx(integration, caller_country="RU")
        )
        assert verdict.reason == DenyReason.GEO_NOT_ALLOWED

    @pytest.mark.asyncio
    async def test_geo_codes_match_case_insensitively(self):
        integration = make_integration(geo_restrictions={"blocked_countries": ["cn"]})
        store = FakeCredentialStore([integration])

        verdict = await _gate(store).authorize(_ctx(integration, caller_country="CN"))
        assert verdict.reason == DenyReason.GEO_NOT_ALLOWED

        verdict = await _gate(store).authorize(_ctx(integration, caller_country="cn"))
        assert verdict.reason == DenyReason.GEO_NOT_ALLOWED

    @pytest.mark.asyncio
    async def test_geo_skipped_without_country(self):
        integration = make_integration(geo_restrictions={"allowed_countries": ["US"]})
        verdict = await _gate(FakeCredentialStore([integration])).authorize(
            _ctx(integration, caller_country=None)
        )
        assert verdict.allowed is True

    @pytest.mark.asyncio
    async def test_time_not_allowed(self):
        integration = make_integration(
            time_restrictions={"timezone": "UTC", "allowed_days": ["saturday", "sunday"]}
        )
        verdict = await _gate(FakeCredentialStore([integration])).authorize(_ctx(integration))
        assert verdict.reason == DenyReason.TIME_NOT_ALLOWED

    @pytest.mark.asyncio
    async def test_time_window_uses_gate_clock(self):
        integration = make_integration(
            time_restrictions={"timezone": "UTC", "allowed_hours": {"start": "09:00", "end": "17:00"}}
        )
        store = FakeCredentialStore([integration])

        assert (await _gate(store).authorize(_ctx(integration))).allowed is True
        evening = MONDAY_NOON + timedelta(hours=8)
        verdict = await _gate(store, now=evening).authorize(_ctx(integration))
        assert verdict.reason == DenyReason.TIME_NOT_ALLOWED


class TestCheckOrder:
    """The first failing check decides the reason."""

    @pytest.mark.asyncio
    async def test_inactive_before_role(self):
        integration = make_integration(status="inactive", role="guest")
        verdict = await _gate(FakeCredentialStore([integration])).authorize(
            _ctx(integration, required_role="admin")
        )
        assert verdict.reason == DenyReason.INACTIVE

    @pytest.mark.asyncio
    async def test_role_before_permission(self):
        integration = make_integration(role="guest", permissions={})
        verdict = await _gate(FakeCredentialStore([integration])).authorize(
            _ctx(integration, required_role="admin", required_permissions=["posts:read"])
        )
        assert verdict.reason == DenyReason.INSUFFICIENT_ROLE

    @pytest.mark.asyncio
    async def test_ip_before_geo_and_time(self):
        integration = make_integration(
            ip_whitelist={"require_whitelist": True, "allowed_ips": []},
            geo_restrictions={"blocked_countries": ["RU"]},
            time_restrictions={"timezone": "UTC", "allowed_days": ["sunday"]},
        )
        verdict = await _gate(FakeCredentialStore([integration])).authorize(
            _ctx(integration, caller_country="RU")
        )
        assert verdict.reason == DenyReason.IP_NOT_ALLOWED

    @pytest.mark.asyncio
    async def test_geo_before_time(self):
        integration = make_integration(
            geo_restrictions={"blocked_countries": ["RU"]},
            time_restrictions={"timezone": "UTC", "allowed_days": ["sunday"]},
        )
        verdict = await _gate(FakeCredentialStore([integration])).authorize(
            _ctx(integration, caller_country="RU")
        )
        assert verdict.reason == DenyReason.GEO_NOT_ALLOWED

    @pytest.mark.asyncio
    async def test_bad_credentials_never_reach_policy(self):
        integration = make_integration(status="inactive")
        secret = make_secret(integration)
        store = FakeCredentialStore([integration], [secret])

        verdict = await _gate(store).authorize(_ctx(integration, secret="wrong"))
        assert verdict.reason == DenyReason.INVALID_CREDENTIALS
        assert store.used == []


class TestVerdict:

    @pytest.mark.asyncio
    async def test_allow_exposes_role_and_scopes(self):
        integration = make_integration(role="service", allowed_scopes=["read", "write"])
        verdict = await _gate(FakeCredentialStore([integration])).authorize(_ctx(integration))

        assert verdict.role == "service"
        assert verdict.scopes == ["read", "write"]

    @pytest.mark.asyncio
    async def test_deny_carries_no_integration(self):
        integration = make_integration(status="inactive")
        verdict = await _gate(FakeCredentialStore([integration])).authorize(_ctx(integration))

        assert verdict.integration is None
        assert verdict.integration_id is None
        assert verdict.scopes == []
