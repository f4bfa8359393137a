"""Tests for the immutable access policy configuration and settings."""

import pydantic
import pytest

from app.config import Settings
from core import permissions as perms
from core.constants import DenyReason, IntegrationRole, IntegrationStatus
from core.policy_config import AccessPolicyConfig


class TestAccessPolicyConfig:

    def test_defaults(self):
        config = AccessPolicyConfig()
        assert config.client_id_length == 40
        assert config.secret_length == 80
        assert config.default_status == IntegrationStatus.ACTIVE
        assert config.default_role == IntegrationRole.USER
        assert config.per_page == 15

    def test_is_frozen(self):
        config = AccessPolicyConfig()
        with pytest.raises(pydantic.ValidationError):
            config.secret_length = 10

    def test_role_rank(self):
        config = AccessPolicyConfig()
        assert config.role_rank("admin") == 4
        assert config.role_rank("nobody") == 0
        assert config.role_rank(None) == 0
        assert config.role_rank("") == 0

    def test_role_rank_uses_configured_hierarchy(self):
        config = AccessPolicyConfig(role_hierarchy={"operator": 7, "viewer": 1})
        for role in ("operator", "viewer", "admin", "", None):
            assert config.role_rank(role) == perms.role_rank(role, config.role_hierarchy)
        assert config.role_rank("operator") == 7
        assert config.role_rank("admin") == 0

    def test_known_roles(self):
        config = AccessPolicyConfig()
        assert config.is_known_role("readonly") is True
        assert config.is_known_role("root") is False

    def test_allowed_actions(self):
        config = AccessPolicyConfig()
        assert config.allowed_actions("analytics") == ("read",)
        assert config.allowed_actions("billing") == ()

    def test_new_integration_defaults_are_fresh_copies(self):
        config = AccessPolicyConfig()
        first = config.defaults_for_new_integration()
        first["ip_whitelist"]["allowed_ips"].append("10.0.0.1")
        first["rate_limits"]["requests_per_minute"] = 1

        second = config.defaults_for_new_integration()
        assert second["ip_whitelist"]["allowed_ips"] == []
        assert second["rate_limits"]["requests_per_minute"] == 60
        assert second["status"] == "active"
        assert second["role"] == "user"
        assert second["time_restrictions"] == {}

    def test_from_settings(self):
        settings = Settings(
            INTEGRATION_CLIENT_ID_LENGTH=32,
            INTEGRATION_SECRET_LENGTH=64,
            INTEGRATION_DEFAULT_ROLE="service",
            INTEGRATION_PER_PAGE=5,
        )
        config = AccessPolicyConfig.from_settings(settings)
        assert config.client_id_length == 32
        assert config.secret_length == 64
        assert config.default_role == IntegrationRole.SERVICE
        assert config.per_page == 5

    def test_from_settings_without_default_role(self):
        settings = Settings(INTEGRATION_DEFAULT_ROLE="")
        assert AccessPolicyConfig.from_settings(settings).default_role is None


class TestSettingsValidation:

    def test_short_lengths_rejected(self):
        with pytest.raises(RuntimeError):
            Settings(INTEGRATION_CLIENT_ID_LENGTH=8).validate_lengths()
        with pytest.raises(RuntimeError):
            Settings(INTEGRATION_SECRET_LENGTH=16).validate_lengths()

    def test_defaults_pass(self):
        Settings().validate_lengths()


class TestDenyReason:

    def test_status_codes(self):
        assert DenyReason.INVALID_CREDENTIALS.http_status == 401
        assert DenyReason.INACTIVE.http_status == 401
        for reason in (
            DenyReason.INSUFFICIENT_ROLE,
            DenyReason.INSUFFICIENT_PERMISSION,
            DenyReason.IP_NOT_ALLOWED,
            DenyReason.GEO_NOT_ALLOWED,
            DenyReason.TIME_NOT_ALLOWED,
        ):
            assert reason.http_status == 403

    def test_every_reason_has_public_message(self):
        for reason in DenyReason:
            assert reason.public_message
