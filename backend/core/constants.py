"""Constants and enums for the integration access gateway."""

from enum import Enum
from typing import Optional


class IntegrationStatus(str, Enum):
    """Integration status."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class SecretStatus(str, Enum):
    """Integration secret status."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class IntegrationRole(str, Enum):
    """Closed set of roles an integration may carry."""

    GUEST = "guest"
    USER = "user"
    SERVICE = "service"
    READONLY = "readonly"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["IntegrationRole"]:
        """Return the matching role, or None for empty / unknown strings."""
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


# service and readonly share a rank
ROLE_HIERARCHY: dict[str, int] = {
    IntegrationRole.GUEST.value: 1,
    IntegrationRole.USER.value: 2,
    IntegrationRole.SERVICE.value: 3,
    IntegrationRole.READONLY.value: 3,
    IntegrationRole.ADMIN.value: 4,
}

UNKNOWN_ROLE_RANK = 0


class DenyReason(str, Enum):
    """Reason codes carried by a DENY verdict."""

    INVALID_CREDENTIALS = "invalid_credentials"
    INACTIVE = "inactive"
    INSUFFICIENT_ROLE = "insufficient_role"
    INSUFFICIENT_PERMISSION = "insufficient_permission"
    IP_NOT_ALLOWED = "ip_not_allowed"
    GEO_NOT_ALLOWED = "geo_not_allowed"
    TIME_NOT_ALLOWED = "time_not_allowed"

    @property
    def http_status(self) -> int:
        """Status code the HTTP layer answers with for this reason."""
        if self in (DenyReason.INVALID_CREDENTIALS, DenyReason.INACTIVE):
            return 401
        return 403

    @property
    def public_message(self) -> str:
        """Generic response text shown to the caller."""
        return _PUBLIC_MESSAGES[self]


_PUBLIC_MESSAGES = {
    DenyReason.INVALID_CREDENTIALS: "Invalid integration credentials",
    DenyReason.INACTIVE: "Integration is inactive",
    DenyReason.INSUFFICIENT_ROLE: "Insufficient role permissions",
    DenyReason.INSUFFICIENT_PERMISSION: "Insufficient permissions",
    DenyReason.IP_NOT_ALLOWED: "IP address not allowed",
    DenyReason.GEO_NOT_ALLOWED: "Geographic location not allowed",
    DenyReason.TIME_NOT_ALLOWED: "Access not allowed at this time",
}

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

# Header chain used to resolve the caller country, first match wins
COUNTRY_HEADERS = ("X-Country-Code", "CF-IPCountry", "X-Forwarded-Country")

CLIENT_ID_HEADER = "X-Client-ID"
CLIENT_SECRET_HEADER = "X-Client-Secret"
