"""Contextual restriction evaluators: IP, geography and time windows.

Each integration stores its restrictions as JSON. The structs below parse
those blobs and expose pure predicates, so the authorization gate can run
them without touching the database.
"""

import ipaddress
import re
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.constants import COUNTRY_HEADERS, WEEKDAYS

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
_COUNTRY_CODE = re.compile(r"^[A-Z]{2}$")


# ─── IP ────────────────────────────────────────────────────────────────────

def ip_matches(ip: str, pattern: str) -> bool:
    """Match an IP against an exact address or a CIDR block.

    ``10.1.2.3`` matches ``10.0.0.0/8``; host bits in the pattern are
    ignored, as with ``(ip & mask) == (network & mask)``. Unparseable
    input never matches.
    """
    if ip == pattern:
        return True
    if "/" not in pattern:
        return False
    try:
        network = ipaddress.ip_network(pattern.strip(), strict=False)
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    if address.version != network.version:
        return False
    return address in network


def is_valid_ip_entry(entry: str) -> bool:
    """True if ``entry`` is a bare IP address or a CIDR block."""
    try:
        if "/" in entry:
            ipaddress.ip_network(entry, strict=False)
        else:
            ipaddress.ip_address(entry)
    except ValueError:
        return False
    return True


class IpWhitelist(BaseModel):
    """IP allow/block lists. Entries may be bare IPs or CIDR blocks."""

    model_config = ConfigDict(extra="ignore")

    require_whitelist: bool = False
    allowed_ips: list[str] = Field(default_factory=list)
    blocked_ips: list[str] = Field(default_factory=list)

    def is_ip_allowed(self, ip: Optional[str]) -> bool:
        """Blocked entries win over allowed ones; default-deny once required."""
        if not self.require_whitelist:
            return True
        if not ip:
            return False
        if any(ip_matches(ip, blocked) for blocked in self.blocked_ips):
            return False
        return any(ip_matches(ip, allowed) for allowed in self.allowed_ips)


# ─── Geography ─────────────────────────────────────────────────────────────

class GeoRestrictions(BaseModel):
    """Country allow/block lists (ISO 3166-1 alpha-2 codes).

    Codes are stored upper-case; anything but two letters is rejected.
    """

    model_config = ConfigDict(extra="ignore")

    allowed_countries: list[str] = Field(default_factory=list)
    blocked_countries: list[str] = Field(default_factory=list)

    @field_validator("allowed_countries", "blocked_countries")
    @classmethod
    def _check_codes(cls, value: list[str]) -> list[str]:
        codes = [code.strip().upper() for code in value]
        invalid = [code for code in codes if not _COUNTRY_CODE.match(code)]
        if invalid:
            raise ValueError(f"Invalid country code(s): {', '.join(invalid)}")
        return codes

    def is_country_allowed(self, country_code: str) -> bool:
        country_code = (country_code or "").strip().upper()
        if country_code in self.blocked_countries:
            return False
        if not self.allowed_countries:
            return True
        return country_code in self.allowed_countries


def resolve_country(headers: Mapping[str, str]) -> Optional[str]:
    """Read the caller country from the forwarded header chain.

    Tries the custom header, then the Cloudflare header, then the generic
    forwarded-country header. Returns None when none is present, in which
    case geography is not evaluated.
    """
    lowered = {key.lower(): value for key, value in headers.items()}
    for header in COUNTRY_HEADERS:
        value = lowered.get(header.lower())
        if value and value.strip():
            return value.strip().upper()
    return None


# ─── Time windows ──────────────────────────────────────────────────────────

class AllowedHours(BaseModel):
    model_config = ConfigDict(extra="ignore")

    start: str = "00:00"
    end: str = "23:59"

    @field_validator("start", "end")
    @classmethod
    def _check_hhmm(cls, value: str) -> str:
        if not _HHMM.match(value):
            raise ValueError(f"Expected HH:MM, got {value!r}")
        return value


class TimeRestrictions(BaseModel):
    """Weekday and hour-of-day window, evaluated in ``timezone``.

    Hours compare as inclusive "HH:MM" strings, so a window that crosses
    midnight (``22:00``-``06:00``) never matches.
    """

    model_config = ConfigDict(extra="ignore")

    timezone: str = "UTC"
    allowed_days: Optional[list[str]] = None
    allowed_hours: Optional[AllowedHours] = None

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("allowed_days")
    @classmethod
    def _check_days(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        days = [day.lower() for day in value]
        unknown = [day for day in days if day not in WEEKDAYS]
        if unknown:
            raise ValueError(f"Unknown weekday(s): {', '.join(unknown)}")
        return days

    def is_time_allowed(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(ZoneInfo(self.timezone))

        if self.allowed_days is not None:
            if WEEKDAYS[local.weekday()] not in self.allowed_days:
                return False

        if self.allowed_hours is not None:
            current = local.strftime("%H:%M")
            return self.allowed_hours.start <= current <= self.allowed_hours.end

        return True


def is_time_allowed(config: Optional[Mapping[str, Any]], now: Optional[datetime] = None) -> bool:
    """Evaluate a stored time-restriction blob; empty means unrestricted."""
    if not config:
        return True
    return TimeRestrictions.model_validate(config).is_time_allowed(now)
