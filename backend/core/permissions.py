"""Role hierarchy, resource permissions and scopes for integrations.

Permissions are stored as a mapping of resource name to the list of
actions granted on it, e.g.::

    {"posts": ["read", "create"], "analytics": ["read"]}

Route declarations use the ``"resource:action"`` form.

All mutators return a new mapping instead of editing in place so that
JSON columns are reassigned (and therefore flushed) by the ORM.
"""

from typing import Iterable, Mapping, Optional, Sequence

from core.constants import ROLE_HIERARCHY, UNKNOWN_ROLE_RANK
from core.exceptions import ValidationError


# ─── Roles ─────────────────────────────────────────────────────────────────

def role_rank(role: Optional[str], hierarchy: Mapping[str, int] = ROLE_HIERARCHY) -> int:
    """Rank of ``role``; unknown or empty roles rank 0."""
    if not role:
        return UNKNOWN_ROLE_RANK
    return hierarchy.get(role, UNKNOWN_ROLE_RANK)


def role_satisfies(
    integration_role: Optional[str],
    required_role: Optional[str],
    hierarchy: Mapping[str, int] = ROLE_HIERARCHY,
) -> bool:
    """Check whether an integration role meets a route's required role.

    An integration without a role is unrestricted, and a route without a
    required role accepts any caller.
    """
    if not integration_role:
        return True
    if not required_role:
        return True
    return role_rank(integration_role, hierarchy) >= role_rank(required_role, hierarchy)


# ─── Resource permissions ──────────────────────────────────────────────────

def has_permission(permissions: Optional[Mapping[str, Iterable[str]]], resource: str, action: str) -> bool:
    """True iff ``action`` is granted on ``resource``."""
    actions = (permissions or {}).get(resource)
    if not actions:
        return False
    return action in actions


def get_resource_permissions(permissions: Optional[Mapping[str, Iterable[str]]], resource: str) -> list[str]:
    return list((permissions or {}).get(resource, []))


def grant_permission(permissions: Optional[Mapping[str, Iterable[str]]], resource: str, action: str) -> dict[str, list[str]]:
    """Return a copy of ``permissions`` with ``action`` granted on ``resource``."""
    updated = _copy(permissions)
    actions = updated.setdefault(resource, [])
    if action not in actions:
        actions.append(action)
    return updated


def revoke_permission(permissions: Optional[Mapping[str, Iterable[str]]], resource: str, action: str) -> dict[str, list[str]]:
    """Return a copy without ``action`` on ``resource``.

    The resource key is dropped once its last action is revoked.
    """
    updated = _copy(permissions)
    if resource in updated:
        updated[resource] = [a for a in updated[resource] if a != action]
        if not updated[resource]:
            del updated[resource]
    return updated


def set_resource_permissions(
    permissions: Optional[Mapping[str, Iterable[str]]],
    resource: str,
    actions: Iterable[str],
) -> dict[str, list[str]]:
    """Return a copy where ``resource`` holds exactly ``actions`` (de-duplicated)."""
    updated = _copy(permissions)
    updated[resource] = list(dict.fromkeys(actions))
    return updated


def parse_permission_requirement(requirement: str) -> Optional[tuple[str, str]]:
    """Split ``"resource:action"``; strings without a colon yield None."""
    if ":" not in requirement:
        return None
    resource, action = requirement.split(":", 1)
    return resource, action


def holds_all_permissions(
    permissions: Optional[Mapping[str, Iterable[str]]],
    required: Sequence[str],
) -> bool:
    """Check every ``"resource:action"`` requirement; malformed entries are skipped."""
    for requirement in required:
        parsed = parse_permission_requirement(requirement)
        if parsed is None:
            continue
        if not has_permission(permissions, *parsed):
            return False
    return True


def validate_permission(
    resources: Mapping[str, Sequence[str]],
    resource: str,
    actions: Iterable[str],
) -> None:
    """Reject resources or actions outside the configured whitelist.

    Raises:
        ValidationError: On an unknown resource or action
    """
    if resource not in resources:
        raise ValidationError(f"Unknown permission resource: {resource}")
    allowed = resources[resource]
    for action in actions:
        if action not in allowed:
            raise ValidationError(
                f"Unknown action '{action}' for resource '{resource}'"
            )


def _copy(permissions: Optional[Mapping[str, Iterable[str]]]) -> dict[str, list[str]]:
    return {resource: list(actions) for resource, actions in (permissions or {}).items()}


# ─── Scopes ────────────────────────────────────────────────────────────────

def has_scope(allowed_scopes: Optional[Iterable[str]], scope: str) -> bool:
    return scope in (allowed_scopes or [])


def validate_scopes(requested: Iterable[str], allowed_scopes: Optional[Iterable[str]]) -> list[str]:
    """Intersection of requested and allowed scopes, in request order.

    Unknown scopes are dropped silently.
    """
    allowed = set(allowed_scopes or [])
    return [scope for scope in dict.fromkeys(requested) if scope in allowed]
