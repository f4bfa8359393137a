"""Integration self-service endpoints, authenticated by client credentials."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from app.dependencies import require_integration
from db.models.integration import Integration

router = APIRouter(prefix="/integration", tags=["integration"])


@router.api_route("/verify", methods=["GET", "POST"])
async def verify_credentials(
    integration: Integration = Depends(require_integration()),
) -> dict[str, Any]:
    """Confirm the presented credentials and describe the integration."""
    return {
        "id": integration.id,
        "name": integration.name,
        "client_id": integration.client_id,
        "role": integration.role,
        "scopes": list(integration.allowed_scopes or []),
    }


@router.get("/scopes")
async def resolve_scopes(
    scope: Optional[list[str]] = Query(default=None),
    integration: Integration = Depends(require_integration()),
) -> dict[str, Any]:
    """Intersect requested scopes with the integration's allowed scopes."""
    requested = scope or list(integration.default_scopes or [])
    return {
        "requested": requested,
        "granted": integration.validate_scopes(requested),
    }


@router.get("/rate-limit")
async def effective_rate_limit(
    key: str = "default",
    integration: Integration = Depends(require_integration()),
) -> dict[str, Any]:
    """Effective limits for a scope key (or the integration defaults)."""
    return {"key": key, "limits": integration.get_rate_limit(key)}


@router.get("/admin/ping", dependencies=[Depends(require_integration(role="admin"))])
async def admin_ping() -> dict[str, str]:
    """Reachable only by admin-role integrations."""
    return {"status": "ok"}


@router.get(
    "/analytics",
    dependencies=[Depends(require_integration(permissions=["analytics:read"]))],
)
async def analytics_probe() -> dict[str, str]:
    """Reachable only by integrations holding analytics:read."""
    return {"status": "ok"}
