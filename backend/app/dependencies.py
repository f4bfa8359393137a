"""FastAPI dependency injection functions."""

import logging
from functools import lru_cache
from typing import Optional, Sequence

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from core.constants import CLIENT_ID_HEADER, CLIENT_SECRET_HEADER
from core.exceptions import ForbiddenError, RateLimitExceededError, UnauthorizedError
from core.policy_config import AccessPolicyConfig
from core.rate_limit import get_rate_limiter, request_signature
from core.restrictions import resolve_country
from db.database import AsyncSessionLocal
from db.models.integration import Integration
from services.authorization import AuthorizationGate, RequestContext
from services.credential_store import SQLAlchemyCredentialStore

logger = logging.getLogger(__name__)


async def get_db() -> AsyncSession:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is automatically
    committed on success or rolled back on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except (UnauthorizedError, ForbiddenError, RateLimitExceededError):
            # Access denials are not database errors; keep last_used_at writes
            await session.commit()
            raise
        except Exception as e:
            logger.error(f"Database error: {str(e)}")
            await session.rollback()
            raise
        finally:
            await session.close()


@lru_cache()
def get_policy_config() -> AccessPolicyConfig:
    """Access policy configuration built once from settings."""
    return AccessPolicyConfig.from_settings(get_settings())


async def get_authorization_gate(
    db: AsyncSession = Depends(get_db),
    config: AccessPolicyConfig = Depends(get_policy_config),
) -> AuthorizationGate:
    return AuthorizationGate(SQLAlchemyCredentialStore(db), config)


async def extract_credentials(request: Request) -> tuple[Optional[str], Optional[str]]:
    """Read the client id/secret pair.

    The X-Client-ID / X-Client-Secret headers are preferred; form or JSON
    body fields ``client_id`` / ``client_secret`` are the fallback.
    """
    client_id = request.headers.get(CLIENT_ID_HEADER)
    client_secret = request.headers.get(CLIENT_SECRET_HEADER)
    if client_id and client_secret:
        return client_id, client_secret

    body: dict = {}
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        body = dict(await request.form())
    elif content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            body = payload

    return (
        client_id or _as_str(body.get("client_id")),
        client_secret or _as_str(body.get("client_secret")),
    )


def _as_str(value) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def require_integration(
    role: Optional[str] = None,
    permissions: Sequence[str] = (),
    rate_limit_key: str = "default",
):
    """Dependency that runs the authorization gate for a route.

    Usage:
        @router.get(
            "/reports",
            dependencies=[Depends(require_integration(role="service", permissions=["analytics:read"]))],
        )
        async def reports(): ...

    On ALLOW the integration is stored on ``request.state.integration``
    and its effective rate limit is enforced.
    """

    async def _check(
        request: Request,
        response: Response,
        gate: AuthorizationGate = Depends(get_authorization_gate),
    ) -> Integration:
        client_id, client_secret = await extract_credentials(request)
        settings = get_settings()

        ctx = RequestContext(
            client_id=client_id,
            client_secret=client_secret,
            caller_ip=request.client.host if request.client else None,
            caller_country=resolve_country(request.headers) if settings.TRUST_COUNTRY_HEADERS else None,
            required_role=role,
            required_permissions=tuple(permissions),
        )
        verdict = await gate.authorize(ctx)

        if not verdict.allowed:
            if verdict.http_status == 401:
                raise UnauthorizedError(verdict.reason.public_message, reason=verdict.reason.value)
            raise ForbiddenError(verdict.reason.public_message, reason=verdict.reason.value)

        integration = verdict.integration
        request.state.integration = integration

        signature = request_signature(request.url.hostname or "", integration.client_id)
        limit, remaining = get_rate_limiter().hit(signature, integration.get_rate_limit(rate_limit_key))
        if limit is not None:
            response.headers["X-RateLimit-Limit"] = str(limit)
            response.headers["X-RateLimit-Remaining"] = str(remaining)

        return integration

    return _check
