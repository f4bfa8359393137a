"""Shared pytest fixtures for the integration access gateway test suite.

Provides:
- In-memory async SQLite database (no PostgreSQL needed for tests)
- AsyncSession per test
- FastAPI test client (httpx.AsyncClient) wired to the test database
- Lifecycle services and a pre-seeded integration
"""

import os
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from core.policy_config import AccessPolicyConfig  # noqa: E402
from db.base import Base  # noqa: E402


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh in-memory engine per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    # Import all models so Base.metadata knows about them
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session that commits at the end of the test."""
    async with session_factory() as session:
        yield session
        await session.commit()


@pytest.fixture
def policy_config() -> AccessPolicyConfig:
    return AccessPolicyConfig()


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(session_factory, monkeypatch):
    """Create a FastAPI app instance wired to the test database."""
    from app.main import create_app

    monkeypatch.setattr("app.dependencies.AsyncSessionLocal", session_factory)

    test_app = create_app()
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Test data fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def integration_service(db_session, policy_config):
    from services.integration_service import IntegrationService

    return IntegrationService(db_session, policy_config)


@pytest_asyncio.fixture
async def secret_manager(db_session, policy_config):
    from services.secret_service import SecretLifecycleManager

    return SecretLifecycleManager(db_session, policy_config)


@pytest_asyncio.fixture
async def test_integration(integration_service, db_session):
    """A committed, active integration with the default 'user' role."""
    result = await integration_service.create(
        {
            "name": f"Test Integration {uuid4().hex[:8]}",
            "description": "Integration used by the test suite",
            "redirect_uris": ["https://app.example.com/callback"],
            "permissions": {"posts": ["read", "create"], "analytics": ["read"]},
            "allowed_scopes": ["read", "write"],
            "default_scopes": ["read"],
        },
        user_id="user-1",
    )
    await db_session.commit()
    return result.entity

