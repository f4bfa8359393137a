"""Async engine, session factory and connection helpers for the credential store."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def create_db_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """Create the async engine.

    SQLite (the default store) gets no pool sizing; server databases get
    pre-ping and the configured pool bounds.
    """
    url = url or settings.DATABASE_URL
    kwargs = dict(echo=settings.SQLALCHEMY_ECHO if echo is None else echo)
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
    return create_async_engine(url, **kwargs)


def create_session_factory(bind: AsyncEngine):
    # Objects stay usable after commit; autoflush is off so services flush explicitly
    return sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_db_engine()
AsyncSessionLocal = create_session_factory(engine)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """Session committed on success and rolled back on any error.

    Used by maintenance commands that run outside a request.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def ping(session: AsyncSession) -> None:
    """Round-trip to the store; raises SQLAlchemyError when unreachable."""
    await session.execute(text("SELECT 1"))


async def init_db() -> None:
    """Create the integrations and integration_secrets tables if missing."""
    from db.base import Base
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready: %s", engine.url.render_as_string(hide_password=True))


async def close_db() -> None:
    await engine.dispose()
