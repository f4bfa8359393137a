"""Health check endpoints.

Provides:
- Basic liveness probe (/health/)
- Database connectivity check (/health/db)
"""

import logging
import time
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.dependencies import get_db
from db.database import ping

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()


@router.get("/", response_model=dict[str, Any])
async def root() -> dict[str, Any]:
    """
    Get API root information and version.
    Used as a simple liveness probe.
    """
    settings = get_settings()
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok",
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
    }


@router.get("/db")
async def database_check(db: AsyncSession = Depends(get_db)):
    """Ping the credential store. Returns 503 when it is unreachable."""
    try:
        await ping(db)
    except SQLAlchemyError as exc:
        logger.error("Health check: database unreachable: %s", exc)
        return JSONResponse(status_code=503, content={"status": "degraded", "database": "error"})
    return {"status": "ok", "database": "ok"}
