"""API v1 aggregated router.

All v1 endpoints are registered here and mounted under /api/v1 in main.py.
"""

from fastapi import APIRouter

from api.routes import health
from api.routes import integration

api_v1_router = APIRouter()

# Health (no auth required)
api_v1_router.include_router(health.router, tags=["Health"])

# Client-credential authenticated endpoints
api_v1_router.include_router(integration.router, tags=["Integration"])
