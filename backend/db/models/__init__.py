"""Database models for the integration access gateway.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.integration import Integration
from db.models.integration_secret import IntegrationSecret

__all__ = [
    "Integration",
    "IntegrationSecret",
]
