"""Declarative base and shared mixins for the gateway tables."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from core.utils import utc_now


class Base(DeclarativeBase):
    pass


class SoftDeleteMixin:
    """Rows are flagged instead of removed.

    Integrations and secrets are never hard-deleted by the services;
    every lookup filters with ``Model.not_deleted()``.
    """

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None, index=True
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, index=True)

    @classmethod
    def not_deleted(cls):
        """Filter clause selecting live rows."""
        return cls.is_deleted == False  # noqa: E712

    def soft_delete(self, when: Optional[datetime] = None) -> None:
        self.is_deleted = True
        self.deleted_at = when or utc_now()

    def restore(self) -> None:
        self.is_deleted = False
        self.deleted_at = None


class BaseModel(SoftDeleteMixin, Base):
    """UUID primary key, timestamps and soft delete.

    Timestamps are filled in Python so they stay readable on a flushed
    object without a refresh round-trip (async sessions cannot lazy-load).
    """

    __abstract__ = True

    id: Mapped[str] = mapped_column(primary_key=True, default=lambda: str(uuid4()))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
