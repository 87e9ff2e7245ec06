"""
SQLAlchemy Base and Mixins

Provides declarative base and reusable mixins for database models.
"""
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    Base class for all database models.

    Provides common functionality and type hints for SQLAlchemy models.
    """

    # Type annotation for primary keys
    id: Any


class TimestampMixin:
    """
    Mixin to add created_at and updated_at timestamp columns.

    Automatically tracks when records are created and last updated.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Timestamp when record was created"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        comment="Timestamp when record was last written"
    )


# Import all models to ensure they're registered with Base
# This is used by Alembic for auto-generating migrations
def import_all_models():
    """
    Import all models to register them with SQLAlchemy Base.

    This function should be called before running Alembic migrations
    to ensure all models are discovered.
    """
    from src.lra_alerts.db import models  # noqa: F401
