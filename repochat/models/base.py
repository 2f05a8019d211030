"""
SQLAlchemy Base Models

Declarative base shared by ``repositories`` and ``chunks``. Alembic and
the integration tests' ``create_all`` both read this metadata registry.
"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Declarative base; every ``datetime`` column is timezone-aware."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class TimestampMixin:
    """
    Database-maintained ``created_at`` / ``updated_at``.

    ``updated_at`` stays NULL until the first UPDATE, so a repository
    row that was never re-ingested or re-statused reads as untouched.
    """

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(onupdate=func.now())
