"""Base model with audit fields."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all server models."""

    pass


class AuditMixin:
    """Mixin for audit fields - who created/updated and when."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        comment="Timestamp when record was created",
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp when record was last updated",
    )

    created_by: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="User ID who created this record",
    )

    updated_by: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="User ID who last updated this record",
    )


class BaseModel(Base, AuditMixin):
    """
    Base model for mutable server tables.

    Includes:
    - id (primary key)
    - created_at, updated_at, created_by, updated_by (audit trail)
    """

    __abstract__ = True

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
        comment="Primary key (UUID)",
    )
