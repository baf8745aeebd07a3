"""Common ORM mixins."""
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from schoolmed.core import clock


class TimestampMixin:
    """Mixin that adds created/updated timestamps in school-local time."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(),
        nullable=False,
        default=clock.now,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(),
        nullable=False,
        default=clock.now,
        onupdate=clock.now,
    )


class SoftDeleteMixin:
    """Logical deletion plus the audit stamp of whoever touched the row last."""

    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True
    )
    updated_by: Mapped[str | None] = mapped_column(String(64))
