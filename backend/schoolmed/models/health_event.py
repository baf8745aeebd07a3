"""Health incident model."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from schoolmed.db.base import Base
from schoolmed.models.mixins import SoftDeleteMixin, TimestampMixin

if TYPE_CHECKING:
    from schoolmed.models.user import User


class HealthEventStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class HealthEvent(TimestampMixin, SoftDeleteMixin, Base):
    """An incident involving a student that staff must attend to."""

    __tablename__ = "health_events"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4, unique=True)
    code: Mapped[str | None] = mapped_column(String(50))
    student_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    handled_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    event_type: Mapped[str] = mapped_column(String(80), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    location: Mapped[str | None] = mapped_column(String(255))
    is_emergency: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[HealthEventStatus] = mapped_column(
        Enum(HealthEventStatus), nullable=False, default=HealthEventStatus.PENDING, index=True
    )
    occurred_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime())

    student: Mapped["User"] = relationship("User", foreign_keys=[student_id])
