"""Administration record model."""
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from schoolmed.db.base import Base
from schoolmed.models.mixins import SoftDeleteMixin, TimestampMixin


class AdministrationRecord(TimestampMixin, SoftDeleteMixin, Base):
    """Immutable fact that a dose was given or refused."""

    __tablename__ = "administration_records"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4, unique=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("medication_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    dose_instance_id: Mapped[uuid.UUID] = mapped_column(nullable=False, unique=True)
    administered_by_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    administered_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    actual_dosage: Mapped[str] = mapped_column(String(120), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    student_refused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    refusal_reason: Mapped[str | None] = mapped_column(Text)
    side_effects_observed: Mapped[str | None] = mapped_column(Text)
