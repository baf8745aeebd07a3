"""Dose instance model: one scheduled administration of an order."""
from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, time
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from schoolmed.db.base import Base
from schoolmed.models.medication_order import Priority
from schoolmed.models.mixins import SoftDeleteMixin, TimestampMixin

if TYPE_CHECKING:  # pragma: no cover - typing only
    from schoolmed.models import AdministrationRecord, MedicationOrder


class DoseStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    MISSED = "missed"
    STUDENT_ABSENT = "student_absent"
    CANCELLED = "cancelled"


TERMINAL_DOSE_STATUSES = (
    DoseStatus.COMPLETED,
    DoseStatus.MISSED,
    DoseStatus.CANCELLED,
    DoseStatus.STUDENT_ABSENT,
)


class DoseInstance(TimestampMixin, SoftDeleteMixin, Base):
    """A concrete dose due on one date at one time."""

    __tablename__ = "dose_instances"
    __table_args__ = (
        UniqueConstraint(
            "order_id", "scheduled_date", "scheduled_time", name="uq_dose_instance_slot"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4, unique=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("medication_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    scheduled_time: Mapped[time] = mapped_column(Time, nullable=False)
    scheduled_dosage: Mapped[str] = mapped_column(String(120), nullable=False)
    priority: Mapped[Priority] = mapped_column(
        Enum(Priority), nullable=False, default=Priority.NORMAL
    )
    status: Mapped[DoseStatus] = mapped_column(
        Enum(DoseStatus), nullable=False, default=DoseStatus.PENDING, index=True
    )
    special_instructions: Mapped[str | None] = mapped_column(Text)
    requires_nurse_confirmation: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime())
    reminder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    student_present: Mapped[bool | None] = mapped_column(Boolean)
    attendance_checked_at: Mapped[datetime | None] = mapped_column(DateTime())

    completed_at: Mapped[datetime | None] = mapped_column(DateTime())
    missed_at: Mapped[datetime | None] = mapped_column(DateTime())
    missed_reason: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    administration_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("administration_records.id", ondelete="SET NULL")
    )

    order: Mapped["MedicationOrder"] = relationship(
        "MedicationOrder", back_populates="doses"
    )
    administration: Mapped["AdministrationRecord | None"] = relationship(
        "AdministrationRecord", foreign_keys=[administration_id]
    )

    @property
    def due_at(self) -> datetime:
        return datetime.combine(self.scheduled_date, self.scheduled_time)
