"""Medication order model."""
from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from schoolmed.db.base import Base
from schoolmed.models.mixins import SoftDeleteMixin, TimestampMixin

if TYPE_CHECKING:  # pragma: no cover - typing only
    from schoolmed.models import DoseInstance, User


class OrderStatus(str, enum.Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    COMPLETED = "completed"
    DISCONTINUED = "discontinued"


class FrequencyType(str, enum.Enum):
    DAILY = "daily"
    EVERY_OTHER_DAY = "every_other_day"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"
    SPECIFIC_DAYS = "specific_days"
    AS_NEEDED = "as_needed"


class Priority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @property
    def is_urgent(self) -> bool:
        return self.rank >= _PRIORITY_RANK[Priority.HIGH]


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.NORMAL: 1,
    Priority.HIGH: 2,
    Priority.CRITICAL: 3,
}

URGENT_PRIORITIES = (Priority.HIGH, Priority.CRITICAL)


class TimeOfDay(str, enum.Enum):
    BEFORE_BREAKFAST = "before_breakfast"
    AFTER_BREAKFAST = "after_breakfast"
    BEFORE_LUNCH = "before_lunch"
    AFTER_LUNCH = "after_lunch"
    BEFORE_DINNER = "before_dinner"
    AFTER_DINNER = "after_dinner"
    BEFORE_BED = "before_bed"
    SPECIFIC_TIME = "specific_time"


class MedicationOrder(TimestampMixin, SoftDeleteMixin, Base):
    """A parent's request for a student to take a medication over a date range."""

    __tablename__ = "medication_orders"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4, unique=True)
    student_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    approved_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )

    medication_name: Mapped[str] = mapped_column(String(255), nullable=False)
    dosage: Mapped[str] = mapped_column(String(120), nullable=False)
    instructions: Mapped[str | None] = mapped_column(Text)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)

    frequency_type: Mapped[FrequencyType] = mapped_column(
        Enum(FrequencyType), nullable=False, default=FrequencyType.DAILY
    )
    specific_days: Mapped[list[int] | None] = mapped_column(JSON)
    time_of_day: Mapped[TimeOfDay | None] = mapped_column(Enum(TimeOfDay))
    specific_times: Mapped[list[str] | None] = mapped_column(JSON)
    skip_weekends: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    skip_dates: Mapped[str | None] = mapped_column(Text)
    auto_generate_schedule: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    priority: Mapped[Priority] = mapped_column(
        Enum(Priority), nullable=False, default=Priority.NORMAL
    )
    total_doses: Mapped[int | None] = mapped_column(Integer)
    remaining_doses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_stock_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    low_stock_alert_sent: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    require_nurse_confirmation: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING_APPROVAL, index=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime())
    rejection_reason: Mapped[str | None] = mapped_column(Text)

    student: Mapped["User"] = relationship("User", foreign_keys=[student_id])
    parent: Mapped["User"] = relationship("User", foreign_keys=[parent_id])
    doses: Mapped[list["DoseInstance"]] = relationship(
        "DoseInstance", back_populates="order"
    )

    def covers(self, day: date) -> bool:
        """Return whether ``day`` lies inside the order's window and before expiry."""
        return self.start_date <= day <= self.end_date and day < self.expiry_date
