"""Outbound notification model."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from schoolmed.db.base import Base
from schoolmed.models.mixins import SoftDeleteMixin, TimestampMixin


class NotificationKind(str, enum.Enum):
    DOSE_REMINDER = "dose_reminder"
    DOSE_ADMINISTERED = "dose_administered"
    DOSE_MISSED = "dose_missed"
    STUDENT_ABSENT = "student_absent"
    LOW_STOCK = "low_stock"
    ORDER_EXPIRING = "order_expiring"
    ORDER_STATUS = "order_status"
    INCIDENT_ESCALATION = "incident_escalation"
    INCIDENT_REMINDER = "incident_reminder"


class Notification(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    kind: Mapped[NotificationKind] = mapped_column(
        Enum(NotificationKind), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    requires_confirmation: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime())
    is_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_dismissed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dismissed_at: Mapped[datetime | None] = mapped_column(DateTime())
    expires_at: Mapped[datetime | None] = mapped_column(DateTime())

    dose_instance_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("dose_instances.id", ondelete="SET NULL")
    )
    order_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("medication_orders.id", ondelete="SET NULL")
    )
    health_event_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("health_events.id", ondelete="SET NULL"), index=True
    )
