"""Last-sent ledger backing every deduplicated alert."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from schoolmed.db.base import Base


class AlertKind(str, enum.Enum):
    EXPIRY_WARNING = "expiry_warning"
    INCIDENT_ESCALATION = "incident_escalation"
    INCIDENT_REMINDER = "incident_reminder"


class AlertMark(Base):
    """When an alert of ``kind`` was last sent about ``subject_id``."""

    __tablename__ = "alert_marks"
    __table_args__ = (
        UniqueConstraint("subject_id", "kind", name="uq_alert_mark_subject_kind"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4, unique=True)
    subject_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    kind: Mapped[AlertKind] = mapped_column(Enum(AlertKind), nullable=False)
    last_sent_at: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    send_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
