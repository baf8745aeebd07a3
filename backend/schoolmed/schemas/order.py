"""Medication order schemas."""
from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from schoolmed.models import FrequencyType, OrderStatus, Priority, TimeOfDay


class OrderRead(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    parent_id: uuid.UUID
    medication_name: str
    dosage: str
    start_date: date
    end_date: date
    expiry_date: date
    frequency_type: FrequencyType
    time_of_day: TimeOfDay | None = None
    specific_times: list[str] | None = None
    priority: Priority
    remaining_doses: int
    low_stock_alert_sent: bool
    status: OrderStatus
    approved_by_id: uuid.UUID | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class GenerateRequest(BaseModel):
    start_date: date | None = None
    end_date: date | None = None


class ApproveOrderRequest(BaseModel):
    approve: bool
    reason: str | None = Field(default=None, max_length=1024)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    reason: str | None = Field(default=None, max_length=1024)


class RestockRequest(BaseModel):
    added_doses: int = Field(gt=0)
