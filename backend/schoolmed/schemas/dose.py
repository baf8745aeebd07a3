"""Dose instance schemas."""
from __future__ import annotations

import uuid
from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, Field

from schoolmed.models import DoseStatus, Priority


class DoseRead(BaseModel):
    id: uuid.UUID
    order_id: uuid.UUID
    scheduled_date: date
    scheduled_time: time
    scheduled_dosage: str
    priority: Priority
    status: DoseStatus
    special_instructions: str | None = None
    reminder_sent: bool
    reminder_count: int
    student_present: bool | None = None
    completed_at: datetime | None = None
    missed_at: datetime | None = None
    missed_reason: str | None = None
    notes: str | None = None
    administration_id: uuid.UUID | None = None

    model_config = ConfigDict(from_attributes=True)


class AdministerRequest(BaseModel):
    actual_dosage: str = Field(min_length=1, max_length=120)
    notes: str | None = Field(default=None, max_length=1024)
    student_refused: bool = False
    refusal_reason: str | None = Field(default=None, max_length=1024)
    side_effects_observed: str | None = Field(default=None, max_length=1024)


class BulkAdministerItem(AdministerRequest):
    dose_id: uuid.UUID


class BulkAdministerRequest(BaseModel):
    items: list[BulkAdministerItem] = Field(min_length=1)


class QuickCompleteRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=1024)


class MarkAbsentRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=1024)


class MarkMissedRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1024)
    notes: str | None = Field(default=None, max_length=1024)


class BatchResultRead(BaseModel):
    total_requested: int
    success_count: int
    failure_count: int
    errors: list[str]
    successful_ids: list[uuid.UUID]

    model_config = ConfigDict(from_attributes=True)
