"""Service layer exports."""
from schoolmed.services import (
    alert_service,
    dose_service,
    incident_service,
    order_service,
    reminder_service,
    retention_service,
    schedule_generator,
)

__all__ = [
    "alert_service",
    "dose_service",
    "incident_service",
    "order_service",
    "reminder_service",
    "retention_service",
    "schedule_generator",
]
