"""ORM models package export."""

from schoolmed.models.administration import AdministrationRecord
from schoolmed.models.alert_mark import AlertKind, AlertMark
from schoolmed.models.dose_instance import (
    TERMINAL_DOSE_STATUSES,
    DoseInstance,
    DoseStatus,
)
from schoolmed.models.health_event import HealthEvent, HealthEventStatus
from schoolmed.models.medication_order import (
    URGENT_PRIORITIES,
    FrequencyType,
    MedicationOrder,
    OrderStatus,
    Priority,
    TimeOfDay,
)
from schoolmed.models.notification import Notification, NotificationKind
from schoolmed.models.user import CLINICAL_ROLES, User, UserRole

__all__ = [
    "AdministrationRecord",
    "AlertKind",
    "AlertMark",
    "CLINICAL_ROLES",
    "DoseInstance",
    "DoseStatus",
    "FrequencyType",
    "HealthEvent",
    "HealthEventStatus",
    "MedicationOrder",
    "Notification",
    "NotificationKind",
    "OrderStatus",
    "Priority",
    "TERMINAL_DOSE_STATUSES",
    "TimeOfDay",
    "URGENT_PRIORITIES",
    "User",
    "UserRole",
]
