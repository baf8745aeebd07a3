"""School-local wall clock.

Every scheduling decision (which doses are "today", the 18:00 gate for
tomorrow's generation, the 02:00/20:00 retention window) is made against the
school's local time. Timestamps are stored as naive local datetimes so that
``scheduled_date + scheduled_time`` compares directly with ``now()``.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from zoneinfo import ZoneInfo

from schoolmed.core.config import get_settings

Clock = Callable[[], datetime]


def now() -> datetime:
    """Return the current school-local time as a naive datetime."""
    zone = ZoneInfo(get_settings().school_timezone)
    return datetime.now(zone).replace(tzinfo=None, microsecond=0)


def today() -> date:
    return now().date()


def combine(day: date, at) -> datetime:
    """Return the naive local datetime a dose is due."""
    return datetime.combine(day, at)
