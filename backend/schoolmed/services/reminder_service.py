"""Dose reminders, overdue sweep and stock warnings run once a minute."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.core import clock
from schoolmed.core.config import get_settings
from schoolmed.db.session import run_step
from schoolmed.models import CLINICAL_ROLES, DoseInstance, Notification, NotificationKind, User
from schoolmed.services import dose_service, messages, notification_service, order_service
from schoolmed.services.cache_service import invalidate_dose_caches
from schoolmed.services.results import BatchResult
from schoolmed.services.stores import DoseInstanceStore, OrderStore, active_users

logger = logging.getLogger(__name__)


@dataclass
class ReminderTick:
    upcoming: int = 0
    immediate: int = 0
    notifications: int = 0
    overdue: int = 0
    low_stock: int = 0
    expiry_warnings: int = 0


def _window_end(now: datetime, minutes: int) -> time:
    end = now + timedelta(minutes=minutes)
    if end.date() != now.date():
        return time.max
    return end.time()


def _reminders_for(
    dose: DoseInstance, staff: list[User], *, immediate: bool, now: datetime, expires_in: timedelta
) -> list[Notification]:
    order = dose.order
    student_name = order.student.full_name if order.student is not None else ""
    fields = {
        "student_name": student_name,
        "medication_name": order.medication_name,
        "dosage": dose.scheduled_dosage,
        "due_at": dose.scheduled_time,
        "priority": dose.priority,
        "immediate": immediate,
    }
    outgoing = [
        notification_service.build_notification(
            recipient_id=order.parent_id,
            kind=NotificationKind.DOSE_REMINDER,
            content=messages.build_parent_reminder(**fields),
            now=now,
            expires_in=expires_in,
            dose_instance_id=dose.id,
            order_id=order.id,
        )
    ]
    if dose.priority.is_urgent:
        staff_content = messages.build_staff_reminder(**fields)
        outgoing.extend(
            notification_service.build_notification(
                recipient_id=member.id,
                kind=NotificationKind.DOSE_REMINDER,
                content=staff_content,
                now=now,
                expires_in=expires_in,
                requires_confirmation=immediate,
                dose_instance_id=dose.id,
                order_id=order.id,
            )
            for member in staff
        )
    return outgoing


async def _remind_tier(
    session: AsyncSession,
    doses: list[DoseInstance],
    staff: list[User],
    *,
    immediate: bool,
    now: datetime,
) -> list[Notification]:
    settings = get_settings()
    store = DoseInstanceStore(session)
    expires_in = timedelta(hours=settings.reminder_expiry_hours)
    outgoing: list[Notification] = []
    for dose in doses:
        try:
            async with session.begin_nested():
                recorded = await store.record_reminder(
                    dose.id, at=now, cap=settings.max_reminders_per_dose
                )
        except SQLAlchemyError:
            logger.exception("Failed to record reminder for dose %s", dose.id)
            continue
        if recorded:
            outgoing.extend(
                _reminders_for(dose, staff, immediate=immediate, now=now, expires_in=expires_in)
            )
    return outgoing


async def send_dose_reminders(
    session: AsyncSession, *, now: datetime | None = None
) -> ReminderTick:
    """Emit upcoming and immediate reminders for today's pending doses."""
    now = now or clock.now()
    settings = get_settings()
    store = DoseInstanceStore(session)
    tick = ReminderTick()
    staff = await active_users(session, CLINICAL_ROLES)

    upcoming = await store.pending_due_between(
        day=now.date(),
        start=now.time(),
        end=_window_end(now, settings.upcoming_window_minutes),
        unreminded_only=True,
        limit=settings.upcoming_batch,
    )
    outgoing = await _remind_tier(session, upcoming, staff, immediate=False, now=now)
    tick.upcoming = len({n.dose_instance_id for n in outgoing})

    immediate = await store.pending_due_between(
        day=now.date(),
        start=now.time(),
        end=_window_end(now, settings.immediate_window_minutes),
        reminder_count_below=settings.max_reminders_per_dose,
        urgent_only=True,
        limit=settings.immediate_batch,
    )
    escalated = await _remind_tier(session, immediate, staff, immediate=True, now=now)
    tick.immediate = len({n.dose_instance_id for n in escalated})
    outgoing.extend(escalated)

    if outgoing:
        session.add_all(outgoing)
        await session.commit()
        await invalidate_dose_caches()
    tick.notifications = len(outgoing)
    return tick


async def scan_low_stock(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Warn the parent once per order when supply runs low."""
    now = now or clock.now()
    settings = get_settings()
    candidates = await OrderStore(session).low_stock_candidates(
        settings.low_stock_threshold, limit=settings.low_stock_batch
    )
    outgoing: list[Notification] = []
    for order in candidates:
        if await order_service.claim_low_stock_alert(session, order_id=order.id):
            outgoing.append(
                order_service.low_stock_notification(
                    order, remaining=order.remaining_doses, now=now
                )
            )
    if outgoing:
        session.add_all(outgoing)
        await session.commit()
        logger.info("Sent %d low-stock alert(s)", len(outgoing))
    return len(outgoing)


async def run_reminder_tick(
    session: AsyncSession, *, now: datetime | None = None
) -> ReminderTick:
    """One pass of the reminder loop.

    Sub-steps run in order; a storage failure in one is logged and the rest
    still run.
    """
    now = now or clock.now()
    tick = await run_step(
        session, "dose reminders", send_dose_reminders(session, now=now), ReminderTick()
    )
    overdue = await run_step(
        session, "overdue sweep", dose_service.auto_mark_overdue(session, now=now), BatchResult()
    )
    tick.overdue = overdue.success_count
    tick.low_stock = await run_step(session, "low stock", scan_low_stock(session, now=now), 0)
    tick.expiry_warnings = await run_step(
        session, "expiry warnings", order_service.notify_expiring_orders(session, now=now), 0
    )
    if tick.notifications or tick.overdue or tick.low_stock or tick.expiry_warnings:
        logger.info(
            "Reminder tick: %d upcoming, %d immediate, %d overdue, %d low stock, %d expiring",
            tick.upcoming,
            tick.immediate,
            tick.overdue,
            tick.low_stock,
            tick.expiry_warnings,
        )
    return tick
