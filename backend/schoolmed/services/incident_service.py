"""Escalation sweep for health incidents."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.core import clock
from schoolmed.core.config import get_settings
from schoolmed.db.session import run_step
from schoolmed.models import AlertKind, HealthEvent, Notification, NotificationKind, UserRole
from schoolmed.services import alert_service, messages, notification_service
from schoolmed.services.stores import IncidentStore, NotificationStore, active_users

logger = logging.getLogger(__name__)

CLEANUP_ACTOR = "SYSTEM_CLEANUP"


@dataclass
class EscalationTick:
    escalated: int = 0
    reminded: int = 0
    retired: int = 0


def _student_name(event: HealthEvent) -> str:
    return event.student.full_name if event.student is not None else ""


async def escalate_unassigned(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Page every active manager about incidents nobody has picked up."""
    now = now or clock.now()
    settings = get_settings()
    cutoff = now - timedelta(seconds=settings.escalation_after_seconds)
    incidents = await IncidentStore(session).unassigned_pending_before(cutoff)
    if not incidents:
        return 0
    managers = await active_users(session, [UserRole.MANAGER])
    if not managers:
        logger.warning("%d incident(s) need escalation but no active manager", len(incidents))
        return 0

    cooldown = timedelta(seconds=settings.escalation_dedup_seconds)
    expires_in = timedelta(hours=settings.escalation_expiry_hours)
    outgoing: list[Notification] = []
    escalated = 0
    for event in incidents:
        if not await alert_service.claim(
            session, event.id, AlertKind.INCIDENT_ESCALATION, now=now, cooldown=cooldown
        ):
            continue
        content = messages.build_incident_escalation(
            student_name=_student_name(event),
            code=event.code,
            description=event.description,
            waiting_seconds=int((now - event.created_at).total_seconds()),
        )
        outgoing.extend(
            notification_service.build_notification(
                recipient_id=manager.id,
                kind=NotificationKind.INCIDENT_ESCALATION,
                content=content,
                now=now,
                expires_in=expires_in,
                requires_confirmation=True,
                health_event_id=event.id,
            )
            for manager in managers
        )
        escalated += 1

    if escalated:
        session.add_all(outgoing)
        await session.commit()
        logger.warning(
            "Escalated %d unassigned incident(s) to %d manager(s)", escalated, len(managers)
        )
    return escalated


async def remind_handlers(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Nudge handlers of incidents that have been in progress for a while."""
    now = now or clock.now()
    settings = get_settings()
    cutoff = now - timedelta(seconds=settings.handler_reminder_after_seconds)
    incidents = await IncidentStore(session).in_progress_since_before(cutoff)
    cooldown = timedelta(seconds=settings.handler_reminder_dedup_seconds)

    outgoing: list[Notification] = []
    for event in incidents:
        if not await alert_service.claim(
            session, event.id, AlertKind.INCIDENT_REMINDER, now=now, cooldown=cooldown
        ):
            continue
        outgoing.append(
            notification_service.build_notification(
                recipient_id=event.handled_by_id,
                kind=NotificationKind.INCIDENT_REMINDER,
                content=messages.build_incident_reminder(
                    student_name=_student_name(event),
                    code=event.code,
                    assigned_at=event.assigned_at,
                ),
                now=now,
                expires_in=timedelta(hours=1),
                health_event_id=event.id,
            )
        )
    if outgoing:
        session.add_all(outgoing)
        await session.commit()
        logger.info("Reminded handlers of %d in-progress incident(s)", len(outgoing))
    return len(outgoing)


async def retire_finished_incident_notifications(
    session: AsyncSession, *, now: datetime | None = None
) -> int:
    now = now or clock.now()
    settings = get_settings()
    retired = await NotificationStore(session).retire_for_completed_incidents(
        now - timedelta(seconds=settings.incident_cleanup_after_seconds),
        updated_by=CLEANUP_ACTOR,
    )
    if retired:
        await session.commit()
        logger.info("Retired %d notification(s) of completed incidents", retired)
    return retired


async def run_escalation_tick(
    session: AsyncSession, *, now: datetime | None = None
) -> EscalationTick:
    """Escalate, remind, then clean up; each step survives the others failing."""
    now = now or clock.now()
    return EscalationTick(
        escalated=await run_step(
            session, "incident escalation", escalate_unassigned(session, now=now), 0
        ),
        reminded=await run_step(
            session, "handler reminders", remind_handlers(session, now=now), 0
        ),
        retired=await run_step(
            session,
            "incident cleanup",
            retire_finished_incident_notifications(session, now=now),
            0,
        ),
    )
