"""Tests for the incident escalation sweep."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from schoolmed.db.session import get_sessionmaker
from schoolmed.models import (
    HealthEvent,
    HealthEventStatus,
    Notification,
    NotificationKind,
)
from schoolmed.services import incident_service, notification_service
from schoolmed.services.stores import IncidentStore

pytestmark = pytest.mark.asyncio


@pytest.fixture()
def make_incident(school, db_url: str):
    async def _make(*, created_at: datetime, **overrides) -> uuid.UUID:
        fields = {
            "code": "SK-001",
            "student_id": school["student"],
            "event_type": "fever",
            "description": "Sốt cao trong giờ học",
            "occurred_at": created_at,
            "created_at": created_at,
            "updated_at": created_at,
        }
        fields.update(overrides)
        event = HealthEvent(**fields)
        async with get_sessionmaker(db_url)() as session:
            session.add(event)
            await session.commit()
            return event.id

    return _make


async def _notifications(db_url: str, kind: NotificationKind) -> list[Notification]:
    async with get_sessionmaker(db_url)() as session:
        stmt = select(Notification).where(
            Notification.kind == kind, Notification.is_deleted.is_(False)
        )
        return list((await session.scalars(stmt)).all())


async def test_unassigned_incident_escalates_once_per_cooldown(
    make_incident, school, db_url: str, now: datetime
) -> None:
    event_id = await make_incident(created_at=now - timedelta(seconds=40), is_emergency=True)
    sessionmaker = get_sessionmaker(db_url)

    waves = []
    for tick in range(12):
        async with sessionmaker() as session:
            waves.append(
                await incident_service.escalate_unassigned(
                    session, now=now + timedelta(seconds=15 * tick)
                )
            )
    assert waves == [1] + [0] * 11

    pages = await _notifications(db_url, NotificationKind.INCIDENT_ESCALATION)
    assert [page.recipient_id for page in pages] == [school["manager"]]
    assert pages[0].requires_confirmation is True
    assert pages[0].health_event_id == event_id
    assert pages[0].expires_at == now + timedelta(hours=2)

    async with sessionmaker() as session:
        second = await incident_service.escalate_unassigned(
            session, now=now + timedelta(seconds=181)
        )
    assert second == 1
    assert len(await _notifications(db_url, NotificationKind.INCIDENT_ESCALATION)) == 2


async def test_fresh_or_assigned_incidents_are_not_escalated(
    make_incident, school, db_url: str, now: datetime
) -> None:
    await make_incident(created_at=now - timedelta(seconds=10))
    await make_incident(
        created_at=now - timedelta(minutes=5),
        status=HealthEventStatus.IN_PROGRESS,
        handled_by_id=school["nurse"],
        assigned_at=now - timedelta(seconds=30),
    )
    async with get_sessionmaker(db_url)() as session:
        assert await incident_service.escalate_unassigned(session, now=now) == 0
    assert await _notifications(db_url, NotificationKind.INCIDENT_ESCALATION) == []


async def test_handler_reminder_respects_cooldown(
    make_incident, school, db_url: str, now: datetime
) -> None:
    await make_incident(
        created_at=now - timedelta(minutes=10),
        status=HealthEventStatus.IN_PROGRESS,
        handled_by_id=school["nurse"],
        assigned_at=now - timedelta(seconds=130),
    )
    sessionmaker = get_sessionmaker(db_url)

    sent = []
    for offset in (0, 60, 121):
        async with sessionmaker() as session:
            sent.append(
                await incident_service.remind_handlers(
                    session, now=now + timedelta(seconds=offset)
                )
            )

    assert sent == [1, 0, 1]
    reminders = await _notifications(db_url, NotificationKind.INCIDENT_REMINDER)
    assert {r.recipient_id for r in reminders} == {school["nurse"]}


async def test_completed_incident_notifications_are_retired(
    make_incident, school, db_url: str, now: datetime
) -> None:
    done = await make_incident(
        created_at=now - timedelta(hours=1),
        status=HealthEventStatus.COMPLETED,
        completed_at=now - timedelta(minutes=10),
    )
    just_done = await make_incident(
        created_at=now - timedelta(hours=1),
        status=HealthEventStatus.COMPLETED,
        completed_at=now - timedelta(minutes=1),
    )
    async with get_sessionmaker(db_url)() as session:
        session.add_all(
            notification_service.build_notification(
                recipient_id=school["manager"],
                kind=NotificationKind.INCIDENT_ESCALATION,
                content=("Sự cố", "Cần xử lý"),
                now=now - timedelta(hours=1),
                health_event_id=event_id,
            )
            for event_id in (done, just_done)
        )
        await session.commit()

    async with get_sessionmaker(db_url)() as session:
        tick = await incident_service.run_escalation_tick(session, now=now)

    assert tick.retired == 1
    remaining = await _notifications(db_url, NotificationKind.INCIDENT_ESCALATION)
    assert [n.health_event_id for n in remaining] == [just_done]


async def test_failed_escalation_still_reminds_handlers(
    make_incident, school, db_url: str, now: datetime, monkeypatch
) -> None:
    await make_incident(
        created_at=now - timedelta(minutes=10),
        status=HealthEventStatus.IN_PROGRESS,
        handled_by_id=school["nurse"],
        assigned_at=now - timedelta(minutes=3),
    )

    async def unavailable(self, cutoff):
        raise OperationalError("SELECT health_events", {}, Exception("database is locked"))

    monkeypatch.setattr(IncidentStore, "unassigned_pending_before", unavailable)
    async with get_sessionmaker(db_url)() as session:
        tick = await incident_service.run_escalation_tick(session, now=now)

    assert (tick.escalated, tick.reminded) == (0, 1)
