"""Tests for dose reminders and stock warnings."""

from __future__ import annotations

from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from schoolmed.db.session import get_sessionmaker
from schoolmed.models import (
    DoseInstance,
    DoseStatus,
    MedicationOrder,
    Notification,
    NotificationKind,
    Priority,
)
from schoolmed.services import order_service, reminder_service
from schoolmed.services.stores import DoseInstanceStore

pytestmark = pytest.mark.asyncio


async def _notifications(db_url: str, kind: NotificationKind) -> list[Notification]:
    async with get_sessionmaker(db_url)() as session:
        return list(
            (await session.scalars(select(Notification).where(Notification.kind == kind))).all()
        )


async def _dose(db_url: str, dose_id) -> DoseInstance:
    async with get_sessionmaker(db_url)() as session:
        return await session.get(DoseInstance, dose_id)


async def test_critical_dose_gets_at_most_two_reminders(
    make_order, make_dose, db_url: str, now: datetime
) -> None:
    order_id = await make_order(priority=Priority.CRITICAL)
    dose_id = await make_dose(order_id, at=time(9, 0, 30), priority=Priority.CRITICAL)
    sessionmaker = get_sessionmaker(db_url)

    for seconds in range(0, 30, 5):
        async with sessionmaker() as session:
            await reminder_service.send_dose_reminders(
                session, now=now + timedelta(seconds=seconds)
            )

    dose = await _dose(db_url, dose_id)
    assert dose.reminder_count == 2
    assert dose.reminder_sent is True


async def test_normal_dose_reminds_parent_once(
    make_order, make_dose, school, db_url: str, now: datetime
) -> None:
    order_id = await make_order()
    dose_id = await make_dose(order_id, at=time(9, 4))
    later = await make_dose(order_id, at=time(9, 30))
    sessionmaker = get_sessionmaker(db_url)

    async with sessionmaker() as session:
        tick = await reminder_service.send_dose_reminders(session, now=now)
    async with sessionmaker() as session:
        again = await reminder_service.send_dose_reminders(session, now=now)

    assert (tick.upcoming, tick.immediate, tick.notifications) == (1, 0, 1)
    assert again.notifications == 0
    (reminder,) = await _notifications(db_url, NotificationKind.DOSE_REMINDER)
    assert reminder.recipient_id == school["parent"]
    assert reminder.dose_instance_id == dose_id
    assert reminder.expires_at == now + timedelta(hours=4)
    assert (await _dose(db_url, dose_id)).reminder_count == 1
    assert (await _dose(db_url, later)).reminder_sent is False


async def test_urgent_dose_also_reminds_active_clinical_staff(
    make_order, make_dose, school, db_url: str, now: datetime
) -> None:
    order_id = await make_order(priority=Priority.HIGH)
    await make_dose(order_id, at=time(9, 3), priority=Priority.HIGH)

    async with get_sessionmaker(db_url)() as session:
        await reminder_service.send_dose_reminders(session, now=now)

    reminders = await _notifications(db_url, NotificationKind.DOSE_REMINDER)
    recipients = {n.recipient_id for n in reminders}
    assert recipients == {school["parent"], school["nurse"], school["manager"], school["admin"]}
    assert school["inactive_manager"] not in recipients


async def test_finished_doses_are_not_reminded(
    make_order, make_dose, db_url: str, now: datetime
) -> None:
    order_id = await make_order()
    await make_dose(order_id, at=time(9, 2), status=DoseStatus.COMPLETED)
    async with get_sessionmaker(db_url)() as session:
        tick = await reminder_service.send_dose_reminders(session, now=now)
    assert tick.notifications == 0


async def test_low_stock_alert_is_sent_once_until_restocked(
    make_order, callers, db_url: str, now: datetime
) -> None:
    order_id = await make_order(remaining_doses=2)
    plenty = await make_order(remaining_doses=10)
    sessionmaker = get_sessionmaker(db_url)

    sent = []
    for minute in range(4):
        async with sessionmaker() as session:
            sent.append(
                await reminder_service.scan_low_stock(session, now=now + timedelta(minutes=minute))
            )
    assert sent == [1, 0, 0, 0]

    async with sessionmaker() as session:
        await order_service.restock_order(
            session, order_id=order_id, caller=callers["nurse"], added_doses=1
        )
    async with sessionmaker() as session:
        assert await reminder_service.scan_low_stock(session, now=now) == 1

    alerts = await _notifications(db_url, NotificationKind.LOW_STOCK)
    assert [a.order_id for a in alerts] == [order_id, order_id]
    async with sessionmaker() as session:
        assert (await session.get(MedicationOrder, plenty)).low_stock_alert_sent is False


async def test_reminder_tick_runs_every_step(
    make_order, make_dose, db_url: str, now: datetime
) -> None:
    order_id = await make_order(
        remaining_doses=1, expiry_date=now.date() + timedelta(days=5)
    )
    overdue = await make_dose(order_id, at=time(7, 0))
    upcoming = await make_dose(order_id, at=time(9, 1))
    sessionmaker = get_sessionmaker(db_url)

    async with sessionmaker() as session:
        tick = await reminder_service.run_reminder_tick(session, now=now)
    async with sessionmaker() as session:
        repeat = await reminder_service.run_reminder_tick(session, now=now)

    assert (tick.upcoming, tick.overdue, tick.low_stock, tick.expiry_warnings) == (1, 1, 1, 1)
    assert (repeat.notifications, repeat.overdue, repeat.low_stock, repeat.expiry_warnings) == (
        0,
        0,
        0,
        0,
    )
    assert (await _dose(db_url, overdue)).status == DoseStatus.MISSED
    assert (await _dose(db_url, upcoming)).reminder_count == 1


async def test_reminder_window_stops_at_midnight(
    make_order, make_dose, db_url: str, now: datetime
) -> None:
    order_id = await make_order()
    late = await make_dose(order_id, at=time(23, 59, 30))
    async with get_sessionmaker(db_url)() as session:
        tick = await reminder_service.send_dose_reminders(
            session, now=now.replace(hour=23, minute=57)
        )
    assert tick.upcoming == 1
    assert (await _dose(db_url, late)).reminder_count == 1


async def test_clearing_low_stock_flag_rearms_the_alert(
    make_order, db_url: str, now: datetime
) -> None:
    order_id = await make_order(remaining_doses=1)
    sessionmaker = get_sessionmaker(db_url)

    async with sessionmaker() as session:
        first = await reminder_service.scan_low_stock(session, now=now)
    async with sessionmaker() as session:
        await session.execute(
            update(MedicationOrder)
            .where(MedicationOrder.id == order_id)
            .values(low_stock_alert_sent=False)
        )
        await session.commit()
    async with sessionmaker() as session:
        second = await reminder_service.scan_low_stock(session, now=now + timedelta(minutes=1))

    assert (first, second) == (1, 1)
    async with sessionmaker() as session:
        assert (await session.get(MedicationOrder, order_id)).low_stock_alert_sent is True


async def test_failed_reminder_step_does_not_block_the_rest_of_the_tick(
    make_order, make_dose, db_url: str, now: datetime, monkeypatch
) -> None:
    order_id = await make_order(remaining_doses=1)
    overdue = await make_dose(order_id, at=time(7, 0))
    upcoming = await make_dose(order_id, at=time(9, 1))

    async def unavailable(self, **_kwargs):
        raise OperationalError("SELECT dose_instances", {}, Exception("database is locked"))

    monkeypatch.setattr(DoseInstanceStore, "pending_due_between", unavailable)
    async with get_sessionmaker(db_url)() as session:
        tick = await reminder_service.run_reminder_tick(session, now=now)

    assert (tick.notifications, tick.overdue, tick.low_stock) == (0, 1, 1)
    assert (await _dose(db_url, overdue)).status == DoseStatus.MISSED
    assert (await _dose(db_url, upcoming)).reminder_count == 0
