"""Tests for the retention sweep."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from schoolmed.db.session import get_sessionmaker
from schoolmed.models import (
    AdministrationRecord,
    DoseInstance,
    DoseStatus,
    MedicationOrder,
    Notification,
    NotificationKind,
    OrderStatus,
)
from schoolmed.services import notification_service, retention_service
from schoolmed.services.stores import OrderStore

pytestmark = pytest.mark.asyncio


async def test_sweep_only_runs_in_configured_hours(db_url: str, school, now: datetime) -> None:
    async with get_sessionmaker(db_url)() as session:
        tick = await retention_service.run_retention_sweep(session, now=now)
    assert tick.ran is False
    assert tick.total == 0


async def test_sweep_retires_old_finished_rows(
    make_order, make_dose, school, db_url: str, now: datetime
) -> None:
    night = now.replace(hour=2)
    old_day = date(2026, 1, 5)
    old_order = await make_order(
        status=OrderStatus.COMPLETED,
        start_date=date(2026, 1, 1),
        end_date=date(2026, 1, 10),
    )
    stuck_order = await make_order(
        status=OrderStatus.DISCONTINUED,
        start_date=date(2026, 1, 1),
        end_date=date(2026, 1, 10),
    )
    old_dose = await make_dose(old_order, day=old_day, status=DoseStatus.COMPLETED)
    stuck_dose = await make_dose(stuck_order, day=old_day)
    active_order = await make_order()
    recent_dose = await make_dose(active_order, status=DoseStatus.COMPLETED)

    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        record = AdministrationRecord(
            order_id=old_order,
            dose_instance_id=old_dose,
            administered_by_id=school["nurse"],
            administered_at=datetime.combine(old_day, time(8, 5)),
            actual_dosage="5ml",
        )
        read = notification_service.build_notification(
            recipient_id=school["parent"],
            kind=NotificationKind.DOSE_ADMINISTERED,
            content=("Đã cho uống thuốc", "Paracetamol 5ml"),
            now=datetime.combine(old_day, time(8, 5)),
            expires_in=timedelta(days=1),
        )
        read.is_read = True
        unread = notification_service.build_notification(
            recipient_id=school["parent"],
            kind=NotificationKind.DOSE_REMINDER,
            content=("Nhắc uống thuốc", "Paracetamol 5ml"),
            now=datetime.combine(old_day, time(7, 55)),
            expires_in=timedelta(hours=4),
        )
        session.add_all([record, read, unread])
        await session.commit()
        record_id, read_id, unread_id = record.id, read.id, unread.id

    async with sessionmaker() as session:
        tick = await retention_service.run_retention_sweep(session, now=night)
    async with sessionmaker() as session:
        again = await retention_service.run_retention_sweep(session, now=night)

    assert tick.ran is True
    assert (tick.doses, tick.orders, tick.notifications, tick.administrations) == (1, 1, 1, 1)
    assert again.ran is True
    assert again.total == 0

    async with sessionmaker() as session:
        retired = {
            "old_order": await session.get(MedicationOrder, old_order),
            "old_dose": await session.get(DoseInstance, old_dose),
            "record": await session.get(AdministrationRecord, record_id),
            "read": await session.get(Notification, read_id),
        }
        kept = {
            "stuck_order": await session.get(MedicationOrder, stuck_order),
            "stuck_dose": await session.get(DoseInstance, stuck_dose),
            "recent_dose": await session.get(DoseInstance, recent_dose),
            "unread": await session.get(Notification, unread_id),
        }

    for name, row in retired.items():
        assert row.is_deleted is True, name
        assert row.updated_by == retention_service.CLEANUP_ACTOR, name
    for name, row in kept.items():
        assert row.is_deleted is False, name


async def test_failed_category_keeps_earlier_retirements(
    make_order, make_dose, db_url: str, now: datetime, monkeypatch
) -> None:
    old_order = await make_order(
        status=OrderStatus.COMPLETED,
        start_date=date(2026, 1, 1),
        end_date=date(2026, 1, 10),
    )
    old_dose = await make_dose(old_order, day=date(2026, 1, 5), status=DoseStatus.COMPLETED)

    async def unavailable(self, before, **_kwargs):
        raise OperationalError("UPDATE medication_orders", {}, Exception("database is locked"))

    monkeypatch.setattr(OrderStore, "retire_ended_before", unavailable)
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        tick = await retention_service.run_retention_sweep(session, now=now.replace(hour=2))

    assert (tick.doses, tick.orders) == (1, 0)
    async with sessionmaker() as session:
        assert (await session.get(DoseInstance, old_dose)).is_deleted is True
        assert (await session.get(MedicationOrder, old_order)).is_deleted is False
