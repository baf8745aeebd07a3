"""Tests for medication order lifecycle operations."""

from __future__ import annotations

from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from schoolmed.db.session import get_sessionmaker
from schoolmed.models import (
    DoseInstance,
    DoseStatus,
    MedicationOrder,
    Notification,
    NotificationKind,
    OrderStatus,
)
from schoolmed.services import messages, order_service
from schoolmed.services.results import ErrorCode
from schoolmed.services.stores import OrderStore

pytestmark = pytest.mark.asyncio


async def _order(db_url: str, order_id) -> MedicationOrder:
    async with get_sessionmaker(db_url)() as session:
        return await session.get(MedicationOrder, order_id)


async def _notifications(db_url: str, kind: NotificationKind) -> list[Notification]:
    async with get_sessionmaker(db_url)() as session:
        return list(
            (await session.scalars(select(Notification).where(Notification.kind == kind))).all()
        )


async def test_approve_and_reject_pending_orders(
    make_order, callers, school, db_url: str, now: datetime
) -> None:
    to_approve = await make_order(status=OrderStatus.PENDING_APPROVAL)
    to_reject = await make_order(status=OrderStatus.PENDING_APPROVAL)
    sessionmaker = get_sessionmaker(db_url)

    async with sessionmaker() as session:
        approved = await order_service.approve_order(
            session, order_id=to_approve, caller=callers["nurse"], approve=True, now=now
        )
    async with sessionmaker() as session:
        no_reason = await order_service.approve_order(
            session, order_id=to_reject, caller=callers["nurse"], approve=False, now=now
        )
    async with sessionmaker() as session:
        rejected = await order_service.approve_order(
            session,
            order_id=to_reject,
            caller=callers["nurse"],
            approve=False,
            reason="Thiếu đơn của bác sĩ",
            now=now,
        )
    async with sessionmaker() as session:
        twice = await order_service.approve_order(
            session, order_id=to_approve, caller=callers["nurse"], approve=True, now=now
        )

    assert approved.data.status == OrderStatus.APPROVED
    assert approved.data.approved_by_id == school["nurse"]
    assert approved.data.approved_at == now
    assert no_reason.error_code == ErrorCode.VALIDATION_ERROR
    assert rejected.data.status == OrderStatus.REJECTED
    assert rejected.data.rejection_reason == "Thiếu đơn của bác sĩ"
    assert twice.error_code == ErrorCode.INVALID_STATE
    assert len(await _notifications(db_url, NotificationKind.ORDER_STATUS)) == 2


async def test_parents_cannot_approve(make_order, callers, db_url: str, now: datetime) -> None:
    order_id = await make_order(status=OrderStatus.PENDING_APPROVAL)
    async with get_sessionmaker(db_url)() as session:
        result = await order_service.approve_order(
            session, order_id=order_id, caller=callers["parent"], approve=True, now=now
        )
    assert result.error_code == ErrorCode.INSUFFICIENT_PERMISSIONS
    assert (await _order(db_url, order_id)).status == OrderStatus.PENDING_APPROVAL


async def test_activation_waits_for_start_date(make_order, db_url: str, now: datetime) -> None:
    started = await make_order(status=OrderStatus.APPROVED)
    future = await make_order(
        status=OrderStatus.APPROVED,
        start_date=now.date() + timedelta(days=3),
        end_date=now.date() + timedelta(days=5),
    )
    async with get_sessionmaker(db_url)() as session:
        activated = await order_service.activate_approved_orders(session, now=now)

    assert activated == 1
    assert (await _order(db_url, started)).status == OrderStatus.ACTIVE
    assert (await _order(db_url, future)).status == OrderStatus.APPROVED


async def test_discontinuing_cancels_pending_doses(
    make_order, make_dose, callers, db_url: str, now: datetime
) -> None:
    order_id = await make_order()
    pending = await make_dose(order_id, at=time(12, 0))
    given = await make_dose(order_id, at=time(8, 0), status=DoseStatus.COMPLETED)
    sessionmaker = get_sessionmaker(db_url)

    async with sessionmaker() as session:
        result = await order_service.update_order_status(
            session,
            order_id=order_id,
            caller=callers["nurse"],
            status=OrderStatus.DISCONTINUED,
            reason="Bác sĩ cho ngưng thuốc",
            now=now,
        )
    async with sessionmaker() as session:
        backwards = await order_service.update_order_status(
            session, order_id=order_id, caller=callers["nurse"], status=OrderStatus.ACTIVE, now=now
        )
        doses = {
            dose.id: dose
            for dose in (
                await session.scalars(
                    select(DoseInstance).where(DoseInstance.order_id == order_id)
                )
            ).all()
        }

    assert result.data.status == OrderStatus.DISCONTINUED
    assert backwards.error_code == ErrorCode.INVALID_STATE
    assert doses[pending].status == DoseStatus.CANCELLED
    assert doses[pending].notes == messages.DISCONTINUED_NOTE
    assert doses[given].status == DoseStatus.COMPLETED
    assert len(await _notifications(db_url, NotificationKind.ORDER_STATUS)) == 1


async def test_restock_rearms_low_stock_alert(make_order, callers, db_url: str) -> None:
    order_id = await make_order(remaining_doses=2)
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as session:
        assert await order_service.claim_low_stock_alert(session, order_id=order_id)
        await session.commit()
    async with sessionmaker() as session:
        assert not await order_service.claim_low_stock_alert(session, order_id=order_id)

    async with sessionmaker() as session:
        invalid = await order_service.restock_order(
            session, order_id=order_id, caller=callers["nurse"], added_doses=0
        )
    async with sessionmaker() as session:
        result = await order_service.restock_order(
            session, order_id=order_id, caller=callers["nurse"], added_doses=10
        )
    async with sessionmaker() as session:
        rearmed = await order_service.claim_low_stock_alert(session, order_id=order_id)

    assert invalid.error_code == ErrorCode.VALIDATION_ERROR
    assert result.data.remaining_doses == 12
    assert result.data.low_stock_alert_sent is False
    assert rearmed is True


async def test_expiry_warnings_go_out_once_per_window(
    make_order, school, db_url: str, now: datetime
) -> None:
    order_id = await make_order(
        expiry_date=now.date() + timedelta(days=6), end_date=now.date() + timedelta(days=30)
    )
    await make_order(expiry_date=now.date() + timedelta(days=20))
    sessionmaker = get_sessionmaker(db_url)

    async with sessionmaker() as session:
        first = await order_service.notify_expiring_orders(session, now=now)
    async with sessionmaker() as session:
        repeat = await order_service.notify_expiring_orders(session, now=now)
    async with sessionmaker() as session:
        closer = await order_service.notify_expiring_orders(
            session, now=now + timedelta(days=4)
        )

    assert (first, repeat, closer) == (1, 0, 1)
    warnings = await _notifications(db_url, NotificationKind.ORDER_EXPIRING)
    assert {w.order_id for w in warnings} == {order_id}
    assert all(w.recipient_id == school["parent"] for w in warnings)


async def test_storage_errors_do_not_leak_driver_detail(
    make_order, callers, db_url: str, monkeypatch
) -> None:
    order_id = await make_order()

    async def broken_get(self, order_id):
        raise OperationalError("SELECT * FROM medication_orders", {}, Exception("disk I/O error"))

    monkeypatch.setattr(OrderStore, "get", broken_get)
    async with get_sessionmaker(db_url)() as session:
        result = await order_service.restock_order(
            session, order_id=order_id, caller=callers["nurse"], added_doses=5
        )

    assert result.error_code == ErrorCode.INTERNAL_ERROR
    assert "medication_orders" not in result.message
    assert "disk I/O" not in result.message
