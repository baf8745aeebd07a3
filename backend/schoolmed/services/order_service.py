"""Medication order lifecycle: approval, activation, status changes, stock."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.core import clock
from schoolmed.core.config import get_settings
from schoolmed.models import (
    AlertKind,
    MedicationOrder,
    Notification,
    NotificationKind,
    OrderStatus,
)
from schoolmed.security.permissions import CallerIdentity
from schoolmed.services import alert_service, messages, notification_service
from schoolmed.services.cache_service import invalidate_dose_caches
from schoolmed.services.results import ServiceResult
from schoolmed.services.stores import DoseInstanceStore, OrderStore

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"
LOW_STOCK_EXPIRY = timedelta(days=7)

# Explicit status changes; approval and rejection go through approve_order.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.APPROVED: frozenset({OrderStatus.ACTIVE, OrderStatus.DISCONTINUED}),
    OrderStatus.ACTIVE: frozenset({OrderStatus.COMPLETED, OrderStatus.DISCONTINUED}),
}


def _student_name(order: MedicationOrder) -> str:
    return order.student.full_name if order.student is not None else ""


def low_stock_notification(order: MedicationOrder, *, remaining: int, now: datetime) -> Notification:
    return notification_service.build_notification(
        recipient_id=order.parent_id,
        kind=NotificationKind.LOW_STOCK,
        content=messages.build_low_stock_alert(
            student_name=_student_name(order),
            medication_name=order.medication_name,
            remaining=remaining,
        ),
        now=now,
        expires_in=LOW_STOCK_EXPIRY,
        requires_confirmation=True,
        order_id=order.id,
    )


async def claim_low_stock_alert(session: AsyncSession, *, order_id: uuid.UUID) -> bool:
    """Set the sticky low-stock flag; True if this caller is the one to alert.

    The alert stays suppressed until ``low_stock_alert_sent`` is cleared again.
    """
    return await OrderStore(session).flag_low_stock(order_id)


async def approve_order(
    session: AsyncSession,
    *,
    order_id: uuid.UUID,
    caller: CallerIdentity,
    approve: bool,
    reason: str | None = None,
    now: datetime | None = None,
) -> ServiceResult[MedicationOrder]:
    """Approve or reject an order awaiting a nurse's decision."""
    now = now or clock.now()
    if not caller.is_clinical:
        return ServiceResult.forbidden("Chỉ nhân viên y tế mới được duyệt đơn thuốc.")
    if not approve and not (reason and reason.strip()):
        return ServiceResult.validation_error("Vui lòng nhập lý do từ chối.")

    orders = OrderStore(session)
    try:
        order = await orders.get(order_id)
        if order is None:
            return ServiceResult.not_found("Không tìm thấy đơn thuốc.")
        if order.status != OrderStatus.PENDING_APPROVAL:
            return ServiceResult.invalid_state("Đơn thuốc không ở trạng thái chờ duyệt.")

        if approve:
            values = {
                "status": OrderStatus.APPROVED,
                "approved_by_id": caller.user_id,
                "approved_at": now,
            }
        else:
            values = {"status": OrderStatus.REJECTED, "rejection_reason": reason}
        changed = await orders.set_status_if(
            order_id,
            expected=[OrderStatus.PENDING_APPROVAL],
            updated_by=str(caller.user_id),
            **values,
        )
        if not changed:
            await session.rollback()
            return ServiceResult.invalid_state("Đơn thuốc đã được xử lý bởi người khác.")
        await session.commit()
        order = await orders.get(order_id)
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to record decision for order %s", order_id)
        return ServiceResult.internal_error("duyệt đơn thuốc")

    logger.info(
        "Order %s %s by %s", order_id, "approved" if approve else "rejected", caller.user_id
    )
    await notification_service.deliver(
        session,
        [
            notification_service.build_notification(
                recipient_id=order.parent_id,
                sender_id=caller.user_id,
                kind=NotificationKind.ORDER_STATUS,
                content=messages.build_order_decision(
                    student_name=_student_name(order),
                    medication_name=order.medication_name,
                    approved=approve,
                    reason=reason,
                ),
                now=now,
                order_id=order.id,
            )
        ],
    )
    await invalidate_dose_caches()
    return ServiceResult.success(order)


async def activate_approved_orders(
    session: AsyncSession, *, now: datetime | None = None
) -> int:
    """Move approved orders whose window has started to Active."""
    now = now or clock.now()
    settings = get_settings()
    orders = OrderStore(session)
    candidates = await orders.approved_in_window(now.date(), limit=settings.activation_batch)
    ids = [order.id for order in candidates]
    activated = 0
    for order_id in ids:
        if await orders.set_status_if(
            order_id,
            expected=[OrderStatus.APPROVED],
            status=OrderStatus.ACTIVE,
            updated_by=SYSTEM_ACTOR,
        ):
            activated += 1
    if activated:
        await session.commit()
        await invalidate_dose_caches()
        logger.info("Activated %d approved order(s)", activated)
    return activated


async def update_order_status(
    session: AsyncSession,
    *,
    order_id: uuid.UUID,
    caller: CallerIdentity,
    status: OrderStatus,
    reason: str | None = None,
    now: datetime | None = None,
) -> ServiceResult[MedicationOrder]:
    """Advance an order's status; ending an order cancels its pending doses."""
    now = now or clock.now()
    if not caller.is_clinical:
        return ServiceResult.forbidden("Chỉ nhân viên y tế mới được cập nhật đơn thuốc.")

    orders = OrderStore(session)
    try:
        order = await orders.get(order_id)
        if order is None:
            return ServiceResult.not_found("Không tìm thấy đơn thuốc.")
        current = order.status
        if status not in ALLOWED_TRANSITIONS.get(current, frozenset()):
            return ServiceResult.invalid_state(
                f"Không thể chuyển đơn thuốc từ {current.value} sang {status.value}."
            )
        changed = await orders.set_status_if(
            order_id, expected=[current], status=status, updated_by=str(caller.user_id)
        )
        if not changed:
            await session.rollback()
            return ServiceResult.invalid_state("Đơn thuốc đã được cập nhật bởi người khác.")

        cancelled = 0
        if status in (OrderStatus.COMPLETED, OrderStatus.DISCONTINUED):
            note = (
                messages.DISCONTINUED_NOTE
                if status == OrderStatus.DISCONTINUED
                else messages.COMPLETED_ORDER_NOTE
            )
            cancelled = await DoseInstanceStore(session).cancel_pending_for_order(
                order_id, note=note, updated_by=str(caller.user_id)
            )
        await session.commit()
        order = await orders.get(order_id)
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to update status of order %s", order_id)
        return ServiceResult.internal_error("cập nhật đơn thuốc")

    logger.info(
        "Order %s moved %s -> %s (%d pending dose(s) cancelled)",
        order_id,
        current.value,
        status.value,
        cancelled,
    )
    if status == OrderStatus.DISCONTINUED:
        await notification_service.deliver(
            session,
            [
                notification_service.build_notification(
                    recipient_id=order.parent_id,
                    sender_id=caller.user_id,
                    kind=NotificationKind.ORDER_STATUS,
                    content=messages.build_discontinued_notice(
                        student_name=_student_name(order),
                        medication_name=order.medication_name,
                        reason=reason,
                    ),
                    now=now,
                    order_id=order.id,
                )
            ],
        )
    await invalidate_dose_caches()
    return ServiceResult.success(order)


async def restock_order(
    session: AsyncSession,
    *,
    order_id: uuid.UUID,
    caller: CallerIdentity,
    added_doses: int,
) -> ServiceResult[MedicationOrder]:
    """Add supply and re-arm the low-stock alert."""
    if not caller.is_clinical:
        return ServiceResult.forbidden("Chỉ nhân viên y tế mới được cập nhật số lượng thuốc.")
    if added_doses <= 0:
        return ServiceResult.validation_error("Số liều bổ sung phải lớn hơn 0.")

    orders = OrderStore(session)
    try:
        order = await orders.get(order_id)
        if order is None:
            return ServiceResult.not_found("Không tìm thấy đơn thuốc.")
        order.remaining_doses += added_doses
        if order.total_doses is not None:
            order.total_doses += added_doses
        order.low_stock_alert_sent = False
        order.updated_by = str(caller.user_id)
        await session.commit()
        order = await orders.get(order_id)
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to restock order %s", order_id)
        return ServiceResult.internal_error("bổ sung thuốc")

    logger.info("Order %s restocked with %d dose(s)", order_id, added_doses)
    await invalidate_dose_caches()
    return ServiceResult.success(order)


async def notify_expiring_orders(
    session: AsyncSession, *, now: datetime | None = None
) -> int:
    """Warn parents once per window as an active order nears its expiry date."""
    now = now or clock.now()
    settings = get_settings()
    windows = sorted(set(settings.expiry_warning_days))
    if not windows:
        return 0
    today = now.date()
    candidates = await OrderStore(session).expiring_within(today, windows[-1])

    queued: list[Notification] = []
    for order in candidates:
        days_left = (order.expiry_date - today).days
        window = next(w for w in windows if days_left <= w)
        subject = uuid.uuid5(order.id, f"expiry:{window}")
        if not await alert_service.claim(
            session, subject, AlertKind.EXPIRY_WARNING, now=now, cooldown=None
        ):
            continue
        queued.append(
            notification_service.build_notification(
                recipient_id=order.parent_id,
                kind=NotificationKind.ORDER_EXPIRING,
                content=messages.build_expiry_warning(
                    student_name=_student_name(order),
                    medication_name=order.medication_name,
                    expiry_date=order.expiry_date,
                    days_left=days_left,
                ),
                now=now,
                expires_in=timedelta(days=max(days_left, 1)),
                requires_confirmation=True,
                order_id=order.id,
            )
        )
    if queued:
        session.add_all(queued)
        await session.commit()
        logger.info("Sent %d expiry warning(s)", len(queued))
    return len(queued)
