"""Dose state machine and administration recording.

A dose instance starts ``pending`` and moves exactly once to ``completed``,
``missed``, ``student_absent`` or ``cancelled``. Each transition is written as
a conditional update on ``status = 'pending'``, committed, and only then are
notifications persisted and caches invalidated.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.core import clock
from schoolmed.core.config import get_settings
from schoolmed.models import (
    AdministrationRecord,
    DoseInstance,
    DoseStatus,
    MedicationOrder,
    Notification,
    NotificationKind,
    OrderStatus,
)
from schoolmed.schemas.dose import AdministerRequest, BulkAdministerItem, DoseRead
from schoolmed.security.permissions import CallerIdentity, can_read_dose
from schoolmed.services import messages, notification_service, order_service
from schoolmed.services.cache_service import (
    DOSE_CACHE_TAG,
    dose_key,
    get_cache,
    invalidate_dose_caches,
)
from schoolmed.services.results import BatchResult, ServiceResult
from schoolmed.services.stores import AdministrationStore, DoseInstanceStore, OrderStore

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"
ABSENT_NOTICE_EXPIRY = timedelta(days=2)
MISSED_NOTICE_EXPIRY = timedelta(days=3)
NOT_PENDING = "Lịch uống thuốc không ở trạng thái chờ."
NOT_FOUND = "Không tìm thấy lịch uống thuốc."
NOT_CLINICAL = "Chỉ nhân viên y tế mới được thực hiện thao tác này."


def combine_notes(existing: str | None, addition: str | None) -> str | None:
    if not addition:
        return existing
    if not existing:
        return addition
    return f"{existing}\n---\n{addition}"


def _student_name(order: MedicationOrder) -> str:
    return order.student.full_name if order.student is not None else ""


async def _load_pending(
    doses: DoseInstanceStore, dose_id: uuid.UUID
) -> tuple[DoseInstance | None, ServiceResult | None]:
    dose = await doses.get(dose_id)
    if dose is None:
        return None, ServiceResult.not_found(NOT_FOUND)
    if dose.status != DoseStatus.PENDING:
        return None, ServiceResult.invalid_state(NOT_PENDING)
    return dose, None


async def _reload(session: AsyncSession, dose_id: uuid.UUID) -> DoseRead:
    dose = await DoseInstanceStore(session).get(dose_id)
    return DoseRead.model_validate(dose)


async def get_dose(
    session: AsyncSession, *, dose_id: uuid.UUID, caller: CallerIdentity
) -> ServiceResult[DoseRead]:
    """Read one dose instance, honouring who may see it."""
    cache = get_cache()
    key = dose_key(dose_id)
    cached = await cache.get(key)
    if cached is None:
        dose = await DoseInstanceStore(session).get(dose_id)
        if dose is None:
            return ServiceResult.not_found(NOT_FOUND)
        cached = {
            "dose": DoseRead.model_validate(dose).model_dump(mode="json"),
            "student_id": str(dose.order.student_id),
            "parent_id": str(dose.order.parent_id),
        }
        await cache.set(
            key, cached, get_settings().cache_default_ttl_seconds, tags=(DOSE_CACHE_TAG,)
        )

    allowed = can_read_dose(
        caller,
        student_id=uuid.UUID(cached["student_id"]),
        parent_id=uuid.UUID(cached["parent_id"]),
    )
    if not allowed:
        return ServiceResult.forbidden("Bạn không có quyền xem lịch uống thuốc này.")
    return ServiceResult.success(DoseRead.model_validate(cached["dose"]))


async def _administer_one(
    session: AsyncSession,
    *,
    dose_id: uuid.UUID,
    caller: CallerIdentity | None,
    payload: AdministerRequest,
    now: datetime,
) -> ServiceResult[DoseRead]:
    if not payload.actual_dosage or not payload.actual_dosage.strip():
        return ServiceResult.validation_error("Vui lòng nhập liều lượng thực tế.")
    if caller is None:
        return ServiceResult.forbidden("Không xác định được người thực hiện.")
    if not caller.is_clinical:
        return ServiceResult.forbidden(NOT_CLINICAL)

    doses = DoseInstanceStore(session)
    orders = OrderStore(session)
    try:
        dose, failure = await _load_pending(doses, dose_id)
        if failure is not None:
            return failure
        order = dose.order
        today = now.date()
        if order.status != OrderStatus.ACTIVE:
            return ServiceResult.invalid_state("Đơn thuốc không còn hoạt động.")
        if not order.start_date <= today <= order.end_date:
            return ServiceResult.invalid_state("Ngoài thời gian sử dụng thuốc.")
        if order.expiry_date <= today:
            return ServiceResult.invalid_state("Thuốc đã hết hạn sử dụng.")

        refused = payload.student_refused
        record = AdministrationRecord(
            id=uuid.uuid4(),
            order_id=order.id,
            dose_instance_id=dose.id,
            administered_by_id=caller.user_id,
            administered_at=now,
            actual_dosage=payload.actual_dosage,
            notes=payload.notes,
            student_refused=refused,
            refusal_reason=payload.refusal_reason,
            side_effects_observed=payload.side_effects_observed,
            updated_by=str(caller.user_id),
        )
        AdministrationStore(session).add(record)
        await session.flush()

        values: dict[str, object] = {
            "administration_id": record.id,
            "student_present": True,
            "attendance_checked_at": now,
            "notes": combine_notes(dose.notes, payload.notes),
            "updated_by": str(caller.user_id),
        }
        if refused:
            values.update(
                status=DoseStatus.MISSED,
                missed_at=now,
                missed_reason=payload.refusal_reason or "Học sinh từ chối uống thuốc",
            )
        else:
            values.update(status=DoseStatus.COMPLETED, completed_at=now)
        if not await doses.transition_from_pending(dose.id, **values):
            await session.rollback()
            return ServiceResult.invalid_state(NOT_PENDING)

        low_stock_claimed = False
        remaining = order.remaining_doses
        if not refused:
            if not await orders.decrement_supply(order.id):
                logger.warning(
                    "Emergency case: dose %s given with zero supply on order %s",
                    dose.id,
                    order.id,
                )
            order = await orders.get(order.id)
            remaining = order.remaining_doses
            if remaining <= order.min_stock_threshold:
                low_stock_claimed = await order_service.claim_low_stock_alert(
                    session, order_id=order.id
                )
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to administer dose %s", dose_id)
        return ServiceResult.internal_error("ghi nhận cho uống thuốc")

    logger.info(
        "Dose %s %s by %s", dose_id, "refused" if refused else "administered", caller.user_id
    )

    outgoing: list[Notification] = []
    if low_stock_claimed:
        outgoing.append(order_service.low_stock_notification(order, remaining=remaining, now=now))
    side_effects = payload.side_effects_observed
    if refused or side_effects or order.priority.is_urgent:
        outgoing.append(
            notification_service.build_notification(
                recipient_id=order.parent_id,
                sender_id=caller.user_id,
                kind=NotificationKind.DOSE_ADMINISTERED,
                content=messages.build_administration_notice(
                    student_name=_student_name(order),
                    medication_name=order.medication_name,
                    actual_dosage=payload.actual_dosage,
                    administered_at=now,
                    refused=refused,
                    refusal_reason=payload.refusal_reason,
                    side_effects=side_effects,
                ),
                now=now,
                requires_confirmation=bool(refused or side_effects),
                dose_instance_id=dose_id,
                order_id=order.id,
            )
        )
    await notification_service.deliver(session, outgoing)
    return ServiceResult.success(await _reload(session, dose_id))


async def administer(
    session: AsyncSession,
    *,
    dose_id: uuid.UUID,
    caller: CallerIdentity | None,
    payload: AdministerRequest,
    now: datetime | None = None,
) -> ServiceResult[DoseRead]:
    """Record that a dose was given or refused."""
    result = await _administer_one(
        session, dose_id=dose_id, caller=caller, payload=payload, now=now or clock.now()
    )
    if result.is_success:
        await invalidate_dose_caches()
    return result


async def bulk_administer(
    session: AsyncSession,
    *,
    items: Sequence[BulkAdministerItem],
    caller: CallerIdentity | None,
    now: datetime | None = None,
) -> ServiceResult[BatchResult]:
    """Administer each item independently; one failure does not stop the rest."""
    now = now or clock.now()
    batch = BatchResult(total_requested=len(items))
    for item in items:
        result = await _administer_one(
            session, dose_id=item.dose_id, caller=caller, payload=item, now=now
        )
        if result.is_success:
            batch.record_success(item.dose_id)
        else:
            batch.record_failure(f"Lịch {item.dose_id}: {result.message}")
    if batch.success_count:
        await invalidate_dose_caches()
    logger.info(
        "Bulk administration: %d ok, %d failed", batch.success_count, batch.failure_count
    )
    return ServiceResult.success(batch)


async def quick_complete(
    session: AsyncSession,
    *,
    dose_id: uuid.UUID,
    caller: CallerIdentity,
    notes: str | None = None,
    now: datetime | None = None,
) -> ServiceResult[DoseRead]:
    """Mark a pending dose completed without a full administration record."""
    now = now or clock.now()
    if not caller.is_clinical:
        return ServiceResult.forbidden(NOT_CLINICAL)
    doses = DoseInstanceStore(session)
    try:
        dose, failure = await _load_pending(doses, dose_id)
        if failure is not None:
            return failure
        changed = await doses.transition_from_pending(
            dose_id,
            status=DoseStatus.COMPLETED,
            completed_at=now,
            student_present=True,
            notes=notes or messages.QUICK_COMPLETE_NOTE,
            updated_by=str(caller.user_id),
        )
        if not changed:
            await session.rollback()
            return ServiceResult.invalid_state(NOT_PENDING)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to quick-complete dose %s", dose_id)
        return ServiceResult.internal_error("hoàn thành nhanh")

    await invalidate_dose_caches()
    return ServiceResult.success(await _reload(session, dose_id))


async def mark_student_absent(
    session: AsyncSession,
    *,
    dose_id: uuid.UUID,
    caller: CallerIdentity,
    notes: str | None = None,
    now: datetime | None = None,
) -> ServiceResult[DoseRead]:
    """Record that the student was not at school for today's dose."""
    now = now or clock.now()
    if not caller.is_clinical:
        return ServiceResult.forbidden(NOT_CLINICAL)
    doses = DoseInstanceStore(session)
    try:
        dose, failure = await _load_pending(doses, dose_id)
        if failure is not None:
            return failure
        if dose.scheduled_date != now.date():
            return ServiceResult.validation_error(
                "Chỉ có thể đánh dấu vắng mặt cho lịch trình hôm nay."
            )
        order = dose.order
        changed = await doses.transition_from_pending(
            dose_id,
            status=DoseStatus.STUDENT_ABSENT,
            student_present=False,
            attendance_checked_at=now,
            notes=notes or messages.ABSENT_NOTE,
            updated_by=str(caller.user_id),
        )
        if not changed:
            await session.rollback()
            return ServiceResult.invalid_state(NOT_PENDING)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to mark dose %s absent", dose_id)
        return ServiceResult.internal_error("đánh dấu vắng mặt")

    await notification_service.deliver(
        session,
        [
            notification_service.build_notification(
                recipient_id=order.parent_id,
                sender_id=caller.user_id,
                kind=NotificationKind.STUDENT_ABSENT,
                content=messages.build_absent_notice(
                    student_name=_student_name(order),
                    medication_name=order.medication_name,
                    scheduled_date=dose.scheduled_date,
                    scheduled_time=dose.scheduled_time,
                ),
                now=now,
                expires_in=ABSENT_NOTICE_EXPIRY,
                dose_instance_id=dose_id,
                order_id=order.id,
            )
        ],
    )
    await invalidate_dose_caches()
    return ServiceResult.success(await _reload(session, dose_id))


def missed_notification(
    dose: DoseInstance,
    *,
    reason: str,
    now: datetime,
    sender_id: uuid.UUID | None = None,
) -> Notification:
    order = dose.order
    return notification_service.build_notification(
        recipient_id=order.parent_id,
        sender_id=sender_id,
        kind=NotificationKind.DOSE_MISSED,
        content=messages.build_missed_notice(
            student_name=_student_name(order),
            medication_name=order.medication_name,
            scheduled_date=dose.scheduled_date,
            scheduled_time=dose.scheduled_time,
            reason=reason,
            priority=order.priority,
        ),
        now=now,
        expires_in=MISSED_NOTICE_EXPIRY,
        requires_confirmation=order.priority.is_urgent,
        dose_instance_id=dose.id,
        order_id=order.id,
    )


async def mark_missed(
    session: AsyncSession,
    *,
    dose_id: uuid.UUID,
    caller: CallerIdentity,
    reason: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> ServiceResult[DoseRead]:
    """Record that a present student did not get the dose."""
    now = now or clock.now()
    if not caller.is_clinical:
        return ServiceResult.forbidden(NOT_CLINICAL)
    if not reason or not reason.strip():
        return ServiceResult.validation_error("Vui lòng nhập lý do bỏ lỡ.")
    doses = DoseInstanceStore(session)
    try:
        dose, failure = await _load_pending(doses, dose_id)
        if failure is not None:
            return failure
        changed = await doses.transition_from_pending(
            dose_id,
            status=DoseStatus.MISSED,
            student_present=True,
            attendance_checked_at=now,
            missed_at=now,
            missed_reason=reason,
            notes=combine_notes(dose.notes, notes),
            updated_by=str(caller.user_id),
        )
        if not changed:
            await session.rollback()
            return ServiceResult.invalid_state(NOT_PENDING)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to mark dose %s missed", dose_id)
        return ServiceResult.internal_error("đánh dấu bỏ lỡ")

    logger.warning("Dose %s marked missed: %s", dose_id, reason)
    await notification_service.deliver(
        session, [missed_notification(dose, reason=reason, now=now, sender_id=caller.user_id)]
    )
    await invalidate_dose_caches()
    return ServiceResult.success(await _reload(session, dose_id))


async def auto_mark_overdue(
    session: AsyncSession, *, now: datetime | None = None
) -> BatchResult:
    """Force pending doses past the grace period into ``missed``."""
    now = now or clock.now()
    grace = timedelta(minutes=get_settings().overdue_grace_minutes)
    doses = DoseInstanceStore(session)
    overdue = await doses.overdue_pending(now - grace)
    batch = BatchResult(total_requested=len(overdue))
    marked: list[DoseInstance] = []
    for dose in overdue:
        try:
            async with session.begin_nested():
                changed = await doses.transition_from_pending(
                    dose.id,
                    status=DoseStatus.MISSED,
                    missed_at=now,
                    missed_reason=messages.OVERDUE_REASON,
                    updated_by=SYSTEM_ACTOR,
                )
        except SQLAlchemyError:
            logger.exception("Failed to mark overdue dose %s", dose.id)
            batch.record_failure(f"Lịch {dose.id}: lỗi hệ thống")
            continue
        if changed:
            batch.record_success(dose.id)
            marked.append(dose)
    if not marked:
        return batch

    await session.commit()
    logger.warning("Marked %d overdue dose(s) as missed", len(marked))
    await notification_service.deliver(
        session,
        [missed_notification(dose, reason=messages.OVERDUE_REASON, now=now) for dose in marked],
    )
    await invalidate_dose_caches()
    return batch
