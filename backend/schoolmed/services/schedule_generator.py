"""Expand medication orders into dated, timed dose instances.

Generation is idempotent: a slot ``(order, date, time)`` is checked before it
is inserted and the unique constraint on ``dose_instances`` rejects any
duplicate that a concurrent trigger manages to slip in, which is then counted
as already present.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import date, datetime, time, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.core import clock
from schoolmed.core.config import get_settings
from schoolmed.models import (
    DoseInstance,
    DoseStatus,
    FrequencyType,
    MedicationOrder,
    OrderStatus,
    TimeOfDay,
)
from schoolmed.services.cache_service import invalidate_dose_caches
from schoolmed.services.results import BatchResult, ServiceResult
from schoolmed.services.stores import DoseInstanceStore, OrderStore

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"

TIME_OF_DAY_CLOCK = {
    TimeOfDay.BEFORE_BREAKFAST: time(7, 0),
    TimeOfDay.AFTER_BREAKFAST: time(8, 30),
    TimeOfDay.BEFORE_LUNCH: time(11, 30),
    TimeOfDay.AFTER_LUNCH: time(13, 0),
    TimeOfDay.BEFORE_DINNER: time(17, 30),
    TimeOfDay.AFTER_DINNER: time(19, 0),
    TimeOfDay.BEFORE_BED: time(21, 0),
}
DEFAULT_DOSE_TIME = time(8, 0)


def parse_skip_dates(raw: str | None, *, order_id: uuid.UUID | None = None) -> set[date]:
    """Parse a JSON list of ``YYYY-MM-DD`` strings; bad data is logged and ignored."""
    if not raw:
        return set()
    try:
        values = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring malformed skip dates for order %s: %r", order_id, raw)
        return set()
    if not isinstance(values, list):
        logger.warning("Ignoring non-list skip dates for order %s: %r", order_id, raw)
        return set()
    parsed: set[date] = set()
    for value in values:
        try:
            parsed.add(date.fromisoformat(str(value)))
        except ValueError:
            logger.warning("Ignoring malformed skip date %r for order %s", value, order_id)
    return parsed


def recurs_on(order: MedicationOrder, day: date) -> bool:
    """Return whether the order's recurrence rule, anchored on its start date, hits ``day``."""
    anchor = order.start_date
    offset = (day - anchor).days
    if offset < 0:
        return False
    frequency = order.frequency_type
    if frequency == FrequencyType.DAILY:
        return True
    if frequency == FrequencyType.EVERY_OTHER_DAY:
        return offset % 2 == 0
    if frequency == FrequencyType.WEEKLY:
        return day.weekday() == anchor.weekday()
    if frequency == FrequencyType.BI_WEEKLY:
        return offset % 14 == 0
    if frequency == FrequencyType.MONTHLY:
        return day.day == anchor.day
    if frequency == FrequencyType.SPECIFIC_DAYS:
        return day.weekday() in set(order.specific_days or ())
    # As-needed orders are given on request, never on a schedule.
    return False


def dose_dates(order: MedicationOrder, start: date, end: date) -> list[date]:
    """Dates in ``[start, end]`` (clamped to the order's validity) that get doses."""
    first = max(start, order.start_date)
    last = min(end, order.end_date, order.expiry_date - timedelta(days=1))
    skipped = parse_skip_dates(order.skip_dates, order_id=order.id)
    days: list[date] = []
    day = first
    while day <= last:
        if (
            recurs_on(order, day)
            and not (order.skip_weekends and day.weekday() >= 5)
            and day not in skipped
        ):
            days.append(day)
        day += timedelta(days=1)
    return days


def dose_times(order: MedicationOrder) -> list[time]:
    """Explicit clock times when given, else the order's time-of-day slot."""
    explicit: set[time] = set()
    for raw in order.specific_times or ():
        try:
            explicit.add(time.fromisoformat(str(raw).strip()))
        except ValueError:
            logger.warning("Ignoring malformed dose time %r for order %s", raw, order.id)
    if explicit:
        return sorted(explicit)
    return [TIME_OF_DAY_CLOCK.get(order.time_of_day, DEFAULT_DOSE_TIME)]


def _dose_template(order: MedicationOrder, actor: str) -> dict[str, object]:
    """Fields every dose of ``order`` copies at creation time."""
    return {
        "order_id": order.id,
        "scheduled_dosage": order.dosage,
        "priority": order.priority,
        "status": DoseStatus.PENDING,
        "special_instructions": order.instructions,
        "requires_nurse_confirmation": order.require_nurse_confirmation,
        "updated_by": actor,
    }


def _new_dose(template: dict[str, object], day: date, at: time) -> DoseInstance:
    return DoseInstance(id=uuid.uuid4(), scheduled_date=day, scheduled_time=at, **template)


async def _insert_one_by_one(
    session: AsyncSession, doses: list[DoseInstance], batch: BatchResult
) -> None:
    for dose in doses:
        try:
            async with session.begin_nested():
                session.add(dose)
        except IntegrityError:
            logger.info(
                "Dose slot %s %s for order %s appeared concurrently; skipping",
                dose.scheduled_date,
                dose.scheduled_time,
                dose.order_id,
            )
            continue
        batch.record_success(dose.id)


async def generate_doses(
    session: AsyncSession,
    *,
    order_id: uuid.UUID,
    start: date | None = None,
    end: date | None = None,
    actor: str = SYSTEM_ACTOR,
    now: datetime | None = None,
) -> ServiceResult[BatchResult]:
    """Create the dose instances missing for ``order_id`` in ``[start, end]``."""
    now = now or clock.now()
    orders = OrderStore(session)
    doses = DoseInstanceStore(session)
    try:
        order = await orders.get(order_id)
        if order is None:
            return ServiceResult.not_found("Không tìm thấy đơn thuốc.")
        if order.status != OrderStatus.ACTIVE:
            return ServiceResult.invalid_state(
                "Chỉ có thể tạo lịch cho đơn thuốc đang hoạt động."
            )
        start = start or now.date()
        end = end or order.end_date
        if start > end:
            return ServiceResult.validation_error("Ngày bắt đầu phải trước ngày kết thúc.")

        days = dose_dates(order, start, end)
        times = dose_times(order)
        if not days or not times:
            return ServiceResult.validation_error(
                "Không có ngày hoặc giờ hợp lệ để tạo lịch uống thuốc."
            )

        batch = BatchResult(total_requested=len(days) * len(times))
        template = _dose_template(order, actor)
        pending: list[DoseInstance] = []
        for day in days:
            for at in times:
                try:
                    if await doses.slot_exists(order.id, day, at):
                        continue
                    pending.append(_new_dose(template, day, at))
                except SQLAlchemyError:
                    logger.exception(
                        "Failed to prepare dose %s %s for order %s", day, at, order.id
                    )
                    batch.record_failure(f"{day.isoformat()} {at.strftime('%H:%M')}: lỗi hệ thống")

        if pending:
            doses.add_many(pending)
            try:
                await session.commit()
                for dose in pending:
                    batch.record_success(dose.id)
            except IntegrityError:
                await session.rollback()
                await _insert_one_by_one(
                    session,
                    [_new_dose(template, d.scheduled_date, d.scheduled_time) for d in pending],
                    batch,
                )
                await session.commit()
            await invalidate_dose_caches()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Schedule generation failed for order %s", order_id)
        return ServiceResult.internal_error("tạo lịch uống thuốc")

    logger.info(
        "Generated %d of %d dose slot(s) for order %s (%d failed)",
        batch.success_count,
        batch.total_requested,
        order_id,
        batch.failure_count,
    )
    return ServiceResult.success(batch, f"Đã tạo {batch.success_count} lịch uống thuốc.")


async def _generate_for_each(
    session: AsyncSession,
    orders: list[MedicationOrder],
    *,
    start: date,
    end: date | None,
    now: datetime,
) -> int:
    created = 0
    # Snapshot before any commit or rollback expires the loaded rows.
    targets = [(order.id, end or order.end_date) for order in orders]
    for order_id, last in targets:
        result = await generate_doses(
            session, order_id=order_id, start=start, end=last, now=now
        )
        if result.is_success and result.data is not None:
            created += result.data.success_count
        else:
            logger.warning("Skipped generation for order %s: %s", order_id, result.message)
    return created


async def _orders_due_on(
    session: AsyncSession, day: date, *, limit: int
) -> list[MedicationOrder]:
    candidates = await OrderStore(session).needing_generation(day)
    return [order for order in candidates if dose_dates(order, day, day)][:limit]


async def generate_for_today(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Fill in today's doses for active auto-generating orders that lack them."""
    now = now or clock.now()
    settings = get_settings()
    today = now.date()
    orders = await _orders_due_on(session, today, limit=settings.generation_today_batch)
    return await _generate_for_each(session, orders, start=today, end=today, now=now)


async def generate_for_tomorrow(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Prepare tomorrow's doses; only runs from the evening gate onwards."""
    now = now or clock.now()
    settings = get_settings()
    if now.hour < settings.tomorrow_generation_hour:
        return 0
    tomorrow = now.date() + timedelta(days=1)
    orders = await _orders_due_on(session, tomorrow, limit=settings.generation_tomorrow_batch)
    return await _generate_for_each(session, orders, start=tomorrow, end=tomorrow, now=now)


async def backfill_recently_approved(
    session: AsyncSession, *, now: datetime | None = None
) -> int:
    """Generate the whole remaining window for orders approved moments ago."""
    now = now or clock.now()
    settings = get_settings()
    since = now - timedelta(minutes=settings.recently_approved_minutes)
    orders = await OrderStore(session).recently_approved(
        since, limit=settings.generation_approved_batch
    )
    return await _generate_for_each(session, orders, start=now.date(), end=None, now=now)
