"""Narrow storage interfaces for the scheduling core.

Each store wraps one ``AsyncSession`` and exposes only the query shapes the
scheduling, reminder and sweep logic needs. Transitions on dose instances are
conditional updates (``WHERE status = 'pending'``) so a row changed by another
loop between read and write is left untouched.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import Select, and_, exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from schoolmed.models import (
    AdministrationRecord,
    DoseInstance,
    DoseStatus,
    HealthEvent,
    HealthEventStatus,
    MedicationOrder,
    Notification,
    OrderStatus,
    URGENT_PRIORITIES,
    User,
    UserRole,
)


def _live(model: Any):
    return model.is_deleted.is_(False)


def _with_order():
    return joinedload(DoseInstance.order).joinedload(MedicationOrder.student)


async def _soft_delete_ids(
    session: AsyncSession,
    model: Any,
    ids: Sequence[uuid.UUID],
    *,
    updated_by: str,
) -> int:
    if not ids:
        return 0
    result = await session.execute(
        update(model)
        .where(model.id.in_(ids), _live(model))
        .values(is_deleted=True, updated_by=updated_by)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


class DoseInstanceStore:
    """Reads and conditional writes over dose instances."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, dose_id: uuid.UUID) -> DoseInstance | None:
        stmt = (
            select(DoseInstance)
            .options(_with_order())
            .execution_options(populate_existing=True)
            .where(DoseInstance.id == dose_id, _live(DoseInstance))
        )
        result = await self.session.execute(stmt)
        return result.scalars().unique().one_or_none()

    async def slot_exists(self, order_id: uuid.UUID, day: date, at: time) -> bool:
        stmt = select(
            exists().where(
                DoseInstance.order_id == order_id,
                DoseInstance.scheduled_date == day,
                DoseInstance.scheduled_time == at,
            )
        )
        return bool(await self.session.scalar(stmt))

    def add_many(self, doses: Iterable[DoseInstance]) -> None:
        self.session.add_all(list(doses))

    async def pending_due_between(
        self,
        *,
        day: date,
        start: time,
        end: time,
        unreminded_only: bool = False,
        reminder_count_below: int | None = None,
        urgent_only: bool = False,
        limit: int,
    ) -> list[DoseInstance]:
        stmt: Select[tuple[DoseInstance]] = (
            select(DoseInstance)
            .options(_with_order())
            .execution_options(populate_existing=True)
            .where(
                _live(DoseInstance),
                DoseInstance.status == DoseStatus.PENDING,
                DoseInstance.scheduled_date == day,
                DoseInstance.scheduled_time >= start,
                DoseInstance.scheduled_time <= end,
            )
            .order_by(DoseInstance.scheduled_time)
            .limit(limit)
        )
        if unreminded_only:
            stmt = stmt.where(DoseInstance.reminder_sent.is_(False))
        if reminder_count_below is not None:
            stmt = stmt.where(DoseInstance.reminder_count < reminder_count_below)
        if urgent_only:
            stmt = stmt.where(DoseInstance.priority.in_(URGENT_PRIORITIES))
        result = await self.session.execute(stmt)
        doses = list(result.scalars().unique().all())
        doses.sort(key=lambda dose: (-dose.priority.rank, dose.scheduled_time))
        return doses

    async def overdue_pending(self, cutoff: datetime) -> list[DoseInstance]:
        stmt = (
            select(DoseInstance)
            .options(_with_order())
            .execution_options(populate_existing=True)
            .where(
                _live(DoseInstance),
                DoseInstance.status == DoseStatus.PENDING,
                or_(
                    DoseInstance.scheduled_date < cutoff.date(),
                    and_(
                        DoseInstance.scheduled_date == cutoff.date(),
                        DoseInstance.scheduled_time <= cutoff.time(),
                    ),
                ),
            )
            .order_by(DoseInstance.scheduled_date, DoseInstance.scheduled_time)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().unique().all())

    async def transition_from_pending(
        self, dose_id: uuid.UUID, **values: Any
    ) -> bool:
        """Apply ``values`` only if the instance is still pending."""
        result = await self.session.execute(
            update(DoseInstance)
            .where(
                DoseInstance.id == dose_id,
                DoseInstance.status == DoseStatus.PENDING,
                _live(DoseInstance),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def record_reminder(
        self, dose_id: uuid.UUID, *, at: datetime, cap: int | None = None
    ) -> bool:
        """Bump the reminder counter unless the dose moved on or hit ``cap``."""
        stmt = update(DoseInstance).where(
            DoseInstance.id == dose_id,
            DoseInstance.status == DoseStatus.PENDING,
        )
        if cap is not None:
            stmt = stmt.where(DoseInstance.reminder_count < cap)
        result = await self.session.execute(
            stmt.values(
                reminder_sent=True,
                reminder_sent_at=at,
                reminder_count=DoseInstance.reminder_count + 1,
            ).execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def cancel_pending_for_order(
        self, order_id: uuid.UUID, *, note: str, updated_by: str
    ) -> int:
        result = await self.session.execute(
            update(DoseInstance)
            .where(
                DoseInstance.order_id == order_id,
                DoseInstance.status == DoseStatus.PENDING,
                _live(DoseInstance),
            )
            .values(status=DoseStatus.CANCELLED, notes=note, updated_by=updated_by)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def retire_terminal_before(
        self, cutoff: date, *, statuses: Sequence[DoseStatus], limit: int, updated_by: str
    ) -> int:
        ids = (
            await self.session.scalars(
                select(DoseInstance.id)
                .where(
                    _live(DoseInstance),
                    DoseInstance.scheduled_date < cutoff,
                    DoseInstance.status.in_(statuses),
                )
                .limit(limit)
            )
        ).all()
        return await _soft_delete_ids(
            self.session, DoseInstance, ids, updated_by=updated_by
        )


def _has_dose_on(day: date):
    return exists().where(
        DoseInstance.order_id == MedicationOrder.id,
        DoseInstance.scheduled_date == day,
    )


def _has_pending_dose():
    return exists().where(
        DoseInstance.order_id == MedicationOrder.id,
        DoseInstance.status == DoseStatus.PENDING,
        _live(DoseInstance),
    )


class OrderStore:
    """Reads and guarded writes over medication orders."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, order_id: uuid.UUID) -> MedicationOrder | None:
        stmt = (
            select(MedicationOrder)
            .options(selectinload(MedicationOrder.student))
            .where(MedicationOrder.id == order_id, _live(MedicationOrder))
            .execution_options(populate_existing=True)
        )
        return (await self.session.scalars(stmt)).one_or_none()

    async def needing_generation(
        self, day: date, *, limit: int | None = None
    ) -> list[MedicationOrder]:
        stmt = (
            select(MedicationOrder)
            .where(
                _live(MedicationOrder),
                MedicationOrder.status == OrderStatus.ACTIVE,
                MedicationOrder.auto_generate_schedule.is_(True),
                MedicationOrder.start_date <= day,
                MedicationOrder.end_date >= day,
                ~_has_dose_on(day),
            )
            .order_by(MedicationOrder.created_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list((await self.session.scalars(stmt)).all())

    async def recently_approved(self, since: datetime, *, limit: int) -> list[MedicationOrder]:
        stmt = (
            select(MedicationOrder)
            .where(
                _live(MedicationOrder),
                MedicationOrder.status == OrderStatus.ACTIVE,
                MedicationOrder.auto_generate_schedule.is_(True),
                MedicationOrder.approved_at.is_not(None),
                MedicationOrder.approved_at >= since,
            )
            .order_by(MedicationOrder.approved_at)
            .limit(limit)
        )
        return list((await self.session.scalars(stmt)).all())

    async def approved_in_window(self, day: date, *, limit: int) -> list[MedicationOrder]:
        stmt = (
            select(MedicationOrder)
            .where(
                _live(MedicationOrder),
                MedicationOrder.status == OrderStatus.APPROVED,
                MedicationOrder.start_date <= day,
                MedicationOrder.end_date >= day,
            )
            .limit(limit)
        )
        return list((await self.session.scalars(stmt)).all())

    async def set_status_if(
        self, order_id: uuid.UUID, *, expected: Sequence[OrderStatus], **values: Any
    ) -> bool:
        result = await self.session.execute(
            update(MedicationOrder)
            .where(MedicationOrder.id == order_id, MedicationOrder.status.in_(expected))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def decrement_supply(self, order_id: uuid.UUID) -> bool:
        """Take one dose from the supply; never goes below zero."""
        result = await self.session.execute(
            update(MedicationOrder)
            .where(MedicationOrder.id == order_id, MedicationOrder.remaining_doses > 0)
            .values(remaining_doses=MedicationOrder.remaining_doses - 1)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def flag_low_stock(self, order_id: uuid.UUID) -> bool:
        """Set the sticky low-stock flag; False if it was already set."""
        result = await self.session.execute(
            update(MedicationOrder)
            .where(
                MedicationOrder.id == order_id,
                MedicationOrder.low_stock_alert_sent.is_(False),
            )
            .values(low_stock_alert_sent=True)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) == 1

    async def low_stock_candidates(self, threshold: int, *, limit: int) -> list[MedicationOrder]:
        stmt = (
            select(MedicationOrder)
            .options(selectinload(MedicationOrder.student))
            .where(
                _live(MedicationOrder),
                MedicationOrder.status == OrderStatus.ACTIVE,
                MedicationOrder.remaining_doses <= threshold,
                MedicationOrder.low_stock_alert_sent.is_(False),
            )
            .limit(limit)
        )
        return list((await self.session.scalars(stmt)).all())

    async def expiring_within(self, today: date, days: int) -> list[MedicationOrder]:
        horizon = today + timedelta(days=days)
        stmt = select(MedicationOrder).options(
            selectinload(MedicationOrder.student)
        ).where(
            _live(MedicationOrder),
            MedicationOrder.status == OrderStatus.ACTIVE,
            MedicationOrder.expiry_date > today,
            MedicationOrder.expiry_date <= horizon,
        )
        return list((await self.session.scalars(stmt)).all())

    async def retire_ended_before(self, cutoff: date, *, limit: int, updated_by: str) -> int:
        ids = (
            await self.session.scalars(
                select(MedicationOrder.id)
                .where(
                    _live(MedicationOrder),
                    MedicationOrder.end_date < cutoff,
                    MedicationOrder.status.in_(
                        (OrderStatus.COMPLETED, OrderStatus.DISCONTINUED)
                    ),
                    ~_has_pending_dose(),
                )
                .limit(limit)
            )
        ).all()
        return await _soft_delete_ids(
            self.session, MedicationOrder, ids, updated_by=updated_by
        )


class AdministrationStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def add(self, record: AdministrationRecord) -> None:
        self.session.add(record)

    async def retire_before(self, cutoff: datetime, *, limit: int, updated_by: str) -> int:
        ids = (
            await self.session.scalars(
                select(AdministrationRecord.id)
                .where(
                    _live(AdministrationRecord),
                    AdministrationRecord.administered_at < cutoff,
                )
                .limit(limit)
            )
        ).all()
        return await _soft_delete_ids(
            self.session, AdministrationRecord, ids, updated_by=updated_by
        )


class NotificationStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def retire_for_completed_incidents(
        self, completed_before: datetime, *, updated_by: str
    ) -> int:
        finished = select(HealthEvent.id).where(
            HealthEvent.status == HealthEventStatus.COMPLETED,
            HealthEvent.completed_at.is_not(None),
            HealthEvent.completed_at <= completed_before,
        )
        ids = (
            await self.session.scalars(
                select(Notification.id).where(
                    _live(Notification),
                    Notification.health_event_id.in_(finished),
                )
            )
        ).all()
        return await _soft_delete_ids(
            self.session, Notification, ids, updated_by=updated_by
        )

    async def retire_read_expired(
        self, created_before: datetime, now: datetime, *, limit: int, updated_by: str
    ) -> int:
        ids = (
            await self.session.scalars(
                select(Notification.id)
                .where(
                    _live(Notification),
                    Notification.created_at < created_before,
                    Notification.is_read.is_(True),
                    Notification.expires_at.is_not(None),
                    Notification.expires_at < now,
                )
                .limit(limit)
            )
        ).all()
        return await _soft_delete_ids(
            self.session, Notification, ids, updated_by=updated_by
        )


class IncidentStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def unassigned_pending_before(self, cutoff: datetime) -> list[HealthEvent]:
        stmt = (
            select(HealthEvent)
            .options(selectinload(HealthEvent.student))
            .execution_options(populate_existing=True)
            .where(
                _live(HealthEvent),
                HealthEvent.status == HealthEventStatus.PENDING,
                HealthEvent.handled_by_id.is_(None),
                HealthEvent.created_at <= cutoff,
            )
            .order_by(HealthEvent.is_emergency.desc(), HealthEvent.created_at)
        )
        return list((await self.session.scalars(stmt)).all())

    async def in_progress_since_before(self, cutoff: datetime) -> list[HealthEvent]:
        stmt = (
            select(HealthEvent)
            .options(selectinload(HealthEvent.student))
            .execution_options(populate_existing=True)
            .where(
                _live(HealthEvent),
                HealthEvent.status == HealthEventStatus.IN_PROGRESS,
                HealthEvent.handled_by_id.is_not(None),
                HealthEvent.assigned_at.is_not(None),
                HealthEvent.assigned_at <= cutoff,
            )
            .order_by(HealthEvent.assigned_at)
        )
        return list((await self.session.scalars(stmt)).all())


async def active_users(session: AsyncSession, roles: Iterable[UserRole]) -> list[User]:
    """Return active staff holding any of ``roles``."""
    stmt = (
        select(User)
        .where(User.role.in_(tuple(roles)), User.is_active.is_(True), _live(User))
        .order_by(User.full_name)
    )
    return list((await session.scalars(stmt)).all())
