"""Logical deletion of old scheduling data.

The sweep only does work during the configured local hours (02:00 and 20:00
by default). Every category is capped per run and committed on its own;
anything left over, or lost to a failed category, is picked up by the next
run. Rows are never physically removed: they are flagged ``is_deleted`` and
stamped with the cleanup actor.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.core import clock
from schoolmed.core.config import get_settings
from schoolmed.db.session import run_step
from schoolmed.models import TERMINAL_DOSE_STATUSES
from schoolmed.services.cache_service import invalidate_dose_caches
from schoolmed.services.stores import (
    AdministrationStore,
    DoseInstanceStore,
    NotificationStore,
    OrderStore,
)

logger = logging.getLogger(__name__)

CLEANUP_ACTOR = "SYSTEM_CLEANUP"


@dataclass
class RetentionTick:
    ran: bool = False
    doses: int = 0
    orders: int = 0
    notifications: int = 0
    administrations: int = 0

    @property
    def total(self) -> int:
        return self.doses + self.orders + self.notifications + self.administrations


async def _committed(session: AsyncSession, retire: Awaitable[int]) -> int:
    retired = await retire
    await session.commit()
    return retired


async def run_retention_sweep(
    session: AsyncSession, *, now: datetime | None = None
) -> RetentionTick:
    now = now or clock.now()
    settings = get_settings()
    tick = RetentionTick()
    if now.hour not in settings.retention_hours:
        logger.debug("Retention sweep skipped at hour %d", now.hour)
        return tick

    cutoff = now - timedelta(days=settings.retention_days)
    tick.ran = True
    tick.doses = await run_step(
        session,
        "retire doses",
        _committed(
            session,
            DoseInstanceStore(session).retire_terminal_before(
                cutoff.date(),
                statuses=TERMINAL_DOSE_STATUSES,
                limit=settings.retention_dose_batch,
                updated_by=CLEANUP_ACTOR,
            ),
        ),
        0,
    )
    tick.orders = await run_step(
        session,
        "retire orders",
        _committed(
            session,
            OrderStore(session).retire_ended_before(
                cutoff.date(), limit=settings.retention_order_batch, updated_by=CLEANUP_ACTOR
            ),
        ),
        0,
    )
    tick.notifications = await run_step(
        session,
        "retire notifications",
        _committed(
            session,
            NotificationStore(session).retire_read_expired(
                cutoff,
                now,
                limit=settings.retention_notification_batch,
                updated_by=CLEANUP_ACTOR,
            ),
        ),
        0,
    )
    tick.administrations = await run_step(
        session,
        "retire administrations",
        _committed(
            session,
            AdministrationStore(session).retire_before(
                cutoff,
                limit=settings.retention_administration_batch,
                updated_by=CLEANUP_ACTOR,
            ),
        ),
        0,
    )

    if tick.total:
        await invalidate_dose_caches()
    logger.info(
        "Retention sweep retired %d dose(s), %d order(s), %d notification(s), "
        "%d administration record(s)",
        tick.doses,
        tick.orders,
        tick.notifications,
        tick.administrations,
    )
    return tick
