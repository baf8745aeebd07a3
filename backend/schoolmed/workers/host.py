"""Owns the four background loops and their shared shutdown signal.

The loops assume a single running instance of the service: two hosts running
against the same database can each send a notification before the other has
committed its dedup record.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.core import clock as default_clock
from schoolmed.core.clock import Clock
from schoolmed.core.config import Settings, get_settings
from schoolmed.db.session import SessionFactory
from schoolmed.services import (
    incident_service,
    order_service,
    reminder_service,
    retention_service,
    schedule_generator,
)
from schoolmed.workers.periodic import PeriodicWorker

logger = logging.getLogger(__name__)


@dataclass
class GenerationTick:
    activated: int = 0
    today: int = 0
    tomorrow: int = 0
    backfilled: int = 0


async def run_generation_tick(session: AsyncSession, now: datetime) -> GenerationTick:
    tick = GenerationTick()
    tick.activated = await order_service.activate_approved_orders(session, now=now)
    tick.today = await schedule_generator.generate_for_today(session, now=now)
    tick.tomorrow = await schedule_generator.generate_for_tomorrow(session, now=now)
    tick.backfilled = await schedule_generator.backfill_recently_approved(session, now=now)
    return tick


async def _escalation(session: AsyncSession, now: datetime):
    return await incident_service.run_escalation_tick(session, now=now)


async def _reminders(session: AsyncSession, now: datetime):
    return await reminder_service.run_reminder_tick(session, now=now)


async def _retention(session: AsyncSession, now: datetime):
    return await retention_service.run_retention_sweep(session, now=now)


class BackgroundHost:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        session_factory: SessionFactory | None = None,
        clock: Clock = default_clock.now,
    ) -> None:
        settings = settings or get_settings()
        self.stop_event = asyncio.Event()
        self.workers = [
            PeriodicWorker(
                name,
                interval,
                tick,
                self.stop_event,
                session_factory=session_factory,
                clock=clock,
            )
            for name, interval, tick in (
                ("escalation", settings.escalation_interval_seconds, _escalation),
                ("generation", settings.generation_interval_seconds, run_generation_tick),
                ("reminders", settings.reminder_interval_seconds, _reminders),
                ("retention", settings.retention_interval_seconds, _retention),
            )
        ]
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self.stop_event.clear()
        self._tasks = [
            asyncio.create_task(worker.run(), name=f"schoolmed-{worker.name}")
            for worker in self.workers
        ]
        logger.info("Started %d background worker(s)", len(self._tasks))

    async def stop(self, timeout: float = 10.0) -> None:
        """Signal every loop to exit and wait for the current iterations to end."""
        self.stop_event.set()
        if not self._tasks:
            return
        done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            logger.warning("Cancelling %s after shutdown timeout", task.get_name())
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    "Background task %s exited with an error",
                    task.get_name(),
                    exc_info=task.exception(),
                )
        self._tasks = []
