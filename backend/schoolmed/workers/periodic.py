"""Fixed-interval background loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.core.clock import Clock
from schoolmed.db.session import SessionFactory, session_scope

logger = logging.getLogger(__name__)

Tick = Callable[[AsyncSession, datetime], Awaitable[Any]]


class PeriodicWorker:
    """Run ``tick`` every ``interval`` seconds until ``stop_event`` is set.

    Each iteration gets its own session. A failing iteration is logged and the
    loop carries on after the normal interval.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        tick: Tick,
        stop_event: asyncio.Event,
        *,
        session_factory: SessionFactory | None = None,
        clock: Clock,
    ) -> None:
        self.name = name
        self.interval = interval
        self.tick = tick
        self.stop_event = stop_event
        self.session_factory = session_factory
        self.clock = clock
        self.iterations = 0
        self.failures = 0

    async def run_once(self) -> Any:
        async with session_scope(self.session_factory) as session:
            return await self.tick(session, self.clock())

    async def run(self) -> None:
        logger.info("%s worker started (every %ss)", self.name, self.interval)
        while not self.stop_event.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failures += 1
                logger.exception("%s worker iteration failed", self.name)
            self.iterations += 1
            if self.stop_event.is_set():
                break
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("%s worker stopped after %d iteration(s)", self.name, self.iterations)
