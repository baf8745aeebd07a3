"""Tests for the background loops and their host."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from schoolmed.core.config import get_settings
from schoolmed.db.session import get_sessionmaker
from schoolmed.models import DoseInstance, MedicationOrder, OrderStatus
from schoolmed.workers.host import BackgroundHost, run_generation_tick
from schoolmed.workers.periodic import PeriodicWorker

pytestmark = pytest.mark.asyncio


async def _dose_count(db_url: str, order_id) -> int:
    async with get_sessionmaker(db_url)() as session:
        stmt = select(func.count()).select_from(DoseInstance).where(
            DoseInstance.order_id == order_id
        )
        return int(await session.scalar(stmt) or 0)


async def test_worker_survives_failing_iteration(
    reset_database: None, db_url: str, now: datetime
) -> None:
    stop = asyncio.Event()
    seen: list[datetime] = []

    async def tick(session, at):
        seen.append(at)
        if len(seen) == 1:
            raise RuntimeError("boom")
        stop.set()

    worker = PeriodicWorker(
        "test",
        0.01,
        tick,
        stop,
        session_factory=get_sessionmaker(db_url),
        clock=lambda: now,
    )
    await asyncio.wait_for(worker.run(), timeout=5)

    assert worker.iterations == 2
    assert worker.failures == 1
    assert seen == [now, now]


async def test_worker_stops_promptly_while_waiting(
    reset_database: None, db_url: str, now: datetime
) -> None:
    stop = asyncio.Event()
    calls = 0

    async def tick(session, at):
        nonlocal calls
        calls += 1

    worker = PeriodicWorker(
        "idle", 3600, tick, stop, session_factory=get_sessionmaker(db_url), clock=lambda: now
    )
    task = asyncio.create_task(worker.run())
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(task, timeout=1)

    assert calls == 1
    assert worker.failures == 0


async def test_generation_tick_activates_and_backfills(
    make_order, db_url: str, now: datetime
) -> None:
    order_id = await make_order(
        status=OrderStatus.APPROVED, approved_at=now - timedelta(minutes=1)
    )
    async with get_sessionmaker(db_url)() as session:
        tick = await run_generation_tick(session, now)

    assert (tick.activated, tick.today, tick.tomorrow, tick.backfilled) == (1, 1, 0, 2)
    assert await _dose_count(db_url, order_id) == 3
    async with get_sessionmaker(db_url)() as session:
        assert (await session.get(MedicationOrder, order_id)).status == OrderStatus.ACTIVE


async def test_host_runs_loops_until_stopped(
    make_order, db_url: str, now: datetime
) -> None:
    order_id = await make_order(auto_generate_schedule=True)
    settings = get_settings().model_copy(
        update={
            "escalation_interval_seconds": 3600,
            "generation_interval_seconds": 0.05,
            "reminder_interval_seconds": 3600,
            "retention_interval_seconds": 3600,
        }
    )
    host = BackgroundHost(
        settings=settings, session_factory=get_sessionmaker(db_url), clock=lambda: now
    )
    host.start()
    assert host.running

    for _ in range(100):
        if await _dose_count(db_url, order_id):
            break
        await asyncio.sleep(0.05)
    await host.stop(timeout=5)

    assert not host.running
    assert await _dose_count(db_url, order_id) == 1
    assert all(worker.iterations >= 1 for worker in host.workers)
