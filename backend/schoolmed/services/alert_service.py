"""Deduplication ledger for one-shot and cooldown alerts.

Every deduplicated alert is keyed by ``(subject_id, kind)`` with the time it
was last sent. An alert may go out again once ``now - last_sent_at`` exceeds
its cooldown; a cooldown of ``None`` sends it at most once. :func:`claim`
re-checks the ledger as part of the write, so two loops racing on the same
subject cannot both send.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.models import AlertKind, AlertMark


async def last_sent(
    session: AsyncSession, subject_id: uuid.UUID, kind: AlertKind
) -> datetime | None:
    stmt = select(AlertMark.last_sent_at).where(
        AlertMark.subject_id == subject_id, AlertMark.kind == kind
    )
    return await session.scalar(stmt)


async def claim(
    session: AsyncSession,
    subject_id: uuid.UUID,
    kind: AlertKind,
    *,
    now: datetime,
    cooldown: timedelta | None,
) -> bool:
    """Record that the alert is being sent now, if it is still allowed to be.

    Must run in the same transaction as the notifications it guards.
    """
    if cooldown is not None:
        result = await session.execute(
            update(AlertMark)
            .where(
                AlertMark.subject_id == subject_id,
                AlertMark.kind == kind,
                AlertMark.last_sent_at < now - cooldown,
            )
            .values(last_sent_at=now, send_count=AlertMark.send_count + 1)
            .execution_options(synchronize_session=False)
        )
        if (result.rowcount or 0) == 1:
            return True

    if await last_sent(session, subject_id, kind) is not None:
        return False
    try:
        async with session.begin_nested():
            session.add(AlertMark(subject_id=subject_id, kind=kind, last_sent_at=now))
    except IntegrityError:
        return False
    return True

