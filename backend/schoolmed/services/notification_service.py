"""Notification record helpers."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.models import Notification, NotificationKind

logger = logging.getLogger(__name__)


def build_notification(
    *,
    recipient_id: uuid.UUID,
    kind: NotificationKind,
    content: tuple[str, str],
    now: datetime,
    expires_in: timedelta | None = None,
    requires_confirmation: bool = False,
    sender_id: uuid.UUID | None = None,
    dose_instance_id: uuid.UUID | None = None,
    order_id: uuid.UUID | None = None,
    health_event_id: uuid.UUID | None = None,
) -> Notification:
    """Return an unsaved notification; ``content`` is a ``(title, body)`` pair."""
    title, body = content
    return Notification(
        recipient_id=recipient_id,
        sender_id=sender_id,
        kind=kind,
        title=title,
        body=body,
        requires_confirmation=requires_confirmation,
        expires_at=now + expires_in if expires_in is not None else None,
        dose_instance_id=dose_instance_id,
        order_id=order_id,
        health_event_id=health_event_id,
        created_at=now,
        updated_at=now,
    )


async def deliver(
    session: AsyncSession, notifications: Sequence[Notification]
) -> int:
    """Persist notifications after the triggering change has been committed.

    A failure here is logged and rolled back on its own; the state change that
    produced the notifications stays committed.
    """
    if not notifications:
        return 0
    session.add_all(list(notifications))
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(
            "Failed to persist %d notification(s) of kind %s",
            len(notifications),
            notifications[0].kind.value,
        )
        return 0
    logger.debug("Persisted %d notification(s)", len(notifications))
    return len(notifications)
