"""
Notification dispatcher.

Invoked *after* a transition has committed.  It records each message in
``notification_logs`` (the user's notification history) and hands it to the
delivery channel, which here is the application log.  Any failure is logged
and swallowed: a notification problem must never undo the transition that
triggered it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import NotificationLogModel
from .repositories import NotificationRepository
from concierge.domain.enums import NotificationType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    user_id: int
    type: NotificationType
    title: str
    body: str
    booking_id: Optional[int] = None


class NotificationDispatcher:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def send(self, notifications: Iterable[Notification]) -> None:
        notifications = list(notifications)
        if not notifications:
            return
        try:
            async with self.session_factory() as session:
                repo = NotificationRepository(session)
                for n in notifications:
                    await repo.create(
                        NotificationLogModel(
                            user_id=n.user_id,
                            booking_id=n.booking_id,
                            type=n.type,
                            title=n.title,
                            body=n.body,
                        )
                    )
                await session.commit()
        except Exception:
            logger.exception("Failed to record %d notification(s)", len(notifications))
            return

        for n in notifications:
            logger.info(
                "Notification %s -> user %d (booking %s): %s",
                n.type.value, n.user_id, n.booking_id, n.title,
            )
