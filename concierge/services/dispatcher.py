"""
Assignment Dispatcher.

Creates the PICKUP / RETURN driving task for a booking.  It is only called
from inside a booking transition's transaction (booking lock held), so the
assignment and the status change commit or roll back together.

Idempotency has two layers: the existing-row check covers the normal
retry path, and the ``(booking_id, kind)`` unique constraint covers two
processes racing past that check.  The insert runs in a SAVEPOINT so the
loser can resolve to the winner's row without aborting the outer
transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.domain.enums import (
    OPEN_ASSIGNMENT_STATUSES,
    AssignmentKind,
    AssignmentStatus,
    UserRole,
)
from concierge.domain.errors import PreconditionFailed
from concierge.infrastructure.models import BookingModel, JockeyAssignmentModel, utcnow
from concierge.infrastructure.repositories import AssignmentRepository, UserRepository

logger = logging.getLogger(__name__)


async def ensure_active_jockey(session: AsyncSession, jockey_id: int) -> None:
    user = await UserRepository(session).get_by_id(jockey_id)
    if user is None or user.role != UserRole.JOCKEY or not user.is_active:
        raise PreconditionFailed(f"user {jockey_id} is not an active jockey")


class AssignmentDispatcher:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    async def select_jockey(self, session: AsyncSession) -> Optional[int]:
        """Active jockey with the fewest open assignments; ties go to the lowest id."""
        candidates = await UserRepository(session).active_jockey_ids()
        if not candidates:
            return None
        load = await AssignmentRepository(session).open_counts_by_jockey()
        return min(candidates, key=lambda jockey_id: (load.get(jockey_id, 0), jockey_id))

    def _scheduled_at(self, booking: BookingModel, kind: AssignmentKind) -> datetime:
        if kind == AssignmentKind.PICKUP:
            return booking.pickup_window_start
        return booking.delivery_window_start or self.clock()

    async def dispatch(
        self,
        session: AsyncSession,
        booking: BookingModel,
        kind: AssignmentKind,
        jockey_id: Optional[int] = None,
    ) -> Optional[JockeyAssignmentModel]:
        """
        Return the booking's assignment of *kind*, creating it if needed.

        ``None`` means no jockey is available; the caller leaves the booking
        where it is and the dispatch can be retried later.
        """
        repo = AssignmentRepository(session)
        existing = await repo.get_for_booking(booking.id, kind)
        if existing is not None:
            logger.info(
                "Booking %d already has a %s assignment (%d)", booking.id, kind.value, existing.id
            )
            return existing

        if kind == AssignmentKind.RETURN:
            pickup = await repo.get_for_booking(booking.id, AssignmentKind.PICKUP)
            if pickup is None or pickup.status != AssignmentStatus.COMPLETED:
                raise PreconditionFailed(
                    "a return cannot be dispatched before the pickup is completed"
                )

        if jockey_id is not None:
            await ensure_active_jockey(session, jockey_id)
        else:
            jockey_id = await self.select_jockey(session)
        if jockey_id is None:
            logger.warning(
                "No active jockey available for %s of booking %d", kind.value, booking.id
            )
            return None

        assignment = JockeyAssignmentModel(
            booking_id=booking.id,
            kind=kind,
            jockey_id=jockey_id,
            scheduled_at=self._scheduled_at(booking, kind),
            status=AssignmentStatus.ASSIGNED,
        )
        try:
            async with session.begin_nested():
                repo.add(assignment)
        except IntegrityError:
            logger.info(
                "Concurrent %s dispatch for booking %d; using the existing row",
                kind.value, booking.id,
            )
            return await repo.get_for_booking(booking.id, kind)

        logger.info(
            "Dispatched %s for booking %d to jockey %d (assignment %d)",
            kind.value, booking.id, jockey_id, assignment.id,
        )
        return assignment

    async def cancel_open(self, session: AsyncSession, booking_id: int) -> int:
        """Cancel every non-terminal assignment of the booking."""
        cancelled = 0
        now = self.clock()
        for assignment in await AssignmentRepository(session).list_for_booking(booking_id):
            if assignment.status in OPEN_ASSIGNMENT_STATUSES or (
                assignment.status == AssignmentStatus.FAILED
            ):
                assignment.status = AssignmentStatus.CANCELLED
                assignment.cancelled_at = now
                cancelled += 1
        if cancelled:
            logger.info("Cancelled %d open assignment(s) of booking %d", cancelled, booking_id)
        return cancelled
