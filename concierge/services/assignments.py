"""Jockey-side assignment operations: progress, failure, reassignment."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .dispatcher import ensure_active_jockey
from .transitions import load_booking_for_update, require_not_terminal, require_role
from .unit_of_work import LockProvider, booking_transaction, read_session
from concierge.domain.entities import Actor
from concierge.domain.enums import (
    OPEN_ASSIGNMENT_STATUSES,
    ActorRole,
    AssignmentStatus,
    NotificationType,
)
from concierge.domain.errors import IllegalTransition, NotFound, ValidationFailed
from concierge.infrastructure.models import JockeyAssignmentModel, utcnow
from concierge.infrastructure.notifications import Notification, NotificationDispatcher
from concierge.infrastructure.repositories import AssignmentRepository

logger = logging.getLogger(__name__)

# Forward-only progress a jockey reports before the handover.
_PROGRESS = {
    AssignmentStatus.EN_ROUTE: {AssignmentStatus.ASSIGNED},
    AssignmentStatus.AT_LOCATION: {AssignmentStatus.ASSIGNED, AssignmentStatus.EN_ROUTE},
}

_REASSIGNABLE = frozenset({AssignmentStatus.ASSIGNED, AssignmentStatus.FAILED})


class AssignmentWorkflow:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: LockProvider,
        notifier: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.locks = locks
        self.notifier = notifier
        self.clock = clock

    async def list_assignments(
        self,
        actor: Actor,
        status: Optional[AssignmentStatus] = None,
        limit: int = 50,
    ) -> list[JockeyAssignmentModel]:
        async with read_session(self.session_factory) as session:
            repo = AssignmentRepository(session)
            if actor.role == ActorRole.JOCKEY:
                return await repo.list_for_jockey(actor.id, status=status, limit=limit)
            require_role(actor, {ActorRole.WORKSHOP, ActorRole.SYSTEM, ActorRole.ADMIN},
                         "list assignments")
            return await repo.list_all(status=status, limit=limit)

    async def get_assignment(self, assignment_id: int, actor: Actor) -> JockeyAssignmentModel:
        async with read_session(self.session_factory) as session:
            assignment = await AssignmentRepository(session).get_by_id(assignment_id)
        if assignment is None or actor.role == ActorRole.CUSTOMER or (
            actor.role == ActorRole.JOCKEY and assignment.jockey_id != actor.id
        ):
            raise NotFound(f"assignment {assignment_id} not found")
        return assignment

    async def mark_progress(
        self, assignment_id: int, status: AssignmentStatus, actor: Actor
    ) -> JockeyAssignmentModel:
        status = AssignmentStatus(status)
        if status not in _PROGRESS:
            raise ValidationFailed(
                f"progress must be one of {', '.join(s.value for s in _PROGRESS)}"
            )
        require_role(actor, {ActorRole.JOCKEY}, "report assignment progress")
        booking_id = await self._booking_id(assignment_id)

        async with booking_transaction(self.session_factory, self.locks, booking_id) as session:
            await load_booking_for_update(session, booking_id)
            assignment = await self._own_assignment(session, assignment_id, actor)
            if assignment.status == status:
                return assignment
            if assignment.status not in _PROGRESS[status]:
                raise IllegalTransition(
                    f"assignment {assignment_id} cannot move from "
                    f"{assignment.status.value} to {status.value}"
                )
            assignment.status = status
            if status == AssignmentStatus.AT_LOCATION:
                assignment.arrived_at = self.clock()
            logger.info("Assignment %d: %s", assignment_id, status.value)
        return assignment

    async def report_failure(
        self, assignment_id: int, reason: str, actor: Actor
    ) -> JockeyAssignmentModel:
        """Mark the task FAILED.  The booking status is left untouched."""
        if not reason or not reason.strip():
            raise ValidationFailed("a failure reason is required")
        require_role(actor, {ActorRole.JOCKEY, ActorRole.SYSTEM, ActorRole.ADMIN},
                     "report an assignment failure")
        booking_id = await self._booking_id(assignment_id)

        async with booking_transaction(self.session_factory, self.locks, booking_id) as session:
            booking = await load_booking_for_update(session, booking_id)
            repo = AssignmentRepository(session)
            if actor.role == ActorRole.JOCKEY:
                assignment = await self._own_assignment(session, assignment_id, actor)
            else:
                assignment = await repo.get_for_update(assignment_id)
            if assignment.status not in OPEN_ASSIGNMENT_STATUSES:
                raise IllegalTransition(
                    f"assignment {assignment_id} is {assignment.status.value}"
                )
            assignment.status = AssignmentStatus.FAILED
            assignment.failure_reason = reason.strip()[:255]
            logger.warning(
                "Assignment %d (%s, booking %d) failed: %s",
                assignment_id, assignment.kind.value, booking.id, assignment.failure_reason,
            )
        return assignment

    async def reassign(
        self, assignment_id: int, jockey_id: int, actor: Actor
    ) -> JockeyAssignmentModel:
        require_role(actor, {ActorRole.SYSTEM, ActorRole.ADMIN}, "reassign a jockey")
        booking_id = await self._booking_id(assignment_id)

        async with booking_transaction(self.session_factory, self.locks, booking_id) as session:
            booking = await load_booking_for_update(session, booking_id)
            require_not_terminal(booking)
            assignment = await AssignmentRepository(session).get_for_update(assignment_id)
            if assignment.status not in _REASSIGNABLE:
                raise IllegalTransition(
                    f"assignment {assignment_id} is {assignment.status.value} and cannot be reassigned"
                )
            await ensure_active_jockey(session, jockey_id)
            previous = assignment.jockey_id
            assignment.jockey_id = jockey_id
            assignment.status = AssignmentStatus.ASSIGNED
            assignment.failure_reason = None
            logger.info(
                "Assignment %d reassigned from jockey %s to %d", assignment_id, previous, jockey_id
            )
            notice = Notification(
                user_id=jockey_id,
                booking_id=booking.id,
                type=NotificationType.JOCKEY_ASSIGNED,
                title=f"New {assignment.kind.value.lower()} assignment",
                body=f"Booking {booking.booking_number} was assigned to you.",
            )

        await self.notifier.send([notice])
        return assignment

    async def _own_assignment(
        self, session: AsyncSession, assignment_id: int, actor: Actor
    ) -> JockeyAssignmentModel:
        assignment = await AssignmentRepository(session).get_for_update(assignment_id)
        if assignment.jockey_id != actor.id:
            raise IllegalTransition(f"assignment {assignment_id} belongs to another jockey")
        return assignment

    async def _booking_id(self, assignment_id: int) -> int:
        async with read_session(self.session_factory) as session:
            booking_id = await AssignmentRepository(session).booking_id_of(assignment_id)
        if booking_id is None:
            raise NotFound(f"assignment {assignment_id} not found")
        return booking_id
