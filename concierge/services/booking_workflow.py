"""
Booking workflow service.

Each mutating operation runs inside ``booking_transaction``: the booking is
re-read ``FOR UPDATE`` after the lock is taken, every precondition is
checked against that row, and all writes (status, timestamps, assignment
rows, audit events) commit together.  Notifications go out only after the
commit.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .dispatcher import AssignmentDispatcher
from .transitions import (
    apply_transition,
    ensure_can_view,
    load_booking,
    load_booking_for_update,
    require_not_terminal,
    require_owner,
    require_role,
)
from .unit_of_work import LockProvider, booking_transaction, read_session
from concierge.domain.entities import Actor, HandoverEvidence, PaymentConfirmation
from concierge.domain.enums import (
    OPEN_ASSIGNMENT_STATUSES,
    ActorRole,
    AssignmentKind,
    AssignmentStatus,
    BookingAction,
    BookingStatus,
    NotificationType,
)
from concierge.domain.errors import (
    IllegalTransition,
    NotFound,
    PaymentDeclined,
    PreconditionFailed,
    ValidationFailed,
)
from concierge.domain.state_machine import (
    CUSTODY_STATUSES,
    WORKSHOP_STEPS,
    resolve,
    workshop_step,
)
from concierge.infrastructure.models import (
    BookingModel,
    BookingStatusEventModel,
    JockeyAssignmentModel,
    utcnow,
)
from concierge.infrastructure.notifications import Notification, NotificationDispatcher
from concierge.infrastructure.repositories import (
    AssignmentRepository,
    ExtensionRepository,
    StatusEventRepository,
)

logger = logging.getLogger(__name__)

_DISPATCH_ROLES = frozenset({ActorRole.SYSTEM, ActorRole.ADMIN})


class BookingWorkflow:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: LockProvider,
        dispatcher: AssignmentDispatcher,
        notifier: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.locks = locks
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.clock = clock

    # ── Reads ──────────────────────────────────────────────────────

    async def get_booking(self, booking_id: int, actor: Actor) -> BookingModel:
        async with read_session(self.session_factory) as session:
            booking = await load_booking(session, booking_id)
            await ensure_can_view(session, booking, actor)
            return booking

    async def status_history(
        self, booking_id: int, actor: Actor
    ) -> list[BookingStatusEventModel]:
        async with read_session(self.session_factory) as session:
            booking = await load_booking(session, booking_id)
            await ensure_can_view(session, booking, actor)
            return await StatusEventRepository(session).list_for_booking(booking_id)

    # ── Payment gate ───────────────────────────────────────────────

    async def confirm_payment(
        self, booking_id: int, confirmation: PaymentConfirmation, actor: Actor
    ) -> BookingModel:
        """
        Apply the processor's callback for the up-front charge.

        A successful, matching payment confirms the booking and dispatches
        the pickup in the same transaction.  A redelivered callback with the
        reference already on file is acknowledged without changes.
        """
        if not confirmation.reference or not confirmation.reference.strip():
            raise ValidationFailed("payment reference must not be empty")
        if isinstance(confirmation.amount_cents, bool) or not isinstance(
            confirmation.amount_cents, int
        ):
            raise ValidationFailed("payment amount must be an integer amount of cents")

        notifications: list[Notification] = []
        async with booking_transaction(self.session_factory, self.locks, booking_id) as session:
            booking = await load_booking_for_update(session, booking_id)

            if (
                booking.status != BookingStatus.PENDING_PAYMENT
                and booking.payment_reference == confirmation.reference
            ):
                logger.info(
                    "Booking %d: duplicate payment callback %s ignored",
                    booking.id, confirmation.reference,
                )
                return booking

            resolve(booking.status, BookingAction.CONFIRM_PAYMENT, actor.role)
            if not confirmation.succeeded:
                logger.warning(
                    "Booking %d: payment %s failed (%s)",
                    booking.id, confirmation.reference, confirmation.failure_reason,
                )
                raise PaymentDeclined(
                    f"payment {confirmation.reference} failed: "
                    f"{confirmation.failure_reason or 'declined by processor'}"
                )
            if confirmation.amount_cents != booking.total_price_cents:
                raise PreconditionFailed(
                    f"paid amount {confirmation.amount_cents} does not match "
                    f"booking total {booking.total_price_cents}"
                )

            apply_transition(session, booking, BookingAction.CONFIRM_PAYMENT, actor)
            booking.paid_at = self.clock()
            booking.payment_reference = confirmation.reference
            notifications.append(
                Notification(
                    user_id=booking.customer_id,
                    booking_id=booking.id,
                    type=NotificationType.BOOKING_CONFIRMED,
                    title="Booking confirmed",
                    body=f"Your booking {booking.booking_number} is confirmed.",
                )
            )
            notifications.extend(
                await self._dispatch(session, booking, AssignmentKind.PICKUP)
            )

        await self.notifier.send(notifications)
        return booking

    # ── Handover ───────────────────────────────────────────────────

    async def complete_handover(
        self, assignment_id: int, evidence: HandoverEvidence, actor: Actor
    ) -> tuple[JockeyAssignmentModel, BookingModel]:
        evidence.validate()
        require_role(actor, {ActorRole.JOCKEY}, "complete a handover")
        booking_id = await self._booking_id_for_assignment(assignment_id)

        notifications: list[Notification] = []
        async with booking_transaction(self.session_factory, self.locks, booking_id) as session:
            booking = await load_booking_for_update(session, booking_id)
            assignment = await AssignmentRepository(session).get_for_update(assignment_id)
            if assignment.jockey_id != actor.id:
                raise IllegalTransition(
                    f"assignment {assignment_id} belongs to another jockey"
                )
            if assignment.status == AssignmentStatus.COMPLETED:
                logger.info("Assignment %d already completed; handover ignored", assignment_id)
                return assignment, booking
            require_not_terminal(booking)
            if assignment.status not in OPEN_ASSIGNMENT_STATUSES:
                raise IllegalTransition(
                    f"assignment {assignment_id} is {assignment.status.value}"
                )

            action = (
                BookingAction.COMPLETE_PICKUP
                if assignment.kind == AssignmentKind.PICKUP
                else BookingAction.COMPLETE_RETURN
            )
            apply_transition(session, booking, action, actor)

            assignment.status = AssignmentStatus.COMPLETED
            assignment.completed_at = self.clock()
            assignment.photos = list(evidence.photos)
            assignment.signature = evidence.signature
            assignment.odometer_km = evidence.odometer_km
            assignment.notes = evidence.notes
            notifications.append(self._status_notice(booking))

        await self.notifier.send(notifications)
        return assignment, booking

    # ── Workshop steps ─────────────────────────────────────────────

    async def advance_status(
        self, booking_id: int, target: BookingStatus, actor: Actor
    ) -> BookingModel:
        """
        Move the booking one workshop step toward *target*.

        Asking for the status the booking already has is a no-op, as is
        asking for READY_FOR_RETURN after the return was already dispatched.
        """
        target = BookingStatus(target)
        if target not in WORKSHOP_STEPS:
            steps = ", ".join(s.value for s in WORKSHOP_STEPS)
            raise IllegalTransition(
                f"workshop cannot request status {target.value} (workshop steps: {steps})"
            )
        require_role(actor, {ActorRole.WORKSHOP}, "advance workshop status")

        notifications: list[Notification] = []
        async with booking_transaction(self.session_factory, self.locks, booking_id) as session:
            booking = await load_booking_for_update(session, booking_id)
            current = booking.status
            if current == target or (
                target == BookingStatus.READY_FOR_RETURN
                and current == BookingStatus.RETURN_ASSIGNED
            ):
                logger.info("Booking %d already %s; no change", booking.id, current.value)
                return booking

            action = workshop_step(current, target)
            apply_transition(session, booking, action, actor)
            notifications.append(self._status_notice(booking))
            if target == BookingStatus.READY_FOR_RETURN:
                notifications.extend(
                    await self._dispatch(session, booking, AssignmentKind.RETURN)
                )

        await self.notifier.send(notifications)
        return booking

    async def complete_booking(self, booking_id: int, actor: Actor) -> BookingModel:
        async with booking_transaction(self.session_factory, self.locks, booking_id) as session:
            booking = await load_booking_for_update(session, booking_id)
            resolve(booking.status, BookingAction.CLOSE, actor.role)
            extensions = ExtensionRepository(session)
            undecided = await extensions.count_pending(booking_id)
            if undecided:
                raise PreconditionFailed(
                    f"{undecided} extension(s) still awaiting the customer's decision"
                )
            outstanding = await extensions.count_uncaptured_approved(booking_id)
            if outstanding:
                raise PreconditionFailed(
                    f"{outstanding} approved extension(s) not yet captured"
                )
            apply_transition(session, booking, BookingAction.CLOSE, actor)
            booking.completed_at = self.clock()
            notice = self._status_notice(booking)

        await self.notifier.send([notice])
        return booking

    async def cancel_booking(
        self, booking_id: int, actor: Actor, reason: Optional[str] = None
    ) -> BookingModel:
        async with booking_transaction(self.session_factory, self.locks, booking_id) as session:
            booking = await load_booking_for_update(session, booking_id)
            require_owner(booking, actor)
            if booking.status in CUSTODY_STATUSES or booking.status == BookingStatus.RETURNED:
                raise IllegalTransition(
                    f"booking cannot be cancelled once the vehicle is in custody "
                    f"(status {booking.status.value})"
                )
            apply_transition(session, booking, BookingAction.CANCEL, actor)
            booking.cancelled_at = self.clock()
            booking.cancellation_reason = reason
            await self.dispatcher.cancel_open(session, booking.id)
            notice = Notification(
                user_id=booking.customer_id,
                booking_id=booking.id,
                type=NotificationType.BOOKING_CANCELLED,
                title="Booking cancelled",
                body=f"Booking {booking.booking_number} was cancelled.",
            )

        await self.notifier.send([notice])
        return booking

    async def dispatch_pending(
        self, booking_id: int, actor: Actor, jockey_id: Optional[int] = None
    ) -> BookingModel:
        """Retry the automatic dispatch that found no jockey the first time."""
        require_role(actor, _DISPATCH_ROLES, "dispatch assignments")

        async with booking_transaction(self.session_factory, self.locks, booking_id) as session:
            booking = await load_booking_for_update(session, booking_id)
            require_not_terminal(booking)
            if booking.status == BookingStatus.CONFIRMED:
                kind = AssignmentKind.PICKUP
            elif booking.status == BookingStatus.READY_FOR_RETURN:
                kind = AssignmentKind.RETURN
            else:
                raise IllegalTransition(
                    f"nothing to dispatch for a booking in status {booking.status.value}"
                )
            notifications = await self._dispatch(session, booking, kind, jockey_id)
            if not notifications:
                raise PreconditionFailed("no active jockey is available")

        await self.notifier.send(notifications)
        return booking

    # ── Internals ──────────────────────────────────────────────────

    async def _dispatch(
        self,
        session: AsyncSession,
        booking: BookingModel,
        kind: AssignmentKind,
        jockey_id: Optional[int] = None,
    ) -> list[Notification]:
        assignment = await self.dispatcher.dispatch(session, booking, kind, jockey_id)
        if assignment is None:
            return []
        action = (
            BookingAction.ASSIGN_PICKUP
            if kind == AssignmentKind.PICKUP
            else BookingAction.ASSIGN_RETURN
        )
        apply_transition(session, booking, action, Actor.system())
        return [
            Notification(
                user_id=assignment.jockey_id,
                booking_id=booking.id,
                type=NotificationType.JOCKEY_ASSIGNED,
                title=f"New {kind.value.lower()} assignment",
                body=f"Booking {booking.booking_number}: {kind.value.lower()} assigned to you.",
            ),
            self._status_notice(booking),
        ]

    async def _booking_id_for_assignment(self, assignment_id: int) -> int:
        async with read_session(self.session_factory) as session:
            booking_id = await AssignmentRepository(session).booking_id_of(assignment_id)
        if booking_id is None:
            raise NotFound(f"assignment {assignment_id} not found")
        return booking_id

    @staticmethod
    def _status_notice(booking: BookingModel) -> Notification:
        return Notification(
            user_id=booking.customer_id,
            booking_id=booking.id,
            type=NotificationType.STATUS_UPDATE,
            title="Booking status updated",
            body=f"Booking {booking.booking_number} is now {booking.status.value}.",
        )
