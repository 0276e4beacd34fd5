"""Helpers every workflow service uses to read and move a booking."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from concierge.domain.entities import Actor
from concierge.domain.enums import ActorRole, BookingAction
from concierge.domain.errors import IllegalTransition, NotFound, TerminalStateViolation
from concierge.domain.state_machine import TERMINAL_STATUSES, Transition, resolve
from concierge.infrastructure.models import BookingModel, BookingStatusEventModel
from concierge.infrastructure.repositories import (
    AssignmentRepository,
    BookingRepository,
    StatusEventRepository,
)

logger = logging.getLogger(__name__)

STAFF_ROLES = frozenset({ActorRole.WORKSHOP, ActorRole.SYSTEM, ActorRole.ADMIN})


async def load_booking_for_update(session: AsyncSession, booking_id: int) -> BookingModel:
    booking = await BookingRepository(session).get_for_update(booking_id)
    if booking is None:
        raise NotFound(f"booking {booking_id} not found")
    return booking


async def load_booking(session: AsyncSession, booking_id: int) -> BookingModel:
    booking = await BookingRepository(session).get_by_id(booking_id)
    if booking is None:
        raise NotFound(f"booking {booking_id} not found")
    return booking


def apply_transition(
    session: AsyncSession, booking: BookingModel, action: BookingAction, actor: Actor
) -> Transition:
    """Validate *action* against the table and move the booking."""
    transition = resolve(booking.status, action, actor.role)
    booking.status = transition.target
    StatusEventRepository(session).add(
        BookingStatusEventModel(
            booking_id=booking.id,
            from_status=transition.source,
            to_status=transition.target,
            action=action,
            actor_role=actor.role,
            actor_id=actor.id,
        )
    )
    logger.info(
        "Booking %d: %s -> %s (%s by %s %d)",
        booking.id, transition.source.value, transition.target.value,
        action.value, actor.role.value, actor.id,
    )
    return transition


def require_not_terminal(booking: BookingModel) -> None:
    """CANCELLED and COMPLETED bookings accept no further changes of any kind."""
    if booking.status in TERMINAL_STATUSES:
        raise TerminalStateViolation(
            f"booking is in terminal state {booking.status.value}; no further changes accepted"
        )


def require_role(actor: Actor, roles, operation: str) -> None:
    if actor.role not in roles:
        allowed = ", ".join(sorted(r.value for r in roles))
        raise IllegalTransition(
            f"role {actor.role.value} may not {operation} (allowed roles: {allowed})"
        )


def require_owner(booking: BookingModel, actor: Actor) -> None:
    if actor.role == ActorRole.CUSTOMER and booking.customer_id != actor.id:
        raise NotFound(f"booking {booking.id} not found")


async def ensure_can_view(
    session: AsyncSession, booking: BookingModel, actor: Actor
) -> None:
    """Customers see their own bookings, jockeys the ones they drive."""
    if actor.role == ActorRole.CUSTOMER:
        require_owner(booking, actor)
    elif actor.role == ActorRole.JOCKEY:
        if not await AssignmentRepository(session).is_assigned_to(booking.id, actor.id):
            raise NotFound(f"booking {booking.id} not found")
