"""
Booking lifecycle state machine.

The legal graph is an explicit table keyed by ``(current status, action)``;
each edge lists the actor roles allowed to take it.  Nothing outside this
module compares status strings to decide what may happen next.

    PENDING_PAYMENT -> CONFIRMED -> JOCKEY_ASSIGNED -> PICKED_UP
      -> AT_WORKSHOP -> IN_SERVICE -> READY_FOR_RETURN -> RETURN_ASSIGNED
      -> RETURNED -> COMPLETED

    CANCELLED is reachable from PENDING_PAYMENT, CONFIRMED and
    JOCKEY_ASSIGNED only (before the vehicle is in custody).

ASSIGN_PICKUP / ASSIGN_RETURN are SYSTEM-only: the dispatcher is the only
path that moves a booking into JOCKEY_ASSIGNED / RETURN_ASSIGNED.
"""

from __future__ import annotations

from dataclasses import dataclass

from .enums import ActorRole, BookingAction, BookingStatus
from .errors import IllegalTransition, TerminalStateViolation

S = BookingStatus
A = BookingAction
R = ActorRole

ANY_ROLE = frozenset(ActorRole)


@dataclass(frozen=True)
class Transition:
    source: BookingStatus
    action: BookingAction
    target: BookingStatus
    roles: frozenset[ActorRole]


def _edge(source, action, target, roles) -> Transition:
    return Transition(source, action, target, frozenset(roles))


_CANCEL_ROLES = {R.CUSTOMER, R.WORKSHOP, R.ADMIN}

_EDGES = [
    _edge(S.PENDING_PAYMENT, A.CONFIRM_PAYMENT, S.CONFIRMED, ANY_ROLE),
    _edge(S.CONFIRMED, A.ASSIGN_PICKUP, S.JOCKEY_ASSIGNED, {R.SYSTEM}),
    _edge(S.JOCKEY_ASSIGNED, A.COMPLETE_PICKUP, S.PICKED_UP, {R.JOCKEY}),
    _edge(S.PICKED_UP, A.ARRIVE_AT_WORKSHOP, S.AT_WORKSHOP, {R.WORKSHOP}),
    _edge(S.AT_WORKSHOP, A.START_SERVICE, S.IN_SERVICE, {R.WORKSHOP}),
    _edge(S.IN_SERVICE, A.FINISH_SERVICE, S.READY_FOR_RETURN, {R.WORKSHOP}),
    _edge(S.READY_FOR_RETURN, A.ASSIGN_RETURN, S.RETURN_ASSIGNED, {R.SYSTEM}),
    _edge(S.RETURN_ASSIGNED, A.COMPLETE_RETURN, S.RETURNED, {R.JOCKEY}),
    _edge(S.RETURNED, A.CLOSE, S.COMPLETED, {R.WORKSHOP, R.SYSTEM, R.ADMIN}),
    _edge(S.PENDING_PAYMENT, A.CANCEL, S.CANCELLED, _CANCEL_ROLES),
    _edge(S.CONFIRMED, A.CANCEL, S.CANCELLED, _CANCEL_ROLES),
    _edge(S.JOCKEY_ASSIGNED, A.CANCEL, S.CANCELLED, _CANCEL_ROLES),
]

TRANSITIONS: dict[tuple[BookingStatus, BookingAction], Transition] = {
    (t.source, t.action): t for t in _EDGES
}

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED})

CANCELLABLE_STATUSES = frozenset(
    t.source for t in _EDGES if t.action == A.CANCEL
)

# Extensions may only be proposed while the vehicle is being worked on.
IN_SERVICE_STATUSES = frozenset({S.AT_WORKSHOP, S.IN_SERVICE})

# Vehicle is physically held by the business.
CUSTODY_STATUSES = frozenset(
    {S.PICKED_UP, S.AT_WORKSHOP, S.IN_SERVICE, S.READY_FOR_RETURN, S.RETURN_ASSIGNED}
)

# Workshop steps, keyed by the status the workshop asks for.
WORKSHOP_STEPS: dict[BookingStatus, BookingAction] = {
    S.AT_WORKSHOP: A.ARRIVE_AT_WORKSHOP,
    S.IN_SERVICE: A.START_SERVICE,
    S.READY_FOR_RETURN: A.FINISH_SERVICE,
}


def resolve(
    current: BookingStatus, action: BookingAction, role: ActorRole
) -> Transition:
    """Return the edge for *action* from *current*, or raise."""
    if current in TERMINAL_STATUSES:
        raise TerminalStateViolation(
            f"booking is in terminal state {current.value}; no further changes accepted"
        )
    transition = TRANSITIONS.get((current, action))
    if transition is None:
        allowed = ", ".join(a.value for a in allowed_actions(current)) or "none"
        raise IllegalTransition(
            f"action {action.value} is not allowed from status {current.value} "
            f"(allowed: {allowed})"
        )
    if role not in transition.roles:
        roles = ", ".join(sorted(r.value for r in transition.roles))
        raise IllegalTransition(
            f"role {role.value} may not perform {action.value} "
            f"from {current.value} (allowed roles: {roles})"
        )
    return transition


def allowed_actions(current: BookingStatus) -> list[BookingAction]:
    return [t.action for t in _EDGES if t.source == current]


def workshop_step(current: BookingStatus, target: BookingStatus) -> BookingAction:
    """
    Map a workshop's requested target status to the single action that
    reaches it from *current*.  Skipping a step is rejected.
    """
    action = WORKSHOP_STEPS.get(target)
    if action is None:
        steps = ", ".join(s.value for s in WORKSHOP_STEPS)
        raise IllegalTransition(
            f"workshop cannot request status {target.value} (workshop steps: {steps})"
        )
    transition = next(t for t in _EDGES if t.action == action)
    if current in TERMINAL_STATUSES:
        raise TerminalStateViolation(
            f"booking is in terminal state {current.value}; no further changes accepted"
        )
    if transition.source != current:
        raise IllegalTransition(
            f"cannot move from {current.value} to {target.value}: "
            f"the booking must be {transition.source.value} first"
        )
    return action


def reachable_statuses() -> set[BookingStatus]:
    """All statuses reachable from PENDING_PAYMENT through the table."""
    seen = {S.PENDING_PAYMENT}
    frontier = [S.PENDING_PAYMENT]
    while frontier:
        current = frontier.pop()
        for t in _EDGES:
            if t.source == current and t.target not in seen:
                seen.add(t.target)
                frontier.append(t.target)
    return seen
