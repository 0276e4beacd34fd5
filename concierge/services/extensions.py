"""
Extension sub-workflow.

    PENDING --approve (authorize ok)--> APPROVED / AUTHORIZED --capture--> CAPTURED
            \\-decline-------------> DECLINED

A capture failure never undoes approval: the extension stays APPROVED with
``payment_status=CAPTURE_FAILED`` and is retried by the reconciler until
``max_capture_attempts``, after which it is ESCALATED for manual follow-up.
The booking total grows by the extension total only on a successful capture,
in the same transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .transitions import (
    STAFF_ROLES,
    ensure_can_view,
    load_booking,
    load_booking_for_update,
    require_not_terminal,
    require_owner,
    require_role,
)
from .unit_of_work import LockProvider, booking_transaction, read_session
from concierge.domain.entities import Actor, ExtensionItem, PaymentResult, extension_total
from concierge.domain.enums import (
    ActorRole,
    BookingStatus,
    ExtensionDecision,
    ExtensionPaymentStatus,
    ExtensionStatus,
    NotificationType,
)
from concierge.domain.errors import (
    ExternalDependencyFailure,
    IllegalTransition,
    NotFound,
    PaymentDeclined,
    PreconditionFailed,
    ValidationFailed,
    WorkflowError,
)
from concierge.domain.state_machine import IN_SERVICE_STATUSES
from concierge.infrastructure.models import ExtensionModel, utcnow
from concierge.infrastructure.notifications import Notification, NotificationDispatcher
from concierge.infrastructure.payments import PaymentGateway, call_with_timeout
from concierge.infrastructure.repositories import ExtensionRepository

logger = logging.getLogger(__name__)

CAPTURE_MODES = ("immediate", "deferred")

# Deferred captures wait until the work is done.
_POST_SERVICE_STATUSES = frozenset(
    {BookingStatus.READY_FOR_RETURN, BookingStatus.RETURN_ASSIGNED, BookingStatus.RETURNED}
)

_CAPTURABLE = frozenset(
    {
        ExtensionPaymentStatus.AUTHORIZED,
        ExtensionPaymentStatus.CAPTURE_FAILED,
        ExtensionPaymentStatus.ESCALATED,
    }
)


class ExtensionWorkflow:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: LockProvider,
        payments: PaymentGateway,
        notifier: NotificationDispatcher,
        capture_mode: str = "immediate",
        payment_timeout_seconds: float = 10.0,
        max_capture_attempts: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        if capture_mode not in CAPTURE_MODES:
            raise ValueError(f"unknown capture mode {capture_mode!r}")
        self.session_factory = session_factory
        self.locks = locks
        self.payments = payments
        self.notifier = notifier
        self.capture_mode = capture_mode
        self.payment_timeout = payment_timeout_seconds
        self.max_capture_attempts = max_capture_attempts
        self.clock = clock

    # ── Proposal ───────────────────────────────────────────────────

    async def create_extension(
        self,
        booking_id: int,
        description: str,
        items: list[ExtensionItem],
        evidence: list[str],
        actor: Actor,
    ) -> ExtensionModel:
        require_role(actor, {ActorRole.WORKSHOP}, "propose an extension")
        if not description or not description.strip():
            raise PreconditionFailed("extension description must not be empty")
        total = extension_total(items)

        async with booking_transaction(self.session_factory, self.locks, booking_id) as session:
            booking = await load_booking_for_update(session, booking_id)
            if booking.status not in IN_SERVICE_STATUSES:
                allowed = ", ".join(sorted(s.value for s in IN_SERVICE_STATUSES))
                raise IllegalTransition(
                    f"extensions can only be proposed while the booking is {allowed} "
                    f"(currently {booking.status.value})"
                )
            extension = await ExtensionRepository(session).create(
                ExtensionModel(
                    booking_id=booking.id,
                    description=description.strip(),
                    items=[item.as_dict() for item in items],
                    total_cents=total,
                    evidence=list(evidence),
                    status=ExtensionStatus.PENDING,
                    payment_status=ExtensionPaymentStatus.NONE,
                )
            )
            logger.info(
                "Booking %d: extension %d proposed (%d cents)", booking.id, extension.id, total
            )
            notice = Notification(
                user_id=booking.customer_id,
                booking_id=booking.id,
                type=NotificationType.SERVICE_EXTENSION,
                title="Additional work proposed",
                body=f"The workshop proposes: {extension.description}. Please approve or decline.",
            )

        await self.notifier.send([notice])
        return extension

    # ── Customer decision ──────────────────────────────────────────

    async def resolve_extension(
        self,
        extension_id: int,
        decision: ExtensionDecision,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> ExtensionModel:
        decision = ExtensionDecision(decision)
        require_role(actor, {ActorRole.CUSTOMER}, "resolve an extension")
        if decision == ExtensionDecision.DECLINE and (not reason or not reason.strip()):
            raise ValidationFailed("a reason is required to decline an extension")
        booking_id = await self._booking_id_for_extension(extension_id)

        async with booking_transaction(self.session_factory, self.locks, booking_id) as session:
            booking = await load_booking_for_update(session, booking_id)
            require_owner(booking, actor)
            require_not_terminal(booking)
            extension = await ExtensionRepository(session).get_for_update(extension_id)
            if extension.status != ExtensionStatus.PENDING:
                raise IllegalTransition(
                    f"extension {extension_id} is already {extension.status.value}"
                )

            if decision == ExtensionDecision.DECLINE:
                extension.status = ExtensionStatus.DECLINED
                extension.declined_at = self.clock()
                extension.decline_reason = reason.strip()
                logger.info("Booking %d: extension %d declined", booking.id, extension.id)
            else:
                result = await call_with_timeout(
                    self.payments.authorize(extension.total_cents, f"ext-{extension.id}"),
                    self.payment_timeout,
                )
                if not result.success:
                    logger.warning(
                        "Booking %d: authorization for extension %d declined (%s)",
                        booking.id, extension.id, result.reason,
                    )
                    raise PaymentDeclined(
                        f"authorization declined: {result.reason or 'no reason given'}"
                    )
                extension.status = ExtensionStatus.APPROVED
                extension.payment_status = ExtensionPaymentStatus.AUTHORIZED
                extension.authorization_id = result.authorization_id
                extension.approved_at = self.clock()
                logger.info(
                    "Booking %d: extension %d approved, authorization %s",
                    booking.id, extension.id, result.authorization_id,
                )

        if extension.status == ExtensionStatus.APPROVED and self.capture_mode == "immediate":
            try:
                extension = await self.capture_extension(extension.id, Actor.system())
            except WorkflowError as exc:
                logger.warning(
                    "Immediate capture of extension %d deferred to reconciliation: %s",
                    extension.id, exc.detail,
                )
        return extension

    # ── Capture ────────────────────────────────────────────────────

    async def capture_extension(self, extension_id: int, actor: Actor) -> ExtensionModel:
        """
        Capture the authorized amount.  A processor failure is recorded on
        the extension and committed; it is returned, not raised.
        """
        require_role(actor, STAFF_ROLES, "capture an extension payment")
        booking_id = await self._booking_id_for_extension(extension_id)

        notifications: list[Notification] = []
        async with booking_transaction(self.session_factory, self.locks, booking_id) as session:
            booking = await load_booking_for_update(session, booking_id)
            require_not_terminal(booking)
            extension = await ExtensionRepository(session).get_for_update(extension_id)
            if extension.status != ExtensionStatus.APPROVED:
                raise IllegalTransition(
                    f"extension {extension_id} is {extension.status.value}, not APPROVED"
                )
            if extension.payment_status == ExtensionPaymentStatus.CAPTURED:
                return extension
            if extension.payment_status not in _CAPTURABLE:
                raise IllegalTransition(
                    f"extension {extension_id} has no authorization to capture"
                )

            try:
                result = await call_with_timeout(
                    self.payments.capture(extension.authorization_id), self.payment_timeout
                )
            except ExternalDependencyFailure as exc:
                result = PaymentResult(success=False, reason=exc.detail)

            if result.success:
                extension.payment_status = ExtensionPaymentStatus.CAPTURED
                extension.captured_at = self.clock()
                extension.last_payment_error = None
                booking.total_price_cents += extension.total_cents
                logger.info(
                    "Booking %d: extension %d captured, total now %d cents",
                    booking.id, extension.id, booking.total_price_cents,
                )
            else:
                extension.capture_attempts += 1
                extension.last_payment_error = (result.reason or "capture failed")[:255]
                if extension.capture_attempts >= self.max_capture_attempts:
                    extension.payment_status = ExtensionPaymentStatus.ESCALATED
                    notifications.append(
                        Notification(
                            user_id=booking.customer_id,
                            booking_id=booking.id,
                            type=NotificationType.PAYMENT_FOLLOW_UP,
                            title="Payment needs attention",
                            body=(
                                f"We could not collect the payment for additional work on "
                                f"booking {booking.booking_number}. Our team will contact you."
                            ),
                        )
                    )
                    logger.error(
                        "Booking %d: extension %d capture escalated after %d attempts (%s)",
                        booking.id, extension.id, extension.capture_attempts,
                        extension.last_payment_error,
                    )
                else:
                    extension.payment_status = ExtensionPaymentStatus.CAPTURE_FAILED
                    logger.warning(
                        "Booking %d: extension %d capture failed (attempt %d): %s",
                        booking.id, extension.id, extension.capture_attempts,
                        extension.last_payment_error,
                    )

        await self.notifier.send(notifications)
        return extension

    async def reconcile_captures(self) -> dict[str, int]:
        """Retry every capture that is due.  Used by the reconciliation worker."""
        counts = {"captured": 0, "failed": 0, "escalated": 0}
        for extension_id in await self._due_captures():
            try:
                extension = await self.capture_extension(extension_id, Actor.system())
            except WorkflowError as exc:
                logger.warning("Reconciliation skipped extension %d: %s", extension_id, exc.detail)
                continue
            if extension.payment_status == ExtensionPaymentStatus.CAPTURED:
                counts["captured"] += 1
            elif extension.payment_status == ExtensionPaymentStatus.ESCALATED:
                counts["escalated"] += 1
            else:
                counts["failed"] += 1
        return counts

    async def _due_captures(self) -> list[int]:
        async with read_session(self.session_factory) as session:
            candidates = await ExtensionRepository(session).list_by_payment_status(
                [ExtensionPaymentStatus.AUTHORIZED, ExtensionPaymentStatus.CAPTURE_FAILED]
            )
            due = []
            for extension in candidates:
                if (
                    extension.payment_status == ExtensionPaymentStatus.AUTHORIZED
                    and self.capture_mode == "deferred"
                ):
                    booking = await load_booking(session, extension.booking_id)
                    if booking.status not in _POST_SERVICE_STATUSES:
                        continue
                due.append(extension.id)
            return due

    # ── Reads ──────────────────────────────────────────────────────

    async def list_extensions(self, booking_id: int, actor: Actor) -> list[ExtensionModel]:
        async with read_session(self.session_factory) as session:
            booking = await load_booking(session, booking_id)
            await ensure_can_view(session, booking, actor)
            return await ExtensionRepository(session).list_for_booking(booking_id)

    async def outstanding_captures(self) -> list[ExtensionModel]:
        async with read_session(self.session_factory) as session:
            return await ExtensionRepository(session).list_by_payment_status(
                [
                    ExtensionPaymentStatus.AUTHORIZED,
                    ExtensionPaymentStatus.CAPTURE_FAILED,
                    ExtensionPaymentStatus.ESCALATED,
                ]
            )

    async def _booking_id_for_extension(self, extension_id: int) -> int:
        async with read_session(self.session_factory) as session:
            booking_id = await ExtensionRepository(session).booking_id_of(extension_id)
        if booking_id is None:
            raise NotFound(f"extension {extension_id} not found")
        return booking_id
