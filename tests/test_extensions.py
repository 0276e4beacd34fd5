"""
Extension sub-workflow: proposal, customer decision, authorization,
capture, capture failure and reconciliation.
"""

import pytest
from sqlalchemy import select, update

from concierge.domain.entities import Actor, ExtensionItem, PaymentResult
from concierge.domain.enums import (
    AssignmentKind,
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
    TerminalStateViolation,
    ValidationFailed,
)
from concierge.infrastructure.models import BookingModel, NotificationLogModel
from concierge.infrastructure.notifications import NotificationDispatcher
from concierge.services.extensions import ExtensionWorkflow
from tests.conftest import EVIDENCE, fixed_clock

BRAKE_PADS = [ExtensionItem("Brake pads", 12_000, 2)]

CAPTURE_DECLINED = PaymentResult(success=False, reason="card expired")


async def _propose(services, world, booking_id, items=BRAKE_PADS):
    return await services.extensions.create_extension(
        booking_id, "Front brake pads worn to 2 mm", items, ["img://pads.jpg"], world.workshop
    )


class TestProposal:
    @pytest.mark.asyncio
    async def test_total_is_sum_of_items(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.AT_WORKSHOP)
        extension = await _propose(
            services, world, booking.id,
            [ExtensionItem("Brake pads", 12_000, 2), ExtensionItem("Labour", 4_500, 1)],
        )
        assert extension.total_cents == 28_500
        assert extension.status == ExtensionStatus.PENDING
        assert extension.payment_status == ExtensionPaymentStatus.NONE
        assert extension.evidence == ["img://pads.jpg"]

        current = await services.bookings.get_booking(booking.id, world.customer)
        assert current.total_price_cents == 21_900

    @pytest.mark.asyncio
    async def test_only_while_in_service(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.PICKED_UP)
        with pytest.raises(IllegalTransition, match="currently PICKED_UP"):
            await _propose(services, world, booking.id)

    @pytest.mark.asyncio
    async def test_only_workshop_proposes(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        with pytest.raises(IllegalTransition):
            await services.extensions.create_extension(
                booking.id, "Wipers", BRAKE_PADS, [], world.customer
            )

    @pytest.mark.asyncio
    async def test_empty_items(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        with pytest.raises(PreconditionFailed, match="at least one line item"):
            await _propose(services, world, booking.id, items=[])

    @pytest.mark.asyncio
    async def test_blank_description(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        with pytest.raises(PreconditionFailed, match="description"):
            await services.extensions.create_extension(
                booking.id, "  ", BRAKE_PADS, [], world.workshop
            )

    @pytest.mark.asyncio
    async def test_customer_is_notified(self, services, world, booking_at, session_factory):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        await _propose(services, world, booking.id)
        async with session_factory() as session:
            types = (
                await session.execute(
                    select(NotificationLogModel.type).where(
                        NotificationLogModel.booking_id == booking.id
                    )
                )
            ).scalars().all()
        assert NotificationType.SERVICE_EXTENSION in types


class TestDecision:
    @pytest.mark.asyncio
    async def test_decline_keeps_booking_total(self, services, world, booking_at, payments):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        assert extension.total_cents == 24_000

        declined = await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.DECLINE, world.customer, reason="too expensive"
        )
        assert declined.status == ExtensionStatus.DECLINED
        assert declined.decline_reason == "too expensive"
        assert declined.total_cents == 24_000
        payments.authorize.assert_not_awaited()

        current = await services.bookings.get_booking(booking.id, world.customer)
        assert current.total_price_cents == 21_900

    @pytest.mark.asyncio
    async def test_decline_needs_a_reason(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        with pytest.raises(ValidationFailed, match="reason"):
            await services.extensions.resolve_extension(
                extension.id, ExtensionDecision.DECLINE, world.customer
            )

    @pytest.mark.asyncio
    async def test_resolved_extension_cannot_be_resolved_again(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.DECLINE, world.customer, reason="no"
        )
        with pytest.raises(IllegalTransition, match="already DECLINED"):
            await services.extensions.resolve_extension(
                extension.id, ExtensionDecision.APPROVE, world.customer
            )

    @pytest.mark.asyncio
    async def test_other_customer_cannot_resolve(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        with pytest.raises(NotFound):
            await services.extensions.resolve_extension(
                extension.id, ExtensionDecision.APPROVE, world.other_customer
            )

    @pytest.mark.asyncio
    async def test_workshop_cannot_resolve(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        with pytest.raises(IllegalTransition):
            await services.extensions.resolve_extension(
                extension.id, ExtensionDecision.APPROVE, world.workshop
            )

    @pytest.mark.asyncio
    async def test_approve_authorizes_and_captures(self, services, world, booking_at, payments):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)

        approved = await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.APPROVE, world.customer
        )
        payments.authorize.assert_awaited_once_with(24_000, f"ext-{extension.id}")
        payments.capture.assert_awaited_once_with("auth_test_1")
        assert approved.status == ExtensionStatus.APPROVED
        assert approved.payment_status == ExtensionPaymentStatus.CAPTURED
        assert approved.total_cents == 24_000

        current = await services.bookings.get_booking(booking.id, world.customer)
        assert current.total_price_cents == 21_900 + 24_000

    @pytest.mark.asyncio
    async def test_declined_authorization_leaves_pending(self, services, world, booking_at, payments):
        payments.authorize.return_value = PaymentResult(success=False, reason="limit exceeded")
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)

        with pytest.raises(PaymentDeclined, match="limit exceeded"):
            await services.extensions.resolve_extension(
                extension.id, ExtensionDecision.APPROVE, world.customer
            )
        [current] = await services.extensions.list_extensions(booking.id, world.customer)
        assert current.status == ExtensionStatus.PENDING

    @pytest.mark.asyncio
    async def test_unreachable_processor_is_retryable(self, services, world, booking_at, payments):
        payments.authorize.side_effect = ExternalDependencyFailure("payment processor unreachable")
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)

        with pytest.raises(ExternalDependencyFailure) as exc_info:
            await services.extensions.resolve_extension(
                extension.id, ExtensionDecision.APPROVE, world.customer
            )
        assert exc_info.value.retryable
        [current] = await services.extensions.list_extensions(booking.id, world.customer)
        assert current.status == ExtensionStatus.PENDING


class TestCapture:
    @pytest.mark.asyncio
    async def test_capture_failure_keeps_approval(self, services, world, booking_at, payments):
        payments.capture.return_value = CAPTURE_DECLINED
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)

        result = await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.APPROVE, world.customer
        )
        assert result.status == ExtensionStatus.APPROVED
        assert result.payment_status == ExtensionPaymentStatus.CAPTURE_FAILED
        assert result.capture_attempts == 1
        assert result.last_payment_error == "card expired"

        current = await services.bookings.get_booking(booking.id, world.customer)
        assert current.total_price_cents == 21_900
        outstanding = await services.extensions.outstanding_captures()
        assert [e.id for e in outstanding] == [extension.id]

    @pytest.mark.asyncio
    async def test_processor_timeout_counts_as_failed_attempt(self, services, world, booking_at, payments):
        payments.capture.side_effect = ExternalDependencyFailure("payment processor did not answer")
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)

        result = await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.APPROVE, world.customer
        )
        assert result.payment_status == ExtensionPaymentStatus.CAPTURE_FAILED
        assert "did not answer" in result.last_payment_error

    @pytest.mark.asyncio
    async def test_reconciler_escalates_after_max_attempts(
        self, services, world, booking_at, payments, session_factory
    ):
        payments.capture.return_value = CAPTURE_DECLINED
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.APPROVE, world.customer
        )

        assert await services.extensions.reconcile_captures() == {
            "captured": 0, "failed": 1, "escalated": 0,
        }
        assert await services.extensions.reconcile_captures() == {
            "captured": 0, "failed": 0, "escalated": 1,
        }
        # escalated extensions are left to manual follow-up
        assert await services.extensions.reconcile_captures() == {
            "captured": 0, "failed": 0, "escalated": 0,
        }

        [current] = await services.extensions.list_extensions(booking.id, world.customer)
        assert current.payment_status == ExtensionPaymentStatus.ESCALATED
        assert current.capture_attempts == 3
        assert current.status == ExtensionStatus.APPROVED

        async with session_factory() as session:
            follow_ups = (
                await session.execute(
                    select(NotificationLogModel).where(
                        NotificationLogModel.type == NotificationType.PAYMENT_FOLLOW_UP
                    )
                )
            ).scalars().all()
        assert [n.user_id for n in follow_ups] == [world.customer.id]

    @pytest.mark.asyncio
    async def test_manual_capture_after_escalation(self, services, world, booking_at, payments):
        payments.capture.return_value = CAPTURE_DECLINED
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.APPROVE, world.customer
        )
        await services.extensions.reconcile_captures()
        await services.extensions.reconcile_captures()

        payments.capture.return_value = PaymentResult(success=True, authorization_id="auth_test_1")
        captured = await services.extensions.capture_extension(extension.id, world.admin)
        assert captured.payment_status == ExtensionPaymentStatus.CAPTURED
        current = await services.bookings.get_booking(booking.id, world.customer)
        assert current.total_price_cents == 45_900

    @pytest.mark.asyncio
    async def test_reconciler_recovers_transient_failure(self, services, world, booking_at, payments):
        payments.capture.return_value = CAPTURE_DECLINED
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.APPROVE, world.customer
        )

        payments.capture.return_value = PaymentResult(success=True, authorization_id="auth_test_1")
        counts = await services.extensions.reconcile_captures()
        assert counts["captured"] == 1
        assert await services.extensions.outstanding_captures() == []

    @pytest.mark.asyncio
    async def test_capture_is_idempotent(self, services, world, booking_at, payments):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.APPROVE, world.customer
        )
        again = await services.extensions.capture_extension(extension.id, world.workshop)

        assert again.payment_status == ExtensionPaymentStatus.CAPTURED
        assert payments.capture.await_count == 1
        current = await services.bookings.get_booking(booking.id, world.customer)
        assert current.total_price_cents == 45_900

    @pytest.mark.asyncio
    async def test_customer_cannot_capture(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        with pytest.raises(IllegalTransition):
            await services.extensions.capture_extension(extension.id, world.customer)

    @pytest.mark.asyncio
    async def test_declined_extension_cannot_be_captured(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.DECLINE, world.customer, reason="later"
        )
        with pytest.raises(IllegalTransition, match="not APPROVED"):
            await services.extensions.capture_extension(extension.id, world.admin)

    @pytest.mark.asyncio
    async def test_unknown_extension(self, services, world):
        with pytest.raises(NotFound):
            await services.extensions.capture_extension(31337, world.admin)


class TestCompletionGate:
    @pytest.mark.asyncio
    async def test_uncaptured_extension_blocks_completion(
        self, services, world, booking_at, payments, assignment_of
    ):
        payments.capture.return_value = CAPTURE_DECLINED
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.APPROVE, world.customer
        )

        await services.bookings.advance_status(
            booking.id, BookingStatus.READY_FOR_RETURN, world.workshop
        )
        ret = await assignment_of(booking.id, AssignmentKind.RETURN)
        await services.bookings.complete_handover(
            ret.id, EVIDENCE, Actor(ret.jockey_id, world.jockeys[0].role)
        )

        with pytest.raises(PreconditionFailed, match="not yet captured"):
            await services.bookings.complete_booking(booking.id, world.workshop)

        payments.capture.return_value = PaymentResult(success=True, authorization_id="auth_test_1")
        await services.extensions.reconcile_captures()
        completed = await services.bookings.complete_booking(booking.id, world.workshop)
        assert completed.status == BookingStatus.COMPLETED
        assert completed.total_price_cents == 45_900

    @pytest.mark.asyncio
    async def test_undecided_extension_blocks_completion(
        self, services, world, booking_at, assignment_of
    ):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        await services.bookings.advance_status(
            booking.id, BookingStatus.READY_FOR_RETURN, world.workshop
        )
        ret = await assignment_of(booking.id, AssignmentKind.RETURN)
        await services.bookings.complete_handover(
            ret.id, EVIDENCE, Actor(ret.jockey_id, world.jockeys[0].role)
        )

        with pytest.raises(PreconditionFailed, match="awaiting the customer's decision"):
            await services.bookings.complete_booking(booking.id, world.workshop)

        await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.DECLINE, world.customer, reason="next visit"
        )
        completed = await services.bookings.complete_booking(booking.id, world.workshop)
        assert completed.status == BookingStatus.COMPLETED
        assert completed.total_price_cents == 21_900


async def _close_out_of_band(session_factory, booking_id, status):
    async with session_factory() as session, session.begin():
        await session.execute(
            update(BookingModel).where(BookingModel.id == booking_id).values(status=status)
        )


class TestTerminalBooking:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [BookingStatus.COMPLETED, BookingStatus.CANCELLED])
    async def test_pending_extension_cannot_be_approved(
        self, services, world, booking_at, payments, session_factory, status
    ):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        await _close_out_of_band(session_factory, booking.id, status)

        with pytest.raises(TerminalStateViolation):
            await services.extensions.resolve_extension(
                extension.id, ExtensionDecision.APPROVE, world.customer
            )

        payments.authorize.assert_not_awaited()
        [current] = await services.extensions.list_extensions(booking.id, world.customer)
        assert current.status == ExtensionStatus.PENDING
        closed = await services.bookings.get_booking(booking.id, world.customer)
        assert closed.total_price_cents == 21_900

    @pytest.mark.asyncio
    async def test_authorized_extension_is_not_captured(
        self, services, world, booking_at, payments, session_factory
    ):
        payments.capture.return_value = CAPTURE_DECLINED
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)
        await services.extensions.resolve_extension(
            extension.id, ExtensionDecision.APPROVE, world.customer
        )
        await _close_out_of_band(session_factory, booking.id, BookingStatus.COMPLETED)

        payments.capture.return_value = PaymentResult(success=True, authorization_id="auth_test_1")
        with pytest.raises(TerminalStateViolation):
            await services.extensions.capture_extension(extension.id, world.admin)
        assert await services.extensions.reconcile_captures() == {
            "captured": 0, "failed": 0, "escalated": 0,
        }

        closed = await services.bookings.get_booking(booking.id, world.customer)
        assert closed.total_price_cents == 21_900


class TestDeferredCapture:
    @pytest.mark.asyncio
    async def test_capture_waits_for_ready_for_return(
        self, services, world, booking_at, payments, session_factory
    ):
        deferred = ExtensionWorkflow(
            session_factory,
            services.extensions.locks,
            payments,
            NotificationDispatcher(session_factory),
            capture_mode="deferred",
            clock=fixed_clock,
        )
        booking = await booking_at(BookingStatus.IN_SERVICE)
        extension = await _propose(services, world, booking.id)

        approved = await deferred.resolve_extension(
            extension.id, ExtensionDecision.APPROVE, world.customer
        )
        assert approved.payment_status == ExtensionPaymentStatus.AUTHORIZED
        payments.capture.assert_not_awaited()

        assert (await deferred.reconcile_captures())["captured"] == 0

        await services.bookings.advance_status(
            booking.id, BookingStatus.READY_FOR_RETURN, world.workshop
        )
        assert (await deferred.reconcile_captures())["captured"] == 1
        current = await services.bookings.get_booking(booking.id, world.customer)
        assert current.total_price_cents == 45_900

    def test_unknown_capture_mode(self, session_factory, locks, payments):
        with pytest.raises(ValueError):
            ExtensionWorkflow(
                session_factory, locks, payments, NotificationDispatcher(session_factory),
                capture_mode="eventually",
            )


class TestListing:
    @pytest.mark.asyncio
    async def test_other_customer_cannot_list(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        await _propose(services, world, booking.id)
        assert len(await services.extensions.list_extensions(booking.id, world.customer)) == 1
        with pytest.raises(NotFound):
            await services.extensions.list_extensions(booking.id, world.other_customer)
