"""
Booking workflow tests against a real (SQLite) database.

Covers intake, the payment gate, handovers, workshop steps, cancellation
and the audit trail, including the end-to-end path from PENDING_PAYMENT
to COMPLETED.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from concierge.domain.entities import HandoverEvidence, PaymentConfirmation
from concierge.domain.enums import (
    ActorRole,
    AssignmentKind,
    AssignmentStatus,
    BookingAction,
    BookingStatus,
    NotificationType,
    RetentionState,
    ServiceKind,
)
from concierge.domain.errors import (
    IllegalTransition,
    NotFound,
    PaymentDeclined,
    PreconditionFailed,
    TerminalStateViolation,
    ValidationFailed,
)
from concierge.infrastructure.models import BookingModel, NotificationLogModel
from concierge.services.booking_intake import next_booking_number
from tests.conftest import EVIDENCE, NOW, booking_request


class TestBookingIntake:
    @pytest.mark.asyncio
    async def test_create_booking_prices_and_snapshots(self, services, world):
        booking = await services.intake.create_booking(
            booking_request(world.vehicle_id), world.customer
        )
        assert booking.status == BookingStatus.PENDING_PAYMENT
        assert booking.total_price_cents == 21_900
        assert booking.booking_number == "BK25060001"
        assert (booking.vehicle_brand, booking.vehicle_model, booking.vehicle_year) == ("VW", "Golf", 2015)
        assert booking.mileage_at_booking == 60_000
        assert booking.retention_state == RetentionState.ACTIVE
        assert booking.services[0]["kind"] == "INSPECTION"
        assert booking.services[0]["price_source"] == "exact"

    @pytest.mark.asyncio
    async def test_multiple_services_are_summed(self, services, world):
        booking = await services.intake.create_booking(
            booking_request(
                world.vehicle_id,
                services=[ServiceKind.INSPECTION, ServiceKind.OIL_SERVICE, ServiceKind.TUV],
            ),
            world.customer,
        )
        assert booking.total_price_cents == 21_900 + 15_900 + 12_000

    @pytest.mark.asyncio
    async def test_reported_mileage_overrides_vehicle_record(self, services, world):
        booking = await services.intake.create_booking(
            booking_request(world.vehicle_id, mileage_km=100_000), world.customer
        )
        assert booking.mileage_at_booking == 100_000
        assert booking.total_price_cents == 34_900

    @pytest.mark.asyncio
    async def test_booking_numbers_are_sequential(self, services, world):
        first = await services.intake.create_booking(booking_request(world.vehicle_id), world.customer)
        second = await services.intake.create_booking(booking_request(world.vehicle_id), world.customer)
        assert (first.booking_number, second.booking_number) == ("BK25060001", "BK25060002")

    def test_next_booking_number(self):
        assert next_booking_number("BK2506", None) == "BK25060001"
        assert next_booking_number("BK2506", "BK25060041") == "BK25060042"

    @pytest.mark.asyncio
    async def test_pickup_must_be_in_the_future(self, services, world):
        with pytest.raises(PreconditionFailed, match="future"):
            await services.intake.create_booking(
                booking_request(world.vehicle_id, pickup_window_start=NOW - timedelta(hours=1)),
                world.customer,
            )

    @pytest.mark.asyncio
    async def test_duplicate_services_rejected(self, services, world):
        with pytest.raises(ValidationFailed):
            await services.intake.create_booking(
                booking_request(
                    world.vehicle_id, services=[ServiceKind.TUV, ServiceKind.TUV]
                ),
                world.customer,
            )

    @pytest.mark.asyncio
    async def test_blank_address_rejected(self, services, world):
        with pytest.raises(ValidationFailed, match="pickup_address"):
            await services.intake.create_booking(
                booking_request(world.vehicle_id, pickup_address="  "), world.customer
            )

    @pytest.mark.asyncio
    async def test_foreign_vehicle_is_not_found(self, services, world):
        with pytest.raises(NotFound):
            await services.intake.create_booking(
                booking_request(world.vehicle_id), world.other_customer
            )

    @pytest.mark.asyncio
    async def test_only_customers_book(self, services, world):
        with pytest.raises(IllegalTransition):
            await services.intake.create_booking(booking_request(world.vehicle_id), world.workshop)


class TestPaymentGate:
    @pytest.mark.asyncio
    async def test_confirmation_dispatches_pickup(self, services, world, assignment_of):
        booking = await services.intake.create_booking(
            booking_request(world.vehicle_id), world.customer
        )
        confirmed = await services.bookings.confirm_payment(
            booking.id, PaymentConfirmation("pay_001", 21_900), world.system
        )
        assert confirmed.status == BookingStatus.JOCKEY_ASSIGNED
        assert confirmed.payment_reference == "pay_001"
        assert confirmed.paid_at is not None

        pickup = await assignment_of(booking.id, AssignmentKind.PICKUP)
        assert pickup.status == AssignmentStatus.ASSIGNED
        assert pickup.jockey_id == world.jockeys[0].id

    @pytest.mark.asyncio
    async def test_amount_mismatch_leaves_booking_pending(self, services, world):
        booking = await services.intake.create_booking(
            booking_request(world.vehicle_id), world.customer
        )
        with pytest.raises(PreconditionFailed, match="does not match"):
            await services.bookings.confirm_payment(
                booking.id, PaymentConfirmation("pay_001", 20_000), world.system
            )
        current = await services.bookings.get_booking(booking.id, world.customer)
        assert current.status == BookingStatus.PENDING_PAYMENT

    @pytest.mark.asyncio
    async def test_failed_payment_is_declined(self, services, world):
        booking = await services.intake.create_booking(
            booking_request(world.vehicle_id), world.customer
        )
        with pytest.raises(PaymentDeclined, match="insufficient funds"):
            await services.bookings.confirm_payment(
                booking.id,
                PaymentConfirmation(
                    "pay_001", 21_900, succeeded=False, failure_reason="insufficient funds"
                ),
                world.system,
            )
        current = await services.bookings.get_booking(booking.id, world.customer)
        assert current.status == BookingStatus.PENDING_PAYMENT

    @pytest.mark.asyncio
    async def test_duplicate_callback_is_a_no_op(self, services, world):
        booking = await services.intake.create_booking(
            booking_request(world.vehicle_id), world.customer
        )
        payment = PaymentConfirmation("pay_001", 21_900)
        await services.bookings.confirm_payment(booking.id, payment, world.system)
        again = await services.bookings.confirm_payment(booking.id, payment, world.system)

        assert again.status == BookingStatus.JOCKEY_ASSIGNED
        history = await services.bookings.status_history(booking.id, world.admin)
        assert [e.action for e in history].count(BookingAction.CONFIRM_PAYMENT) == 1

    @pytest.mark.asyncio
    async def test_second_payment_with_new_reference_is_rejected(self, services, world):
        booking = await services.intake.create_booking(
            booking_request(world.vehicle_id), world.customer
        )
        await services.bookings.confirm_payment(
            booking.id, PaymentConfirmation("pay_001", 21_900), world.system
        )
        with pytest.raises(IllegalTransition):
            await services.bookings.confirm_payment(
                booking.id, PaymentConfirmation("pay_002", 21_900), world.system
            )

    @pytest.mark.asyncio
    async def test_blank_reference(self, services, world):
        with pytest.raises(ValidationFailed):
            await services.bookings.confirm_payment(
                1, PaymentConfirmation("  ", 21_900), world.system
            )

    @pytest.mark.asyncio
    async def test_unknown_booking(self, services, world):
        with pytest.raises(NotFound):
            await services.bookings.confirm_payment(
                999, PaymentConfirmation("pay_001", 21_900), world.system
            )


class TestHandover:
    @pytest.mark.asyncio
    async def test_pickup_handover_records_evidence(self, services, world, assignment_of):
        booking = await _assigned(services, world)
        pickup = await assignment_of(booking.id, AssignmentKind.PICKUP)
        assignment, updated = await services.bookings.complete_handover(
            pickup.id, EVIDENCE, world.jockeys[0]
        )
        assert updated.status == BookingStatus.PICKED_UP
        assert assignment.status == AssignmentStatus.COMPLETED
        assert assignment.odometer_km == 60_150
        assert assignment.photos == list(EVIDENCE.photos)
        assert assignment.signature == EVIDENCE.signature

    @pytest.mark.asyncio
    async def test_incomplete_evidence_changes_nothing(self, services, world, assignment_of):
        booking = await _assigned(services, world)
        pickup = await assignment_of(booking.id, AssignmentKind.PICKUP)
        with pytest.raises(PreconditionFailed, match="signature"):
            await services.bookings.complete_handover(
                pickup.id,
                HandoverEvidence(photos=("photo://1.jpg",), odometer_km=60_100),
                world.jockeys[0],
            )
        assert (await assignment_of(booking.id, AssignmentKind.PICKUP)).status == AssignmentStatus.ASSIGNED
        current = await services.bookings.get_booking(booking.id, world.customer)
        assert current.status == BookingStatus.JOCKEY_ASSIGNED

    @pytest.mark.asyncio
    async def test_other_jockey_cannot_complete(self, services, world, assignment_of):
        booking = await _assigned(services, world)
        pickup = await assignment_of(booking.id, AssignmentKind.PICKUP)
        with pytest.raises(IllegalTransition, match="another jockey"):
            await services.bookings.complete_handover(pickup.id, EVIDENCE, world.jockeys[1])

    @pytest.mark.asyncio
    async def test_repeated_handover_is_ignored(self, services, world, assignment_of):
        booking = await _assigned(services, world)
        pickup = await assignment_of(booking.id, AssignmentKind.PICKUP)
        await services.bookings.complete_handover(pickup.id, EVIDENCE, world.jockeys[0])
        _, again = await services.bookings.complete_handover(pickup.id, EVIDENCE, world.jockeys[0])
        assert again.status == BookingStatus.PICKED_UP

    @pytest.mark.asyncio
    async def test_unknown_assignment(self, services, world):
        with pytest.raises(NotFound):
            await services.bookings.complete_handover(404, EVIDENCE, world.jockeys[0])


class TestWorkshopSteps:
    @pytest.mark.asyncio
    async def test_current_status_is_a_no_op(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.AT_WORKSHOP)
        same = await services.bookings.advance_status(
            booking.id, BookingStatus.AT_WORKSHOP, world.workshop
        )
        assert same.status == BookingStatus.AT_WORKSHOP
        assert same.version == booking.version

    @pytest.mark.asyncio
    async def test_skipping_a_step_is_rejected(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.PICKED_UP)
        with pytest.raises(IllegalTransition, match="must be AT_WORKSHOP first"):
            await services.bookings.advance_status(
                booking.id, BookingStatus.IN_SERVICE, world.workshop
            )

    @pytest.mark.asyncio
    async def test_non_workshop_status_is_rejected(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        with pytest.raises(IllegalTransition):
            await services.bookings.advance_status(
                booking.id, BookingStatus.RETURNED, world.workshop
            )

    @pytest.mark.asyncio
    async def test_only_workshop_advances(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.PICKED_UP)
        with pytest.raises(IllegalTransition):
            await services.bookings.advance_status(
                booking.id, BookingStatus.AT_WORKSHOP, world.customer
            )

    @pytest.mark.asyncio
    async def test_ready_for_return_dispatches_return(self, services, world, booking_at, assignment_of):
        booking = await booking_at(BookingStatus.RETURN_ASSIGNED)
        ret = await assignment_of(booking.id, AssignmentKind.RETURN)
        assert ret.status == AssignmentStatus.ASSIGNED
        # delivery window start from the booking request
        assert ret.scheduled_at.replace(tzinfo=None) == (NOW + timedelta(days=3)).replace(tzinfo=None)

        again = await services.bookings.advance_status(
            booking.id, BookingStatus.READY_FOR_RETURN, world.workshop
        )
        assert again.status == BookingStatus.RETURN_ASSIGNED

    @pytest.mark.asyncio
    async def test_concurrent_start_service_applies_once(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.AT_WORKSHOP)
        results = await asyncio.gather(
            services.bookings.advance_status(booking.id, BookingStatus.IN_SERVICE, world.workshop),
            services.bookings.advance_status(booking.id, BookingStatus.IN_SERVICE, world.workshop),
        )
        assert [r.status for r in results] == [BookingStatus.IN_SERVICE] * 2

        history = await services.bookings.status_history(booking.id, world.admin)
        assert [e.action for e in history].count(BookingAction.START_SERVICE) == 1

    @pytest.mark.asyncio
    async def test_terminal_booking_rejects_steps(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.COMPLETED)
        with pytest.raises(TerminalStateViolation):
            await services.bookings.advance_status(
                booking.id, BookingStatus.AT_WORKSHOP, world.workshop
            )


class TestFullLifecycle:
    @pytest.mark.asyncio
    async def test_pending_payment_to_completed(self, services, world, booking_at, session_factory):
        booking = await booking_at(BookingStatus.COMPLETED)
        assert booking.completed_at is not None
        assert booking.total_price_cents == 21_900

        history = await services.bookings.status_history(booking.id, world.customer)
        assert [e.to_status for e in history] == [
            BookingStatus.CONFIRMED,
            BookingStatus.JOCKEY_ASSIGNED,
            BookingStatus.PICKED_UP,
            BookingStatus.AT_WORKSHOP,
            BookingStatus.IN_SERVICE,
            BookingStatus.READY_FOR_RETURN,
            BookingStatus.RETURN_ASSIGNED,
            BookingStatus.RETURNED,
            BookingStatus.COMPLETED,
        ]
        assign = [e for e in history if e.action == BookingAction.ASSIGN_PICKUP][0]
        assert assign.actor_role == ActorRole.SYSTEM

        async with session_factory() as session:
            types = (
                await session.execute(
                    select(NotificationLogModel.type).where(
                        NotificationLogModel.user_id == world.customer.id
                    )
                )
            ).scalars().all()
        assert NotificationType.BOOKING_CONFIRMED in types
        assert NotificationType.STATUS_UPDATE in types

    @pytest.mark.asyncio
    async def test_close_requires_returned(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.IN_SERVICE)
        with pytest.raises(IllegalTransition):
            await services.bookings.complete_booking(booking.id, world.workshop)

    @pytest.mark.asyncio
    async def test_customer_cannot_close(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.RETURNED)
        with pytest.raises(IllegalTransition):
            await services.bookings.complete_booking(booking.id, world.customer)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_pending_booking(self, services, world):
        booking = await services.intake.create_booking(
            booking_request(world.vehicle_id), world.customer
        )
        cancelled = await services.bookings.cancel_booking(booking.id, world.customer, "changed plans")
        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancellation_reason == "changed plans"
        assert cancelled.cancelled_at is not None

    @pytest.mark.asyncio
    async def test_cancel_with_open_pickup_cancels_assignment(self, services, world, booking_at, assignment_of):
        booking = await booking_at(BookingStatus.JOCKEY_ASSIGNED)
        await services.bookings.cancel_booking(booking.id, world.customer)
        pickup = await assignment_of(booking.id, AssignmentKind.PICKUP)
        assert pickup.status == AssignmentStatus.CANCELLED
        assert pickup.cancelled_at is not None

    @pytest.mark.asyncio
    async def test_handover_after_cancellation_is_terminal(
        self, services, world, booking_at, assignment_of
    ):
        booking = await booking_at(BookingStatus.JOCKEY_ASSIGNED)
        pickup = await assignment_of(booking.id, AssignmentKind.PICKUP)
        await services.bookings.cancel_booking(booking.id, world.customer)

        jockey = next(j for j in world.jockeys if j.id == pickup.jockey_id)
        with pytest.raises(TerminalStateViolation):
            await services.bookings.complete_handover(pickup.id, EVIDENCE, jockey)

        current = await services.bookings.get_booking(booking.id, world.customer)
        assert current.status == BookingStatus.CANCELLED
        pickup = await assignment_of(booking.id, AssignmentKind.PICKUP)
        assert pickup.status == AssignmentStatus.CANCELLED
        assert not pickup.photos

    @pytest.mark.asyncio
    async def test_cannot_cancel_in_custody(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.PICKED_UP)
        with pytest.raises(IllegalTransition, match="custody"):
            await services.bookings.cancel_booking(booking.id, world.customer)

    @pytest.mark.asyncio
    async def test_cancel_twice_is_terminal(self, services, world):
        booking = await services.intake.create_booking(
            booking_request(world.vehicle_id), world.customer
        )
        await services.bookings.cancel_booking(booking.id, world.customer)
        with pytest.raises(TerminalStateViolation):
            await services.bookings.cancel_booking(booking.id, world.customer)

    @pytest.mark.asyncio
    async def test_other_customer_cannot_cancel(self, services, world):
        booking = await services.intake.create_booking(
            booking_request(world.vehicle_id), world.customer
        )
        with pytest.raises(NotFound):
            await services.bookings.cancel_booking(booking.id, world.other_customer)

    @pytest.mark.asyncio
    async def test_jockey_cannot_cancel(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.JOCKEY_ASSIGNED)
        with pytest.raises(IllegalTransition):
            await services.bookings.cancel_booking(booking.id, world.jockeys[0])


class TestVisibility:
    @pytest.mark.asyncio
    async def test_other_customer_sees_not_found(self, services, world):
        booking = await services.intake.create_booking(
            booking_request(world.vehicle_id), world.customer
        )
        with pytest.raises(NotFound):
            await services.bookings.get_booking(booking.id, world.other_customer)

    @pytest.mark.asyncio
    async def test_jockey_sees_only_assigned_bookings(self, services, world, booking_at):
        booking = await booking_at(BookingStatus.JOCKEY_ASSIGNED)
        seen = await services.bookings.get_booking(booking.id, world.jockeys[0])
        assert seen.id == booking.id
        with pytest.raises(NotFound):
            await services.bookings.get_booking(booking.id, world.jockeys[1])


async def _assigned(services, world) -> BookingModel:
    booking = await services.intake.create_booking(
        booking_request(world.vehicle_id), world.customer
    )
    return await services.bookings.confirm_payment(
        booking.id, PaymentConfirmation(f"pay-{booking.id}", booking.total_price_cents), world.system
    )
