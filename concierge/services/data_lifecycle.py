"""
Data Lifecycle Manager: GDPR export (Art. 15/20) and erasure (Art. 17).

Erasure is one transaction.  Bookings older than the statutory retention
period are kept for bookkeeping but anonymized in place; newer bookings are
deleted with everything hanging off them; the account itself is reduced to
a tombstone.  Any failure rolls the whole request back.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .transitions import require_role
from .unit_of_work import read_session, storage_errors
from concierge.domain.entities import Actor, ErasureSummary
from concierge.domain.enums import ActorRole, RetentionState, UserRole
from concierge.domain.errors import NotFound, PreconditionFailed
from concierge.domain.state_machine import CUSTODY_STATUSES
from concierge.infrastructure.models import UserModel, utcnow
from concierge.infrastructure.repositories import (
    AssignmentRepository,
    BookingRepository,
    ExtensionRepository,
    NotificationRepository,
    StatusEventRepository,
    UserRepository,
    VehicleRepository,
)

logger = logging.getLogger(__name__)

ANONYMIZED = "ANONYMIZED"
ANONYMIZED_POSTAL_CODE = "XXXXX"
ANONYMIZED_NOTE = "User data anonymized per GDPR Article 17"

LEGAL_INFO = {
    "data_controller": "Vehicle Concierge Service",
    "legal_basis": "GDPR Article 6(1)(b) - contract performance",
    "rights": [
        "Right to access (Art. 15)",
        "Right to rectification (Art. 16)",
        "Right to erasure (Art. 17)",
        "Right to data portability (Art. 20)",
    ],
}


def years_before(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        # 29 February in a non-leap target year
        return moment.replace(year=moment.year - years, day=28)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class DataLifecycleManager:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retention_years: int = 7,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.retention_years = retention_years
        self.clock = clock

    @property
    def retention_reason(self) -> str:
        return (
            f"Bookings older than {self.retention_years} years are retained in "
            f"anonymized form for tax and accounting records (§147 AO)"
        )

    def _authorize(self, user_id: int, actor: Actor, operation: str) -> None:
        if actor.role == ActorRole.CUSTOMER:
            if actor.id != user_id:
                raise NotFound(f"user {user_id} not found")
            return
        require_role(actor, {ActorRole.ADMIN}, operation)

    # ── Art. 15 / 20 ──────────────────────────────────────────────

    async def export_user_data(self, user_id: int, actor: Actor) -> dict:
        self._authorize(user_id, actor, "export user data")
        async with read_session(self.session_factory) as session:
            user = await self._user(session, user_id)
            vehicles = await VehicleRepository(session).list_for_customer(user_id)
            bookings = await BookingRepository(session).list_for_customer(user_id)
            notifications = await NotificationRepository(session).list_for_user(user_id)

        logger.info("Exported personal data of user %d for %s %d", user_id, actor.role.value, actor.id)
        return {
            "export_date": self.clock().isoformat(),
            "user_id": user.id,
            "personal_data": {
                "email": user.email,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "phone": user.phone,
                "role": user.role.value,
                "created_at": _iso(user.created_at),
                "last_login_at": _iso(user.last_login_at),
            },
            "address": {
                "street": user.street,
                "city": user.city,
                "postal_code": user.postal_code,
            },
            "vehicles": [
                {
                    "id": v.id,
                    "brand": v.brand,
                    "model": v.model,
                    "year": v.year,
                    "mileage": v.mileage,
                    "license_plate": v.license_plate,
                    "created_at": _iso(v.created_at),
                }
                for v in vehicles
            ],
            "bookings": [
                {
                    "booking_number": b.booking_number,
                    "vehicle": f"{b.vehicle_brand} {b.vehicle_model} ({b.vehicle_year})",
                    "services": b.services,
                    "status": b.status.value,
                    "total_price_cents": b.total_price_cents,
                    "pickup_window_start": _iso(b.pickup_window_start),
                    "pickup_address": b.pickup_address,
                    "pickup_city": b.pickup_city,
                    "pickup_postal_code": b.pickup_postal_code,
                    "customer_notes": b.customer_notes,
                    "created_at": _iso(b.created_at),
                }
                for b in bookings
            ],
            "notifications": [
                {
                    "type": n.type.value,
                    "title": n.title,
                    "body": n.body,
                    "created_at": _iso(n.created_at),
                }
                for n in notifications
            ],
            "legal_info": {
                **LEGAL_INFO,
                "retention_period": f"{self.retention_years} years (§147 AO)",
            },
        }

    # ── Art. 17 ───────────────────────────────────────────────────

    async def request_erasure(
        self, user_id: int, actor: Actor, reason: Optional[str] = None
    ) -> ErasureSummary:
        self._authorize(user_id, actor, "erase user data")
        now = self.clock()
        cutoff = years_before(now, self.retention_years)

        async with storage_errors():
            async with self.session_factory() as session:
                async with session.begin():
                    summary = await self._erase(session, user_id, now, cutoff)

        logger.info(
            "Erased user %d (%s): %d booking(s) anonymized, %d deleted, reason=%s",
            user_id, actor.role.value, summary.anonymized_bookings,
            summary.deleted_bookings, reason or "user request",
        )
        return summary

    async def _erase(
        self, session: AsyncSession, user_id: int, now: datetime, cutoff: datetime
    ) -> ErasureSummary:
        users = UserRepository(session)
        user = await users.get_for_update(user_id)
        if user is None:
            raise NotFound(f"user {user_id} not found")
        if user.role != UserRole.CUSTOMER:
            raise PreconditionFailed("only customer accounts can be erased")
        if user.anonymized_at is not None:
            raise PreconditionFailed(f"user {user_id} has already been erased")

        # Held until commit; a concurrent pickup handover waits on these rows.
        bookings = BookingRepository(session)
        locked = await bookings.lock_for_customer(user_id)
        in_custody = sum(1 for b in locked if b.status in CUSTODY_STATUSES)
        if in_custody:
            raise PreconditionFailed(
                f"{in_custody} booking(s) have the vehicle in custody; "
                "erasure is possible once the vehicle is returned"
            )

        summary = ErasureSummary(deleted_at=now, retention_reason=self.retention_reason)
        assignments = AssignmentRepository(session)

        retained = await bookings.list_for_customer_before(user_id, cutoff)
        for booking in retained:
            booking.pickup_address = ANONYMIZED
            booking.pickup_city = ANONYMIZED
            booking.pickup_postal_code = ANONYMIZED_POSTAL_CODE
            booking.customer_notes = None
            booking.cancellation_reason = None
            booking.internal_notes = ANONYMIZED_NOTE
            booking.vehicle_id = None
            booking.retention_state = RetentionState.ANONYMIZED
            booking.anonymized_at = now
        summary.anonymized_bookings = len(retained)
        extensions = ExtensionRepository(session)
        await assignments.scrub_evidence_for_bookings([b.id for b in retained])
        await extensions.scrub_evidence_for_bookings([b.id for b in retained])

        recent_ids = await bookings.ids_for_customer_since(user_id, cutoff)
        summary.deleted_extensions = await extensions.delete_for_bookings(recent_ids)
        summary.deleted_assignments = await assignments.delete_for_bookings(recent_ids)
        await StatusEventRepository(session).delete_for_bookings(recent_ids)
        summary.deleted_bookings = await bookings.delete_many(recent_ids)

        summary.vehicles = await VehicleRepository(session).delete_for_customer(user_id)
        summary.sessions = await users.delete_sessions(user_id)
        summary.notifications = await NotificationRepository(session).delete_for_user(user_id)
        await users.anonymize(user, now)
        return summary

    # ── Compliance ────────────────────────────────────────────────

    async def compliance_summary(self, user_id: int, actor: Actor) -> dict:
        self._authorize(user_id, actor, "read compliance data")
        async with read_session(self.session_factory) as session:
            user = await self._user(session, user_id)
            bookings = await BookingRepository(session).list_for_customer(user_id)

        oldest = min((b.created_at for b in bookings), default=None)
        anonymized = sum(1 for b in bookings if b.retention_state == RetentionState.ANONYMIZED)
        return {
            "user_id": user.id,
            "account_created": _iso(user.created_at),
            "last_login": _iso(user.last_login_at),
            "anonymized_at": _iso(user.anonymized_at),
            "total_bookings": len(bookings),
            "anonymized_bookings": anonymized,
            "oldest_booking": _iso(oldest),
            "retention_policy": self.retention_reason,
        }

    @staticmethod
    async def _user(session: AsyncSession, user_id: int) -> UserModel:
        user = await UserRepository(session).get_by_id(user_id)
        if user is None:
            raise NotFound(f"user {user_id} not found")
        return user
