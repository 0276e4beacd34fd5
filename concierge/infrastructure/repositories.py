"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Methods suffixed ``_for_update`` take a
row-level lock (``SELECT ... FOR UPDATE``) and refresh the identity map so
validation always runs against the row as read inside the critical section.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    BookingModel,
    BookingStatusEventModel,
    ExtensionModel,
    JockeyAssignmentModel,
    NotificationLogModel,
    PriceMatrixModel,
    UserModel,
    UserSessionModel,
    VehicleModel,
)
from concierge.domain.enums import (
    OPEN_ASSIGNMENT_STATUSES,
    AssignmentKind,
    ExtensionPaymentStatus,
    ExtensionStatus,
    UserRole,
)
from concierge.domain.pricing import PriceMatrixEntry


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: BookingModel) -> BookingModel:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_by_id(self, booking_id: int) -> Optional[BookingModel]:
        return await self.session.get(BookingModel, booking_id)

    async def get_for_update(self, booking_id: int) -> Optional[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def last_number_with_prefix(self, prefix: str) -> Optional[str]:
        result = await self.session.execute(
            select(BookingModel.booking_number)
            .where(BookingModel.booking_number.like(f"{prefix}%"))
            .order_by(BookingModel.booking_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_customer(self, customer_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.customer_id == customer_id)
            .order_by(BookingModel.created_at)
        )
        return list(result.scalars().all())

    async def list_for_customer_before(
        self, customer_id: int, cutoff: datetime
    ) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.customer_id == customer_id,
                BookingModel.created_at < cutoff,
            )
            .with_for_update()
        )
        return list(result.scalars().all())

    async def ids_for_customer_since(
        self, customer_id: int, cutoff: datetime
    ) -> list[int]:
        result = await self.session.execute(
            select(BookingModel.id).where(
                BookingModel.customer_id == customer_id,
                BookingModel.created_at >= cutoff,
            )
        )
        return list(result.scalars().all())

    async def lock_for_customer(self, customer_id: int) -> list[BookingModel]:
        """Row-lock every booking of the customer, in id order."""
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.customer_id == customer_id)
            .order_by(BookingModel.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def delete_many(self, booking_ids: list[int]) -> int:
        if not booking_ids:
            return 0
        result = await self.session.execute(
            delete(BookingModel)
            .where(BookingModel.id.in_(booking_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class StatusEventRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    def add(self, event: BookingStatusEventModel) -> None:
        self.session.add(event)

    async def list_for_booking(self, booking_id: int) -> list[BookingStatusEventModel]:
        result = await self.session.execute(
            select(BookingStatusEventModel)
            .where(BookingStatusEventModel.booking_id == booking_id)
            .order_by(BookingStatusEventModel.id)
        )
        return list(result.scalars().all())

    async def delete_for_bookings(self, booking_ids: list[int]) -> int:
        if not booking_ids:
            return 0
        result = await self.session.execute(
            delete(BookingStatusEventModel)
            .where(BookingStatusEventModel.booking_id.in_(booking_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class ExtensionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, extension: ExtensionModel) -> ExtensionModel:
        self.session.add(extension)
        await self.session.flush()
        return extension

    async def get_by_id(self, extension_id: int) -> Optional[ExtensionModel]:
        return await self.session.get(ExtensionModel, extension_id)

    async def booking_id_of(self, extension_id: int) -> Optional[int]:
        result = await self.session.execute(
            select(ExtensionModel.booking_id).where(ExtensionModel.id == extension_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, extension_id: int) -> Optional[ExtensionModel]:
        result = await self.session.execute(
            select(ExtensionModel)
            .where(ExtensionModel.id == extension_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_booking(self, booking_id: int) -> list[ExtensionModel]:
        result = await self.session.execute(
            select(ExtensionModel)
            .where(ExtensionModel.booking_id == booking_id)
            .order_by(ExtensionModel.created_at, ExtensionModel.id)
        )
        return list(result.scalars().all())

    async def count_uncaptured_approved(self, booking_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ExtensionModel)
            .where(
                ExtensionModel.booking_id == booking_id,
                ExtensionModel.status == ExtensionStatus.APPROVED,
                ExtensionModel.payment_status != ExtensionPaymentStatus.CAPTURED,
            )
        )
        return result.scalar() or 0

    async def count_pending(self, booking_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ExtensionModel)
            .where(
                ExtensionModel.booking_id == booking_id,
                ExtensionModel.status == ExtensionStatus.PENDING,
            )
        )
        return result.scalar() or 0

    async def list_by_payment_status(
        self, statuses: list[ExtensionPaymentStatus]
    ) -> list[ExtensionModel]:
        result = await self.session.execute(
            select(ExtensionModel)
            .where(
                ExtensionModel.status == ExtensionStatus.APPROVED,
                ExtensionModel.payment_status.in_(statuses),
            )
            .order_by(ExtensionModel.id)
        )
        return list(result.scalars().all())

    async def scrub_evidence_for_bookings(self, booking_ids: list[int]) -> None:
        if not booking_ids:
            return
        await self.session.execute(
            update(ExtensionModel)
            .where(ExtensionModel.booking_id.in_(booking_ids))
            .values(evidence=[], decline_reason=None)
            .execution_options(synchronize_session=False)
        )

    async def delete_for_bookings(self, booking_ids: list[int]) -> int:
        if not booking_ids:
            return 0
        result = await self.session.execute(
            delete(ExtensionModel)
            .where(ExtensionModel.booking_id.in_(booking_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class AssignmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    def add(self, assignment: JockeyAssignmentModel) -> None:
        self.session.add(assignment)

    async def get_by_id(self, assignment_id: int) -> Optional[JockeyAssignmentModel]:
        return await self.session.get(JockeyAssignmentModel, assignment_id)

    async def get_for_update(self, assignment_id: int) -> Optional[JockeyAssignmentModel]:
        result = await self.session.execute(
            select(JockeyAssignmentModel)
            .where(JockeyAssignmentModel.id == assignment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def booking_id_of(self, assignment_id: int) -> Optional[int]:
        result = await self.session.execute(
            select(JockeyAssignmentModel.booking_id).where(
                JockeyAssignmentModel.id == assignment_id
            )
        )
        return result.scalar_one_or_none()

    async def is_assigned_to(self, booking_id: int, jockey_id: int) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(JockeyAssignmentModel)
            .where(
                JockeyAssignmentModel.booking_id == booking_id,
                JockeyAssignmentModel.jockey_id == jockey_id,
            )
        )
        return (result.scalar() or 0) > 0

    async def list_all(self, status=None, limit: int = 50) -> list[JockeyAssignmentModel]:
        query = select(JockeyAssignmentModel)
        if status is not None:
            query = query.where(JockeyAssignmentModel.status == status)
        result = await self.session.execute(
            query.order_by(JockeyAssignmentModel.scheduled_at).limit(limit)
        )
        return list(result.scalars().all())

    async def get_for_booking(
        self, booking_id: int, kind: AssignmentKind
    ) -> Optional[JockeyAssignmentModel]:
        result = await self.session.execute(
            select(JockeyAssignmentModel)
            .where(
                JockeyAssignmentModel.booking_id == booking_id,
                JockeyAssignmentModel.kind == kind,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_booking(self, booking_id: int) -> list[JockeyAssignmentModel]:
        result = await self.session.execute(
            select(JockeyAssignmentModel)
            .where(JockeyAssignmentModel.booking_id == booking_id)
            .order_by(JockeyAssignmentModel.id)
        )
        return list(result.scalars().all())

    async def list_for_jockey(
        self, jockey_id: int, status=None, limit: int = 50
    ) -> list[JockeyAssignmentModel]:
        query = select(JockeyAssignmentModel).where(
            JockeyAssignmentModel.jockey_id == jockey_id
        )
        if status is not None:
            query = query.where(JockeyAssignmentModel.status == status)
        result = await self.session.execute(
            query.order_by(JockeyAssignmentModel.scheduled_at).limit(limit)
        )
        return list(result.scalars().all())

    async def open_counts_by_jockey(self) -> dict[int, int]:
        result = await self.session.execute(
            select(JockeyAssignmentModel.jockey_id, func.count())
            .where(JockeyAssignmentModel.status.in_(OPEN_ASSIGNMENT_STATUSES))
            .group_by(JockeyAssignmentModel.jockey_id)
        )
        return {jockey_id: count for jockey_id, count in result.all()}

    async def scrub_evidence_for_bookings(self, booking_ids: list[int]) -> None:
        if not booking_ids:
            return
        await self.session.execute(
            update(JockeyAssignmentModel)
            .where(JockeyAssignmentModel.booking_id.in_(booking_ids))
            .values(photos=None, signature=None, notes=None)
            .execution_options(synchronize_session=False)
        )

    async def delete_for_bookings(self, booking_ids: list[int]) -> int:
        if not booking_ids:
            return 0
        result = await self.session.execute(
            delete(JockeyAssignmentModel)
            .where(JockeyAssignmentModel.booking_id.in_(booking_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def get_for_update(self, user_id: int) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def active_jockey_ids(self) -> list[int]:
        result = await self.session.execute(
            select(UserModel.id)
            .where(UserModel.role == UserRole.JOCKEY, UserModel.is_active.is_(True))
            .order_by(UserModel.id)
        )
        return list(result.scalars().all())

    async def anonymize(self, user: UserModel, anonymized_at: datetime) -> None:
        user.email = f"deleted-{user.id}@anonymized.local"
        user.first_name = None
        user.last_name = None
        user.phone = None
        user.street = None
        user.city = None
        user.postal_code = None
        user.is_active = False
        user.anonymized_at = anonymized_at
        await self.session.flush()

    async def delete_sessions(self, user_id: int) -> int:
        result = await self.session.execute(
            delete(UserSessionModel).where(UserSessionModel.user_id == user_id)
        )
        return result.rowcount or 0


class VehicleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, vehicle: VehicleModel) -> VehicleModel:
        self.session.add(vehicle)
        await self.session.flush()
        return vehicle

    async def get_by_id(self, vehicle_id: int) -> Optional[VehicleModel]:
        return await self.session.get(VehicleModel, vehicle_id)

    async def list_for_customer(self, customer_id: int) -> list[VehicleModel]:
        result = await self.session.execute(
            select(VehicleModel)
            .where(VehicleModel.customer_id == customer_id)
            .order_by(VehicleModel.id)
        )
        return list(result.scalars().all())

    async def delete_for_customer(self, customer_id: int) -> int:
        result = await self.session.execute(
            delete(VehicleModel).where(VehicleModel.customer_id == customer_id)
        )
        return result.rowcount or 0


class PriceMatrixRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def entries_for_brand(self, brand: str) -> list[PriceMatrixEntry]:
        result = await self.session.execute(
            select(PriceMatrixModel).where(
                func.lower(PriceMatrixModel.brand) == brand.strip().lower()
            )
        )
        return [
            PriceMatrixEntry(
                brand=row.brand,
                model=row.model,
                year_from=row.year_from,
                year_to=row.year_to,
                inspection_30k=row.inspection_30k,
                inspection_60k=row.inspection_60k,
                inspection_90k=row.inspection_90k,
                inspection_120k=row.inspection_120k,
                oil_service=row.oil_service,
                brake_service_front=row.brake_service_front,
                brake_service_rear=row.brake_service_rear,
                tuv=row.tuv,
                climate_service=row.climate_service,
            )
            for row in result.scalars().all()
        ]


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, log: NotificationLogModel) -> NotificationLogModel:
        self.session.add(log)
        await self.session.flush()
        return log

    async def list_for_user(self, user_id: int) -> list[NotificationLogModel]:
        result = await self.session.execute(
            select(NotificationLogModel)
            .where(NotificationLogModel.user_id == user_id)
            .order_by(NotificationLogModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def delete_for_user(self, user_id: int) -> int:
        result = await self.session.execute(
            delete(NotificationLogModel).where(NotificationLogModel.user_id == user_id)
        )
        return result.rowcount or 0
