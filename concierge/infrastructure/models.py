"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``               -- customers, jockeys, workshop staff, admins
* ``user_sessions``       -- login sessions issued by the auth service
* ``vehicles``            -- customer vehicles (live, mutable)
* ``price_matrix``        -- reference prices per brand / model / year range
* ``bookings``            -- one maintenance order, with a vehicle snapshot
* ``booking_status_events`` -- audit trail of applied transitions
* ``extensions``          -- extra work proposed mid-service
* ``jockey_assignments``  -- pickup / return driving tasks
* ``notification_logs``   -- every notification sent to a user

Constraints
-----------
* ``bookings.version`` is the optimistic-concurrency column; a stale write
  raises ``StaleDataError``.
* ``uq_assignment_booking_kind`` -- at most one PICKUP and one RETURN per
  booking, enforced by the database so racing dispatch triggers cannot
  both insert.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .database import Base
from concierge.domain.enums import (
    ActorRole,
    AssignmentKind,
    BookingAction,
    AssignmentStatus,
    BookingStatus,
    ExtensionPaymentStatus,
    ExtensionStatus,
    NotificationType,
    RetentionState,
    UserRole,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    role = Column(Enum(UserRole), default=UserRole.CUSTOMER, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    first_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)
    phone = Column(String(40), nullable=True)
    street = Column(String(255), nullable=True)
    city = Column(String(120), nullable=True)
    postal_code = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    anonymized_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_users_role_active", "role", "is_active"),)


class UserSessionModel(Base):
    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    token_hint = Column(String(16), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_sessions_user", "user_id"),)


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    brand = Column(String(80), nullable=False)
    model = Column(String(80), nullable=False)
    year = Column(Integer, nullable=False)
    mileage = Column(Integer, nullable=False)
    license_plate = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_vehicles_customer", "customer_id"),)


class PriceMatrixModel(Base):
    __tablename__ = "price_matrix"

    id = Column(Integer, primary_key=True, autoincrement=True)
    brand = Column(String(80), nullable=False)
    model = Column(String(80), nullable=False)
    year_from = Column(Integer, nullable=False)
    year_to = Column(Integer, nullable=False)

    # Integer cents
    inspection_30k = Column(Integer, nullable=True)
    inspection_60k = Column(Integer, nullable=True)
    inspection_90k = Column(Integer, nullable=True)
    inspection_120k = Column(Integer, nullable=True)
    oil_service = Column(Integer, nullable=True)
    brake_service_front = Column(Integer, nullable=True)
    brake_service_rear = Column(Integer, nullable=True)
    tuv = Column(Integer, nullable=True)
    climate_service = Column(Integer, nullable=True)

    __table_args__ = (Index("idx_price_matrix_brand_model", "brand", "model"),)


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_number = Column(String(16), unique=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)

    # Snapshot taken at booking time; the live vehicle may change later.
    vehicle_brand = Column(String(80), nullable=False)
    vehicle_model = Column(String(80), nullable=False)
    vehicle_year = Column(Integer, nullable=False)
    mileage_at_booking = Column(Integer, nullable=False)

    services = Column(JSON, nullable=False, default=list)
    total_price_cents = Column(Integer, nullable=False)
    status = Column(
        Enum(BookingStatus), default=BookingStatus.PENDING_PAYMENT, nullable=False
    )

    pickup_window_start = Column(DateTime(timezone=True), nullable=False)
    pickup_window_end = Column(DateTime(timezone=True), nullable=True)
    delivery_window_start = Column(DateTime(timezone=True), nullable=True)
    delivery_window_end = Column(DateTime(timezone=True), nullable=True)
    pickup_address = Column(String(255), nullable=False)
    pickup_city = Column(String(120), nullable=False)
    pickup_postal_code = Column(String(20), nullable=False)
    customer_notes = Column(Text, nullable=True)
    internal_notes = Column(Text, nullable=True)

    payment_reference = Column(String(128), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    retention_state = Column(
        Enum(RetentionState), default=RetentionState.ACTIVE, nullable=False
    )
    anonymized_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_bookings_customer", "customer_id"),
        Index("idx_bookings_status", "status"),
        Index("idx_bookings_created", "created_at"),
    )


class BookingStatusEventModel(Base):
    """Append-only audit trail: one row per applied transition."""

    __tablename__ = "booking_status_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    from_status = Column(Enum(BookingStatus), nullable=False)
    to_status = Column(Enum(BookingStatus), nullable=False)
    action = Column(Enum(BookingAction), nullable=False)
    actor_role = Column(Enum(ActorRole), nullable=False)
    actor_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_status_events_booking", "booking_id"),)


class ExtensionModel(Base):
    __tablename__ = "extensions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    description = Column(Text, nullable=False)
    items = Column(JSON, nullable=False)
    total_cents = Column(Integer, nullable=False)
    evidence = Column(JSON, nullable=False, default=list)

    status = Column(Enum(ExtensionStatus), default=ExtensionStatus.PENDING, nullable=False)
    payment_status = Column(
        Enum(ExtensionPaymentStatus),
        default=ExtensionPaymentStatus.NONE,
        nullable=False,
    )
    authorization_id = Column(String(128), nullable=True)
    capture_attempts = Column(Integer, default=0, nullable=False)
    last_payment_error = Column(String(255), nullable=True)
    decline_reason = Column(String(500), nullable=True)

    approved_at = Column(DateTime(timezone=True), nullable=True)
    declined_at = Column(DateTime(timezone=True), nullable=True)
    captured_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_extensions_booking", "booking_id"),
        Index("idx_extensions_payment_status", "payment_status"),
    )


class JockeyAssignmentModel(Base):
    __tablename__ = "jockey_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    kind = Column(Enum(AssignmentKind), nullable=False)
    jockey_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        Enum(AssignmentStatus), default=AssignmentStatus.ASSIGNED, nullable=False
    )

    # Handover evidence
    photos = Column(JSON, nullable=True)
    signature = Column(Text, nullable=True)
    odometer_km = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    failure_reason = Column(String(255), nullable=True)
    arrived_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("booking_id", "kind", name="uq_assignment_booking_kind"),
        Index("idx_assignments_jockey_status", "jockey_id", "status"),
    )


class NotificationLogModel(Base):
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    booking_id = Column(Integer, nullable=True)
    type = Column(Enum(NotificationType), nullable=False)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_notifications_user", "user_id"),)
