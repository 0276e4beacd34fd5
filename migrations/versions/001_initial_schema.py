"""Initial schema: users, vehicles, price matrix, bookings and their workflow tables.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


# Enum labels are the Python member names (SQLAlchemy's default for Enum()).
_ENUMS = {
    "userrole": ("CUSTOMER", "JOCKEY", "WORKSHOP", "ADMIN"),
    "actorrole": ("CUSTOMER", "JOCKEY", "WORKSHOP", "SYSTEM", "ADMIN"),
    "bookingstatus": (
        "PENDING_PAYMENT", "CONFIRMED", "JOCKEY_ASSIGNED", "PICKED_UP", "AT_WORKSHOP",
        "IN_SERVICE", "READY_FOR_RETURN", "RETURN_ASSIGNED", "RETURNED", "COMPLETED",
        "CANCELLED",
    ),
    "bookingaction": (
        "CONFIRM_PAYMENT", "ASSIGN_PICKUP", "COMPLETE_PICKUP", "ARRIVE_AT_WORKSHOP",
        "START_SERVICE", "FINISH_SERVICE", "ASSIGN_RETURN", "COMPLETE_RETURN", "CLOSE",
        "CANCEL",
    ),
    "retentionstate": ("ACTIVE", "ANONYMIZED"),
    "extensionstatus": ("PENDING", "APPROVED", "DECLINED"),
    "extensionpaymentstatus": ("NONE", "AUTHORIZED", "CAPTURED", "CAPTURE_FAILED", "ESCALATED"),
    "assignmentkind": ("PICKUP", "RETURN"),
    "assignmentstatus": (
        "ASSIGNED", "EN_ROUTE", "AT_LOCATION", "COMPLETED", "FAILED", "CANCELLED",
    ),
    "notificationtype": (
        "BOOKING_CONFIRMED", "STATUS_UPDATE", "JOCKEY_ASSIGNED", "SERVICE_EXTENSION",
        "PAYMENT_FOLLOW_UP", "BOOKING_CANCELLED",
    ),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
    )


def upgrade() -> None:
    bind = op.get_bind()
    for name in _ENUMS:
        _enum(name).create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("role", _enum("userrole"), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("first_name", sa.String(120), nullable=True),
        sa.Column("last_name", sa.String(120), nullable=True),
        sa.Column("phone", sa.String(40), nullable=True),
        sa.Column("street", sa.String(255), nullable=True),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        _created_at(),
        _timestamp("last_login_at"),
        _timestamp("anonymized_at"),
    )
    op.create_index("idx_users_role_active", "users", ["role", "is_active"])

    op.create_table(
        "user_sessions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_hint", sa.String(16), nullable=True),
        _created_at(),
        _timestamp("expires_at"),
    )
    op.create_index("idx_sessions_user", "user_sessions", ["user_id"])

    # ── vehicles / price matrix ───────────────────────────────────────
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("brand", sa.String(80), nullable=False),
        sa.Column("model", sa.String(80), nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("mileage", sa.Integer, nullable=False),
        sa.Column("license_plate", sa.String(20), nullable=True),
        _created_at(),
    )
    op.create_index("idx_vehicles_customer", "vehicles", ["customer_id"])

    op.create_table(
        "price_matrix",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("brand", sa.String(80), nullable=False),
        sa.Column("model", sa.String(80), nullable=False),
        sa.Column("year_from", sa.Integer, nullable=False),
        sa.Column("year_to", sa.Integer, nullable=False),
        *[
            sa.Column(name, sa.Integer, nullable=True)
            for name in (
                "inspection_30k", "inspection_60k", "inspection_90k", "inspection_120k",
                "oil_service", "brake_service_front", "brake_service_rear", "tuv",
                "climate_service",
            )
        ],
    )
    op.create_index("idx_price_matrix_brand_model", "price_matrix", ["brand", "model"])

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("booking_number", sa.String(16), unique=True, nullable=False),
        sa.Column("customer_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=True),
        sa.Column("vehicle_brand", sa.String(80), nullable=False),
        sa.Column("vehicle_model", sa.String(80), nullable=False),
        sa.Column("vehicle_year", sa.Integer, nullable=False),
        sa.Column("mileage_at_booking", sa.Integer, nullable=False),
        sa.Column("services", sa.JSON, nullable=False),
        sa.Column("total_price_cents", sa.Integer, nullable=False),
        sa.Column("status", _enum("bookingstatus"), nullable=False),
        _timestamp("pickup_window_start", nullable=False),
        _timestamp("pickup_window_end"),
        _timestamp("delivery_window_start"),
        _timestamp("delivery_window_end"),
        sa.Column("pickup_address", sa.String(255), nullable=False),
        sa.Column("pickup_city", sa.String(120), nullable=False),
        sa.Column("pickup_postal_code", sa.String(20), nullable=False),
        sa.Column("customer_notes", sa.Text, nullable=True),
        sa.Column("internal_notes", sa.Text, nullable=True),
        sa.Column("payment_reference", sa.String(128), nullable=True),
        _timestamp("paid_at"),
        _timestamp("cancelled_at"),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        _timestamp("completed_at"),
        sa.Column("retention_state", _enum("retentionstate"), nullable=False),
        _timestamp("anonymized_at"),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        _created_at(),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index("idx_bookings_customer", "bookings", ["customer_id"])
    op.create_index("idx_bookings_status", "bookings", ["status"])
    op.create_index("idx_bookings_created", "bookings", ["created_at"])

    op.create_table(
        "booking_status_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer, sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("from_status", _enum("bookingstatus"), nullable=False),
        sa.Column("to_status", _enum("bookingstatus"), nullable=False),
        sa.Column("action", _enum("bookingaction"), nullable=False),
        sa.Column("actor_role", _enum("actorrole"), nullable=False),
        sa.Column("actor_id", sa.Integer, nullable=False),
        _created_at(),
    )
    op.create_index("idx_status_events_booking", "booking_status_events", ["booking_id"])

    # ── extensions ────────────────────────────────────────────────────
    op.create_table(
        "extensions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer, sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("items", sa.JSON, nullable=False),
        sa.Column("total_cents", sa.Integer, nullable=False),
        sa.Column("evidence", sa.JSON, nullable=False),
        sa.Column("status", _enum("extensionstatus"), nullable=False),
        sa.Column("payment_status", _enum("extensionpaymentstatus"), nullable=False),
        sa.Column("authorization_id", sa.String(128), nullable=True),
        sa.Column("capture_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_payment_error", sa.String(255), nullable=True),
        sa.Column("decline_reason", sa.String(500), nullable=True),
        _timestamp("approved_at"),
        _timestamp("declined_at"),
        _timestamp("captured_at"),
        _created_at(),
    )
    op.create_index("idx_extensions_booking", "extensions", ["booking_id"])
    op.create_index("idx_extensions_payment_status", "extensions", ["payment_status"])

    # ── jockey_assignments ────────────────────────────────────────────
    op.create_table(
        "jockey_assignments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer, sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("kind", _enum("assignmentkind"), nullable=False),
        sa.Column("jockey_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        _timestamp("scheduled_at", nullable=False),
        sa.Column("status", _enum("assignmentstatus"), nullable=False),
        sa.Column("photos", sa.JSON, nullable=True),
        sa.Column("signature", sa.Text, nullable=True),
        sa.Column("odometer_km", sa.Integer, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        _timestamp("arrived_at"),
        _timestamp("completed_at"),
        _timestamp("cancelled_at"),
        _created_at(),
        sa.UniqueConstraint("booking_id", "kind", name="uq_assignment_booking_kind"),
    )
    op.create_index(
        "idx_assignments_jockey_status", "jockey_assignments", ["jockey_id", "status"]
    )

    # ── notification_logs ─────────────────────────────────────────────
    op.create_table(
        "notification_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("booking_id", sa.Integer, nullable=True),
        sa.Column("type", _enum("notificationtype"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        _created_at(),
    )
    op.create_index("idx_notifications_user", "notification_logs", ["user_id"])


def downgrade() -> None:
    op.drop_table("notification_logs")
    op.drop_table("jockey_assignments")
    op.drop_table("extensions")
    op.drop_table("booking_status_events")
    op.drop_table("bookings")
    op.drop_table("price_matrix")
    op.drop_table("vehicles")
    op.drop_table("user_sessions")
    op.drop_table("users")
    for name in reversed(list(_ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
