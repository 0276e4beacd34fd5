"""
Domain value objects.

These carry the validation rules that must hold no matter which surface
(HTTP, worker, script) submits the data.  They never touch storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .enums import ActorRole
from .errors import PreconditionFailed, ValidationFailed


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as asserted by the upstream identity layer."""

    id: int
    role: ActorRole

    @classmethod
    def system(cls) -> "Actor":
        return cls(id=0, role=ActorRole.SYSTEM)


@dataclass(frozen=True)
class HandoverEvidence:
    photos: tuple[str, ...] = ()
    signature: Optional[str] = None
    odometer_km: Optional[int] = None
    notes: Optional[str] = None

    def validate(self) -> None:
        """All-or-nothing: partial evidence is rejected, never applied."""
        missing = []
        if not self.photos or any(not p or not p.strip() for p in self.photos):
            missing.append("at least one photo reference")
        if not self.signature or not self.signature.strip():
            missing.append("a signature")
        if self.odometer_km is None:
            missing.append("an odometer reading")
        if missing:
            raise PreconditionFailed(
                "handover evidence is incomplete: missing " + ", ".join(missing)
            )
        if isinstance(self.odometer_km, bool) or not isinstance(self.odometer_km, int):
            raise ValidationFailed("odometer reading must be an integer")
        if self.odometer_km < 0:
            raise PreconditionFailed("odometer reading must be non-negative")


@dataclass(frozen=True)
class ExtensionItem:
    name: str
    price_cents: int
    quantity: int

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise PreconditionFailed("extension item name must not be empty")
        if isinstance(self.price_cents, bool) or not isinstance(self.price_cents, int):
            raise ValidationFailed(f"price of '{self.name}' must be an integer amount of cents")
        if self.price_cents <= 0:
            raise PreconditionFailed(f"price of '{self.name}' must be positive")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValidationFailed(f"quantity of '{self.name}' must be an integer")
        if self.quantity <= 0:
            raise PreconditionFailed(f"quantity of '{self.name}' must be positive")

    @property
    def line_total_cents(self) -> int:
        return self.price_cents * self.quantity

    def as_dict(self) -> dict:
        return {"name": self.name, "price_cents": self.price_cents, "quantity": self.quantity}


def extension_total(items: list[ExtensionItem]) -> int:
    """Validate *items* and return the sum of price x quantity, in cents."""
    if not items:
        raise PreconditionFailed("an extension needs at least one line item")
    for item in items:
        item.validate()
    return sum(item.line_total_cents for item in items)


@dataclass(frozen=True)
class PaymentConfirmation:
    """Payment processor callback for the booking's up-front charge."""

    reference: str
    amount_cents: int
    succeeded: bool = True
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    authorization_id: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class ErasureSummary:
    deleted_at: datetime
    anonymized_bookings: int = 0
    deleted_bookings: int = 0
    deleted_extensions: int = 0
    deleted_assignments: int = 0
    vehicles: int = 0
    sessions: int = 0
    notifications: int = 0
    retention_reason: str = ""

    def as_dict(self) -> dict:
        return {
            "deleted_at": self.deleted_at.isoformat(),
            "anonymized_bookings": self.anonymized_bookings,
            "deleted_bookings": self.deleted_bookings,
            "deleted_extensions": self.deleted_extensions,
            "deleted_assignments": self.deleted_assignments,
            "vehicles": self.vehicles,
            "sessions": self.sessions,
            "notifications": self.notifications,
            "retention_reason": self.retention_reason,
        }
