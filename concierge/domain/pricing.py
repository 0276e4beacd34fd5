"""
Service Pricing Engine  (Strategy Pattern)
==========================================

Price = round_half_up(Base_Price x Age_Multiplier)   to a whole currency unit

Base price comes from the first strategy in the cascade that yields one:

1. **Exact**          -- matrix entry for brand + model whose year range
                         contains the model year.
2. **Brand average**  -- mean of the same field over every entry of the
                         brand, rounded half-up to a whole unit.
3. **Global default** -- fixed price per service kind.

Inspection prices are tiered by mileage (lower bound inclusive):
``<40k -> 30k``, ``[40k, 70k) -> 60k``, ``[70k, 100k) -> 90k``, ``>=100k -> 120k+``.

Age multiplier (current_year - model_year): ``<=10 -> 1.0``,
``11-15 -> 1.1``, ``>15 -> 1.2``.

All amounts are integer cents.  The engine is a pure function of its
inputs; ``current_year`` is passed in, never read from the clock.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .enums import MileageTier, PriceSource, ServiceKind
from .errors import ValidationFailed

CENTS_PER_UNIT = 100

DEFAULT_PRICES_CENTS: dict[ServiceKind, int] = {
    ServiceKind.INSPECTION: 25_000,
    ServiceKind.OIL_SERVICE: 18_000,
    ServiceKind.BRAKE_SERVICE: 40_000,
    ServiceKind.BRAKE_SERVICE_REAR: 35_000,
    ServiceKind.TUV: 13_000,
    ServiceKind.CLIMATE_SERVICE: 16_000,
}

_TIER_FIELDS = {
    MileageTier.TIER_30K: "inspection_30k",
    MileageTier.TIER_60K: "inspection_60k",
    MileageTier.TIER_90K: "inspection_90k",
    MileageTier.TIER_120K: "inspection_120k",
}

_FLAT_FIELDS = {
    ServiceKind.OIL_SERVICE: "oil_service",
    ServiceKind.BRAKE_SERVICE: "brake_service_front",
    ServiceKind.BRAKE_SERVICE_REAR: "brake_service_rear",
    ServiceKind.TUV: "tuv",
    ServiceKind.CLIMATE_SERVICE: "climate_service",
}


# ── Value objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class VehicleDescriptor:
    brand: str
    model: str
    year: int
    mileage_km: int


@dataclass(frozen=True)
class PriceMatrixEntry:
    brand: str
    model: str
    year_from: int
    year_to: int
    inspection_30k: Optional[int] = None
    inspection_60k: Optional[int] = None
    inspection_90k: Optional[int] = None
    inspection_120k: Optional[int] = None
    oil_service: Optional[int] = None
    brake_service_front: Optional[int] = None
    brake_service_rear: Optional[int] = None
    tuv: Optional[int] = None
    climate_service: Optional[int] = None

    def is_brand(self, brand: str) -> bool:
        return _norm(self.brand) == _norm(brand)

    def covers(self, vehicle: VehicleDescriptor) -> bool:
        return (
            self.is_brand(vehicle.brand)
            and _norm(self.model) == _norm(vehicle.model)
            and self.year_from <= vehicle.year <= self.year_to
        )

    def price_for(self, service: ServiceKind, tier: MileageTier) -> Optional[int]:
        return getattr(self, price_field(service, tier))


@dataclass(frozen=True)
class PriceQuote:
    service: ServiceKind
    base_price_cents: int
    age_multiplier: Decimal
    final_price_cents: int
    price_source: PriceSource
    mileage_tier: MileageTier
    vehicle_age_years: int

    def as_dict(self) -> dict:
        return {
            "kind": self.service.value,
            "base_price_cents": self.base_price_cents,
            "age_multiplier": str(self.age_multiplier),
            "price_cents": self.final_price_cents,
            "price_source": self.price_source.value,
            "mileage_tier": self.mileage_tier.value,
            "vehicle_age_years": self.vehicle_age_years,
        }


# ── Pure helpers ──────────────────────────────────────────────────────


def _norm(value: str) -> str:
    return value.strip().casefold()


def mileage_tier(mileage_km: int) -> MileageTier:
    if mileage_km < 40_000:
        return MileageTier.TIER_30K
    if mileage_km < 70_000:
        return MileageTier.TIER_60K
    if mileage_km < 100_000:
        return MileageTier.TIER_90K
    return MileageTier.TIER_120K


def age_multiplier(model_year: int, current_year: int) -> Decimal:
    age = current_year - model_year
    if age <= 10:
        return Decimal("1.0")
    if age <= 15:
        return Decimal("1.1")
    return Decimal("1.2")


def price_field(service: ServiceKind, tier: MileageTier) -> str:
    if service == ServiceKind.INSPECTION:
        return _TIER_FIELDS[tier]
    return _FLAT_FIELDS[service]


def round_to_unit(amount_cents: Decimal) -> int:
    """Round half-up to a whole currency unit; result stays in cents."""
    units = (amount_cents / CENTS_PER_UNIT).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(units) * CENTS_PER_UNIT


# ── Strategy hierarchy ────────────────────────────────────────────────


class BasePriceStrategy(ABC):
    source: PriceSource

    @abstractmethod
    def base_price(
        self,
        entries: list[PriceMatrixEntry],
        vehicle: VehicleDescriptor,
        service: ServiceKind,
        tier: MileageTier,
    ) -> Optional[int]: ...


class ExactMatchPricing(BasePriceStrategy):
    source = PriceSource.EXACT

    def base_price(self, entries, vehicle, service, tier):
        for entry in entries:
            if entry.covers(vehicle):
                return entry.price_for(service, tier)
        return None


class BrandAveragePricing(BasePriceStrategy):
    source = PriceSource.FALLBACK_BRAND

    def base_price(self, entries, vehicle, service, tier):
        prices = [
            p
            for p in (e.price_for(service, tier) for e in entries if e.is_brand(vehicle.brand))
            if p is not None
        ]
        if not prices:
            return None
        return round_to_unit(Decimal(sum(prices)) / len(prices))


class GlobalDefaultPricing(BasePriceStrategy):
    source = PriceSource.FALLBACK_DEFAULT

    def base_price(self, entries, vehicle, service, tier):
        return DEFAULT_PRICES_CENTS[service]


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """High-level API used by booking intake and the quote endpoint."""

    def __init__(self, strategies: Optional[list[BasePriceStrategy]] = None):
        self.strategies = strategies or [
            ExactMatchPricing(),
            BrandAveragePricing(),
            GlobalDefaultPricing(),
        ]

    @staticmethod
    def validate(vehicle: VehicleDescriptor, current_year: int) -> None:
        if not vehicle.brand or not vehicle.brand.strip():
            raise ValidationFailed("brand must not be empty")
        if not vehicle.model or not vehicle.model.strip():
            raise ValidationFailed("model must not be empty")
        if vehicle.mileage_km < 0:
            raise ValidationFailed("mileage must be non-negative")
        if not 1900 <= vehicle.year <= current_year + 1:
            raise ValidationFailed(f"model year must be between 1900 and {current_year + 1}")

    def quote(
        self,
        entries: Iterable[PriceMatrixEntry],
        vehicle: VehicleDescriptor,
        service: ServiceKind,
        current_year: int,
    ) -> PriceQuote:
        self.validate(vehicle, current_year)
        entries = list(entries)
        tier = mileage_tier(vehicle.mileage_km)

        for strategy in self.strategies:
            base = strategy.base_price(entries, vehicle, service, tier)
            if base is not None:
                source = strategy.source
                break
        else:
            raise ValidationFailed(f"no price available for {service.value}")

        multiplier = age_multiplier(vehicle.year, current_year)
        return PriceQuote(
            service=service,
            base_price_cents=base,
            age_multiplier=multiplier,
            final_price_cents=round_to_unit(Decimal(base) * multiplier),
            price_source=source,
            mileage_tier=tier,
            vehicle_age_years=max(0, current_year - vehicle.year),
        )
