"""
Seed script -- populates the database with sample data for local development.

Run after migrations:
    python seed.py

Creates:
  - 4 customers, 3 jockeys, 1 workshop account, 1 admin
  - 1-2 vehicles per customer
  - price matrix entries for VW, BMW and Mercedes-Benz (integer cents)
"""

import asyncio

from sqlalchemy import func, select

from concierge.infrastructure.database import async_session_factory, engine
from concierge.infrastructure.models import PriceMatrixModel, UserModel, VehicleModel
from concierge.domain.enums import UserRole


USERS = [
    {"role": UserRole.CUSTOMER, "email": "lena.schmidt@example.com", "first_name": "Lena", "last_name": "Schmidt", "city": "Bielefeld", "postal_code": "33602"},
    {"role": UserRole.CUSTOMER, "email": "jonas.weber@example.com", "first_name": "Jonas", "last_name": "Weber", "city": "Bielefeld", "postal_code": "33604"},
    {"role": UserRole.CUSTOMER, "email": "mia.fischer@example.com", "first_name": "Mia", "last_name": "Fischer", "city": "Gütersloh", "postal_code": "33330"},
    {"role": UserRole.CUSTOMER, "email": "paul.wagner@example.com", "first_name": "Paul", "last_name": "Wagner", "city": "Herford", "postal_code": "32052"},
    {"role": UserRole.JOCKEY, "email": "jockey1@concierge.example.com", "first_name": "Tim", "last_name": "Becker"},
    {"role": UserRole.JOCKEY, "email": "jockey2@concierge.example.com", "first_name": "Sara", "last_name": "Hoffmann"},
    {"role": UserRole.JOCKEY, "email": "jockey3@concierge.example.com", "first_name": "Ali", "last_name": "Yilmaz"},
    {"role": UserRole.WORKSHOP, "email": "werkstatt@concierge.example.com", "first_name": "Werkstatt", "last_name": "Witten"},
    {"role": UserRole.ADMIN, "email": "admin@concierge.example.com", "first_name": "Admin", "last_name": "User"},
]

# customer index -> vehicles
VEHICLES = [
    (0, {"brand": "VW", "model": "Golf", "year": 2015, "mileage": 60_000, "license_plate": "BI-LS 215"}),
    (0, {"brand": "BMW", "model": "3er", "year": 2020, "mileage": 50_000, "license_plate": "BI-LS 320"}),
    (1, {"brand": "Mercedes-Benz", "model": "C-Klasse", "year": 2009, "mileage": 142_000, "license_plate": "BI-JW 90"}),
    (2, {"brand": "VW", "model": "Passat", "year": 2018, "mileage": 88_000, "license_plate": "GT-MF 18"}),
    (3, {"brand": "Skoda", "model": "Octavia", "year": 2021, "mileage": 31_000, "license_plate": "HF-PW 21"}),
]

# All prices in cents.
PRICE_MATRIX = [
    {"brand": "VW", "model": "Golf", "year_from": 2012, "year_to": 2019,
     "inspection_30k": 18_900, "inspection_60k": 21_900, "inspection_90k": 28_900, "inspection_120k": 34_900,
     "oil_service": 15_900, "brake_service_front": 34_900, "brake_service_rear": 29_900,
     "tuv": 12_000, "climate_service": 14_000},
    {"brand": "VW", "model": "Golf", "year_from": 2020, "year_to": 2026,
     "inspection_30k": 19_900, "inspection_60k": 23_900, "inspection_90k": 30_900, "inspection_120k": 36_900,
     "oil_service": 16_900, "brake_service_front": 36_900, "brake_service_rear": 31_900,
     "tuv": 12_000, "climate_service": 14_500},
    {"brand": "VW", "model": "Passat", "year_from": 2015, "year_to": 2023,
     "inspection_30k": 21_900, "inspection_60k": 25_900, "inspection_90k": 32_900, "inspection_120k": 39_900,
     "oil_service": 17_900, "brake_service_front": 38_900, "brake_service_rear": 32_900,
     "tuv": 12_000, "climate_service": 15_000},
    {"brand": "BMW", "model": "3er", "year_from": 2012, "year_to": 2026,
     "inspection_30k": 24_900, "inspection_60k": 29_900, "inspection_90k": 36_900, "inspection_120k": 44_900,
     "oil_service": 19_900, "brake_service_front": 42_900, "brake_service_rear": 37_900,
     "tuv": 12_500, "climate_service": 16_000},
    {"brand": "Mercedes-Benz", "model": "C-Klasse", "year_from": 2007, "year_to": 2021,
     "inspection_30k": 26_900, "inspection_60k": 31_900, "inspection_90k": 38_900, "inspection_120k": 46_900,
     "oil_service": 21_900, "brake_service_front": 44_900, "brake_service_rear": 39_900,
     "tuv": 12_500, "climate_service": 16_500},
    {"brand": "Mercedes-Benz", "model": "S-Klasse", "year_from": 2013, "year_to": 2026,
     "inspection_30k": 39_900, "inspection_60k": 46_900, "inspection_90k": 55_900, "inspection_120k": 64_900,
     "oil_service": 29_900, "brake_service_front": 64_900, "brake_service_rear": 54_900,
     "tuv": 13_500, "climate_service": 19_900},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(UserModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        user_models = []
        for u in USERS:
            m = UserModel(**u)
            session.add(m)
            user_models.append(m)
        await session.flush()
        print(f"  Created {len(user_models)} users")

        # ── Vehicles ──────────────────────────────────────────────────
        for customer_index, v in VEHICLES:
            session.add(VehicleModel(customer_id=user_models[customer_index].id, **v))
        await session.flush()
        print(f"  Created {len(VEHICLES)} vehicles")

        # ── Price matrix ──────────────────────────────────────────────
        session.add_all(PriceMatrixModel(**p) for p in PRICE_MATRIX)
        await session.flush()
        print(f"  Created {len(PRICE_MATRIX)} price matrix entries")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
