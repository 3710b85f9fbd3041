"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 10 sample drivers spread around central Kinshasa (Gombe / Lingwala /
    Kintambo), a mix of taxi, delivery and marketplace couriers
  - 3 sample dispatch jobs (one PENDING per service type)
"""

import asyncio

from sqlalchemy import text
from geoalchemy2.functions import ST_MakePoint

from src.config import settings
from src.domain.cells import point_h3_cell
from src.domain.enums import DispatchPriority, ServiceType
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import DispatchJobModel, DriverModel

# Kinshasa reference point (Gombe)
CITY_LAT, CITY_LNG = -4.3217, 15.3069


DRIVERS = [
    {"id": "drv-001", "name": "Jean-Paul K.", "lat": -4.3250, "lng": 15.3100, "rating": 4.8, "jobs": 152, "services": "taxi"},
    {"id": "drv-002", "name": "Marie T.", "lat": -4.3300, "lng": 15.3000, "rating": 4.6, "jobs": 89, "services": "taxi,delivery"},
    {"id": "drv-003", "name": "Patrick M.", "lat": -4.3150, "lng": 15.2950, "rating": 4.9, "jobs": 310, "services": "taxi"},
    {"id": "drv-004", "name": "Grace L.", "lat": -4.3400, "lng": 15.3200, "rating": None, "jobs": 0, "services": "delivery"},
    {"id": "drv-005", "name": "Christian B.", "lat": -4.3100, "lng": 15.3150, "rating": 4.2, "jobs": 45, "services": "delivery,marketplace"},
    {"id": "drv-006", "name": "Esther N.", "lat": -4.3500, "lng": 15.2800, "rating": 4.7, "jobs": 200, "services": "marketplace"},
    {"id": "drv-007", "name": "Dieudonne S.", "lat": -4.3600, "lng": 15.3300, "rating": 3.9, "jobs": 12, "services": "taxi"},
    {"id": "drv-008", "name": "Ruth A.", "lat": -4.3220, "lng": 15.3070, "rating": 5.0, "jobs": 75, "services": "taxi,delivery,marketplace"},
    {"id": "drv-009", "name": "Fiston O.", "lat": -4.4419, "lng": 15.2663, "rating": 4.5, "jobs": 60, "services": "taxi"},
    {"id": "drv-010", "name": "Nadine Z.", "lat": -4.3800, "lng": 15.3500, "rating": 4.4, "jobs": 33, "services": "delivery"},
]

JOBS = [
    {"service": ServiceType.TAXI, "pickup": (-4.3217, 15.3069), "priority": DispatchPriority.NORMAL, "ref": "ride-1001"},
    {"service": ServiceType.DELIVERY, "pickup": (-4.3300, 15.3120), "priority": DispatchPriority.HIGH, "ref": "delivery-2001"},
    {"service": ServiceType.MARKETPLACE, "pickup": (-4.3450, 15.2900), "priority": DispatchPriority.URGENT, "ref": "order-3001"},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM drivers"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Drivers ───────────────────────────────────────────────────
        for d in DRIVERS:
            session.add(
                DriverModel(
                    id=d["id"],
                    display_name=d["name"],
                    current_lat=d["lat"],
                    current_lng=d["lng"],
                    current_location=ST_MakePoint(d["lng"], d["lat"]),
                    h3_cell=point_h3_cell(d["lat"], d["lng"], settings.h3_resolution),
                    rating=d["rating"],
                    completed_jobs=d["jobs"],
                    service_types=d["services"],
                    is_online=True,
                    is_available=True,
                )
            )
        await session.flush()
        print(f"  Created {len(DRIVERS)} drivers")

        # ── Dispatch jobs (picked up by the re-dispatch worker) ───────
        for j in JOBS:
            lat, lng = j["pickup"]
            session.add(
                DispatchJobModel(
                    service_type=j["service"],
                    order_ref=j["ref"],
                    pickup_lat=lat,
                    pickup_lng=lng,
                    pickup_point=ST_MakePoint(lng, lat),
                    priority=j["priority"],
                    search_radius_km=settings.default_max_distance_km,
                )
            )
        await session.flush()
        print(f"  Created {len(JOBS)} dispatch jobs")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
