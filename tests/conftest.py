"""
Shared test fixtures.

* ``db_session`` -- in-memory SQLite database (via aiosqlite) so tests run
  without Docker / PostgreSQL / Redis.  PostGIS Geometry columns are
  replaced by plain String columns in the test models.
* ``FakeDriverRepository`` / ``FakeJobRepository`` -- in-memory stand-ins
  with the same query surface as the real repositories, for service and
  worker tests.
* ``FakeLockFactory`` -- hands out locks that always succeed except for
  driver ids listed in ``busy``.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import AsyncGenerator, Iterable, Optional

import pytest
import pytest_asyncio
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.config import Settings
from src.domain.cells import point_h3_cell
from src.domain.enums import DispatchPriority, DispatchStatus, ServiceType
from src.infrastructure.events import InMemoryPublisher


# ── Test DB (SQLite in-memory) ────────────────────────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DB_URL, echo=False)
TestSessionFactory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


class TestBase(DeclarativeBase):
    pass


# Mirror the production models but without PostGIS Geometry columns
# (SQLite doesn't support them).

class TestDriverModel(TestBase):
    __tablename__ = "drivers"
    id = Column(String(64), primary_key=True)
    display_name = Column(String(120), nullable=False)
    current_location = Column(String, nullable=True)  # stub for Geometry
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    h3_cell = Column(String(20), nullable=True)
    rating = Column(Float, nullable=True)
    completed_jobs = Column(Integer, default=0, nullable=False)
    service_types = Column(String(64), default="taxi", nullable=False)
    is_online = Column(Boolean, default=False)
    is_available = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())


class TestDispatchJobModel(TestBase):
    __tablename__ = "dispatch_jobs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    service_type = Column(String(20), default="taxi", nullable=False)
    order_ref = Column(String(64), nullable=True)
    pickup_point = Column(String, nullable=True)  # stub for Geometry
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    priority = Column(String(20), default="normal", nullable=False)
    search_radius_km = Column(Float, default=10.0, nullable=False)
    status = Column(String(20), default="PENDING", nullable=False)
    driver_id = Column(String(64), ForeignKey("drivers.id"), nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    rejected_drivers = Column(Text, default="", nullable=False)
    idempotency_key = Column(String(64), unique=True, nullable=True)
    offered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield a session, then drop everything."""
    async with test_engine.begin() as conn:
        await conn.run_sync(TestBase.metadata.create_all)

    async with TestSessionFactory() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(TestBase.metadata.drop_all)


# ── In-memory fakes ───────────────────────────────────────────────────

KINSHASA = (-4.3217, 15.3069)


def make_driver(
    driver_id: str,
    lat: float,
    lng: float,
    *,
    rating: Optional[float] = 4.5,
    completed_jobs: int = 10,
    services: str = "taxi,delivery,marketplace",
    online: bool = True,
    available: bool = True,
    resolution: int = 7,
) -> SimpleNamespace:
    return SimpleNamespace(
        id=driver_id,
        current_lat=lat,
        current_lng=lng,
        h3_cell=point_h3_cell(lat, lng, resolution),
        rating=rating,
        completed_jobs=completed_jobs,
        service_types=services,
        is_online=online,
        is_available=available,
    )


def make_job(
    job_id: int = 1,
    *,
    pickup: tuple[float, float] = KINSHASA,
    service_type: ServiceType = ServiceType.TAXI,
    priority: DispatchPriority = DispatchPriority.NORMAL,
    radius: float = 10.0,
    status: DispatchStatus = DispatchStatus.PENDING,
) -> SimpleNamespace:
    return SimpleNamespace(
        id=job_id,
        service_type=service_type,
        order_ref=f"order-{job_id}",
        pickup_lat=pickup[0],
        pickup_lng=pickup[1],
        priority=priority,
        search_radius_km=radius,
        status=status,
        driver_id=None,
        attempts=0,
        rejected_drivers="",
        offered_at=None,
    )


class FakeDriverRepository:
    def __init__(self, drivers: Iterable[SimpleNamespace] = ()):
        self.drivers = {d.id: d for d in drivers}
        self.queries = 0

    async def get_by_id(self, driver_id: str):
        return self.drivers.get(driver_id)

    async def get_available_candidates(self, service_type, cells, exclude=()):
        self.queries += 1
        cells, exclude = set(cells), set(exclude)
        return sorted(
            (
                d for d in self.drivers.values()
                if d.is_online
                and d.is_available
                and d.h3_cell in cells
                and ServiceType(service_type).value in d.service_types.split(",")
                and d.id not in exclude
            ),
            key=lambda d: d.id,
        )


class FakeJobRepository:
    def __init__(self, jobs: Iterable[SimpleNamespace] = ()):
        self.jobs = {j.id: j for j in jobs}
        self.flushes = 0
        self.locked_reads: list[int] = []

    async def get_by_id(self, job_id: int):
        return self.jobs.get(job_id)

    async def get_by_id_for_update(self, job_id: int):
        self.locked_reads.append(job_id)
        return self.jobs.get(job_id)

    async def get_active_for_driver(self, driver_id: str):
        return next(
            (
                j for j in self.jobs.values()
                if j.driver_id == driver_id
                and DispatchStatus(j.status)
                in (DispatchStatus.OFFERED, DispatchStatus.ACCEPTED)
            ),
            None,
        )

    async def get_pending_jobs(self):
        return [
            j for j in self.jobs.values()
            if DispatchStatus(j.status) == DispatchStatus.PENDING
        ]

    async def get_expired_offers(self, offered_before):
        return [
            j for j in self.jobs.values()
            if DispatchStatus(j.status) == DispatchStatus.OFFERED
            and j.offered_at is not None
            and j.offered_at < offered_before
        ]

    async def flush(self):
        self.flushes += 1


class _FakeLock:
    def __init__(self, factory: "FakeLockFactory", key: str):
        self.factory = factory
        self.key = key

    async def acquire(self) -> bool:
        if self.key in self.factory.busy:
            return False
        self.factory.acquired.append(self.key)
        return True

    async def release(self) -> None:
        self.factory.released.append(self.key)


class FakeLockFactory:
    def __init__(self, busy: Iterable[str] = ()):
        self.busy = {f"driver:{d}" for d in busy}
        self.acquired: list[str] = []
        self.released: list[str] = []

    def __call__(self, key: str, ttl_seconds=None) -> _FakeLock:
        return _FakeLock(self, key)

    def driver(self, driver_id: str) -> _FakeLock:
        return self(f"driver:{driver_id}")


@pytest.fixture
def dispatch_settings() -> Settings:
    return Settings(
        default_max_distance_km=10.0,
        radius_step_km=5.0,
        max_search_radius_km=20.0,
        retry_attempts=3,
        retry_backoff_seconds=0.0,
    )


@pytest.fixture
def publisher() -> InMemoryPublisher:
    return InMemoryPublisher()
