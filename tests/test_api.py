"""
Integration tests for the REST API endpoints.

Uses an in-memory SQLite database with test models that replace PostGIS
Geometry columns with plain String columns.  Repositories are overridden
so the routes use test-friendly models; Redis is replaced by an in-memory
publisher and fake locks through dependency overrides.
"""

from __future__ import annotations

from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.cells import point_h3_cell
from src.domain.enums import DispatchPriority, DispatchStatus, ServiceType
from src.infrastructure.events import InMemoryPublisher
from tests.conftest import (
    FakeLockFactory,
    TestBase,
    TestDispatchJobModel,
    TestDriverModel,
    TestSessionFactory,
    test_engine,
)


class _TestDriverRepository:
    """Mirrors ``DriverRepository`` but uses SQLite-friendly test models."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, driver_id: str) -> Optional[TestDriverModel]:
        return await self.session.get(TestDriverModel, driver_id)

    async def get_available_candidates(self, service_type, cells, exclude=()):
        query = select(TestDriverModel).where(
            TestDriverModel.is_online.is_(True),
            TestDriverModel.is_available.is_(True),
            TestDriverModel.h3_cell.in_(list(cells)),
            TestDriverModel.service_types.contains(ServiceType(service_type).value),
        )
        excluded = list(exclude)
        if excluded:
            query = query.where(TestDriverModel.id.notin_(excluded))
        result = await self.session.execute(query.order_by(TestDriverModel.id))
        return list(result.scalars().all())

    async def get_online(self):
        result = await self.session.execute(
            select(TestDriverModel)
            .where(TestDriverModel.is_online.is_(True))
            .order_by(TestDriverModel.id)
        )
        return list(result.scalars().all())

    async def update_location(self, driver, lat, lng, h3_cell):
        driver.current_lat = lat
        driver.current_lng = lng
        driver.current_location = f"POINT({lng} {lat})"
        driver.h3_cell = h3_cell
        await self.session.flush()
        return driver


class _TestDispatchJobRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_job(self, *, service_type, pickup_lat, pickup_lng,
                         priority=DispatchPriority.NORMAL, search_radius_km=10.0,
                         order_ref=None, idempotency_key=None):
        job = TestDispatchJobModel(
            service_type=ServiceType(service_type).value,
            order_ref=order_ref,
            pickup_lat=pickup_lat,
            pickup_lng=pickup_lng,
            pickup_point=f"POINT({pickup_lng} {pickup_lat})",
            priority=DispatchPriority(priority).value,
            search_radius_km=search_radius_km,
            status=DispatchStatus.PENDING.value,
            attempts=0,
            rejected_drivers="",
            idempotency_key=idempotency_key,
        )
        self.session.add(job)
        await self.session.flush()
        await self.session.refresh(job)  # load server-side defaults (created_at)
        return job

    async def get_by_id(self, job_id: int):
        return await self.session.get(TestDispatchJobModel, job_id)

    async def get_by_id_for_update(self, job_id: int):
        # SQLite has no row locks; refresh like the real query does
        return await self.session.get(
            TestDispatchJobModel, job_id, populate_existing=True
        )

    async def get_active_for_driver(self, driver_id: str):
        result = await self.session.execute(
            select(TestDispatchJobModel)
            .where(
                TestDispatchJobModel.driver_id == driver_id,
                TestDispatchJobModel.status.in_(
                    [DispatchStatus.OFFERED.value, DispatchStatus.ACCEPTED.value]
                ),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, key: str):
        result = await self.session.execute(
            select(TestDispatchJobModel).where(TestDispatchJobModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def flush(self):
        await self.session.flush()


DRIVERS = [
    # id, lat, lng, rating, jobs, services, online
    ("drv-near", -4.33, 15.31, 4.8, 120, "taxi", True),
    ("drv-second", -4.34, 15.30, 4.5, 40, "taxi,delivery", True),
    ("drv-offline", -4.3220, 15.3070, 5.0, 300, "taxi", False),
]

PICKUP = {"pickup_lat": -4.3217, "pickup_lng": 15.3069}


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def events() -> InMemoryPublisher:
    return InMemoryPublisher()


@pytest_asyncio.fixture
async def client(events: InMemoryPublisher):
    """AsyncClient backed by SQLite + test models."""
    async with test_engine.begin() as conn:
        await conn.run_sync(TestBase.metadata.create_all)

    # Seed
    async with TestSessionFactory() as session:
        for did, lat, lng, rating, jobs, services, online in DRIVERS:
            session.add(
                TestDriverModel(
                    id=did,
                    display_name=did,
                    current_lat=lat,
                    current_lng=lng,
                    h3_cell=point_h3_cell(lat, lng, 7),
                    rating=rating,
                    completed_jobs=jobs,
                    service_types=services,
                    is_online=online,
                    is_available=True,
                )
            )
        await session.commit()

    # Override repos at the module level where routes import them
    with (
        patch("src.workers.dispatcher.start_redispatch_loop", new_callable=AsyncMock),
        patch("src.workers.dispatcher.stop_redispatch_loop", new_callable=AsyncMock),
        patch("src.infrastructure.redis_client.close_redis", new_callable=AsyncMock),
        patch("src.api.routes.dispatch.DriverRepository", _TestDriverRepository),
        patch("src.api.routes.dispatch.DispatchJobRepository", _TestDispatchJobRepository),
        patch("src.api.routes.drivers.DriverRepository", _TestDriverRepository),
        patch("src.api.routes.drivers.DispatchJobRepository", _TestDispatchJobRepository),
        patch("src.api.routes.admin.DriverRepository", _TestDriverRepository),
    ):
        # DB session dependency
        async def _test_db():
            async with TestSessionFactory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        async def _test_publisher():
            return events

        async def _test_locks():
            return FakeLockFactory()

        from src.api.app import create_app
        from src.api.dependencies import get_db, get_event_publisher, get_locks

        app = create_app()
        app.dependency_overrides[get_db] = _test_db
        app.dependency_overrides[get_event_publisher] = _test_publisher
        app.dependency_overrides[get_locks] = _test_locks

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

    async with test_engine.begin() as conn:
        await conn.run_sync(TestBase.metadata.drop_all)


async def _create_job(client: AsyncClient, **overrides) -> dict:
    resp = await client.post("/api/v1/dispatch/jobs", json={**PICKUP, **overrides})
    assert resp.status_code == 202
    return resp.json()


# ── Health / admin ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_online_drivers(client: AsyncClient):
    resp = await client.get("/api/v1/admin/online-drivers")
    assert resp.status_code == 200
    assert [d["id"] for d in resp.json()] == ["drv-near", "drv-second"]


# ── Scoring ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_score_filters_far_driver(client: AsyncClient):
    resp = await client.post(
        "/api/v1/dispatch/score",
        json={
            "pickup": {"lat": -4.3217, "lng": 15.3069},
            "max_distance_km": 10,
            "candidates": [
                {"id": "d1", "location": {"lat": -4.33, "lng": 15.31}, "rating": 4.8, "completed_jobs": 120},
                {"id": "d2", "location": {"lat": -4.50, "lng": 15.50}, "rating": 5.0, "completed_jobs": 500},
            ],
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert [c["driver_id"] for c in data["ranked"]] == ["d1"]
    assert data["best"]["driver_id"] == "d1"
    assert data["best"]["eta_minutes"] == 2


@pytest.mark.asyncio
async def test_score_without_candidates(client: AsyncClient):
    resp = await client.post(
        "/api/v1/dispatch/score",
        json={"pickup": {"lat": -4.3217, "lng": 15.3069}, "priority": "urgent"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"ranked": [], "best": None}


@pytest.mark.asyncio
async def test_score_rejects_invalid_coordinates(client: AsyncClient):
    resp = await client.post(
        "/api/v1/dispatch/score",
        json={
            "pickup": {"lat": -4.3217, "lng": 15.3069},
            "candidates": [{"id": "bad", "location": {"lat": 95.0, "lng": 15.3}}],
        },
    )
    assert resp.status_code == 422


# ── Jobs ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_job_offers_best_driver(client: AsyncClient, events: InMemoryPublisher):
    job = await _create_job(client, order_ref="ride-1001")

    assert job["status"] == "OFFERED"
    assert job["driver_id"] == "drv-near"
    assert job["attempts"] == 1
    assert events.names("dispatch:taxi") == ["dispatch.offered"]
    assert events.names("driver:drv-near") == ["dispatch.offered"]


@pytest.mark.asyncio
async def test_create_delivery_job_uses_courier(client: AsyncClient):
    job = await _create_job(client, service_type="delivery", priority="high")
    assert job["driver_id"] == "drv-second"
    assert job["service_type"] == "delivery"


@pytest.mark.asyncio
async def test_create_job_without_drivers_is_unassigned(client: AsyncClient):
    job = await _create_job(client, pickup_lat=-11.66, pickup_lng=27.48)
    assert job["status"] == "UNASSIGNED"
    assert job["driver_id"] is None


@pytest.mark.asyncio
async def test_create_job_invalid_pickup(client: AsyncClient):
    resp = await client.post(
        "/api/v1/dispatch/jobs", json={"pickup_lat": -91, "pickup_lng": 15.3}
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_idempotency_key(client: AsyncClient):
    body = {**PICKUP, "idempotency_key": "unique-key-123"}
    resp1 = await client.post("/api/v1/dispatch/jobs", json=body)
    resp2 = await client.post("/api/v1/dispatch/jobs", json=body)
    assert resp1.status_code == 202
    assert resp2.status_code == 202
    assert resp1.json()["id"] == resp2.json()["id"]


@pytest.mark.asyncio
async def test_get_job(client: AsyncClient):
    job = await _create_job(client)
    resp = await client.get(f"/api/v1/dispatch/jobs/{job['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == job["id"]


@pytest.mark.asyncio
async def test_get_job_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/dispatch/jobs/9999")
    assert resp.status_code == 404


# ── Driver actions ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_accept_and_complete(client: AsyncClient):
    job = await _create_job(client)
    url = f"/api/v1/dispatch/jobs/{job['id']}"

    resp = await client.post(f"{url}/accept", json={"driver_id": "drv-near"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACCEPTED"

    resp = await client.post(f"{url}/complete", json={"driver_id": "drv-near"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "COMPLETED"

    drivers = (await client.get("/api/v1/admin/online-drivers")).json()
    near = next(d for d in drivers if d["id"] == "drv-near")
    assert near["completed_jobs"] == 121
    assert near["is_available"] is True


@pytest.mark.asyncio
async def test_accept_by_other_driver_forbidden(client: AsyncClient):
    job = await _create_job(client)
    resp = await client.post(
        f"/api/v1/dispatch/jobs/{job['id']}/accept", json={"driver_id": "drv-second"}
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_accept_twice_conflicts(client: AsyncClient):
    job = await _create_job(client)
    url = f"/api/v1/dispatch/jobs/{job['id']}/accept"
    await client.post(url, json={"driver_id": "drv-near"})
    resp = await client.post(url, json={"driver_id": "drv-near"})
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_accept_unknown_job(client: AsyncClient):
    resp = await client.post(
        "/api/v1/dispatch/jobs/9999/accept", json={"driver_id": "drv-near"}
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_reject_reoffers_to_next_driver(client: AsyncClient):
    job = await _create_job(client)
    resp = await client.post(
        f"/api/v1/dispatch/jobs/{job['id']}/reject", json={"driver_id": "drv-near"}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "OFFERED"
    assert data["driver_id"] == "drv-second"
    assert data["attempts"] == 2


@pytest.mark.asyncio
async def test_cancel_job(client: AsyncClient, events: InMemoryPublisher):
    job = await _create_job(client)
    url = f"/api/v1/dispatch/jobs/{job['id']}/cancel"

    resp = await client.post(url)
    assert resp.status_code == 200
    assert resp.json()["status"] == "CANCELLED"
    assert events.names("driver:drv-near")[-1] == "dispatch.cancelled"

    resp = await client.post(url)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_requeue_only_unassigned(client: AsyncClient):
    job = await _create_job(client)
    resp = await client.post(f"/api/v1/dispatch/jobs/{job['id']}/requeue")
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_requeue_after_driver_moves_closer(client: AsyncClient):
    far_pickup = {"pickup_lat": -4.60, "pickup_lng": 15.30}  # ~31 km south
    job = await _create_job(client, **far_pickup)
    assert job["status"] == "UNASSIGNED"

    await client.patch(
        "/api/v1/drivers/drv-second/location", json={"lat": -4.59, "lng": 15.30}
    )
    resp = await client.post(f"/api/v1/dispatch/jobs/{job['id']}/requeue")
    assert resp.status_code == 200
    assert resp.json()["status"] == "OFFERED"
    assert resp.json()["driver_id"] == "drv-second"


# ── Drivers ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_update_location_rebins_driver(client: AsyncClient):
    resp = await client.patch(
        "/api/v1/drivers/drv-near/location", json={"lat": -4.40, "lng": 15.25}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert (data["current_lat"], data["current_lng"]) == (-4.40, 15.25)
    assert data["h3_cell"] == point_h3_cell(-4.40, 15.25, 7)


@pytest.mark.asyncio
async def test_update_location_unknown_driver(client: AsyncClient):
    resp = await client.patch(
        "/api/v1/drivers/ghost/location", json={"lat": -4.40, "lng": 15.25}
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_update_location_out_of_range(client: AsyncClient):
    resp = await client.patch(
        "/api/v1/drivers/drv-near/location", json={"lat": -4.40, "lng": 195.0}
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_driver_goes_offline(client: AsyncClient):
    resp = await client.patch(
        "/api/v1/drivers/drv-near/status", json={"is_online": False}
    )
    assert resp.status_code == 200
    assert resp.json()["is_online"] is False

    job = await _create_job(client)
    assert job["driver_id"] == "drv-second"


@pytest.mark.asyncio
async def test_driver_with_offer_cannot_mark_available(client: AsyncClient):
    job = await _create_job(client)
    assert job["driver_id"] == "drv-near"

    resp = await client.patch(
        "/api/v1/drivers/drv-near/status", json={"is_available": True}
    )
    assert resp.status_code == 409

    # Still out of the pool: the next job goes elsewhere
    second = await _create_job(client)
    assert second["driver_id"] == "drv-second"


@pytest.mark.asyncio
async def test_driver_free_again_after_completion(client: AsyncClient):
    job = await _create_job(client)
    url = f"/api/v1/dispatch/jobs/{job['id']}"
    await client.post(f"{url}/accept", json={"driver_id": "drv-near"})
    await client.post(f"{url}/complete", json={"driver_id": "drv-near"})

    resp = await client.patch(
        "/api/v1/drivers/drv-near/status", json={"is_available": True}
    )
    assert resp.status_code == 200
    assert resp.json()["is_available"] is True


@pytest.mark.asyncio
async def test_offer_event_follows_commit(client: AsyncClient, events: InMemoryPublisher):
    order: list[str] = []
    original_commit = AsyncSession.commit

    async def _recording_commit(self):
        order.append("commit")
        await original_commit(self)

    events.subscribe("*", lambda channel, event: order.append(event["event"]))

    with patch.object(AsyncSession, "commit", _recording_commit):
        job = await _create_job(client)

    assert job["status"] == "OFFERED"
    assert order[:3] == ["commit", "dispatch.offered", "dispatch.offered"]
