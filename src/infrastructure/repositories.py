"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import DispatchJobModel, DriverModel
from src.domain.enums import DispatchPriority, DispatchStatus, ServiceType


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, driver: DriverModel) -> DriverModel:
        self.session.add(driver)
        await self.session.flush()
        return driver

    async def get_by_id(self, driver_id: str) -> Optional[DriverModel]:
        return await self.session.get(DriverModel, driver_id)

    async def get_available_candidates(
        self,
        service_type: ServiceType,
        cells: Iterable[str],
        exclude: Iterable[str] = (),
    ) -> list[DriverModel]:
        """Online, available drivers offering *service_type* inside *cells*."""
        query = select(DriverModel).where(
            DriverModel.is_online.is_(True),
            DriverModel.is_available.is_(True),
            DriverModel.h3_cell.in_(list(cells)),
            DriverModel.service_types.contains(ServiceType(service_type).value),
        )
        excluded = list(exclude)
        if excluded:
            query = query.where(DriverModel.id.notin_(excluded))
        result = await self.session.execute(query.order_by(DriverModel.id))
        return list(result.scalars().all())

    async def get_online(self) -> list[DriverModel]:
        result = await self.session.execute(
            select(DriverModel)
            .where(DriverModel.is_online.is_(True))
            .order_by(DriverModel.id)
        )
        return list(result.scalars().all())

    async def update_location(
        self, driver: DriverModel, lat: float, lng: float, h3_cell: str
    ) -> DriverModel:
        """Move *driver* and refresh its PostGIS point and H3 bin."""
        from geoalchemy2.functions import ST_MakePoint

        driver.current_lat = lat
        driver.current_lng = lng
        driver.current_location = ST_MakePoint(lng, lat)
        driver.h3_cell = h3_cell
        await self.session.flush()
        return driver

    async def count_available(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(DriverModel)
            .where(
                DriverModel.is_online.is_(True),
                DriverModel.is_available.is_(True),
            )
        )
        return result.scalar() or 0


class DispatchJobRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_job(
        self,
        *,
        service_type: ServiceType,
        pickup_lat: float,
        pickup_lng: float,
        priority: DispatchPriority = DispatchPriority.NORMAL,
        search_radius_km: float = 10.0,
        order_ref: str | None = None,
        idempotency_key: str | None = None,
    ) -> DispatchJobModel:
        """Create a job with a proper PostGIS pickup point."""
        from geoalchemy2.functions import ST_MakePoint

        job = DispatchJobModel(
            service_type=service_type,
            order_ref=order_ref,
            pickup_lat=pickup_lat,
            pickup_lng=pickup_lng,
            pickup_point=ST_MakePoint(pickup_lng, pickup_lat),
            priority=priority,
            search_radius_km=search_radius_km,
            status=DispatchStatus.PENDING,
            attempts=0,
            rejected_drivers="",
            idempotency_key=idempotency_key,
        )
        self.session.add(job)
        await self.session.flush()
        await self.session.refresh(job)  # load server-side defaults (created_at)
        return job

    async def get_by_id(self, job_id: int) -> Optional[DispatchJobModel]:
        return await self.session.get(DispatchJobModel, job_id)

    async def get_by_id_for_update(self, job_id: int) -> Optional[DispatchJobModel]:
        """SELECT ... FOR UPDATE so a driver action and the worker never race."""
        return await self.session.get(
            DispatchJobModel, job_id, with_for_update=True, populate_existing=True
        )

    async def get_by_idempotency_key(self, key: str) -> Optional[DispatchJobModel]:
        result = await self.session.execute(
            select(DispatchJobModel).where(DispatchJobModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def get_pending_jobs(self) -> list[DispatchJobModel]:
        result = await self.session.execute(
            select(DispatchJobModel)
            .where(DispatchJobModel.status == DispatchStatus.PENDING)
            .order_by(DispatchJobModel.created_at, DispatchJobModel.id)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def get_expired_offers(self, offered_before: datetime) -> list[DispatchJobModel]:
        result = await self.session.execute(
            select(DispatchJobModel)
            .where(
                DispatchJobModel.status == DispatchStatus.OFFERED,
                DispatchJobModel.offered_at < offered_before,
            )
            # Locked until the cycle commits; a concurrent accept waits on it
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def get_active_for_driver(self, driver_id: str) -> Optional[DispatchJobModel]:
        """The job currently offered to or accepted by *driver_id*, if any."""
        result = await self.session.execute(
            select(DispatchJobModel)
            .where(
                DispatchJobModel.driver_id == driver_id,
                DispatchJobModel.status.in_(
                    [DispatchStatus.OFFERED, DispatchStatus.ACCEPTED]
                ),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def flush(self) -> None:
        await self.session.flush()
