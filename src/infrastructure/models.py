"""
SQLAlchemy ORM models  (maps to PostgreSQL + PostGIS).

Tables
------
* ``drivers``        -- drivers with live location and quality signals
* ``dispatch_jobs``  -- taxi / delivery / marketplace jobs awaiting a driver

Indexes
-------
* **GIST** on geometry columns (current_location, pickup_point) for
  spatial queries.
* **B-Tree** on ``h3_cell`` + availability flags so the candidate query
  only touches drivers inside the search cover, and on ``status`` /
  ``idempotency_key`` for the worker and the API.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from geoalchemy2 import Geometry

from .database import Base
from src.domain.enums import DispatchPriority, DispatchStatus, ServiceType


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(String(64), primary_key=True)
    display_name = Column(String(120), nullable=False)
    current_location = Column(Geometry("POINT", srid=4326), nullable=True)

    # Plain floats for fast reads (avoids ST_X / ST_Y)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    h3_cell = Column(String(20), nullable=True)

    rating = Column(Float, nullable=True)
    completed_jobs = Column(Integer, default=0, nullable=False)
    # Comma-separated ServiceType values, e.g. "taxi,delivery"
    service_types = Column(String(64), default="taxi", nullable=False)
    is_online = Column(Boolean, default=False)
    is_available = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_drivers_location", "current_location", postgresql_using="gist"),
        Index("idx_drivers_cell", "h3_cell"),
        Index("idx_drivers_online_available", "is_online", "is_available"),
    )


class DispatchJobModel(Base):
    __tablename__ = "dispatch_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_type = Column(Enum(ServiceType), default=ServiceType.TAXI, nullable=False)
    order_ref = Column(String(64), nullable=True)

    pickup_point = Column(Geometry("POINT", srid=4326), nullable=False)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)

    priority = Column(
        Enum(DispatchPriority), default=DispatchPriority.NORMAL, nullable=False
    )
    search_radius_km = Column(Float, default=10.0, nullable=False)
    status = Column(
        Enum(DispatchStatus), default=DispatchStatus.PENDING, nullable=False
    )
    driver_id = Column(String(64), ForeignKey("drivers.id"), nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    # Comma-separated ids of drivers who turned this job down
    rejected_drivers = Column(Text, default="", nullable=False)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    offered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_jobs_pickup", "pickup_point", postgresql_using="gist"),
        Index("idx_jobs_status", "status"),
        Index("idx_jobs_driver", "driver_id"),
        Index("idx_jobs_idempotency", "idempotency_key"),
    )
