"""Initial schema with PostGIS extension, drivers and dispatch jobs.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from geoalchemy2 import Geometry


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Enable PostGIS extension
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("display_name", sa.String(120), nullable=False),
        sa.Column(
            "current_location", Geometry("POINT", srid=4326), nullable=True
        ),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("h3_cell", sa.String(20), nullable=True),
        sa.Column("rating", sa.Float, nullable=True),
        sa.Column("completed_jobs", sa.Integer, default=0, nullable=False),
        sa.Column(
            "service_types", sa.String(64), default="taxi", nullable=False
        ),
        sa.Column("is_online", sa.Boolean, default=False),
        sa.Column("is_available", sa.Boolean, default=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_drivers_location",
        "drivers",
        ["current_location"],
        postgresql_using="gist",
    )
    op.create_index("idx_drivers_cell", "drivers", ["h3_cell"])
    op.create_index(
        "idx_drivers_online_available", "drivers", ["is_online", "is_available"]
    )

    # ── dispatch_jobs ─────────────────────────────────────────────────
    op.create_table(
        "dispatch_jobs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "service_type",
            sa.Enum("TAXI", "DELIVERY", "MARKETPLACE", name="servicetype"),
            nullable=False,
        ),
        sa.Column("order_ref", sa.String(64), nullable=True),
        sa.Column(
            "pickup_point", Geometry("POINT", srid=4326), nullable=False
        ),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column(
            "priority",
            sa.Enum("NORMAL", "HIGH", "URGENT", name="dispatchpriority"),
            nullable=False,
        ),
        sa.Column("search_radius_km", sa.Float, default=10.0, nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING",
                "OFFERED",
                "ACCEPTED",
                "COMPLETED",
                "CANCELLED",
                "UNASSIGNED",
                name="dispatchstatus",
            ),
            default="PENDING",
            nullable=False,
        ),
        sa.Column(
            "driver_id",
            sa.String(64),
            sa.ForeignKey("drivers.id"),
            nullable=True,
        ),
        sa.Column("attempts", sa.Integer, default=0, nullable=False),
        sa.Column("rejected_drivers", sa.Text, default="", nullable=False),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column("offered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_jobs_pickup",
        "dispatch_jobs",
        ["pickup_point"],
        postgresql_using="gist",
    )
    op.create_index("idx_jobs_status", "dispatch_jobs", ["status"])
    op.create_index("idx_jobs_driver", "dispatch_jobs", ["driver_id"])
    op.create_index("idx_jobs_idempotency", "dispatch_jobs", ["idempotency_key"])


def downgrade() -> None:
    op.drop_table("dispatch_jobs")
    op.drop_table("drivers")
    op.execute("DROP TYPE IF EXISTS dispatchstatus")
    op.execute("DROP TYPE IF EXISTS dispatchpriority")
    op.execute("DROP TYPE IF EXISTS servicetype")
