"""
FastAPI application factory.

* Registers routes for dispatch, drivers and admin.
* Starts / stops the background re-dispatch worker via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, dispatch, drivers
from src.infrastructure import redis_client
from src.workers import dispatcher as _dispatcher

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the re-dispatch worker on startup; stop it and Redis on shutdown."""
    await _dispatcher.start_redispatch_loop()
    yield
    await _dispatcher.stop_redispatch_loop()
    await redis_client.close_redis()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Proximity Dispatch API",
        description=(
            "Assigns taxi, delivery and marketplace jobs to the best nearby "
            "driver.  Ranks candidates by distance, rating and experience, "
            "widens the search radius when nobody is free, and publishes "
            "every outcome on Redis pub/sub channels."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Routers
    app.include_router(dispatch.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
