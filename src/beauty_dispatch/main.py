"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import deliveries, health, location
from .config import settings
from .data.stores_repository import StoreCatalog
from .persistence.filesystem import FileKeyValueStore
from .services.deliveries import DriverPositionFeeds, TrackerRegistry, build_reporter, build_tracker
from .services.location_session import LocationSession
from .services.maps.distance import get_distance_provider
from .services.maps.geolocation import ReportedPositionSource


def build_location_session() -> LocationSession:
    return LocationSession(
        storage=FileKeyValueStore(),
        catalog=StoreCatalog(),
        provider=get_distance_provider(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    session = build_location_session()
    await session.init()
    app.state.location_session = session
    app.state.position_source = ReportedPositionSource()
    app.state.trackers = TrackerRegistry(build_tracker)
    app.state.driver_feeds = DriverPositionFeeds(app.state.position_source, build_reporter)
    try:
        yield
    finally:
        await app.state.driver_feeds.close()
        await app.state.trackers.close()
        await session.close()


def create_app() -> FastAPI:
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    if settings.frontend_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.frontend_allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Root endpoint for diagnostics
    @app.get("/")
    def root():
        return {
            "service": settings.app_name,
            "status": "running",
            "api_prefix": settings.api_prefix,
            "health": f"{settings.api_prefix}/health",
            "docs": "/docs",
        }

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(location.router, prefix=settings.api_prefix)
    app.include_router(deliveries.router, prefix=settings.api_prefix)
    return app


app = create_app()
