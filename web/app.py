"""FastAPI application factory and main app.

This module creates the FastAPI application with all routers and
dependency injection configured.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from fastboot_flasher import __version__
from fastboot_flasher.services import ProvisioningServices
from web.routers import config, devices, downloads, flash, health, mirrors


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Builds the provisioning services on startup and releases them
    (downloads, fastboot processes, HTTP client) on shutdown.
    """
    services = ProvisioningServices.create()
    app.state.services = services
    try:
        yield
    finally:
        services.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application.
    """
    application = FastAPI(
        title="Fastboot Flasher API",
        description="HTTP API for fastboot device discovery, image downloads "
        "and staged partition flashing",
        version=__version__,
        lifespan=lifespan,
    )

    # Include routers
    application.include_router(health.router, tags=["health"])
    application.include_router(config.router, prefix="/config", tags=["config"])
    application.include_router(devices.router, prefix="/devices", tags=["devices"])
    application.include_router(downloads.router, prefix="/downloads", tags=["downloads"])
    application.include_router(flash.router, prefix="/flash", tags=["flash"])
    application.include_router(mirrors.router, prefix="/mirrors", tags=["mirrors"])

    return application


# Create the default application instance
app = create_app()
