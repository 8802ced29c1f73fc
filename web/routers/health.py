"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter, Depends

from fastboot_flasher import __version__
from fastboot_flasher.services import ProvisioningServices
from web.deps import get_services

router = APIRouter()


@router.get("/health")
def health(services: ProvisioningServices = Depends(get_services)) -> dict[str, Any]:
    """Health check endpoint.

    Returns:
        Health status with version and whether a flash is running.
    """
    return {
        "status": "ok",
        "version": __version__,
        "flash_running": bool(services.orchestrator.is_running),
    }


@router.get("/")
def root() -> dict[str, str]:
    """Root endpoint.

    Returns:
        API name and version.
    """
    return {"name": "Fastboot Flasher API", "version": __version__}
