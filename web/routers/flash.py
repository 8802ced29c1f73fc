"""Flash operation endpoints.

- POST /flash - Start flashing the connected device in the background
- GET /flash - Current session snapshot
- POST /flash/cancel - Abandon the current session

Only one flash runs at a time; progress is read by polling GET /flash.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from pydantic import BaseModel

from fastboot_flasher.flash.orchestrator import FlashInProgressError
from fastboot_flasher.security import is_safe_file_path
from fastboot_flasher.services import ProvisioningServices
from web.deps import get_services

router = APIRouter()


class FlashRequest(BaseModel):
    """Request body for flash operation."""

    boot: str | None = None
    cache: str | None = None
    userdata: str | None = None

    def image_paths(self) -> dict[str, str | None]:
        return {"boot": self.boot, "cache": self.cache, "userdata": self.userdata}


@router.post("", status_code=http_status.HTTP_202_ACCEPTED)
def start_flash(
    request: FlashRequest,
    services: ProvisioningServices = Depends(get_services),
) -> dict[str, Any]:
    """Start a flash run.

    Raises:
        HTTPException: 400 for an unsafe image path, 409 if a flash is
            already in progress.
    """
    image_paths = request.image_paths()
    for partition, path in image_paths.items():
        if path and not is_safe_file_path(path):
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "invalid_path",
                    "message": f"Unsafe image path for {partition}: {path}",
                },
            ) from None

    try:
        services.orchestrator.start(image_paths)
    except FlashInProgressError as e:
        raise HTTPException(
            status_code=http_status.HTTP_409_CONFLICT,
            detail={"code": "flash_in_progress", "message": e.message},
        ) from None

    return {"started": True, "partitions": [p for p, path in image_paths.items() if path]}


@router.get("")
def get_flash_status(services: ProvisioningServices = Depends(get_services)) -> dict[str, Any]:
    """Snapshot of the current (or last) flash session."""
    snapshot = services.orchestrator.snapshot()
    return {"running": services.orchestrator.is_running, **snapshot.to_dict()}


@router.post("/cancel")
def cancel_flash(services: ProvisioningServices = Depends(get_services)) -> dict[str, Any]:
    """Abandon the current session.

    A fastboot command already running is not interrupted.
    """
    services.orchestrator.cancel_flash()
    return {"cancelled": True}
