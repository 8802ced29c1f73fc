"""Device endpoints.

- GET /devices - List connected fastboot devices (cached briefly)
- GET /devices/getvar/{name} - Query a bootloader variable
- POST /devices/reboot - Reboot the connected device
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as http_status

from fastboot_flasher.fastboot.commands import parse_getvar_output
from fastboot_flasher.services import ProvisioningServices
from fastboot_flasher.types import CommandResult
from web.deps import get_services

router = APIRouter()


def _command_error(result: CommandResult) -> HTTPException:
    return HTTPException(
        status_code=http_status.HTTP_502_BAD_GATEWAY,
        detail={
            "code": result.error_kind.value if result.error_kind else "command_failed",
            "message": result.error_message or result.output or "fastboot command failed",
        },
    )


@router.get("")
def list_devices(
    refresh: bool = Query(False, description="Bypass the cached scan"),
    services: ProvisioningServices = Depends(get_services),
) -> dict[str, Any]:
    """List connected fastboot devices.

    Args:
        refresh: Force a new enumeration.
        services: Application services.

    Returns:
        Devices and, when enumeration failed, the error.
    """
    if refresh:
        services.scanner.invalidate()
    scan = services.scanner.probe()
    error = None
    if scan.failed and scan.result is not None:
        error = {
            "code": scan.result.error_kind.value if scan.result.error_kind else None,
            "message": scan.result.error_message,
        }
    return {
        "devices": [
            {"identifier": device.identifier, "transport": device.transport.value}
            for device in scan.devices
        ],
        "error": error,
    }


@router.get("/getvar/{name}")
def getvar(
    name: str,
    services: ProvisioningServices = Depends(get_services),
) -> dict[str, Any]:
    """Query a bootloader variable.

    Raises:
        HTTPException: If the fastboot command fails.
    """
    result = services.commands.getvar(name)
    if not result.success:
        raise _command_error(result)
    return {"name": name, "value": parse_getvar_output(name, result.output)}


@router.post("/reboot")
def reboot(services: ProvisioningServices = Depends(get_services)) -> dict[str, Any]:
    """Reboot the connected device.

    Raises:
        HTTPException: 409 during a flash, 502 if the command fails.
    """
    if services.orchestrator.is_running:
        raise HTTPException(
            status_code=http_status.HTTP_409_CONFLICT,
            detail={
                "code": "flash_in_progress",
                "message": "Cannot reboot while a flash is in progress",
            },
        )
    result = services.commands.reboot()
    if not result.success:
        raise _command_error(result)
    services.scanner.invalidate()
    return {"success": True, "output": result.output}
