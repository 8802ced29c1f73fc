"""Mirror endpoints.

- GET /mirrors - Speed-test the configured manifest's mirrors
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as http_status

from fastboot_flasher.images.manifest import ManifestError
from fastboot_flasher.images.mirrors import MirrorResult, select_best_mirror
from fastboot_flasher.services import ProvisioningServices
from web.deps import get_services

router = APIRouter()


def _result_to_dict(result: MirrorResult) -> dict[str, Any]:
    return {
        "mirror": result.mirror,
        "name": result.name,
        "region": result.region,
        "status": result.status.value,
        "latency": result.latency,
        "speed": result.speed,
        "error": result.error,
    }


@router.get("")
def list_mirrors(
    refresh: bool = Query(False, description="Ignore cached test results"),
    services: ProvisioningServices = Depends(get_services),
) -> dict[str, Any]:
    """Measure the manifest's mirrors and report the fastest.

    Raises:
        HTTPException: 404 if no manifest is configured, 502 if it cannot
            be loaded.
    """
    provider = services.manifest_provider()
    if provider is None:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={"code": "no_manifest", "message": "No manifest source configured"},
        )
    try:
        manifest = provider.get()
    except ManifestError as e:
        raise HTTPException(
            status_code=http_status.HTTP_502_BAD_GATEWAY,
            detail={"code": e.code, "message": str(e)},
        ) from None

    results = services.mirrors.measure(
        manifest.mirrors(),
        sample_url=manifest.images.boot.url,
        force_refresh=refresh,
    )
    best = select_best_mirror(results)
    return {
        "mirrors": [_result_to_dict(result) for result in results],
        "best": best.mirror if best else None,
    }
