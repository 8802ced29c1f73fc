"""Configuration endpoints."""

from typing import Any

from fastapi import APIRouter, Depends

from fastboot_flasher.services import ProvisioningServices
from web.deps import get_services

router = APIRouter()


@router.get("")
def get_config(services: ProvisioningServices = Depends(get_services)) -> dict[str, Any]:
    """Get effective configuration.

    Returns:
        Current configuration as JSON.
    """
    settings = services.settings
    return {
        "fastboot_path": str(services.executor.binary_path),
        "download_dir": str(settings.download_dir),
        "manifest_source": settings.manifest_source,
        "log_level": settings.log_level,
        "max_concurrent_downloads": services.queue.max_concurrent,
        "download_max_retries": settings.download_max_retries,
        "download_retry_delay": settings.download_retry_delay,
        "http_timeout": settings.http_timeout,
        "allowed_download_domains": settings.allowed_download_domains,
        "mirror_timeout": settings.mirror_timeout,
        "command_timeout": settings.command_timeout,
        "min_image_size": settings.min_image_size,
        "max_image_size": settings.max_image_size,
        "erase_partitions": list(services.orchestrator.erase_partitions),
        "scan_cache_ttl": settings.scan_cache_ttl,
        "manifest_cache_ttl": settings.manifest_cache_ttl,
        "mirror_cache_ttl": settings.mirror_cache_ttl,
    }
