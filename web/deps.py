"""Service dependencies for FastAPI.

Route handlers receive the application's ProvisioningServices through
FastAPI dependency injection; the instance lives on app.state and is
created by the application lifespan.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request

from fastboot_flasher.services import ProvisioningServices


def get_services(request: Request) -> ProvisioningServices:
    """Get the provisioning services from app state.

    Args:
        request: FastAPI request object.

    Returns:
        ProvisioningServices of this application.
    """
    services: Any = request.app.state.services
    return services  # type: ignore[no-any-return]
