"""Router modules for FastAPI web API."""

from web.routers import config, devices, downloads, flash, health, mirrors

__all__ = ["config", "devices", "downloads", "flash", "health", "mirrors"]
