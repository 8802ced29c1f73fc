"""FastAPI web application for Fastboot Flasher.

This module provides the HTTP API that mirrors the CLI commands.

All business logic is delegated to core modules in fastboot_flasher/.
"""

from web.app import app, create_app

__all__ = ["app", "create_app"]
