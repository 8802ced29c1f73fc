"""Fastboot Flasher - Provision device firmware partitions over fastboot.

This package provides orchestration around the external fastboot binary
for discovering devices, downloading and extracting images, and flashing
partitions through a staged, observable state machine.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
