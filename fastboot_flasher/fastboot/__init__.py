"""fastboot process control, device discovery and subcommands."""

from fastboot_flasher.fastboot.commands import FastbootCommands, parse_getvar_output
from fastboot_flasher.fastboot.discovery import (
    CachedDeviceScanner,
    DeviceDiscovery,
    ScanResult,
    parse_devices_output,
)
from fastboot_flasher.fastboot.executor import CommandExecutor, CommandInvocation

__all__ = [
    "CachedDeviceScanner",
    "CommandExecutor",
    "CommandInvocation",
    "DeviceDiscovery",
    "FastbootCommands",
    "ScanResult",
    "parse_devices_output",
    "parse_getvar_output",
]
