"""Device enumeration over the fastboot transport.

Devices are recomputed on every scan. Callers that poll frequently can wrap
a DeviceDiscovery in a CachedDeviceScanner.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from fastboot_flasher.fastboot.executor import CommandExecutor
from fastboot_flasher.types import CommandResult, Device, TransportKind

logger = logging.getLogger(__name__)

FASTBOOT_MARKER = "fastboot"
DEVICES_HEADER = "List of devices"


@dataclass(frozen=True)
class ScanResult:
    """Devices found by one scan and the command that produced them."""

    devices: list[Device] = field(default_factory=list)
    result: CommandResult | None = None

    @property
    def failed(self) -> bool:
        """Whether the enumeration command itself failed."""
        return self.result is not None and not self.result.success


def parse_devices_output(output: str) -> list[str]:
    """Extract device identifiers from `fastboot devices` output.

    A line qualifies when, split on tab, it has at least two fields and the
    second contains the fastboot marker. Anything else is skipped.

    Args:
        output: Decoded command output.

    Returns:
        Identifiers in output order.
    """
    identifiers: list[str] = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith(DEVICES_HEADER):
            continue
        parts = line.split("\t")
        if len(parts) >= 2 and FASTBOOT_MARKER in parts[1]:
            identifiers.append(parts[0].strip())
    return identifiers


class DeviceDiscovery:
    """Enumerates devices through a CommandExecutor."""

    def __init__(self, executor: CommandExecutor, timeout: float | None = None) -> None:
        self._executor = executor
        self._timeout = timeout

    def probe(self) -> ScanResult:
        """Run one enumeration and keep the command result.

        Returns:
            ScanResult with the devices and the CommandResult.
        """
        result = self._executor.execute(["devices"], timeout=self._timeout)
        if not result.success:
            logger.warning(
                "Device enumeration failed (%s): %s",
                result.error_kind.value if result.error_kind else "unknown",
                result.error_message or result.output,
            )
            return ScanResult(devices=[], result=result)

        devices = [
            Device(identifier=identifier, transport=TransportKind.FASTBOOT)
            for identifier in parse_devices_output(result.output)
        ]
        logger.debug("Found %d fastboot device(s)", len(devices))
        return ScanResult(devices=devices, result=result)

    def scan(self) -> list[Device]:
        """Enumerate devices; a failed enumeration yields an empty list."""
        return self.probe().devices

    def scan_devices(self) -> list[str]:
        """Enumerate device identifiers; a failed enumeration yields []."""
        return [device.identifier for device in self.scan()]

    def is_connected(self, device_id: str | None = None) -> bool:
        """Check for a connected device.

        Args:
            device_id: Specific identifier to look for, or None for any.

        Returns:
            True if any device (or the given one) is present.
        """
        identifiers = self.scan_devices()
        if device_id is None:
            return bool(identifiers)
        return device_id in identifiers


class CachedDeviceScanner:
    """Caches the last scan for a fixed lifetime.

    Exposes the same read methods as DeviceDiscovery so it can be passed
    wherever a discovery is expected.
    """

    def __init__(
        self,
        discovery: DeviceDiscovery,
        ttl: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._discovery = discovery
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: ScanResult | None = None
        self._cached_at = 0.0

    def invalidate(self) -> None:
        """Drop the cached scan."""
        with self._lock:
            self._cached = None

    def probe(self) -> ScanResult:
        with self._lock:
            now = self._clock()
            if self._cached is not None and now - self._cached_at < self._ttl:
                return self._cached

        scan = self._discovery.probe()
        with self._lock:
            self._cached = scan
            self._cached_at = self._clock()
        return scan

    def scan(self) -> list[Device]:
        return self.probe().devices

    def scan_devices(self) -> list[str]:
        return [device.identifier for device in self.scan()]

    def is_connected(self, device_id: str | None = None) -> bool:
        identifiers = self.scan_devices()
        if device_id is None:
            return bool(identifiers)
        return device_id in identifiers


__all__ = [
    "CachedDeviceScanner",
    "DeviceDiscovery",
    "ScanResult",
    "parse_devices_output",
]
