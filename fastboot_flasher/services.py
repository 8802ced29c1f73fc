"""Construction of the provisioning components.

The CLI and the web app both build one ProvisioningServices from settings
and pass its members explicitly; nothing here is a module-level singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from fastboot_flasher.config import Settings, get_settings
from fastboot_flasher.download.queue import DownloadQueue
from fastboot_flasher.download.transfer import create_http_client
from fastboot_flasher.fastboot.commands import FastbootCommands
from fastboot_flasher.fastboot.discovery import CachedDeviceScanner, DeviceDiscovery
from fastboot_flasher.fastboot.executor import CommandExecutor
from fastboot_flasher.flash.orchestrator import FlashOrchestrator
from fastboot_flasher.images.acquire import ImageAcquirer
from fastboot_flasher.images.manifest import ManifestProvider
from fastboot_flasher.images.mirrors import MirrorSelector

logger = logging.getLogger(__name__)


@dataclass
class ProvisioningServices:
    """The wired-up components of one application instance."""

    settings: Settings
    http_client: httpx.Client
    executor: CommandExecutor
    discovery: DeviceDiscovery
    scanner: CachedDeviceScanner
    commands: FastbootCommands
    queue: DownloadQueue
    orchestrator: FlashOrchestrator
    acquirer: ImageAcquirer
    mirrors: MirrorSelector
    manifests: ManifestProvider | None = None

    @classmethod
    def create(cls, settings: Settings | None = None) -> ProvisioningServices:
        """Build all components from settings.

        Args:
            settings: Application settings (loaded from env if None).

        Returns:
            ProvisioningServices; call close() when done.
        """
        if settings is None:
            settings = get_settings()

        http_client = create_http_client(settings.user_agent, settings.http_timeout)
        executor = CommandExecutor(
            binary_path=settings.fastboot_path,
            default_timeout=settings.command_timeout,
        )
        discovery = DeviceDiscovery(executor)
        commands = FastbootCommands(executor)
        queue = DownloadQueue.from_settings(settings, client=http_client)
        orchestrator = FlashOrchestrator(
            discovery,
            commands,
            erase_partitions=settings.erase_partitions,
            min_image_size=settings.min_image_size,
            max_image_size=settings.max_image_size,
        )
        manifests = None
        if settings.manifest_source:
            manifests = ManifestProvider(
                settings.manifest_source,
                client=http_client,
                ttl=settings.manifest_cache_ttl,
            )

        logger.debug("Using fastboot binary %s", executor.binary_path)
        return cls(
            settings=settings,
            http_client=http_client,
            executor=executor,
            discovery=discovery,
            scanner=CachedDeviceScanner(discovery, ttl=settings.scan_cache_ttl),
            commands=commands,
            queue=queue,
            orchestrator=orchestrator,
            acquirer=ImageAcquirer(queue),
            mirrors=MirrorSelector(
                http_client,
                ttl=settings.mirror_cache_ttl,
                timeout=settings.mirror_timeout,
            ),
            manifests=manifests,
        )

    def manifest_provider(self, source: str | None = None) -> ManifestProvider | None:
        """Return the configured provider, or one for an explicit source."""
        if source is None or (self.manifests is not None and source == self.manifests.source):
            return self.manifests
        return ManifestProvider(
            source,
            client=self.http_client,
            ttl=self.settings.manifest_cache_ttl,
        )

    def close(self) -> None:
        """Stop downloads, kill live fastboot processes, release the client."""
        self.queue.close()
        self.executor.cleanup()
        self.http_client.close()


__all__ = ["ProvisioningServices"]
