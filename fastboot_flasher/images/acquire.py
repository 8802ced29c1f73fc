"""Download and unpack the images one distribution needs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import partial
from pathlib import Path

from fastboot_flasher.download.queue import DownloadHandle, DownloadQueue
from fastboot_flasher.download.transfer import DownloadError, file_name_from_url
from fastboot_flasher.images.extract import (
    ExtractionError,
    extract_archive,
    find_extracted_image,
    is_compressed_file,
)
from fastboot_flasher.images.manifest import (
    ImageEntry,
    Manifest,
    ManifestError,
    UserdataImage,
    build_mirror_url,
)
from fastboot_flasher.types import DownloadProgress

logger = logging.getLogger(__name__)

# Partitions fetched for a distribution, in submission order
ACQUIRED_PARTITIONS = ("boot", "cache", "userdata")

PartitionProgressCallback = Callable[[str, DownloadProgress], None]
Extractor = Callable[[Path, Path], Path]


def _extraction_dir(archive_path: Path) -> Path:
    return archive_path.parent / f"{archive_path.name}.extracted"


class ImageAcquirer:
    """Fetches boot, cache and userdata images through a DownloadQueue.

    All three downloads are submitted at once, so the queue limit decides
    how many run in parallel.
    """

    def __init__(self, queue: DownloadQueue, extractor: Extractor = extract_archive) -> None:
        self._queue = queue
        self._extract = extractor

    def _entries(self, manifest: Manifest, distribution: str) -> dict[str, ImageEntry]:
        if distribution not in manifest.distributions():
            raise ManifestError(
                f"Unknown distribution '{distribution}', "
                f"available: {', '.join(manifest.distributions()) or 'none'}",
                code="unknown_distribution",
            )
        return {
            "boot": manifest.images.boot,
            "cache": manifest.images.cache[distribution],
            "userdata": manifest.images.userdata[distribution],
        }

    def _submit(
        self,
        partition: str,
        entry: ImageEntry,
        dest_dir: Path,
        mirror: str | None,
        overwrite: bool,
        on_progress: PartitionProgressCallback | None,
    ) -> DownloadHandle:
        url = build_mirror_url(mirror, entry.url) if mirror else entry.url
        options = self._queue.default_options
        options.file_name = file_name_from_url(entry.url)
        options.expected_size = entry.size
        options.overwrite = overwrite
        callback = partial(on_progress, partition) if on_progress is not None else None
        logger.info("Fetching %s image from %s", partition, url)
        return self._queue.submit(url, dest_dir, options, callback)

    def _unpack(self, path: Path, image_name: str | None) -> Path:
        if not is_compressed_file(path):
            return path

        out_dir = _extraction_dir(path)
        if out_dir.is_dir():
            try:
                image = find_extracted_image(out_dir, image_name)
            except ExtractionError:
                pass
            else:
                logger.info("Using previously extracted %s", image)
                return image

        self._extract(path, out_dir)
        return find_extracted_image(out_dir, image_name)

    def acquire(
        self,
        manifest: Manifest,
        distribution: str,
        dest_dir: Path,
        mirror: str | None = None,
        on_progress: PartitionProgressCallback | None = None,
        overwrite: bool = False,
    ) -> dict[str, Path]:
        """Download, extract and locate the images of a distribution.

        Args:
            manifest: Loaded manifest.
            distribution: Distribution name (see Manifest.distributions()).
            dest_dir: Root download directory.
            mirror: Mirror URL to proxy downloads through.
            on_progress: Called with (partition, progress) per update.
            overwrite: Download again even if files exist.

        Returns:
            Mapping of partition name to a flashable image path.

        Raises:
            ManifestError: If the distribution is unknown.
            DownloadError: If a download fails (the others are stopped).
            ExtractionError: If an archive cannot be unpacked.
        """
        entries = self._entries(manifest, distribution)
        dest_dir = Path(dest_dir)
        directories = {
            "boot": dest_dir / "boot",
            "cache": dest_dir / distribution,
            "userdata": dest_dir / distribution,
        }

        handles = {
            partition: self._submit(
                partition,
                entries[partition],
                directories[partition],
                mirror,
                overwrite,
                on_progress,
            )
            for partition in ACQUIRED_PARTITIONS
        }

        downloaded: dict[str, Path] = {}
        for partition, handle in handles.items():
            try:
                downloaded[partition] = handle.result()
            except DownloadError:
                logger.error("Download of %s image failed; stopping the others", partition)
                for other in handles.values():
                    if other is not handle:
                        self._queue.stop(other.id)
                raise

        images: dict[str, Path] = {}
        for partition, path in downloaded.items():
            entry = entries[partition]
            name = entry.extracted_file if isinstance(entry, UserdataImage) else None
            images[partition] = self._unpack(path, name)
            logger.info("%s image ready: %s", partition, images[partition])
        return images


__all__ = ["ACQUIRED_PARTITIONS", "ImageAcquirer"]
