"""Image management module.

This module handles:
- Loading the image manifest and building mirror URLs
- Measuring mirrors and picking the fastest one
- Acquiring the images of a distribution through the download queue
- Extracting archives and locating the contained image
- Validating image files before flashing
"""

from fastboot_flasher.images.acquire import ImageAcquirer
from fastboot_flasher.images.extract import (
    ExtractionError,
    extract_archive,
    find_extracted_image,
    is_compressed_file,
    list_archive,
)
from fastboot_flasher.images.manifest import (
    Manifest,
    ManifestError,
    ManifestProvider,
    build_mirror_url,
    clean_mirror_url,
    extract_mirror_name,
    fetch_manifest,
    load_manifest,
    validate_and_clean_mirrors,
)
from fastboot_flasher.images.mirrors import (
    MirrorResult,
    MirrorSelector,
    guess_mirror_region,
    measure_mirror,
    measure_mirrors,
    select_best_mirror,
)
from fastboot_flasher.images.validate import (
    SUPPORTED_EXTENSIONS,
    format_file_size,
    validate_image_file,
)

__all__ = [
    # Acquire
    "ImageAcquirer",
    # Extract
    "ExtractionError",
    "extract_archive",
    "find_extracted_image",
    "is_compressed_file",
    "list_archive",
    # Manifest
    "Manifest",
    "ManifestError",
    "ManifestProvider",
    "build_mirror_url",
    "clean_mirror_url",
    "extract_mirror_name",
    "fetch_manifest",
    "load_manifest",
    "validate_and_clean_mirrors",
    # Mirrors
    "MirrorResult",
    "MirrorSelector",
    "guess_mirror_region",
    "measure_mirror",
    "measure_mirrors",
    "select_best_mirror",
    # Validate
    "SUPPORTED_EXTENSIONS",
    "format_file_size",
    "validate_image_file",
]
