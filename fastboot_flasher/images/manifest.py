"""Image manifest loading and mirror helpers.

The manifest lists the boot image, the per-distribution cache and userdata
images, and a list of download mirrors. It is read from a local JSON/YAML
file or fetched over HTTP, and cached for a fixed lifetime.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import httpx
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

# Timeout for manifest requests (seconds)
MANIFEST_TIMEOUT = 30

DEFAULT_MANIFEST_TTL = 24 * 60 * 60


class ManifestError(Exception):
    """Raised when a manifest cannot be loaded or is invalid."""

    def __init__(self, message: str, code: str = "manifest_error") -> None:
        """Initialize ManifestError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


class ImageEntry(BaseModel):
    """Fields shared by every downloadable image."""

    model_config = ConfigDict(extra="ignore")

    url: str = Field(description="Download URL")
    description: str = Field(default="")
    size: int | None = Field(default=None, ge=0, description="Size in bytes")
    size_human: str | None = Field(default=None)
    info_endpoint: str | None = Field(default=None)


class BootImage(ImageEntry):
    """The boot image shared by all distributions."""

    required: bool = Field(default=True)
    last_modified: str | None = Field(default=None)
    etag: str | None = Field(default=None)


class CacheImage(ImageEntry):
    """A distribution's image for the cache partition."""

    asset_id: int | None = Field(default=None)
    uploaded_at: str | None = Field(default=None)
    tag: str | None = Field(default=None)
    original_filename: str | None = Field(default=None)


class UserdataImage(ImageEntry):
    """A distribution's image for the userdata partition.

    Attributes:
        extracted_file: Name of the image inside the downloaded archive.
    """

    extracted_file: str = Field(description="Image file name inside the archive")
    asset_id: int | None = Field(default=None)
    uploaded_at: str | None = Field(default=None)
    tag: str | None = Field(default=None)


class ImageSet(BaseModel):
    """All images listed by a manifest."""

    model_config = ConfigDict(extra="ignore")

    boot: BootImage
    cache: dict[str, CacheImage] = Field(default_factory=dict)
    userdata: dict[str, UserdataImage] = Field(default_factory=dict)


class Endpoints(BaseModel):
    """Service endpoints advertised by the manifest publisher."""

    model_config = ConfigDict(extra="ignore")

    config: str | None = None
    file_info: str | None = None
    download_proxy: str | None = None


class ManifestStats(BaseModel):
    """Summary counters published with the manifest."""

    model_config = ConfigDict(extra="ignore")

    total_distros: int | None = None
    userdata_available: int | None = None
    cache_available: int | None = None
    warnings: Any = None


class Manifest(BaseModel):
    """Top-level image manifest."""

    model_config = ConfigDict(extra="ignore")

    version: str
    last_updated: str | None = None
    source: str | None = None
    release_tags: dict[str, str] = Field(default_factory=dict)
    images: ImageSet
    mirror_list: list[str] = Field(default_factory=list)
    endpoints: Endpoints | None = None
    stats: ManifestStats | None = None

    def distributions(self) -> list[str]:
        """Distributions that have both a cache and a userdata image."""
        return [name for name in self.images.userdata if name in self.images.cache]

    def mirrors(self) -> list[str]:
        """Cleaned, de-duplicated mirror URLs."""
        return validate_and_clean_mirrors(self.mirror_list)


def parse_manifest(data: Any) -> Manifest:
    """Validate raw manifest data.

    Args:
        data: Decoded JSON/YAML document.

    Returns:
        Validated Manifest.

    Raises:
        ManifestError: If the data is not a valid manifest.
    """
    if not isinstance(data, dict):
        raise ManifestError(
            f"Expected a manifest mapping, got {type(data).__name__}",
            code="invalid_manifest",
        )
    try:
        return Manifest.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest: {e}", code="invalid_manifest") from e


def _decode(text: str, name: str) -> Any:
    try:
        if name.lower().endswith((".yaml", ".yml")):
            return yaml.safe_load(text)
        return json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ManifestError(f"Could not parse manifest {name}: {e}", code="parse_error") from e


def load_manifest(path: Path) -> Manifest:
    """Load a manifest from a .json, .yaml or .yml file.

    Raises:
        ManifestError: If the file is missing, unparsable or invalid.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestError(f"Could not read manifest {path}: {e}", code="not_found") from e
    return parse_manifest(_decode(text, path.name))


def fetch_manifest(
    client: httpx.Client,
    url: str,
    timeout: float = MANIFEST_TIMEOUT,
) -> Manifest:
    """Fetch and validate a manifest over HTTP.

    Args:
        client: HTTPX client instance.
        url: Manifest URL.
        timeout: Request timeout in seconds.

    Returns:
        Validated Manifest.

    Raises:
        ManifestError: If the request fails or the manifest is invalid.
    """
    logger.debug("Fetching manifest from %s", url)

    try:
        response = client.get(url, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ManifestError(
            f"HTTP error fetching manifest: {e.response.status_code}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise ManifestError(f"Timeout fetching manifest from {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise ManifestError(f"Network error fetching manifest: {e}", code="network_error") from e

    return parse_manifest(_decode(response.text, urlsplit(url).path))


def is_remote_source(source: str) -> bool:
    return source.startswith(("http://", "https://"))


class ManifestProvider:
    """Loads a manifest from a URL or file and caches it.

    A failed refresh falls back to the cached copy when there is one.
    """

    def __init__(
        self,
        source: str,
        client: httpx.Client | None = None,
        ttl: float = DEFAULT_MANIFEST_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self._client = client
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Manifest | None = None
        self._cached_at = 0.0

    def _load(self) -> Manifest:
        if is_remote_source(self.source):
            if self._client is None:
                with httpx.Client(follow_redirects=True) as client:
                    return fetch_manifest(client, self.source)
            return fetch_manifest(self._client, self.source)
        return load_manifest(Path(self.source))

    def get(self, force_refresh: bool = False) -> Manifest:
        """Return the manifest, refreshing it when the cache has expired.

        Raises:
            ManifestError: If loading fails and nothing is cached.
        """
        with self._lock:
            cached = self._cached
            fresh = cached is not None and self._clock() - self._cached_at < self._ttl
        if fresh and not force_refresh:
            logger.debug("Using cached manifest")
            return cached

        try:
            manifest = self._load()
        except ManifestError as e:
            if cached is not None:
                logger.warning("Manifest refresh failed, using cached copy: %s", e)
                return cached
            raise

        with self._lock:
            self._cached = manifest
            self._cached_at = self._clock()
        logger.info("Loaded manifest %s from %s", manifest.version, self.source)
        return manifest

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None


# Mirror helpers


def clean_mirror_url(mirror: str) -> str:
    """Normalize a mirror URL: default to https and drop a trailing slash."""
    cleaned = mirror.strip()
    if not cleaned.startswith(("http://", "https://")):
        cleaned = f"https://{cleaned}"
    return cleaned.rstrip("/")


def validate_and_clean_mirrors(mirrors: list[str]) -> list[str]:
    """Clean mirror URLs, dropping blanks and duplicates (first wins)."""
    cleaned: list[str] = []
    for mirror in mirrors:
        if not isinstance(mirror, str) or not mirror.strip():
            continue
        url = clean_mirror_url(mirror)
        if url not in cleaned:
            cleaned.append(url)
    return cleaned


def build_mirror_url(mirror: str, original_url: str) -> str:
    """Build a proxied download URL: `<mirror>/<full original URL>`."""
    original = original_url.strip()
    if not original.startswith(("http://", "https://")):
        original = f"https://{original}"
    return f"{clean_mirror_url(mirror)}/{original}"


def extract_mirror_name(url: str) -> str:
    """Short display name of a mirror (last two host labels)."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        host = None
    if not host:
        return "unknown"
    return ".".join(host.split(".")[-2:])


__all__ = [
    "BootImage",
    "CacheImage",
    "Endpoints",
    "ImageEntry",
    "ImageSet",
    "Manifest",
    "ManifestError",
    "ManifestProvider",
    "ManifestStats",
    "UserdataImage",
    "build_mirror_url",
    "clean_mirror_url",
    "extract_mirror_name",
    "fetch_manifest",
    "is_remote_source",
    "load_manifest",
    "parse_manifest",
    "validate_and_clean_mirrors",
]
