"""Mirror speed tests and best-mirror selection.

A mirror is measured by fetching a small sample through it. The time until
the response headers arrive is its latency; the sample throughput is its
speed. Results are cached per mirror for a fixed lifetime.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit

import httpx

from fastboot_flasher.images.manifest import (
    build_mirror_url,
    clean_mirror_url,
    extract_mirror_name,
    validate_and_clean_mirrors,
)

logger = logging.getLogger(__name__)

# Timeout for one mirror test (seconds)
MIRROR_TIMEOUT = 10.0

# Bytes fetched to estimate throughput
SAMPLE_SIZE = 256 * 1024

DEFAULT_MIRROR_TTL = 30 * 60

MAX_PARALLEL_TESTS = 4

UNKNOWN_REGION = "Unknown"

# Region -> host keywords; two-letter codes only match whole host labels
_REGION_KEYWORDS = (
    ("China", ("cn", "china", "baidu", "aliyun", "tencent")),
    ("United States", ("us", "america", "github")),
    ("Japan", ("jp", "japan")),
    ("Singapore", ("sg", "singapore")),
)


class MirrorStatus(str, Enum):
    """Outcome of a mirror test."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class MirrorResult:
    """Measured mirror.

    Attributes:
        mirror: Cleaned mirror URL.
        latency: Milliseconds until the response headers, -1 if unreachable.
        speed: Sample throughput in bytes per second.
        status: Whether the mirror answered.
        name: Short display name.
        region: Guessed region.
        error: Failure description for unavailable mirrors.
    """

    mirror: str
    latency: float
    speed: float
    status: MirrorStatus
    name: str
    region: str
    error: str | None = None

    @property
    def available(self) -> bool:
        return self.status == MirrorStatus.AVAILABLE


def guess_mirror_region(url: str) -> str:
    """Guess where a mirror is hosted from its host name."""
    try:
        host = (urlsplit(url).hostname or "").lower()
    except ValueError:
        host = ""
    if not host:
        return UNKNOWN_REGION
    labels = set(re.split(r"[.\-]", host))
    for region, keywords in _REGION_KEYWORDS:
        for keyword in keywords:
            if keyword in labels or (len(keyword) > 2 and keyword in host):
                return region
    return UNKNOWN_REGION


def build_mirror_info(
    mirror: str,
    latency: float,
    status: MirrorStatus,
    speed: float = 0.0,
    error: str | None = None,
) -> MirrorResult:
    """Build a MirrorResult with the display name and region filled in."""
    return MirrorResult(
        mirror=mirror,
        latency=latency,
        speed=speed,
        status=status,
        name=extract_mirror_name(mirror),
        region=guess_mirror_region(mirror),
        error=error,
    )


def measure_mirror(
    client: httpx.Client,
    mirror: str,
    sample_url: str | None = None,
    sample_size: int = SAMPLE_SIZE,
    timeout: float = MIRROR_TIMEOUT,
    clock: Callable[[], float] = time.perf_counter,
) -> MirrorResult:
    """Measure latency and speed of one mirror.

    Args:
        client: HTTP client.
        mirror: Mirror URL.
        sample_url: File fetched through the mirror; the mirror root if None.
        sample_size: Bytes to read for the speed estimate.
        timeout: Request timeout in seconds.
        clock: Time source in seconds.

    Returns:
        MirrorResult; network and HTTP errors give an unavailable result.
    """
    mirror = clean_mirror_url(mirror)
    target = build_mirror_url(mirror, sample_url) if sample_url else f"{mirror}/"
    headers = {"Range": f"bytes=0-{sample_size - 1}"}

    started = clock()
    try:
        with client.stream("GET", target, headers=headers, timeout=timeout) as response:
            answered = clock()
            if response.status_code >= 400:
                logger.debug("Mirror %s answered HTTP %d", mirror, response.status_code)
                return build_mirror_info(
                    mirror,
                    -1,
                    MirrorStatus.UNAVAILABLE,
                    error=f"HTTP {response.status_code}",
                )
            received = 0
            for chunk in response.iter_bytes():
                received += len(chunk)
                if received >= sample_size:
                    break
            finished = clock()
    except httpx.HTTPError as e:
        logger.debug("Mirror %s unreachable: %s", mirror, e)
        return build_mirror_info(
            mirror,
            -1,
            MirrorStatus.UNAVAILABLE,
            error=str(e) or type(e).__name__,
        )

    elapsed = finished - answered
    speed = received / elapsed if elapsed > 0 else 0.0
    latency = (answered - started) * 1000
    logger.debug("Mirror %s: %.0f ms, %.0f B/s", mirror, latency, speed)
    return build_mirror_info(mirror, latency, MirrorStatus.AVAILABLE, speed=speed)


def measure_mirrors(
    client: httpx.Client,
    mirrors: Sequence[str],
    sample_url: str | None = None,
    timeout: float = MIRROR_TIMEOUT,
    max_workers: int = MAX_PARALLEL_TESTS,
) -> list[MirrorResult]:
    """Measure several mirrors in parallel.

    Returns:
        One result per cleaned, de-duplicated mirror, in input order.
    """
    cleaned = validate_and_clean_mirrors(list(mirrors))
    if not cleaned:
        return []
    with ThreadPoolExecutor(
        max_workers=min(max_workers, len(cleaned)),
        thread_name_prefix="mirror-test",
    ) as pool:
        return list(
            pool.map(
                lambda mirror: measure_mirror(client, mirror, sample_url, timeout=timeout),
                cleaned,
            )
        )


def select_best_mirror(results: Sequence[MirrorResult]) -> MirrorResult | None:
    """Fastest available mirror; lower latency breaks ties."""
    available = [result for result in results if result.available]
    if not available:
        return None
    return max(available, key=lambda result: (result.speed, -result.latency))


class MirrorSelector:
    """Measures mirrors and caches the results per mirror."""

    def __init__(
        self,
        client: httpx.Client,
        ttl: float = DEFAULT_MIRROR_TTL,
        timeout: float = MIRROR_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._ttl = ttl
        self._timeout = timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: dict[str, tuple[MirrorResult, float]] = {}

    def cached(self, mirror: str) -> MirrorResult | None:
        """Return the cached result of a mirror if it has not expired."""
        key = clean_mirror_url(mirror)
        with self._lock:
            entry = self._cache.get(key)
        if entry is None or self._clock() - entry[1] >= self._ttl:
            return None
        return entry[0]

    def measure(
        self,
        mirrors: Sequence[str],
        sample_url: str | None = None,
        force_refresh: bool = False,
    ) -> list[MirrorResult]:
        """Measure mirrors, reusing cached results unless forced.

        Returns:
            One result per cleaned, de-duplicated mirror, in input order.
        """
        cleaned = validate_and_clean_mirrors(list(mirrors))
        known = {} if force_refresh else {m: self.cached(m) for m in cleaned}
        pending = [m for m in cleaned if known.get(m) is None]

        if pending:
            logger.info("Testing %d mirror(s)", len(pending))
            fresh = measure_mirrors(self._client, pending, sample_url, timeout=self._timeout)
            now = self._clock()
            with self._lock:
                for result in fresh:
                    self._cache[result.mirror] = (result, now)
            known.update({result.mirror: result for result in fresh})

        return [known[m] for m in cleaned]

    def best(
        self,
        mirrors: Sequence[str],
        sample_url: str | None = None,
        force_refresh: bool = False,
    ) -> MirrorResult | None:
        """Measure mirrors and return the best available one, if any."""
        best = select_best_mirror(self.measure(mirrors, sample_url, force_refresh))
        if best is None:
            logger.warning("No mirror is available")
        else:
            logger.info("Selected mirror %s (%s)", best.mirror, best.region)
        return best

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


__all__ = [
    "MirrorResult",
    "MirrorSelector",
    "MirrorStatus",
    "build_mirror_info",
    "guess_mirror_region",
    "measure_mirror",
    "measure_mirrors",
    "select_best_mirror",
]
