"""Single-file resumable HTTP transfer.

This module handles:
- Streaming a URL to `<file>.part` and renaming it on completion
- Skipping files that are already present
- Resuming partial files with Range requests
- Retrying transient network failures
- Pause/resume/stop signalling from another thread
- Optional SHA-256 verification
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote, urlsplit

import httpx

from fastboot_flasher.config import DEFAULT_USER_AGENT
from fastboot_flasher.types import DownloadProgress, DownloadState

logger = logging.getLogger(__name__)

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

PART_SUFFIX = ".part"

# HTTP statuses worth retrying
TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

ProgressCallback = Callable[[DownloadProgress], None]
RetryCallback = Callable[[int, float], None]


class DownloadError(Exception):
    """Raised when a download fails."""

    def __init__(self, message: str, code: str = "download_error") -> None:
        """Initialize DownloadError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


class NetworkError(DownloadError):
    """Raised when the remote cannot be reached or answers with an error."""

    def __init__(self, message: str, code: str = "network_error") -> None:
        super().__init__(message, code)


class VerificationError(DownloadError):
    """Raised when checksum verification fails."""

    def __init__(self, message: str, code: str = "verification_error") -> None:
        super().__init__(message, code)


class DownloadStoppedError(DownloadError):
    """Raised when a download is stopped before it completes."""

    def __init__(self, message: str, code: str = "stopped") -> None:
        super().__init__(message, code)


class _TransientError(Exception):
    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how long to wait before retrying a transient failure."""

    max_retries: int = 5
    delay: float = 2.0


@dataclass
class DownloadOptions:
    """Per-download options.

    Attributes:
        headers: Extra request headers (merged over the client defaults).
        method: HTTP method.
        retry: Retry policy for transient failures.
        overwrite: Download again even if the final file exists.
        resume: Continue from an existing partial file.
        file_name: Final file name (derived from the URL if None).
        expected_size: Size used for the skip check when known.
        expected_checksum: SHA-256 to verify after completion.
        remove_on_stop: Delete the partial file when stopped.
        remove_on_fail: Delete the partial file when failed.
        on_retry: Called with (retry ordinal, delay) before each retry.
    """

    headers: dict[str, str] = field(default_factory=dict)
    method: str = "GET"
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    overwrite: bool = False
    resume: bool = True
    file_name: str | None = None
    expected_size: int | None = None
    expected_checksum: str | None = None
    remove_on_stop: bool = False
    remove_on_fail: bool = False
    on_retry: RetryCallback | None = None


class TransferControl:
    """Pause/resume/stop signals shared between a worker and its owner."""

    def __init__(self) -> None:
        self._running = threading.Event()
        self._running.set()
        self._stopped = threading.Event()

    @property
    def paused(self) -> bool:
        return not self._running.is_set() and not self._stopped.is_set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def pause(self) -> None:
        self._running.clear()

    def resume(self) -> None:
        self._running.set()

    def stop(self) -> None:
        self._stopped.set()
        # Wake a parked worker so it can observe the stop
        self._running.set()

    def wait_until_resumed(self) -> None:
        self._running.wait()

    def sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns True if stopped."""
        return self._stopped.wait(seconds)


def compute_file_sha256(file_path: Path, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> str:
    """Compute SHA256 checksum of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks to read.

    Returns:
        SHA256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def file_name_from_url(url: str) -> str:
    """Derive a local file name from the last URL path segment."""
    name = unquote(urlsplit(url).path.rstrip("/").rsplit("/", 1)[-1])
    return name or "download"


def parse_content_range_total(value: str | None) -> int | None:
    """Return the complete length from a Content-Range header.

    Accepts both `bytes 0-99/1000` and `bytes */1000` forms.
    """
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[1].strip()
    if not total.isdigit():
        return None
    return int(total)


def create_http_client(
    user_agent: str = DEFAULT_USER_AGENT,
    timeout: float = 30.0,
) -> httpx.Client:
    """Create the HTTP client used for downloads.

    Args:
        user_agent: User-Agent header value.
        timeout: Connect/read timeout in seconds.

    Returns:
        httpx.Client following redirects with the default download headers.
    """
    return httpx.Client(
        headers={"User-Agent": user_agent, "Accept": "*/*"},
        timeout=httpx.Timeout(timeout),
        follow_redirects=True,
    )


class ResumableTransfer:
    """Downloads one URL into a destination directory.

    run() blocks the calling thread until the file is complete or the
    transfer fails or is stopped.
    """

    def __init__(
        self,
        client: httpx.Client,
        url: str,
        destination_dir: Path,
        options: DownloadOptions | None = None,
        control: TransferControl | None = None,
        on_progress: ProgressCallback | None = None,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ) -> None:
        self._client = client
        self.url = url
        self.destination_dir = Path(destination_dir)
        self.options = options or DownloadOptions()
        self.control = control or TransferControl()
        self._on_progress = on_progress
        self._chunk_size = chunk_size
        self._total: int | None = self.options.expected_size
        self._downloaded = 0

    @property
    def final_path(self) -> Path:
        return self.destination_dir / (self.options.file_name or file_name_from_url(self.url))

    @property
    def part_path(self) -> Path:
        final = self.final_path
        return final.with_name(final.name + PART_SUFFIX)

    def _emit(
        self,
        state: DownloadState,
        speed: float = 0.0,
        warning: str | None = None,
    ) -> None:
        if self._on_progress is None:
            return
        total = self._total
        if state == DownloadState.COMPLETED:
            percent = 100.0
        elif total:
            percent = min(100.0, self._downloaded * 100.0 / total)
        else:
            percent = 0.0
        self._on_progress(
            DownloadProgress(
                percent=percent,
                speed=speed,
                downloaded=self._downloaded,
                total=total,
                state=state,
                warning=warning,
            )
        )

    def _can_skip(self) -> bool:
        final = self.final_path
        if not final.is_file():
            return False
        expected = self.options.expected_size
        return expected is None or final.stat().st_size >= expected

    def _check_stop(self) -> None:
        if self.control.stopped:
            raise DownloadStoppedError(f"Download stopped: {self.url}")

    def run(self) -> Path:
        """Download the file.

        Returns:
            Path to the final file.

        Raises:
            NetworkError: If the remote fails permanently or retries run out.
            VerificationError: If the checksum does not match.
            DownloadStoppedError: If stopped through the control.
        """
        final = self.final_path
        part = self.part_path
        self.destination_dir.mkdir(parents=True, exist_ok=True)

        if not self.options.overwrite and self._can_skip():
            size = final.stat().st_size
            logger.info("Skipping %s: %s already exists (%d bytes)", self.url, final, size)
            self._downloaded = size
            self._total = size
            self._emit(DownloadState.COMPLETED)
            return final

        if self.options.overwrite:
            final.unlink(missing_ok=True)
            part.unlink(missing_ok=True)
        elif not self.options.resume:
            part.unlink(missing_ok=True)

        logger.info("Downloading %s to %s", self.url, final)

        try:
            self._run_attempts()
            os.replace(part, final)
            self._verify(final)
        except DownloadStoppedError:
            logger.info("Download stopped: %s", self.url)
            if self.options.remove_on_stop:
                part.unlink(missing_ok=True)
            self._emit(DownloadState.STOPPED)
            raise
        except DownloadError:
            if self.options.remove_on_fail:
                part.unlink(missing_ok=True)
            self._emit(DownloadState.FAILED)
            raise

        logger.info("Downloaded %s (%d bytes)", final.name, self._downloaded)
        self._emit(DownloadState.COMPLETED)
        return final

    def _run_attempts(self) -> None:
        retry = self.options.retry
        retries = 0

        while True:
            self._check_stop()

            if self.control.paused:
                self._emit(DownloadState.PAUSED)
                self.control.wait_until_resumed()
                continue

            try:
                outcome = self._transfer_once()
            except _TransientError as e:
                retries += 1
                if retries > retry.max_retries:
                    raise NetworkError(
                        f"{e} (gave up after {retry.max_retries} retries)",
                        code=e.code,
                    ) from e
                logger.warning(
                    "Retry %d/%d for %s in %.1fs: %s",
                    retries,
                    retry.max_retries,
                    self.url,
                    retry.delay,
                    e,
                )
                if self.options.on_retry is not None:
                    self.options.on_retry(retries, retry.delay)
                if self.control.sleep(retry.delay):
                    self._check_stop()
                continue

            if outcome == "complete":
                return
            # "paused" and "restart" both go around again

    def _transfer_once(self) -> str:
        part = self.part_path
        offset = part.stat().st_size if part.exists() else 0

        headers = dict(self.options.headers)
        if offset > 0:
            headers["Range"] = f"bytes={offset}-"

        try:
            with self._client.stream(self.options.method, self.url, headers=headers) as response:
                status = response.status_code

                if status == 416 and offset > 0:
                    total = parse_content_range_total(response.headers.get("Content-Range"))
                    if total is not None and total == offset:
                        self._total = total
                        self._downloaded = offset
                        return "complete"
                    logger.warning("Range not satisfiable for %s; restarting", self.url)
                    part.unlink(missing_ok=True)
                    return "restart"

                if status in TRANSIENT_STATUS_CODES:
                    raise _TransientError(
                        f"HTTP error downloading {self.url}: {status}",
                        code="http_error",
                    )
                if status >= 400:
                    raise NetworkError(
                        f"HTTP error downloading {self.url}: {status} {response.reason_phrase}",
                        code="http_error",
                    )

                warning = None
                if status == 206:
                    mode = "ab"
                    self._total = parse_content_range_total(
                        response.headers.get("Content-Range")
                    ) or self._total
                else:
                    if offset > 0:
                        warning = (
                            f"Server does not support resume for {self.url}; "
                            "restarting from the beginning"
                        )
                        logger.warning(warning)
                    offset = 0
                    mode = "wb"
                    length = response.headers.get("Content-Length")
                    if length is not None and length.isdigit():
                        self._total = int(length)

                self._downloaded = offset
                if warning is not None:
                    self._emit(DownloadState.ACTIVE, warning=warning)

                with part.open(mode) as f:
                    last = time.monotonic()
                    for chunk in response.iter_bytes(self._chunk_size):
                        f.write(chunk)
                        self._downloaded += len(chunk)
                        now = time.monotonic()
                        speed = len(chunk) / max(now - last, 1e-6)
                        last = now
                        self._emit(DownloadState.ACTIVE, speed=speed)

                        self._check_stop()
                        if self.control.paused:
                            logger.info("Paused %s at %d bytes", self.url, self._downloaded)
                            return "paused"

        except httpx.TimeoutException as e:
            raise _TransientError(f"Timeout downloading {self.url}", code="timeout") from e
        except httpx.RequestError as e:
            raise _TransientError(
                f"Network error downloading {self.url}: {e}",
                code="network_error",
            ) from e

        if self._total is not None and self._downloaded < self._total:
            raise _TransientError(
                f"Connection closed early for {self.url} "
                f"({self._downloaded} of {self._total} bytes)",
                code="incomplete",
            )
        return "complete"

    def _verify(self, path: Path) -> None:
        expected = self.options.expected_checksum
        if not expected:
            return
        actual = compute_file_sha256(path)
        if actual != expected.lower():
            path.unlink(missing_ok=True)
            raise VerificationError(
                f"Checksum mismatch for {self.url}: expected {expected}, got {actual}"
            )
        logger.debug("Checksum verified for %s", path.name)


__all__ = [
    "DOWNLOAD_CHUNK_SIZE",
    "DownloadError",
    "DownloadOptions",
    "DownloadStoppedError",
    "NetworkError",
    "ResumableTransfer",
    "RetryPolicy",
    "TransferControl",
    "VerificationError",
    "compute_file_sha256",
    "create_http_client",
    "file_name_from_url",
    "parse_content_range_total",
]
