"""Bounded-concurrency download queue.

Tasks start immediately while fewer than the limit are active, otherwise
they wait in FIFO order. Every terminal outcome frees a slot and starts
waiting tasks until the limit is reached again.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path

import httpx

from fastboot_flasher.config import Settings
from fastboot_flasher.download.transfer import (
    DownloadError,
    DownloadOptions,
    DownloadStoppedError,
    ProgressCallback,
    ResumableTransfer,
    RetryPolicy,
    TransferControl,
    create_http_client,
)
from fastboot_flasher.security import is_allowed_url
from fastboot_flasher.types import DownloadProgress, DownloadState

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 3
MIN_CONCURRENT = 1
MAX_CONCURRENT = 10

# Completed and failed tasks kept for status queries
DEFAULT_HISTORY_SIZE = 50


def clamp_concurrency(limit: int) -> int:
    """Clamp a concurrency limit into the supported range."""
    return max(MIN_CONCURRENT, min(MAX_CONCURRENT, limit))


@dataclass(eq=False)
class DownloadTask:
    """A submitted download and its bookkeeping."""

    id: str
    url: str
    destination_dir: Path
    options: DownloadOptions
    state: DownloadState = DownloadState.QUEUED
    progress: DownloadProgress | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    control: TransferControl = field(default_factory=TransferControl, repr=False)
    future: Future[Path] = field(default_factory=Future, repr=False)
    on_progress: ProgressCallback | None = field(default=None, repr=False)


@dataclass(frozen=True)
class QueueStatus:
    """Point-in-time counters of a DownloadQueue."""

    active: int
    queued: int
    max_concurrent: int


class DownloadHandle:
    """Caller-side view of a submitted download."""

    def __init__(self, task: DownloadTask) -> None:
        self._task = task

    @property
    def id(self) -> str:
        return self._task.id

    @property
    def url(self) -> str:
        return self._task.url

    @property
    def future(self) -> Future[Path]:
        return self._task.future

    def done(self) -> bool:
        return self._task.future.done()

    def result(self, timeout: float | None = None) -> Path:
        """Wait for the download.

        Args:
            timeout: Seconds to wait (forever if None).

        Returns:
            Path to the downloaded (or already present) file.

        Raises:
            DownloadError: The terminal error of the task.
            TimeoutError: If the timeout elapses first.
        """
        return self._task.future.result(timeout)


TransferFactory = Callable[..., ResumableTransfer]


class DownloadQueue:
    """Runs downloads on a worker pool with a runtime-adjustable limit."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        default_options: DownloadOptions | None = None,
        allowed_domains: Sequence[str] | None = None,
        transfer_factory: TransferFactory = ResumableTransfer,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        """Initialize the queue.

        Args:
            client: HTTP client shared by transfers (created if None).
            max_concurrent: Initial concurrency limit, clamped to 1-10.
            default_options: Options used when submit() gets none.
            allowed_domains: Domains URLs must belong to (any if empty).
            transfer_factory: Callable building the per-task transfer.
            history_size: How many finished tasks stay queryable.
        """
        self._owns_client = client is None
        self._client = client if client is not None else create_http_client()
        self._max_concurrent = clamp_concurrency(max_concurrent)
        self._default_options = default_options or DownloadOptions()
        self._allowed_domains = list(allowed_domains or [])
        self._transfer_factory = transfer_factory

        self._lock = threading.Lock()
        self._tasks: dict[str, DownloadTask] = {}
        self._history: deque[DownloadTask] = deque(maxlen=max(0, history_size))
        self._waiting: deque[DownloadTask] = deque()
        self._active: set[str] = set()
        self._closed = False
        # Sized for the highest limit so a started task never waits for a thread
        self._pool = ThreadPoolExecutor(
            max_workers=MAX_CONCURRENT,
            thread_name_prefix="download",
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: httpx.Client | None = None,
    ) -> DownloadQueue:
        """Build a queue configured from application settings."""
        options = DownloadOptions(
            retry=RetryPolicy(
                max_retries=settings.download_max_retries,
                delay=settings.download_retry_delay,
            ),
            remove_on_stop=settings.remove_partial_on_stop,
            remove_on_fail=settings.remove_partial_on_fail,
        )
        owns_client = client is None
        if client is None:
            client = create_http_client(settings.user_agent, settings.http_timeout)
        queue = cls(
            client=client,
            max_concurrent=settings.max_concurrent_downloads,
            default_options=options,
            allowed_domains=settings.allowed_download_domains,
        )
        queue._owns_client = owns_client
        return queue

    @property
    def default_options(self) -> DownloadOptions:
        """A copy of the options applied when submit() gets none."""
        return replace(self._default_options)

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def submit(
        self,
        url: str,
        destination: Path,
        options: DownloadOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> DownloadHandle:
        """Queue a download.

        Args:
            url: Source URL.
            destination: Directory the file is written to.
            options: Per-download options (queue defaults if None).
            on_progress: Called with each DownloadProgress record.

        Returns:
            Handle resolving to the final file path.

        Raises:
            DownloadError: If the URL is not allowed or the queue is closed.
        """
        if not is_allowed_url(url, self._allowed_domains):
            raise DownloadError(f"URL not allowed: {url}", code="url_not_allowed")

        task = DownloadTask(
            id=uuid.uuid4().hex[:12],
            url=url,
            destination_dir=Path(destination),
            options=options if options is not None else replace(self._default_options),
            on_progress=on_progress,
        )

        with self._lock:
            if self._closed:
                raise DownloadError("Download queue is closed", code="closed")
            self._tasks[task.id] = task
            if len(self._active) < self._max_concurrent:
                self._start_locked(task)
            else:
                self._waiting.append(task)
                logger.info(
                    "Queued download %s (%d waiting): %s",
                    task.id,
                    len(self._waiting),
                    url,
                )

        return DownloadHandle(task)

    def _start_locked(self, task: DownloadTask) -> None:
        self._active.add(task.id)
        task.state = DownloadState.ACTIVE
        logger.info("Starting download %s: %s", task.id, task.url)
        self._pool.submit(self._run_task, task)

    def _drain_locked(self) -> None:
        while self._waiting and len(self._active) < self._max_concurrent:
            self._start_locked(self._waiting.popleft())

    def _record_progress(self, task: DownloadTask, progress: DownloadProgress) -> None:
        task.progress = progress
        if task.on_progress is not None:
            task.on_progress(progress)

    def _run_task(self, task: DownloadTask) -> None:
        try:
            transfer = self._transfer_factory(
                self._client,
                task.url,
                task.destination_dir,
                task.options,
                control=task.control,
                on_progress=lambda progress: self._record_progress(task, progress),
            )
            path = transfer.run()
        except DownloadStoppedError as e:
            self._finish(task, DownloadState.STOPPED, error=e)
        except DownloadError as e:
            logger.error("Download %s failed: %s", task.id, e)
            self._finish(task, DownloadState.FAILED, error=e)
        except Exception as e:
            logger.exception("Download %s failed unexpectedly", task.id)
            self._finish(task, DownloadState.FAILED, error=e)
        else:
            self._finish(task, DownloadState.COMPLETED, result=path)

    def _finish(
        self,
        task: DownloadTask,
        state: DownloadState,
        result: Path | None = None,
        error: BaseException | None = None,
    ) -> None:
        with self._lock:
            self._active.discard(task.id)
            task.state = state
            if error is not None:
                task.error = str(error)
            self._tasks.pop(task.id, None)
            if state != DownloadState.STOPPED:
                self._history.append(task)
            if not self._closed:
                self._drain_locked()

        if error is not None:
            task.future.set_exception(error)
        else:
            task.future.set_result(result)

    def set_concurrency_limit(self, limit: int) -> int:
        """Change the concurrency limit.

        Lowering the limit lets active tasks finish; raising it starts
        waiting tasks immediately.

        Args:
            limit: Requested limit, clamped to 1-10.

        Returns:
            The effective limit.
        """
        effective = clamp_concurrency(limit)
        with self._lock:
            self._max_concurrent = effective
            self._drain_locked()
        logger.info("Download concurrency limit set to %d", effective)
        return effective

    def status(self) -> QueueStatus:
        with self._lock:
            return QueueStatus(
                active=len(self._active),
                queued=len(self._waiting),
                max_concurrent=self._max_concurrent,
            )

    def _find_locked(self, task_id: str) -> DownloadTask | None:
        task = self._tasks.get(task_id)
        if task is None:
            task = next((t for t in self._history if t.id == task_id), None)
        return task

    def progress(self, task_id: str) -> DownloadProgress | None:
        """Return the last progress record of a task, if any."""
        with self._lock:
            task = self._find_locked(task_id)
        return task.progress if task is not None else None

    def get_task(self, task_id: str) -> DownloadTask | None:
        """Return a live task or one of the recently finished ones."""
        with self._lock:
            return self._find_locked(task_id)

    def list_tasks(self) -> list[DownloadTask]:
        """Recently finished tasks followed by the live ones."""
        with self._lock:
            return list(self._history) + list(self._tasks.values())

    def pause(self, task_id: str) -> bool:
        """Pause an active download, keeping its slot."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.state != DownloadState.ACTIVE:
                return False
            task.state = DownloadState.PAUSED
        task.control.pause()
        logger.info("Paused download %s", task_id)
        return True

    def resume(self, task_id: str) -> bool:
        """Resume a paused download from its partial size."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.state != DownloadState.PAUSED:
                return False
            task.state = DownloadState.ACTIVE
        task.control.resume()
        logger.info("Resumed download %s", task_id)
        return True

    def stop(self, task_id: str) -> bool:
        """Stop a queued, active or paused download.

        A queued task is removed from the wait list; an active one is
        cancelled and frees its slot once its worker returns.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.state.is_terminal:
                return False
            queued = task in self._waiting
            if queued:
                self._waiting.remove(task)
                self._tasks.pop(task_id, None)
                task.state = DownloadState.STOPPED

        if queued:
            task.future.set_exception(DownloadStoppedError(f"Download stopped: {task.url}"))
        else:
            task.control.stop()
        logger.info("Stopped download %s", task_id)
        return True

    def close(self) -> None:
        """Stop all downloads and release the worker pool and HTTP client."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            waiting = list(self._waiting)
            self._waiting.clear()
            active = [self._tasks[task_id] for task_id in self._active if task_id in self._tasks]
            for task in waiting:
                task.state = DownloadState.STOPPED
                self._tasks.pop(task.id, None)

        for task in waiting:
            task.future.set_exception(DownloadStoppedError(f"Download stopped: {task.url}"))
        for task in active:
            task.control.stop()

        self._pool.shutdown(wait=True)
        if self._owns_client:
            self._client.close()
        logger.debug("Download queue closed")

    def __enter__(self) -> DownloadQueue:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = [
    "DEFAULT_MAX_CONCURRENT",
    "MAX_CONCURRENT",
    "MIN_CONCURRENT",
    "DownloadHandle",
    "DownloadQueue",
    "DownloadTask",
    "QueueStatus",
    "clamp_concurrency",
]
