"""Tests for the bounded-concurrency download queue.

Transfers are replaced by a fake that blocks on a gate so the tests can
observe how many run at once.
"""

import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest

from fastboot_flasher.config import Settings
from fastboot_flasher.download.queue import DownloadQueue, clamp_concurrency
from fastboot_flasher.download.transfer import DownloadError, DownloadStoppedError, NetworkError
from fastboot_flasher.types import DownloadProgress, DownloadState


class FakeTransfers:
    """Factory of gated fake transfers that records concurrency."""

    def __init__(self) -> None:
        self.gate = threading.Event()
        self.lock = threading.Lock()
        self.running = 0
        self.max_running = 0
        self.started: list[str] = []
        self.fail_urls: set[str] = set()

    def __call__(self, client, url, destination_dir, options, control, on_progress):
        factory = self

        class _Transfer:
            def run(self) -> Path:
                with factory.lock:
                    factory.running += 1
                    factory.max_running = max(factory.max_running, factory.running)
                    factory.started.append(url)
                try:
                    on_progress(
                        DownloadProgress(
                            percent=50.0,
                            speed=10.0,
                            downloaded=5,
                            total=10,
                            state=DownloadState.ACTIVE,
                        )
                    )
                    while not factory.gate.wait(0.01):
                        if control.stopped:
                            raise DownloadStoppedError(f"Download stopped: {url}")
                    if url in factory.fail_urls:
                        raise NetworkError(f"HTTP error downloading {url}: 404")
                    return Path(destination_dir) / url.rsplit("/", 1)[-1]
                finally:
                    with factory.lock:
                        factory.running -= 1

        return _Transfer()


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.01)


@pytest.fixture
def transfers():
    """Gated fake transfer factory."""
    return FakeTransfers()


@pytest.fixture
def queue(transfers):
    """Queue with a concurrency limit of 2."""
    q = DownloadQueue(
        client=MagicMock(spec=httpx.Client),
        max_concurrent=2,
        transfer_factory=transfers,
    )
    yield q
    transfers.gate.set()
    q.close()


class TestClampConcurrency:
    """Tests for clamp_concurrency."""

    def test_clamps_into_range(self):
        """Limits should be clamped to 1-10."""
        assert clamp_concurrency(0) == 1
        assert clamp_concurrency(5) == 5
        assert clamp_concurrency(50) == 10


class TestDownloadQueue:
    """Tests for DownloadQueue."""

    def test_never_exceeds_limit(self, queue, transfers, tmp_path):
        """At most max_concurrent transfers should run at once."""
        handles = [
            queue.submit(f"https://example.com/file{i}.img", tmp_path) for i in range(5)
        ]

        _wait_for(lambda: transfers.running == 2)
        status = queue.status()
        assert status.active == 2
        assert status.queued == 3

        transfers.gate.set()
        results = [handle.result(timeout=5) for handle in handles]

        assert transfers.max_running == 2
        assert results[0] == tmp_path / "file0.img"
        assert queue.status().active == 0
        assert queue.status().queued == 0

    def test_starts_in_submission_order(self, queue, transfers, tmp_path):
        """Waiting tasks should start in FIFO order."""
        handles = [
            queue.submit(f"https://example.com/file{i}.img", tmp_path) for i in range(4)
        ]
        transfers.gate.set()
        for handle in handles:
            handle.result(timeout=5)

        assert transfers.started[2:] == [
            "https://example.com/file2.img",
            "https://example.com/file3.img",
        ]

    def test_failure_frees_slot(self, queue, transfers, tmp_path):
        """A failed task should be recorded and let the next one start."""
        transfers.fail_urls.add("https://example.com/bad.img")
        bad = queue.submit("https://example.com/bad.img", tmp_path)
        good = queue.submit("https://example.com/good.img", tmp_path)
        transfers.gate.set()

        with pytest.raises(NetworkError):
            bad.result(timeout=5)
        assert good.result(timeout=5) == tmp_path / "good.img"
        assert queue.get_task(bad.id).state == DownloadState.FAILED
        assert "404" in queue.get_task(bad.id).error

    def test_finished_tasks_are_released(self, transfers, tmp_path):
        """Only the most recent finished tasks should stay queryable."""
        transfers.gate.set()
        q = DownloadQueue(
            client=MagicMock(spec=httpx.Client),
            max_concurrent=2,
            transfer_factory=transfers,
            history_size=3,
        )
        try:
            handles = [
                q.submit(f"https://example.com/file{i}.img", tmp_path) for i in range(10)
            ]
            for handle in handles:
                handle.result(timeout=5)

            _wait_for(lambda: q.status().active == 0)
            tasks = q.list_tasks()
            assert len(tasks) == 3
            assert all(task.state == DownloadState.COMPLETED for task in tasks)
            assert q.get_task(handles[-1].id) is not None
            assert q.get_task(handles[0].id) is None
            assert not q.stop(handles[-1].id)
        finally:
            q.close()

    def test_progress_is_recorded(self, queue, transfers, tmp_path):
        """The last progress record should be available per task."""
        records = []
        handle = queue.submit("https://example.com/a.img", tmp_path, on_progress=records.append)

        _wait_for(lambda: queue.progress(handle.id) is not None)
        assert queue.progress(handle.id).percent == 50.0
        assert records[0].downloaded == 5

    def test_stop_queued_task(self, queue, transfers, tmp_path):
        """Stopping a queued task should remove it without starting it."""
        queue.submit("https://example.com/a.img", tmp_path)
        queue.submit("https://example.com/b.img", tmp_path)
        waiting = queue.submit("https://example.com/c.img", tmp_path)

        assert queue.stop(waiting.id) is True
        with pytest.raises(DownloadStoppedError):
            waiting.result(timeout=1)
        assert queue.get_task(waiting.id) is None
        assert queue.status().queued == 0

        transfers.gate.set()
        _wait_for(lambda: queue.status().active == 0)
        assert "https://example.com/c.img" not in transfers.started

    def test_stop_active_task(self, queue, transfers, tmp_path):
        """Stopping an active task should free its slot for a waiting one."""
        first = queue.submit("https://example.com/a.img", tmp_path)
        queue.submit("https://example.com/b.img", tmp_path)
        queue.submit("https://example.com/c.img", tmp_path)
        _wait_for(lambda: transfers.running == 2)

        assert queue.stop(first.id) is True
        with pytest.raises(DownloadStoppedError):
            first.result(timeout=5)

        _wait_for(lambda: "https://example.com/c.img" in transfers.started)
        assert queue.get_task(first.id) is None

    def test_stop_unknown_task(self, queue):
        """Stopping an unknown task should return False."""
        assert queue.stop("missing") is False

    def test_pause_and_resume(self, queue, transfers, tmp_path):
        """Pause and resume should only apply to the right states."""
        handle = queue.submit("https://example.com/a.img", tmp_path)
        _wait_for(lambda: transfers.running == 1)

        assert queue.pause(handle.id) is True
        assert queue.get_task(handle.id).state == DownloadState.PAUSED
        assert queue.get_task(handle.id).control.paused
        assert queue.pause(handle.id) is False

        assert queue.resume(handle.id) is True
        assert queue.get_task(handle.id).state == DownloadState.ACTIVE
        assert queue.resume(handle.id) is False

    def test_pause_queued_task_is_rejected(self, queue, transfers, tmp_path):
        """Only active tasks can be paused."""
        queue.submit("https://example.com/a.img", tmp_path)
        queue.submit("https://example.com/b.img", tmp_path)
        waiting = queue.submit("https://example.com/c.img", tmp_path)

        assert queue.pause(waiting.id) is False

    def test_raising_limit_starts_waiting(self, queue, transfers, tmp_path):
        """Raising the limit should start waiting tasks immediately."""
        for i in range(4):
            queue.submit(f"https://example.com/file{i}.img", tmp_path)
        _wait_for(lambda: transfers.running == 2)

        assert queue.set_concurrency_limit(4) == 4
        _wait_for(lambda: transfers.running == 4)
        assert queue.status().max_concurrent == 4

    def test_limit_is_clamped(self, queue):
        """Out-of-range limits should be clamped."""
        assert queue.set_concurrency_limit(0) == 1
        assert queue.set_concurrency_limit(99) == 10
        assert queue.max_concurrent == 10

    def test_rejects_disallowed_url(self, transfers, tmp_path):
        """URLs outside the allowed domains should be rejected."""
        q = DownloadQueue(
            client=MagicMock(spec=httpx.Client),
            allowed_domains=["example.com"],
            transfer_factory=transfers,
        )
        try:
            with pytest.raises(DownloadError) as exc_info:
                q.submit("https://evil.org/boot.img", tmp_path)
            assert exc_info.value.code == "url_not_allowed"
        finally:
            q.close()

    def test_closed_queue_rejects_submit(self, transfers, tmp_path):
        """A closed queue should not accept new downloads."""
        q = DownloadQueue(client=MagicMock(spec=httpx.Client), transfer_factory=transfers)
        q.close()

        with pytest.raises(DownloadError) as exc_info:
            q.submit("https://example.com/a.img", tmp_path)
        assert exc_info.value.code == "closed"

    def test_close_stops_everything(self, transfers, tmp_path):
        """close should stop active and waiting tasks."""
        q = DownloadQueue(
            client=MagicMock(spec=httpx.Client),
            max_concurrent=1,
            transfer_factory=transfers,
        )
        active = q.submit("https://example.com/a.img", tmp_path)
        waiting = q.submit("https://example.com/b.img", tmp_path)
        _wait_for(lambda: transfers.running == 1)

        q.close()

        with pytest.raises(DownloadStoppedError):
            active.result(timeout=5)
        with pytest.raises(DownloadStoppedError):
            waiting.result(timeout=5)

    def test_default_options_are_copied(self, queue):
        """Mutating default_options should not affect the queue."""
        options = queue.default_options
        options.overwrite = True
        assert queue.default_options.overwrite is False


class TestFromSettings:
    """Tests for DownloadQueue.from_settings."""

    def test_applies_settings(self):
        """Settings should configure the limit and default options."""
        settings = Settings(
            max_concurrent_downloads=4,
            download_max_retries=7,
            download_retry_delay=0.5,
            remove_partial_on_fail=True,
        )
        client = MagicMock(spec=httpx.Client)
        q = DownloadQueue.from_settings(settings, client=client)
        try:
            assert q.max_concurrent == 4
            assert q.default_options.retry.max_retries == 7
            assert q.default_options.retry.delay == 0.5
            assert q.default_options.remove_on_fail is True
        finally:
            q.close()

        client.close.assert_not_called()
