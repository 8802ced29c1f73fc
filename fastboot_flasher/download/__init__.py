"""Image download module.

This module handles:
- Resumable single-file transfers with retry and checksum verification
- A bounded-concurrency queue with pause/resume/stop per task
"""

from fastboot_flasher.download.queue import (
    DownloadHandle,
    DownloadQueue,
    DownloadTask,
    QueueStatus,
    clamp_concurrency,
)
from fastboot_flasher.download.transfer import (
    DownloadError,
    DownloadOptions,
    DownloadStoppedError,
    NetworkError,
    ResumableTransfer,
    RetryPolicy,
    TransferControl,
    VerificationError,
    compute_file_sha256,
    create_http_client,
)

__all__ = [
    # Queue
    "DownloadHandle",
    "DownloadQueue",
    "DownloadTask",
    "QueueStatus",
    "clamp_concurrency",
    # Transfer
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
]
