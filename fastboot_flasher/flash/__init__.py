"""Device flashing module.

This module handles:
- The staged flash run (preparing, erasing, flashing, verifying)
- Per-stage failure policy and weighted progress
- Session logs, snapshots and progress sinks

Stages and partitions are processed strictly one at a time; at most one
run is in progress per orchestrator.
"""

from fastboot_flasher.flash.orchestrator import (
    DEFAULT_ERASE_PARTITIONS,
    PARTITION_ERASE_WARNING,
    CommandFailedError,
    DeviceNotFoundError,
    FlashInProgressError,
    FlashOrchestrator,
    ImageIntegrityError,
    StagePolicy,
    check_image_integrity,
)
from fastboot_flasher.flash.session import (
    FlashError,
    FlashSession,
    FlashSnapshot,
    InvalidStageTransitionError,
    ProgressSink,
    SessionUpdate,
)

__all__ = [
    # Orchestrator
    "DEFAULT_ERASE_PARTITIONS",
    "PARTITION_ERASE_WARNING",
    "CommandFailedError",
    "DeviceNotFoundError",
    "FlashInProgressError",
    "FlashOrchestrator",
    "ImageIntegrityError",
    "StagePolicy",
    "check_image_integrity",
    # Session
    "FlashError",
    "FlashSession",
    "FlashSnapshot",
    "InvalidStageTransitionError",
    "ProgressSink",
    "SessionUpdate",
]
