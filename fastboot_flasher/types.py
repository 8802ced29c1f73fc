"""Shared type definitions for fastboot_flasher.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class CommandErrorKind(str, Enum):
    """Why a fastboot command did not succeed."""

    TIMEOUT = "timeout"
    PROCESS_SPAWN_ERROR = "process_spawn_error"
    NON_ZERO_EXIT = "non_zero_exit"
    CANCELLED = "cancelled"


class TransportKind(str, Enum):
    """Transport a device was enumerated on."""

    FASTBOOT = "fastboot"
    UNKNOWN = "unknown"


class DownloadState(str, Enum):
    """Lifecycle state of a download task."""

    QUEUED = "queued"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are possible."""
        return self in (
            DownloadState.COMPLETED,
            DownloadState.FAILED,
            DownloadState.STOPPED,
        )


class FlashStage(str, Enum):
    """Stage of a flash run, in execution order."""

    PREPARING = "preparing"
    ERASING = "erasing"
    FLASHING = "flashing"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether the run has finished."""
        return self in (FlashStage.COMPLETED, FlashStage.FAILED)


# Forward order; FAILED is reachable from any non-terminal stage.
FLASH_STAGE_ORDER: tuple[FlashStage, ...] = (
    FlashStage.PREPARING,
    FlashStage.ERASING,
    FlashStage.FLASHING,
    FlashStage.VERIFYING,
    FlashStage.COMPLETED,
)


class LogLevel(str, Enum):
    """Level of a flash session log entry."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one fastboot invocation.

    Attributes:
        success: Whether the process exited with code 0.
        output: Decoded stdout, or stderr when stdout was empty.
        error_kind: Failure category, None on success.
        exit_code: Process exit code (-1 when killed or never started).
        error_message: Human-readable failure description.
        invocation_id: Id the invocation had in the live table.
    """

    success: bool
    output: str
    error_kind: CommandErrorKind | None = None
    exit_code: int | None = None
    error_message: str | None = None
    invocation_id: str | None = None


@dataclass(frozen=True)
class LogEntry:
    """One line of a flash session log.

    Attributes:
        timestamp: When the entry was recorded (UTC).
        level: Severity.
        message: Human-readable text.
        code: Machine-readable code for warnings and errors.
    """

    timestamp: datetime
    level: LogLevel
    message: str
    code: str | None = None


@dataclass(frozen=True)
class DownloadProgress:
    """Progress of a single transfer.

    Attributes:
        percent: Completion percentage (0-100), 0 when total is unknown.
        speed: Instantaneous speed in bytes per second.
        downloaded: Bytes present on disk for this file.
        total: Expected file size in bytes, if known.
        state: Current task state.
        warning: Non-fatal condition reported with this update.
    """

    percent: float
    speed: float
    downloaded: int
    total: int | None
    state: DownloadState
    warning: str | None = None


@dataclass(frozen=True)
class Device:
    """A device seen in one enumeration pass."""

    identifier: str
    transport: TransportKind = TransportKind.FASTBOOT


@dataclass
class ImageValidation:
    """Result of validating an image file before use."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


__all__ = [
    "FLASH_STAGE_ORDER",
    "CommandErrorKind",
    "CommandResult",
    "Device",
    "DownloadProgress",
    "DownloadState",
    "FlashStage",
    "ImageValidation",
    "LogEntry",
    "LogLevel",
    "TransportKind",
]
