"""Flash session state: stage, progress and log.

A FlashSession is created for each run and mutated only by the
orchestrator. Readers take immutable snapshots; subscribers receive
SessionUpdate records as the session changes.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from fastboot_flasher.types import FLASH_STAGE_ORDER, FlashStage, LogEntry, LogLevel

logger = logging.getLogger(__name__)

_LOGGING_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class FlashError(Exception):
    """Base exception for flash errors."""

    def __init__(self, message: str, error_code: str) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class InvalidStageTransitionError(FlashError):
    """A stage change that would skip ahead, regress or leave a terminal stage."""

    def __init__(self, current: FlashStage, requested: FlashStage) -> None:
        super().__init__(
            f"Illegal stage transition: {current.value} -> {requested.value}",
            error_code="INVALID_STAGE_TRANSITION",
        )
        self.current = current
        self.requested = requested


@dataclass(frozen=True)
class FlashSnapshot:
    """Immutable view of a session.

    Attributes:
        stage: Current stage.
        progress: Overall progress, 0-100.
        logs: Log entries in order.
        error: Message of the failure, if the session failed.
        error_code: Code of the failure, if the session failed.
    """

    stage: FlashStage
    progress: float
    logs: tuple[LogEntry, ...]
    error: str | None = None
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable form of the snapshot."""
        return {
            "stage": self.stage.value,
            "progress": self.progress,
            "error": self.error,
            "error_code": self.error_code,
            "logs": [
                {
                    "timestamp": entry.timestamp.isoformat(),
                    "level": entry.level.value,
                    "message": entry.message,
                    "code": entry.code,
                }
                for entry in self.logs
            ],
        }


@dataclass(frozen=True)
class SessionUpdate:
    """A change delivered to progress sinks.

    `entry` is set for log updates and None for stage/progress updates.
    """

    stage: FlashStage
    progress: float
    entry: LogEntry | None = None


class ProgressSink(Protocol):
    """Receives session updates."""

    def deliver(self, update: SessionUpdate) -> None: ...


class FlashSession:
    """Stage, progress and log of one flash run."""

    def __init__(self, notify: Callable[[SessionUpdate], None] | None = None) -> None:
        self._lock = threading.Lock()
        self._notify = notify
        self._detached = False
        self._stage = FlashStage.PREPARING
        self._progress = 0.0
        self._logs: list[LogEntry] = []
        self._error: str | None = None
        self._error_code: str | None = None

    @property
    def stage(self) -> FlashStage:
        with self._lock:
            return self._stage

    @property
    def progress(self) -> float:
        with self._lock:
            return self._progress

    @property
    def detached(self) -> bool:
        return self._detached

    def detach(self) -> None:
        """Stop delivering updates; the session itself stays readable."""
        self._detached = True

    def _publish(self, update: SessionUpdate) -> None:
        if self._notify is not None and not self._detached:
            self._notify(update)

    def advance_to(self, stage: FlashStage) -> None:
        """Move to the next stage in order.

        Reaching COMPLETED sets progress to 100.

        Raises:
            InvalidStageTransitionError: If `stage` is not the immediate
                successor of the current stage.
        """
        with self._lock:
            current = self._stage
            if (
                current.is_terminal
                or stage not in FLASH_STAGE_ORDER
                or FLASH_STAGE_ORDER.index(stage) != FLASH_STAGE_ORDER.index(current) + 1
            ):
                raise InvalidStageTransitionError(current, stage)
            self._stage = stage
            if stage == FlashStage.COMPLETED:
                self._progress = 100.0
            update = SessionUpdate(stage=stage, progress=self._progress)
        self._publish(update)

    def fail(self, message: str, error_code: str | None = None) -> None:
        """Jump to FAILED from any non-terminal stage.

        Raises:
            InvalidStageTransitionError: If the session already finished.
        """
        with self._lock:
            if self._stage.is_terminal:
                raise InvalidStageTransitionError(self._stage, FlashStage.FAILED)
            self._stage = FlashStage.FAILED
            self._error = message
            self._error_code = error_code
            update = SessionUpdate(stage=FlashStage.FAILED, progress=self._progress)
        self._publish(update)

    def set_progress(self, value: float) -> None:
        """Raise progress to `value`; lower values are ignored.

        Raises:
            ValueError: If `value` is outside 0-100, or is 100 before the
                session completed.
        """
        if not 0 <= value <= 100:
            raise ValueError(f"progress must be within 0-100, got {value}")
        with self._lock:
            if value >= 100 and self._stage != FlashStage.COMPLETED:
                raise ValueError("progress reaches 100 only when the flash completes")
            if value <= self._progress:
                return
            self._progress = value
            update = SessionUpdate(stage=self._stage, progress=value)
        self._publish(update)

    def add_log(self, level: LogLevel, message: str, code: str | None = None) -> LogEntry:
        """Append a log entry and mirror it to the module logger."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc),
            level=level,
            message=message,
            code=code,
        )
        with self._lock:
            self._logs.append(entry)
            update = SessionUpdate(stage=self._stage, progress=self._progress, entry=entry)
        logger.log(_LOGGING_LEVELS[level], "%s", message)
        self._publish(update)
        return entry

    def snapshot(self) -> FlashSnapshot:
        with self._lock:
            return FlashSnapshot(
                stage=self._stage,
                progress=self._progress,
                logs=tuple(self._logs),
                error=self._error,
                error_code=self._error_code,
            )


__all__ = [
    "FlashError",
    "FlashSession",
    "FlashSnapshot",
    "InvalidStageTransitionError",
    "ProgressSink",
    "SessionUpdate",
]
