"""Staged flashing of a connected device.

Stages run strictly in order in the calling thread:

- preparing: a device must be discoverable (fatal)
- erasing: each configured partition is erased (best-effort)
- flashing: each supplied image is checked and flashed (fatal, remaining
  partitions are skipped)
- verifying: the device must still be connected and must reboot (fatal)

Every stage runs through one generic loop driven by its StagePolicy.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from fastboot_flasher.fastboot.commands import FastbootCommands
from fastboot_flasher.fastboot.discovery import DeviceDiscovery
from fastboot_flasher.flash.session import (
    FlashError,
    FlashSession,
    FlashSnapshot,
    ProgressSink,
    SessionUpdate,
)
from fastboot_flasher.images.validate import (
    MAX_IMAGE_SIZE,
    MIN_IMAGE_SIZE,
    validate_image_file,
)
from fastboot_flasher.types import CommandResult, FlashStage, LogLevel

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ERASE_PARTITIONS = ("dtbo", "boot", "cache", "userdata")

# Code attached to the (non-fatal) erase failure log entries
PARTITION_ERASE_WARNING = "PARTITION_ERASE_WARNING"


class DeviceNotFoundError(FlashError):
    """No fastboot device is connected."""

    def __init__(self, message: str = "No fastboot device found") -> None:
        super().__init__(message, error_code="DEVICE_NOT_FOUND")


class ImageIntegrityError(FlashError):
    """An image file failed its pre-flash checks."""

    def __init__(self, path: str, errors: Sequence[str]) -> None:
        super().__init__(
            f"Image integrity check failed for {path}: {'; '.join(errors)}",
            error_code="IMAGE_INTEGRITY_ERROR",
        )
        self.path = path
        self.errors = list(errors)


class CommandFailedError(FlashError):
    """A fastboot command did not succeed."""

    def __init__(self, action: str, result: CommandResult) -> None:
        detail = result.error_message or result.output or "unknown error"
        if result.output and result.output != detail:
            detail = f"{detail} ({result.output})"
        super().__init__(f"{action} failed: {detail}", error_code="COMMAND_FAILED")
        self.result = result


class FlashInProgressError(FlashError):
    """A flash run is already in progress."""

    def __init__(self) -> None:
        super().__init__("A flash is already in progress", error_code="FLASH_IN_PROGRESS")


@dataclass(frozen=True)
class StagePolicy:
    """How a stage treats item failures and which progress band it covers.

    Attributes:
        stage: Stage the policy applies to.
        continue_on_item_failure: Log a warning and go on (True) or abort
            the run (False).
        band: (start, end) progress range of the stage.
        warning_code: Log code for tolerated item failures.
    """

    stage: FlashStage
    continue_on_item_failure: bool
    band: tuple[float, float]
    warning_code: str | None = None


PREPARING_POLICY = StagePolicy(FlashStage.PREPARING, False, (0.0, 20.0))
ERASING_POLICY = StagePolicy(
    FlashStage.ERASING,
    True,
    (20.0, 60.0),
    warning_code=PARTITION_ERASE_WARNING,
)
FLASHING_POLICY = StagePolicy(FlashStage.FLASHING, False, (60.0, 90.0))
VERIFYING_POLICY = StagePolicy(FlashStage.VERIFYING, False, (90.0, 100.0))


def check_image_integrity(
    path: str | Path,
    min_size: int = MIN_IMAGE_SIZE,
    max_size: int = MAX_IMAGE_SIZE,
) -> list[str]:
    """Check that an image can be flashed.

    Args:
        path: Image file.
        min_size: Smallest acceptable size in bytes.
        max_size: Size above which a warning is returned.

    Returns:
        Warnings (e.g. an unusually large image).

    Raises:
        ImageIntegrityError: If the file is missing, empty or too small.
    """
    validation = validate_image_file(path, min_size, max_size, check_extension=False)
    if not validation.is_valid:
        raise ImageIntegrityError(str(path), validation.errors)
    return validation.warnings


class FlashOrchestrator:
    """Runs the staged flash of a device and publishes its progress."""

    def __init__(
        self,
        discovery: DeviceDiscovery,
        commands: FastbootCommands,
        erase_partitions: Sequence[str] = DEFAULT_ERASE_PARTITIONS,
        min_image_size: int = MIN_IMAGE_SIZE,
        max_image_size: int = MAX_IMAGE_SIZE,
    ) -> None:
        self._discovery = discovery
        self._commands = commands
        self._erase_partitions = tuple(erase_partitions)
        self._min_image_size = min_image_size
        self._max_image_size = max_image_size

        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._sinks: list[ProgressSink] = []
        self._session = FlashSession(self._publish)

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def erase_partitions(self) -> tuple[str, ...]:
        return self._erase_partitions

    def subscribe(self, sink: ProgressSink) -> Callable[[], None]:
        """Register a sink for session updates.

        Returns:
            Callable that unsubscribes the sink.
        """
        with self._state_lock:
            self._sinks.append(sink)

        def unsubscribe() -> None:
            with self._state_lock:
                if sink in self._sinks:
                    self._sinks.remove(sink)

        return unsubscribe

    def _publish(self, update: SessionUpdate) -> None:
        with self._state_lock:
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                sink.deliver(update)
            except Exception:
                logger.exception("Progress sink %r failed", sink)

    def snapshot(self) -> FlashSnapshot:
        """Return the state of the current session."""
        with self._state_lock:
            session = self._session
        return session.snapshot()

    def cancel_flash(self) -> None:
        """Abandon the current session and start a fresh one.

        Only the bookkeeping is reset. A run in progress keeps going on the
        abandoned session, which no longer notifies sinks.
        """
        with self._state_lock:
            old = self._session
            self._session = FlashSession(self._publish)
        old.add_log(LogLevel.WARNING, "Flash cancelled by user", code="FLASH_CANCELLED")
        old.detach()

    def run(self, image_paths: Mapping[str, str | Path | None]) -> FlashSnapshot:
        """Flash a device.

        Args:
            image_paths: Partition name to image path; partitions with an
                empty path are not flashed.

        Returns:
            Snapshot of the completed session.

        Raises:
            FlashInProgressError: If another run is in progress.
            FlashError: The fatal failure that ended the run.
        """
        self._reserve()
        return self._run_reserved(image_paths)

    def start(self, image_paths: Mapping[str, str | Path | None]) -> threading.Thread:
        """Reserve the orchestrator and run the flash in a background thread.

        The reservation happens before this returns, so a concurrent run()
        or start() is rejected at once. Fatal failures end up in the
        session log and snapshot.

        Returns:
            The started daemon thread.

        Raises:
            FlashInProgressError: If another run is in progress.
        """
        self._reserve()
        paths = dict(image_paths)

        def target() -> None:
            try:
                self._run_reserved(paths)
            except FlashError as e:
                logger.debug("Background flash ended: %s (%s)", e.message, e.error_code)

        thread = threading.Thread(target=target, name="flash", daemon=True)
        try:
            thread.start()
        except RuntimeError:
            self._run_lock.release()
            raise
        return thread

    def _reserve(self) -> None:
        if not self._run_lock.acquire(blocking=False):
            raise FlashInProgressError()

    def _run_reserved(self, image_paths: Mapping[str, str | Path | None]) -> FlashSnapshot:
        try:
            session = FlashSession(self._publish)
            with self._state_lock:
                self._session = session

            session.add_log(LogLevel.INFO, "Starting flash")
            try:
                self._prepare(session)
                self._erase(session)
                self._flash(session, image_paths)
                self._verify(session)
                session.advance_to(FlashStage.COMPLETED)
                session.add_log(LogLevel.SUCCESS, "Flash completed")
            except FlashError as e:
                session.add_log(LogLevel.ERROR, e.message, code=e.error_code)
                session.fail(e.message, e.error_code)
                raise

            return session.snapshot()
        finally:
            self._run_lock.release()

    def _run_stage_over_items(
        self,
        session: FlashSession,
        policy: StagePolicy,
        items: Sequence[T],
        action: Callable[[T], None],
        describe: Callable[[T], str] = str,
    ) -> None:
        """Run `action` for each item under the stage's failure policy.

        Progress is split evenly over the items within the stage band and
        reported as each item starts.
        """
        if session.stage != policy.stage:
            session.advance_to(policy.stage)
        start, end = policy.band
        session.set_progress(start)

        step = (end - start) / len(items) if items else 0.0
        for index, item in enumerate(items):
            session.set_progress(start + step * index)
            try:
                action(item)
            except FlashError as e:
                if policy.continue_on_item_failure:
                    session.add_log(
                        LogLevel.WARNING,
                        f"{e.message}; continuing",
                        code=policy.warning_code,
                    )
                    continue
                skipped = [describe(rest) for rest in items[index + 1 :]]
                if skipped:
                    session.add_log(
                        LogLevel.WARNING,
                        f"Skipping remaining {policy.stage.value} steps: {', '.join(skipped)}",
                    )
                raise

    # Stages

    def _prepare(self, session: FlashSession) -> None:
        session.add_log(LogLevel.INFO, "Checking device connection")

        def check_device(_: None) -> None:
            scan = self._discovery.probe()
            if scan.failed and scan.result is not None:
                raise DeviceNotFoundError(
                    f"Device enumeration failed: {scan.result.error_message}"
                )
            if not scan.devices:
                raise DeviceNotFoundError()
            identifiers = ", ".join(device.identifier for device in scan.devices)
            session.add_log(LogLevel.SUCCESS, f"Device connected: {identifiers}")

        self._run_stage_over_items(session, PREPARING_POLICY, [None], check_device)

    def _erase(self, session: FlashSession) -> None:
        session.add_log(LogLevel.INFO, "Erasing partitions")

        def erase(partition: str) -> None:
            session.add_log(LogLevel.INFO, f"Erasing {partition}")
            result = self._commands.erase(partition)
            if not result.success:
                raise CommandFailedError(f"Erase {partition}", result)
            session.add_log(LogLevel.SUCCESS, f"Erased {partition}")

        self._run_stage_over_items(session, ERASING_POLICY, self._erase_partitions, erase)

    def _flash(
        self,
        session: FlashSession,
        image_paths: Mapping[str, str | Path | None],
    ) -> None:
        targets = [(partition, path) for partition, path in image_paths.items() if path]
        if not targets:
            session.add_log(LogLevel.WARNING, "No images to flash")

        def flash(target: tuple[str, str | Path]) -> None:
            partition, path = target
            for warning in check_image_integrity(path, self._min_image_size, self._max_image_size):
                session.add_log(LogLevel.WARNING, f"{partition}: {warning}")
            session.add_log(LogLevel.INFO, f"Flashing {partition} from {path}")
            result = self._commands.flash(partition, path)
            if not result.success:
                raise CommandFailedError(f"Flash {partition}", result)
            session.add_log(LogLevel.SUCCESS, f"Flashed {partition}")

        self._run_stage_over_items(
            session,
            FLASHING_POLICY,
            targets,
            flash,
            describe=lambda target: target[0],
        )

    def _verify(self, session: FlashSession) -> None:
        session.add_log(LogLevel.INFO, "Verifying device")

        def confirm_connected() -> None:
            if not self._discovery.is_connected():
                raise DeviceNotFoundError("Device disconnected during flashing")
            session.add_log(LogLevel.SUCCESS, "Device still connected")

        def reboot() -> None:
            session.add_log(LogLevel.INFO, "Rebooting device")
            result = self._commands.reboot()
            if not result.success:
                raise CommandFailedError("Reboot", result)
            session.add_log(LogLevel.SUCCESS, "Device rebooted")

        steps: list[Callable[[], None]] = [confirm_connected, reboot]
        self._run_stage_over_items(
            session,
            VERIFYING_POLICY,
            steps,
            lambda step: step(),
            describe=lambda step: step.__name__,
        )


__all__ = [
    "DEFAULT_ERASE_PARTITIONS",
    "ERASING_POLICY",
    "FLASHING_POLICY",
    "PARTITION_ERASE_WARNING",
    "PREPARING_POLICY",
    "VERIFYING_POLICY",
    "CommandFailedError",
    "DeviceNotFoundError",
    "FlashInProgressError",
    "FlashOrchestrator",
    "ImageIntegrityError",
    "StagePolicy",
    "check_image_integrity",
]
