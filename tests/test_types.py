"""Tests for shared types module."""

from datetime import datetime, timezone

from fastboot_flasher.types import (
    FLASH_STAGE_ORDER,
    CommandErrorKind,
    CommandResult,
    Device,
    DownloadProgress,
    DownloadState,
    FlashStage,
    ImageValidation,
    LogEntry,
    LogLevel,
    TransportKind,
)


class TestEnums:
    """Test enum definitions."""

    def test_command_error_kind_values(self) -> None:
        """CommandErrorKind should have expected values."""
        assert CommandErrorKind.TIMEOUT.value == "timeout"
        assert CommandErrorKind.PROCESS_SPAWN_ERROR.value == "process_spawn_error"
        assert CommandErrorKind.NON_ZERO_EXIT.value == "non_zero_exit"
        assert CommandErrorKind.CANCELLED.value == "cancelled"

    def test_download_state_terminal(self) -> None:
        """Only completed, failed and stopped are terminal."""
        terminal = {state for state in DownloadState if state.is_terminal}
        assert terminal == {
            DownloadState.COMPLETED,
            DownloadState.FAILED,
            DownloadState.STOPPED,
        }

    def test_flash_stage_terminal(self) -> None:
        """Completed and failed end a flash run."""
        assert FlashStage.COMPLETED.is_terminal
        assert FlashStage.FAILED.is_terminal
        assert not FlashStage.FLASHING.is_terminal

    def test_flash_stage_order(self) -> None:
        """Stage order runs from preparing to completed without failed."""
        assert FLASH_STAGE_ORDER[0] == FlashStage.PREPARING
        assert FLASH_STAGE_ORDER[-1] == FlashStage.COMPLETED
        assert FlashStage.FAILED not in FLASH_STAGE_ORDER

    def test_log_level_values(self) -> None:
        """LogLevel should have expected values."""
        assert [level.value for level in LogLevel] == ["info", "success", "warning", "error"]


class TestDataclasses:
    """Test dataclass definitions."""

    def test_command_result_success(self) -> None:
        """A successful result carries no error."""
        result = CommandResult(success=True, output="ok", exit_code=0)
        assert result.error_kind is None
        assert result.error_message is None

    def test_device_default_transport(self) -> None:
        """Devices default to the fastboot transport."""
        assert Device("abc123").transport == TransportKind.FASTBOOT

    def test_log_entry(self) -> None:
        """LogEntry should store a code for warnings."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc),
            level=LogLevel.WARNING,
            message="erase failed",
            code="PARTITION_ERASE_WARNING",
        )
        assert entry.code == "PARTITION_ERASE_WARNING"

    def test_download_progress(self) -> None:
        """DownloadProgress should allow an unknown total."""
        progress = DownloadProgress(
            percent=0.0,
            speed=0.0,
            downloaded=10,
            total=None,
            state=DownloadState.ACTIVE,
        )
        assert progress.total is None
        assert progress.warning is None

    def test_image_validation_defaults(self) -> None:
        """ImageValidation lists should be independent."""
        first = ImageValidation(is_valid=True)
        second = ImageValidation(is_valid=True)
        first.errors.append("x")
        assert second.errors == []
