"""Smoke tests for the CLI.

These tests verify CLI behaviour without a device, network access or
the fastboot binary; the provisioning services are replaced by mocks.
"""

import json
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from fastboot_flasher import __version__
from fastboot_flasher.cli import app
from fastboot_flasher.config import Settings
from fastboot_flasher.download.queue import QueueStatus
from fastboot_flasher.download.transfer import DownloadOptions, NetworkError
from fastboot_flasher.fastboot.discovery import ScanResult
from fastboot_flasher.flash.orchestrator import DeviceNotFoundError
from fastboot_flasher.flash.session import FlashSession
from fastboot_flasher.images.manifest import parse_manifest
from fastboot_flasher.images.mirrors import MirrorStatus, build_mirror_info
from fastboot_flasher.types import CommandErrorKind, CommandResult, Device, FlashStage

runner = CliRunner()

OK = CommandResult(success=True, output="OKAY", exit_code=0)


@pytest.fixture
def services(tmp_path):
    """Mocked ProvisioningServices."""
    mock = MagicMock()
    mock.settings = Settings(download_dir=tmp_path)
    mock.executor.binary_path = "/usr/bin/fastboot"
    mock.queue.default_options = DownloadOptions()
    mock.queue.status.return_value = QueueStatus(active=0, queued=0, max_concurrent=3)
    mock.orchestrator.erase_partitions = ("cache", "userdata")
    return mock


@pytest.fixture
def patched(services):
    """Route open_services() to the mock."""

    @contextmanager
    def fake_open_services():
        yield services

    with patch("fastboot_flasher.cli.open_services", fake_open_services):
        yield services


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "Fastboot Flasher" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout


class TestCLILogging:
    """Test the global logging options."""

    def test_verbose_enables_debug(self) -> None:
        """--verbose should configure DEBUG logging."""
        with patch("fastboot_flasher.cli.configure_logging") as configure:
            result = runner.invoke(app, ["--verbose", "config", "--json"])
        assert result.exit_code == 0
        configure.assert_called_once_with("DEBUG")

    def test_default_uses_log_level_setting(self, monkeypatch) -> None:
        """Without --verbose the log_level setting should apply."""
        monkeypatch.setenv("FBFLASH_LOG_LEVEL", "WARNING")
        with patch("fastboot_flasher.cli.configure_logging") as configure:
            result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        configure.assert_called_once_with("WARNING")


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command(self) -> None:
        """config should print the effective configuration."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Effective Configuration" in result.stdout
        assert "Download directory" in result.stdout

    def test_config_json(self) -> None:
        """config --json should print the settings as JSON keys."""
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        assert '"max_concurrent_downloads"' in result.stdout
        assert '"erase_partitions"' in result.stdout


class TestCLIDevices:
    """Test device commands."""

    def test_devices_found(self, patched) -> None:
        """devices should list identifiers."""
        patched.discovery.probe.return_value = ScanResult(devices=[Device("HT7A1")], result=OK)

        result = runner.invoke(app, ["devices"])

        assert result.exit_code == 0
        assert "HT7A1" in result.stdout

    def test_devices_json(self, patched) -> None:
        """devices --json should have stable keys."""
        patched.discovery.probe.return_value = ScanResult(devices=[Device("HT7A1")], result=OK)

        result = runner.invoke(app, ["devices", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data == {
            "devices": [{"identifier": "HT7A1", "transport": "fastboot"}],
            "error": None,
        }

    def test_no_devices(self, patched) -> None:
        """An empty scan should say so and exit 0."""
        patched.discovery.probe.return_value = ScanResult(devices=[], result=OK)

        result = runner.invoke(app, ["devices"])

        assert result.exit_code == 0
        assert "No fastboot devices found" in result.stdout

    def test_enumeration_failure(self, patched) -> None:
        """A failed enumeration should exit 1."""
        patched.discovery.probe.return_value = ScanResult(
            devices=[],
            result=CommandResult(
                success=False,
                output="",
                error_kind=CommandErrorKind.PROCESS_SPAWN_ERROR,
                exit_code=127,
                error_message="not found",
            ),
        )

        result = runner.invoke(app, ["devices"])

        assert result.exit_code == 1
        assert "enumeration failed" in result.stdout

    def test_getvar(self, patched) -> None:
        """getvar should print the parsed value."""
        patched.commands.getvar.return_value = CommandResult(
            success=True, output="product: sargo\nFinished.", exit_code=0
        )

        result = runner.invoke(app, ["getvar", "product"])

        assert result.exit_code == 0
        assert result.stdout.strip() == "sargo"

    def test_reboot_failure(self, patched) -> None:
        """A failed reboot should exit 1."""
        patched.commands.reboot.return_value = CommandResult(
            success=False,
            output="",
            error_kind=CommandErrorKind.NON_ZERO_EXIT,
            exit_code=1,
            error_message="Command failed with exit code: 1",
        )

        result = runner.invoke(app, ["reboot"])

        assert result.exit_code == 1


class TestCLIDownload:
    """Test the download command."""

    def test_download(self, patched, tmp_path) -> None:
        """download should submit with the requested options."""
        patched.queue.submit.return_value.result.return_value = tmp_path / "boot.img"

        result = runner.invoke(
            app,
            ["download", "https://example.com/boot.img", "--no-resume", "--sha256", "ab"],
        )

        assert result.exit_code == 0
        assert "Saved to" in result.stdout
        url, destination, options = patched.queue.submit.call_args.args
        assert url == "https://example.com/boot.img"
        assert destination == tmp_path
        assert options.resume is False
        assert options.expected_checksum == "ab"

    def test_download_failure(self, patched) -> None:
        """A failed download should exit 1."""
        patched.queue.submit.return_value.result.side_effect = NetworkError("HTTP error: 404")

        result = runner.invoke(app, ["download", "https://example.com/boot.img"])

        assert result.exit_code == 1
        assert "Download failed" in result.stdout


class TestCLIImages:
    """Test the images commands."""

    def test_images_list_without_manifest(self, patched) -> None:
        """No configured manifest should exit 1."""
        patched.manifest_provider.return_value = None

        result = runner.invoke(app, ["images", "list"])

        assert result.exit_code == 1
        assert "No manifest configured" in result.stdout

    def test_images_list(self, patched, tmp_path, manifest_data) -> None:
        """images list should show each distribution."""
        provider = MagicMock()
        provider.get.return_value = parse_manifest(manifest_data)
        patched.manifest_provider.return_value = provider

        result = runner.invoke(app, ["images", "list", "--manifest", str(tmp_path / "m.json")])

        assert result.exit_code == 0
        assert "ubuntu" in result.stdout
        assert "debian" in result.stdout
        assert "orphan" not in result.stdout


class TestCLIMirrors:
    """Test the images mirrors command."""

    @pytest.fixture
    def with_manifest(self, patched, manifest_data):
        provider = MagicMock()
        provider.get.return_value = parse_manifest(manifest_data)
        patched.manifest_provider.return_value = provider
        patched.mirrors.measure.return_value = [
            build_mirror_info(
                "https://ghproxy.example.net", 40, MirrorStatus.AVAILABLE, speed=2048
            ),
            build_mirror_info(
                "https://mirror.example.org", -1, MirrorStatus.UNAVAILABLE, error="HTTP 503"
            ),
        ]
        return patched

    def test_table(self, with_manifest) -> None:
        """images mirrors should print every mirror and the best one."""
        result = runner.invoke(app, ["images", "mirrors"])

        assert result.exit_code == 0
        assert "HTTP 503" in result.stdout
        assert "Best mirror: https://ghproxy.example.net" in result.stdout
        with_manifest.mirrors.measure.assert_called_once_with(
            ["https://ghproxy.example.net", "https://mirror.example.org"],
            sample_url="https://downloads.example.com/boot/boot.img",
            force_refresh=False,
        )

    def test_json(self, with_manifest) -> None:
        """images mirrors --json should report results and the best mirror."""
        result = runner.invoke(app, ["images", "mirrors", "--json", "--refresh"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["best"] == "https://ghproxy.example.net"
        assert [m["status"] for m in data["mirrors"]] == ["available", "unavailable"]
        assert with_manifest.mirrors.measure.call_args.kwargs["force_refresh"] is True

    def test_none_available(self, with_manifest) -> None:
        """No available mirror should exit 1."""
        with_manifest.mirrors.measure.return_value = [
            build_mirror_info("https://mirror.example.org", -1, MirrorStatus.UNAVAILABLE, error="x")
        ]

        result = runner.invoke(app, ["images", "mirrors"])

        assert result.exit_code == 1
        assert "No mirror is available" in result.stdout


class TestCLIFlash:
    """Test the flash command."""

    def test_no_images(self, patched) -> None:
        """flash without images should exit 1."""
        result = runner.invoke(app, ["flash", "--force"])

        assert result.exit_code == 1
        assert "No images given" in result.stdout

    def test_abort_on_no(self, patched, tmp_path) -> None:
        """Declining the confirmation should not flash."""
        result = runner.invoke(app, ["flash", "--boot", str(tmp_path / "boot.img")], input="n\n")

        assert result.exit_code == 0
        assert "Aborted" in result.stdout
        patched.orchestrator.run.assert_not_called()

    def test_flash_success(self, patched, tmp_path) -> None:
        """A successful flash should exit 0."""
        session = FlashSession()
        for stage in (
            FlashStage.ERASING,
            FlashStage.FLASHING,
            FlashStage.VERIFYING,
            FlashStage.COMPLETED,
        ):
            session.advance_to(stage)
        patched.orchestrator.run.return_value = session.snapshot()

        result = runner.invoke(app, ["flash", "--boot", str(tmp_path / "boot.img"), "--force"])

        assert result.exit_code == 0
        assert "Flash succeeded" in result.stdout
        image_paths = patched.orchestrator.run.call_args.args[0]
        assert image_paths == {"boot": tmp_path / "boot.img"}

    def test_flash_failure(self, patched, tmp_path) -> None:
        """A failed flash should exit 1 with the error."""
        patched.orchestrator.run.side_effect = DeviceNotFoundError()

        result = runner.invoke(app, ["flash", "--boot", str(tmp_path / "boot.img"), "--force"])

        assert result.exit_code == 1
        assert "No fastboot device found" in result.stdout

    def test_flash_distribution(self, patched, tmp_path, manifest_data) -> None:
        """--distribution should acquire images before flashing."""
        provider = MagicMock()
        provider.get.return_value = parse_manifest(manifest_data)
        patched.manifest_provider.return_value = provider
        acquired = {
            "boot": tmp_path / "boot.img",
            "cache": tmp_path / "cache.img",
            "userdata": tmp_path / "userdata.img",
        }
        patched.acquirer.acquire.return_value = acquired
        patched.orchestrator.run.return_value = FlashSession().snapshot()

        result = runner.invoke(
            app,
            ["flash", "-D", "ubuntu", "--cache", str(tmp_path / "mine.img"), "--force"],
        )

        assert result.exit_code == 0
        image_paths = patched.orchestrator.run.call_args.args[0]
        assert image_paths["boot"] == tmp_path / "boot.img"
        assert image_paths["cache"] == Path(tmp_path / "mine.img")

    def test_flash_distribution_auto_mirror(self, patched, tmp_path, manifest_data) -> None:
        """--mirror auto should download through the fastest mirror."""
        provider = MagicMock()
        provider.get.return_value = parse_manifest(manifest_data)
        patched.manifest_provider.return_value = provider
        patched.mirrors.best.return_value = build_mirror_info(
            "https://ghproxy.example.net", 40, MirrorStatus.AVAILABLE, speed=2048
        )
        patched.acquirer.acquire.return_value = {"boot": tmp_path / "boot.img"}
        patched.orchestrator.run.return_value = FlashSession().snapshot()

        result = runner.invoke(app, ["flash", "-D", "ubuntu", "--mirror", "auto", "--force"])

        assert result.exit_code == 0
        assert patched.acquirer.acquire.call_args.kwargs["mirror"] == "https://ghproxy.example.net"

    def test_flash_distribution_auto_mirror_falls_back(
        self, patched, tmp_path, manifest_data
    ) -> None:
        """Without an available mirror the images should be fetched directly."""
        provider = MagicMock()
        provider.get.return_value = parse_manifest(manifest_data)
        patched.manifest_provider.return_value = provider
        patched.mirrors.best.return_value = None
        patched.acquirer.acquire.return_value = {"boot": tmp_path / "boot.img"}
        patched.orchestrator.run.return_value = FlashSession().snapshot()

        result = runner.invoke(app, ["flash", "-D", "ubuntu", "--mirror", "auto", "--force"])

        assert result.exit_code == 0
        assert "downloading directly" in result.stdout
        assert patched.acquirer.acquire.call_args.kwargs["mirror"] is None


class TestCLIStatus:
    """Test the status command."""

    def test_status_json(self, patched) -> None:
        """status --json should report fastboot and queue limits."""
        patched.commands.validate_fastboot.return_value = CommandResult(
            success=True, output="fastboot version 35.0.1", exit_code=0
        )

        result = runner.invoke(app, ["status", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["fastboot"]["available"] is True
        assert data["fastboot"]["version"] == "fastboot version 35.0.1"
        assert data["downloads"] == {"active": 0, "queued": 0, "max_concurrent": 3}
