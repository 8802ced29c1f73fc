"""The fastboot subcommands used for provisioning."""

from __future__ import annotations

import logging
from pathlib import Path

from fastboot_flasher.fastboot.executor import CommandExecutor
from fastboot_flasher.types import CommandResult

logger = logging.getLogger(__name__)


class FastbootCommands:
    """Thin wrappers over CommandExecutor for each supported subcommand.

    All methods return the CommandResult unchanged; callers decide whether
    a failure is fatal.
    """

    def __init__(self, executor: CommandExecutor, timeout: float | None = None) -> None:
        self._executor = executor
        self._timeout = timeout

    @property
    def executor(self) -> CommandExecutor:
        return self._executor

    def _run(self, *args: str) -> CommandResult:
        return self._executor.execute(list(args), timeout=self._timeout)

    def erase(self, partition: str) -> CommandResult:
        return self._run("erase", partition)

    def flash(self, partition: str, image_path: str | Path) -> CommandResult:
        return self._run("flash", partition, str(image_path))

    def reboot(self) -> CommandResult:
        return self._run("reboot")

    def getvar(self, name: str) -> CommandResult:
        """Query a bootloader variable.

        fastboot prints `name: value` on stderr; the value is available via
        parse_getvar_output().
        """
        return self._run("getvar", name)

    def validate_fastboot(self) -> CommandResult:
        """Check that the fastboot binary can be run at all."""
        result = self._run("--version")
        if result.success:
            logger.info("fastboot available: %s", result.output.splitlines()[0] if result.output else "")
        else:
            logger.error("fastboot unavailable: %s", result.error_message)
        return result


def parse_getvar_output(name: str, output: str) -> str | None:
    """Return the value of `name` from getvar output, if present."""
    prefix = f"{name}:"
    for line in output.splitlines():
        line = line.strip()
        if line.startswith(prefix):
            return line[len(prefix):].strip()
    return None


__all__ = ["FastbootCommands", "parse_getvar_output"]
