"""Executor for fastboot protocol commands.

This module handles:
- Locating the fastboot binary
- Spawning commands through the platform shell
- Capturing stdout/stderr and decoding the command output
- Enforcing per-command timeouts
- Tracking live invocations so they can be stopped or cleaned up

Command outcomes are never raised; every path returns a CommandResult.
"""

from __future__ import annotations

import itertools
import logging
import os
import shlex
import signal
import subprocess
import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from fastboot_flasher.types import CommandErrorKind, CommandResult

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 120.0

_IS_WINDOWS = os.name == "nt"

# Exit codes a POSIX shell uses for "not executable" and "not found"
_SHELL_SPAWN_FAILURE_CODES = (126, 127)


@dataclass
class CommandInvocation:
    """A live fastboot process tracked by the executor.

    Attributes:
        id: Unique invocation id.
        binary_path: Binary that was spawned.
        args: Arguments passed to the binary.
        timeout: Timeout in seconds.
        started_at: Spawn time.
        command_line: Shell command line that was run.
        cancelled: Set when the invocation was stopped explicitly.
    """

    id: str
    binary_path: str
    args: tuple[str, ...]
    timeout: float
    started_at: datetime
    command_line: str
    process: subprocess.Popen[bytes] = field(repr=False)
    cancelled: bool = False


def fastboot_binary_name() -> str:
    """Return the platform file name of the fastboot binary."""
    return "fastboot.exe" if _IS_WINDOWS else "fastboot"


def candidate_binary_paths(name: str | None = None, cwd: Path | None = None) -> list[Path]:
    """List the locations probed for the fastboot binary, in order.

    Args:
        name: Binary file name (platform default if None).
        cwd: Working directory (process cwd if None).

    Returns:
        Packaged resource, development checkout, cwd/bin and cwd paths.
    """
    name = name or fastboot_binary_name()
    cwd = cwd or Path.cwd()
    package_dir = Path(__file__).resolve().parent.parent
    return [
        package_dir / "bin" / name,
        package_dir.parent / "bin" / name,
        cwd / "bin" / name,
        cwd / name,
    ]


def resolve_fastboot_path(
    explicit: str | Path | None = None,
    candidates: Sequence[Path] | None = None,
) -> str:
    """Resolve which fastboot binary to run.

    Args:
        explicit: Configured binary path; used as-is when given.
        candidates: Paths to probe (see candidate_binary_paths).

    Returns:
        First existing candidate, or the bare binary name so the host's
        executable search path decides.
    """
    if explicit is not None:
        return str(explicit)

    if candidates is None:
        candidates = candidate_binary_paths()

    for path in candidates:
        if path.is_file():
            logger.info("Found fastboot at %s", path)
            return str(path)

    name = fastboot_binary_name()
    logger.info("Using %s from the system search path", name)
    return name


def to_command_line(argv: Sequence[str]) -> str:
    """Quote an argument vector for the platform shell."""
    if _IS_WINDOWS:
        return subprocess.list2cmdline(list(argv))
    return shlex.join(argv)


def decode_output(stdout: bytes, stderr: bytes) -> str:
    """Decode command output.

    fastboot writes informational and error text to either stream depending
    on the subcommand, so stdout is preferred and stderr is the fallback.

    Args:
        stdout: Raw standard output.
        stderr: Raw standard error.

    Returns:
        Stripped text of stdout if non-empty, otherwise of stderr.
    """
    output = ""
    if stdout:
        output = stdout.decode("utf-8", errors="replace")
    if not output and stderr:
        output = stderr.decode("utf-8", errors="replace")
    return output.strip()


def _kill_process(process: subprocess.Popen[bytes]) -> None:
    """Forcibly terminate a process and everything it spawned."""
    if process.poll() is not None:
        return

    try:
        if _IS_WINDOWS:
            subprocess.run(
                ["taskkill", "/F", "/T", "/PID", str(process.pid)],
                capture_output=True,
                check=False,
            )
        else:
            os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.warning("Could not kill process group %d: %s", process.pid, e)
        process.kill()


class CommandExecutor:
    """Spawns and supervises fastboot invocations.

    Each invocation is recorded in a live table keyed by a generated id
    until it exits, times out, or is stopped.
    """

    def __init__(
        self,
        binary_path: str | Path | None = None,
        default_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        cwd: Path | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            binary_path: fastboot binary; resolved by probing if None.
            default_timeout: Timeout in seconds when execute() gets none.
            cwd: Working directory for spawned commands.
        """
        self._binary_path = resolve_fastboot_path(binary_path)
        self._default_timeout = default_timeout
        self._cwd = cwd
        self._active: dict[str, CommandInvocation] = {}
        self._lock = threading.Lock()
        self._counter = itertools.count(1)

    @property
    def binary_path(self) -> str:
        """The fastboot binary used when execute() gets none."""
        return self._binary_path

    def _new_id(self) -> str:
        return f"fastboot-{next(self._counter)}-{uuid.uuid4().hex[:8]}"

    def _forget(self, invocation_id: str) -> None:
        with self._lock:
            self._active.pop(invocation_id, None)

    def execute(
        self,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        binary_path: str | Path | None = None,
    ) -> CommandResult:
        """Run one fastboot command and wait for it.

        Args:
            args: Subcommand and its arguments.
            timeout: Timeout in seconds (executor default if None).
            binary_path: Binary override for this call.

        Returns:
            CommandResult describing the outcome.
        """
        binary = str(binary_path) if binary_path is not None else self._binary_path
        if timeout is None:
            timeout = self._default_timeout

        command_line = to_command_line([binary, *args])
        invocation_id = self._new_id()
        logger.info("Fastboot command: %s", command_line)

        try:
            process = subprocess.Popen(
                command_line,
                shell=True,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self._cwd,
                start_new_session=not _IS_WINDOWS,
            )
        except OSError as e:
            message = f"Failed to start {binary}: {e}"
            logger.error(message)
            return CommandResult(
                success=False,
                output="",
                error_kind=CommandErrorKind.PROCESS_SPAWN_ERROR,
                exit_code=-1,
                error_message=message,
                invocation_id=invocation_id,
            )

        invocation = CommandInvocation(
            id=invocation_id,
            binary_path=binary,
            args=tuple(args),
            timeout=timeout,
            started_at=datetime.now(timezone.utc),
            command_line=command_line,
            process=process,
        )
        with self._lock:
            self._active[invocation_id] = invocation

        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_process(process)
            process.communicate()
            message = f"Command execution timeout ({timeout:g} seconds)"
            logger.error("%s: %s", message, command_line)
            return CommandResult(
                success=False,
                output="",
                error_kind=CommandErrorKind.TIMEOUT,
                exit_code=-1,
                error_message=message,
                invocation_id=invocation_id,
            )
        finally:
            self._forget(invocation_id)

        if invocation.cancelled:
            logger.warning("Command stopped: %s", command_line)
            return CommandResult(
                success=False,
                output=decode_output(stdout, stderr),
                error_kind=CommandErrorKind.CANCELLED,
                exit_code=-1,
                error_message="Command was stopped",
                invocation_id=invocation_id,
            )

        exit_code = process.returncode
        output = decode_output(stdout, stderr)

        if exit_code == 0:
            logger.debug("Command succeeded: %s", command_line)
            return CommandResult(
                success=True,
                output=output,
                exit_code=exit_code,
                invocation_id=invocation_id,
            )

        if not _IS_WINDOWS and exit_code in _SHELL_SPAWN_FAILURE_CODES:
            message = f"Failed to start {binary}: {output or 'command not found'}"
            logger.error(message)
            return CommandResult(
                success=False,
                output=output,
                error_kind=CommandErrorKind.PROCESS_SPAWN_ERROR,
                exit_code=exit_code,
                error_message=message,
                invocation_id=invocation_id,
            )

        message = f"Command failed with exit code: {exit_code}"
        logger.warning("%s: %s", message, command_line)
        return CommandResult(
            success=False,
            output=output,
            error_kind=CommandErrorKind.NON_ZERO_EXIT,
            exit_code=exit_code,
            error_message=message,
            invocation_id=invocation_id,
        )

    def stop_process(self, invocation_id: str) -> bool:
        """Kill a live invocation.

        Args:
            invocation_id: Id from list_active() or a CommandResult.

        Returns:
            True if the invocation was live and has been killed.
        """
        with self._lock:
            invocation = self._active.pop(invocation_id, None)

        if invocation is None:
            return False

        invocation.cancelled = True
        _kill_process(invocation.process)
        logger.info("Stopped fastboot invocation %s", invocation_id)
        return True

    def cleanup(self) -> int:
        """Kill every live invocation.

        Returns:
            Number of invocations killed.
        """
        with self._lock:
            invocations = list(self._active.values())
            self._active.clear()

        for invocation in invocations:
            invocation.cancelled = True
            _kill_process(invocation.process)

        if invocations:
            logger.info("Cleaned up %d fastboot invocation(s)", len(invocations))
        return len(invocations)

    def list_active(self) -> list[CommandInvocation]:
        """Return a snapshot of the live invocations."""
        with self._lock:
            return list(self._active.values())


__all__ = [
    "DEFAULT_COMMAND_TIMEOUT",
    "CommandExecutor",
    "CommandInvocation",
    "candidate_binary_paths",
    "decode_output",
    "fastboot_binary_name",
    "resolve_fastboot_path",
    "to_command_line",
]
