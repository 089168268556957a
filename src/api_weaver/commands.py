"""
Command Execution Module

Runs client-supplied command lines after they pass the command validator.
Each command is split into an argv with POSIX shell-word rules and started
directly (no shell), in its own process group, with a wall-clock timeout
and a cap on the combined amount of stdout and stderr that is buffered.

Key Behaviour:
- Rejected commands raise CommandRejectedError before anything is spawned
- Timeouts kill the whole process group and report exit code 124
- A non-zero exit status is data, not an error
- Output beyond the cap is dropped and marked with a truncation indicator
"""

import asyncio
import logging
import os
import shlex
import signal
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from .config import SECRET_ENV_VARS
from .errors import CommandRejectedError, ValidationError
from .security import SAFE_COMMANDS, check_command

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 10000
MIN_TIMEOUT_MS = 1000
MAX_TIMEOUT_MS = 30000
MAX_OUTPUT_BYTES = 1024 * 1024
TIMEOUT_EXIT_CODE = 124
TIMEOUT_MESSAGE = "Command timed out"

_READ_CHUNK = 64 * 1024
_DRAIN_GRACE_SECONDS = 1.0


@dataclass
class ExecutionResult:
    """Outcome of a command execution."""

    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool
    elapsed_ms: int = 0
    truncated: bool = False

    @property
    def success(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exitCode": self.exit_code,
            "timedOut": self.timed_out,
        }


class _OutputBudget:
    """Byte budget shared by the stdout and stderr readers."""

    def __init__(self, limit: int):
        self.remaining = limit
        self.exceeded = False

    def take(self, size: int) -> int:
        granted = min(size, self.remaining)
        self.remaining -= granted
        if granted < size:
            self.exceeded = True
        return granted


class _StreamCapture:
    """Accumulates a stream into a buffer that survives cancellation."""

    def __init__(self, budget: _OutputBudget):
        self.budget = budget
        self.buffer = bytearray()

    async def drain(self, stream: asyncio.StreamReader) -> None:
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            granted = self.budget.take(len(chunk))
            if granted:
                self.buffer.extend(chunk[:granted])

    def text(self) -> str:
        return self.buffer.decode("utf-8", errors="replace")


def sanitize_environment(env: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Copy of the environment without gateway secrets."""
    clean = dict(os.environ if env is None else env)
    for name in SECRET_ENV_VARS:
        clean.pop(name, None)
    return clean


class CommandRunner:
    """Executes validated command lines inside the project root."""

    def __init__(
        self,
        root: str,
        max_output_bytes: int = MAX_OUTPUT_BYTES,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        allowed_commands: Iterable[str] = SAFE_COMMANDS,
    ):
        self.root = os.path.abspath(root)
        self.max_output_bytes = max_output_bytes
        self.default_timeout_ms = default_timeout_ms
        self.allowed_commands = frozenset(allowed_commands)

    def _working_directory(self, cwd: Optional[str]) -> str:
        # Caller-supplied directories are not confined to the root
        workdir = self.root if not cwd else os.path.join(self.root, cwd)
        if not os.path.isdir(workdir):
            raise ValidationError(f"Working directory not found: {cwd}")
        return workdir

    async def run(
        self,
        command: str,
        timeout_ms: Optional[int] = None,
        cwd: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Validate and execute a command line.

        Args:
            command: Command line as typed by the client
            timeout_ms: Wall-clock limit in milliseconds (1000..30000)
            cwd: Working directory, relative to the project root

        Returns:
            ExecutionResult with captured output and exit status

        Raises:
            CommandRejectedError: If the validator refuses the command
            ValidationError: If the timeout or working directory is invalid
        """
        verdict = check_command(command, self.allowed_commands)
        if not verdict.safe:
            logger.warning(f"Command rejected: {verdict.reason}")
            raise CommandRejectedError(f"Command rejected: {verdict.reason}")

        if timeout_ms is None:
            timeout_ms = self.default_timeout_ms
        if not MIN_TIMEOUT_MS <= timeout_ms <= MAX_TIMEOUT_MS:
            raise ValidationError(
                f"Timeout must be between {MIN_TIMEOUT_MS} and {MAX_TIMEOUT_MS} ms"
            )

        try:
            argv = shlex.split(command)
        except ValueError as e:
            raise CommandRejectedError(f"Command rejected: {e}")

        workdir = self._working_directory(cwd)
        logger.debug(f"Executing command with timeout {timeout_ms}ms: {command}")
        start_time = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=workdir,
                env=sanitize_environment(),
                start_new_session=True,
            )
        except FileNotFoundError:
            logger.error(f"Command not found: {argv[0]}")
            return ExecutionResult(
                stdout="",
                stderr=f"Command not found: {argv[0]}",
                exit_code=127,
                timed_out=False,
                elapsed_ms=int((time.monotonic() - start_time) * 1000),
            )
        except PermissionError:
            logger.error(f"Permission denied executing command: {argv[0]}")
            return ExecutionResult(
                stdout="",
                stderr=f"Permission denied: {argv[0]}",
                exit_code=126,
                timed_out=False,
                elapsed_ms=int((time.monotonic() - start_time) * 1000),
            )

        budget = _OutputBudget(self.max_output_bytes)
        stdout_capture = _StreamCapture(budget)
        stderr_capture = _StreamCapture(budget)
        readers = [
            asyncio.create_task(stdout_capture.drain(process.stdout)),
            asyncio.create_task(stderr_capture.drain(process.stderr)),
        ]

        timed_out = False
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            timed_out = True
            self._kill_process_group(process)
            await process.wait()

        _, pending = await asyncio.wait(readers, timeout=_DRAIN_GRACE_SECONDS)
        for task in pending:
            task.cancel()

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        stdout = stdout_capture.text()
        stderr = stderr_capture.text()

        if budget.exceeded:
            stdout = truncate_output(stdout, self.max_output_bytes)

        if timed_out:
            logger.warning(f"Command timed out after {timeout_ms}ms: {command}")
            return ExecutionResult(
                stdout=stdout,
                stderr=stderr or TIMEOUT_MESSAGE,
                exit_code=TIMEOUT_EXIT_CODE,
                timed_out=True,
                elapsed_ms=elapsed_ms,
                truncated=budget.exceeded,
            )

        exit_code = process.returncode
        if exit_code < 0:
            # Killed by a signal, report it the way a shell would
            exit_code = 128 - exit_code

        logger.debug(
            f"Command completed: exit_code={exit_code}, elapsed={elapsed_ms}ms, "
            f"stdout_size={len(stdout)}, stderr_size={len(stderr)}"
        )

        return ExecutionResult(
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            timed_out=False,
            elapsed_ms=elapsed_ms,
            truncated=budget.exceeded,
        )

    @staticmethod
    def _kill_process_group(process: asyncio.subprocess.Process) -> None:
        try:
            os.killpg(os.getpgid(process.pid), signal.SIGKILL)
        except ProcessLookupError:
            pass  # Process already terminated


def truncate_output(output: str, max_size: int) -> str:
    """Append a truncation indicator to output that hit the buffer cap."""
    return output + f"\n[TRUNCATED: output exceeded {max_size} bytes]"
