"""External command execution with retry and backoff."""

from __future__ import annotations

import os
import platform
import random
import re
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from itertools import islice
from pathlib import Path
from typing import Callable, Iterator, Mapping, Sequence

from taskweave.errors import TaskweaveError
from taskweave.logging import Logger
from taskweave.process_runner import ProcessRunner, SilentProcessRunner

__all__ = [
    "BackoffPolicy",
    "FixedBackoff",
    "ExponentialBackoff",
    "RetryPolicy",
    "CommandOptions",
    "CommandResult",
    "CommandRunner",
    "ExternalCommandError",
    "TIMEOUT_EXIT_CODE",
]

# Exit code reported for attempts killed by the command timeout
TIMEOUT_EXIT_CODE = -1

_OUTPUT_TAIL_LINES = 20


class BackoffPolicy(ABC):
    """Produces the delays to wait between consecutive attempts."""

    @abstractmethod
    def delays(self) -> Iterator[float]:
        """
        Yield delays in seconds, one per retry.

        Every call starts a fresh sequence, so the same policy always yields the
        same delays.
        """
        ...


@dataclass(frozen=True)
class FixedBackoff(BackoffPolicy):
    """Waits the same delay before every retry."""

    delay: float = 0.0

    def __post_init__(self):
        if self.delay < 0:
            raise ValueError("Backoff delay must not be negative")

    def delays(self) -> Iterator[float]:
        while True:
            yield self.delay


@dataclass(frozen=True)
class ExponentialBackoff(BackoffPolicy):
    """Multiplies the delay by factor after every retry.

    Jitter is a fraction of the delay (0.1 means +/-10%) drawn from a
    random.Random seeded with seed, so the sequence is reproducible.
    """

    initial: float = 1.0
    factor: float = 2.0
    max_delay: float | None = None
    jitter: float = 0.0
    seed: int = 0

    def __post_init__(self):
        if self.initial < 0:
            raise ValueError("Backoff delay must not be negative")
        if self.factor < 1:
            raise ValueError("Backoff factor must be at least 1")
        if not 0 <= self.jitter <= 1:
            raise ValueError("Backoff jitter must be between 0 and 1")

    def delays(self) -> Iterator[float]:
        rng = random.Random(self.seed)
        delay = self.initial
        while True:
            value = delay if self.max_delay is None else min(delay, self.max_delay)
            if self.jitter:
                value *= 1 + rng.uniform(-self.jitter, self.jitter)
            yield value
            delay *= self.factor


@dataclass(frozen=True)
class RetryPolicy:
    """How often a failing command is attempted.

    Attributes:
        max_attempts: Total number of attempts, including the first one
        backoff: Delay policy between attempts
        retry_on: Optional regular expression; when set, a failed attempt is
            only retried if its output matches
    """

    max_attempts: int = 1
    backoff: BackoffPolicy = field(default_factory=FixedBackoff)
    retry_on: str | None = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.retry_on is not None:
            re.compile(self.retry_on)

    def schedule(self) -> list[float]:
        """Delays waited before the 2nd, 3rd, ... attempt."""
        return list(islice(self.backoff.delays(), self.max_attempts - 1))

    def should_retry(self, output: str) -> bool:
        if self.retry_on is None:
            return True
        return re.search(self.retry_on, output) is not None


@dataclass(frozen=True)
class CommandOptions:
    """Per-invocation options for CommandRunner.run()."""

    error_message: str | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    working_dir: str | Path | None = None
    env: Mapping[str, str] | None = None
    timeout: float | None = None


@dataclass
class CommandResult:
    """Outcome of a successful command."""

    command: str | list[str]
    exit_code: int
    stdout: str
    stderr: str
    attempts: int


class ExternalCommandError(TaskweaveError):
    """Raised when a command still fails after its last attempt.

    Attributes:
        command: The command that was run
        exit_code: Exit code of the last attempt (TIMEOUT_EXIT_CODE on timeout)
        output: Captured stdout of the last attempt
        stderr: Captured stderr of the last attempt
        message: Custom error message supplied by the caller, if any
        attempts: Number of attempts made
        timed_out: Whether the last attempt was killed by the timeout
    """

    def __init__(
        self,
        command: str | list[str],
        exit_code: int,
        output: str = "",
        stderr: str = "",
        message: str | None = None,
        attempts: int = 1,
        timed_out: bool = False,
    ):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        self.stderr = stderr
        self.message = message
        self.attempts = attempts
        self.timed_out = timed_out
        super().__init__(self._format())

    def _format(self) -> str:
        command = self.command if isinstance(self.command, str) else " ".join(self.command)
        if self.timed_out:
            summary = f"Command '{command}' timed out"
        else:
            summary = f"Command '{command}' failed with exit code {self.exit_code}"
        if self.attempts > 1:
            summary += f" after {self.attempts} attempts"

        lines = [self.message, summary] if self.message else [summary]
        for label, text in (("stdout", self.output), ("stderr", self.stderr)):
            tail = text.rstrip().splitlines()[-_OUTPUT_TAIL_LINES:]
            if tail:
                lines.append(f"{label}:")
                lines.extend(f"  {line}" for line in tail)
        return "\n".join(lines)


def get_platform_default_shell() -> tuple[str, list[str]]:
    """Get default shell and args for current platform."""
    if platform.system() == "Windows":
        return ("cmd", ["/c"])
    return ("bash", ["-c"])


class CommandRunner:
    """Runs external commands, mapping non-zero exit codes to failures.

    String commands are run through a shell (bash on Unix, cmd on Windows,
    unless configured otherwise); list commands are executed directly.
    """

    def __init__(
        self,
        logger: Logger,
        process_runner: ProcessRunner | None = None,
        working_dir: Path | None = None,
        shell: str | None = None,
        shell_args: list[str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the command runner.

        Args:
            logger: Logger for progress and retry messages
            process_runner: Runner used to spawn processes (default: silent capture)
            working_dir: Base directory for commands and relative working_dir options
            shell: Shell for string commands (default: platform shell)
            shell_args: Arguments placed between shell and command (default: platform args)
            sleep: Function used to wait between attempts
        """
        self._logger = logger
        self._process_runner = process_runner or SilentProcessRunner(logger)
        self._working_dir = working_dir or Path.cwd()
        default_shell, default_args = get_platform_default_shell()
        self._shell = shell or default_shell
        if shell_args is not None:
            self._shell_args = list(shell_args)
        elif shell:
            self._shell_args = ["-c"] if platform.system() != "Windows" else ["/c"]
        else:
            self._shell_args = default_args
        self._sleep = sleep

    @property
    def working_dir(self) -> Path:
        return self._working_dir

    def _build_argv(self, command: str | Sequence[str]) -> list[str]:
        if isinstance(command, str):
            return [self._shell, *self._shell_args, command]
        return list(command)

    def _resolve_working_dir(self, working_dir: str | Path | None) -> Path:
        if working_dir is None:
            return self._working_dir
        return self._working_dir / working_dir

    def run(
        self, command: str | Sequence[str], options: CommandOptions | None = None
    ) -> CommandResult:
        """
        Run a command, retrying per the options' retry policy.

        Args:
            command: Shell command string or argv list
            options: Error message, retry policy, working directory, environment
                and timeout for this invocation

        Returns:
            CommandResult for the successful attempt

        Raises:
            ExternalCommandError: If the final attempt exits non-zero or times out
            ValueError: If command is empty
        """
        if not command:
            raise ValueError("Command must not be empty")
        options = options or CommandOptions()
        if not isinstance(command, str):
            command = list(command)

        argv = self._build_argv(command)
        cwd = self._resolve_working_dir(options.working_dir)
        env = None
        if options.env:
            env = dict(os.environ)
            env.update(options.env)

        policy = options.retry
        delays = policy.schedule()
        display = command if isinstance(command, str) else " ".join(command)

        attempt = 0
        while True:
            attempt += 1
            self._logger.debug(
                f"[dim]$ {display}[/dim]"
                + (f" [dim](attempt {attempt}/{policy.max_attempts})[/dim]" if attempt > 1 else "")
            )

            timed_out = False
            try:
                completed = self._process_runner.run(argv, cwd=cwd, env=env, timeout=options.timeout)
                exit_code = completed.returncode
                stdout = completed.stdout or ""
                stderr = completed.stderr or ""
            except subprocess.TimeoutExpired as e:
                timed_out = True
                exit_code = TIMEOUT_EXIT_CODE
                stdout = _as_text(e.output)
                stderr = _as_text(e.stderr)
            except OSError as e:
                # Executable missing or not runnable; retrying will not help
                raise ExternalCommandError(
                    command, 127, "", str(e), options.error_message, attempt
                ) from e

            if exit_code == 0:
                return CommandResult(
                    command=command,
                    exit_code=exit_code,
                    stdout=stdout,
                    stderr=stderr,
                    attempts=attempt,
                )

            if attempt >= policy.max_attempts or not policy.should_retry(stdout + stderr):
                raise ExternalCommandError(
                    command,
                    exit_code,
                    stdout,
                    stderr,
                    options.error_message,
                    attempt,
                    timed_out,
                )

            delay = delays[attempt - 1]
            reason = "timed out" if timed_out else f"failed with exit code {exit_code}"
            self._logger.warn(
                f"[yellow]Command {reason}; retrying in {delay:.2f}s "
                f"(attempt {attempt + 1} of {policy.max_attempts})[/yellow]"
            )
            if delay > 0:
                self._sleep(delay)


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value
