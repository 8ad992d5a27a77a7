"""Process execution abstraction layer.

This module provides an interface for running subprocesses, allowing for
better testability and dependency injection. Every runner captures both output
streams so failures can be reported with the command's output; the runners
differ in which streams are also echoed to the console while the command runs.
"""

import subprocess
import sys
from abc import ABC, abstractmethod
from enum import Enum
from subprocess import Popen
from threading import Thread
from typing import Any, TextIO

__all__ = [
    "ProcessRunner",
    "PassthroughProcessRunner",
    "SilentProcessRunner",
    "StdoutOnlyProcessRunner",
    "StderrOnlyProcessRunner",
    "TaskOutputTypes",
    "make_process_runner",
    "stream_output",
]

from taskweave.logging import Logger


class TaskOutputTypes(Enum):
    """Which command output streams are echoed to the console."""

    ALL = "all"
    NONE = "none"
    OUT = "out"
    ERR = "err"


class ProcessRunner(ABC):
    """Abstract interface for running subprocess commands."""

    @abstractmethod
    def run(self, *args: Any, **kwargs: Any) -> subprocess.CompletedProcess[str]:
        """
        Run a subprocess command and capture its output.

        The signature follows subprocess.run(); capture-related keyword
        arguments are controlled by the runner and ignored.

        Returns:
            subprocess.CompletedProcess with text stdout and stderr

        Raises:
            subprocess.CalledProcessError: If check=True and process exits non-zero
            subprocess.TimeoutExpired: If timeout is exceeded
        """
        ...


def stream_output(pipe: Any, target: TextIO | None, sink: list[str]) -> None:
    """
    Copy lines from a pipe into sink, echoing them to target when given.

    The pipe is always drained to EOF so the child never blocks on a full
    pipe. A failing echo target stops the echo, not the capture.

    Args:
        pipe: Input pipe to read from
        target: Output stream to echo to, or None to capture only
        sink: List that receives every line read
    """
    if not pipe:
        return
    try:
        for line in pipe:
            sink.append(line)
            if target is None:
                continue
            try:
                target.write(line)
                target.flush()
            except (OSError, ValueError):
                target = None
    except (OSError, ValueError):
        # Pipe closed - expected when the process is killed
        pass


def _wait_for_process(
    process: Popen[str],
    threads: list[Thread],
    process_allowed_runtime: float | None,
    logger: Logger,
) -> int:
    join_timeout_secs = 1.0

    for thread in threads:
        thread.start()

    try:
        process_return_code = process.wait(timeout=process_allowed_runtime)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()
        for thread in threads:
            thread.join(timeout=join_timeout_secs)
        raise

    for thread in threads:
        thread.join(timeout=join_timeout_secs)
        if thread.is_alive():
            logger.warn(
                f"Stream thread '{thread.name}' did not complete within timeout of {join_timeout_secs} seconds"
            )

    return process_return_code


class _CapturingProcessRunner(ProcessRunner):
    """Runs a command through Popen, pumping both streams on worker threads."""

    echo_stdout = False
    echo_stderr = False

    def __init__(self, logger: Logger) -> None:
        self._logger = logger

    def run(self, *args: Any, **kwargs: Any) -> subprocess.CompletedProcess[str]:
        check = kwargs.pop("check", False)
        timeout = kwargs.pop("timeout", None)
        for key in ("capture_output", "stdout", "stderr", "text", "bufsize", "encoding", "errors"):
            kwargs.pop(key, None)

        cmd = args[0] if args else kwargs.get("args", [])
        stdout_lines: list[str] = []
        stderr_lines: list[str] = []

        process = subprocess.Popen(
            *args,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            **kwargs,
        )

        threads = [
            Thread(
                target=stream_output,
                args=(process.stdout, sys.stdout if self.echo_stdout else None, stdout_lines),
                name="stdout-streamer",
                daemon=True,
            ),
            Thread(
                target=stream_output,
                args=(process.stderr, sys.stderr if self.echo_stderr else None, stderr_lines),
                name="stderr-streamer",
                daemon=True,
            ),
        ]

        try:
            return_code = _wait_for_process(process, threads, timeout, self._logger)
        except subprocess.TimeoutExpired as e:
            e.output = "".join(stdout_lines)
            e.stderr = "".join(stderr_lines)
            raise

        stdout = "".join(stdout_lines)
        stderr = "".join(stderr_lines)

        if check and return_code != 0:
            raise subprocess.CalledProcessError(return_code, cmd, output=stdout, stderr=stderr)

        return subprocess.CompletedProcess(
            args=cmd, returncode=return_code, stdout=stdout, stderr=stderr
        )


class PassthroughProcessRunner(_CapturingProcessRunner):
    """Echoes both streams to the console while capturing them."""

    echo_stdout = True
    echo_stderr = True


class SilentProcessRunner(_CapturingProcessRunner):
    """Captures output without echoing anything."""

    pass


class StdoutOnlyProcessRunner(_CapturingProcessRunner):
    """Echoes stdout only; stderr is captured for error reports."""

    echo_stdout = True


class StderrOnlyProcessRunner(_CapturingProcessRunner):
    """Echoes stderr only; stdout is captured for error reports."""

    echo_stderr = True


def make_process_runner(output_type: TaskOutputTypes, logger: Logger) -> ProcessRunner:
    """
    Factory function for creating ProcessRunner instances.

    Args:
        output_type: Which output streams to echo
        logger: Logger for diagnostics from the runner itself

    Returns:
        ProcessRunner: A new ProcessRunner instance

    Raises:
        ValueError: If an invalid TaskOutputTypes value is provided
    """
    match output_type:
        case TaskOutputTypes.ALL:
            return PassthroughProcessRunner(logger)
        case TaskOutputTypes.NONE:
            return SilentProcessRunner(logger)
        case TaskOutputTypes.OUT:
            return StdoutOnlyProcessRunner(logger)
        case TaskOutputTypes.ERR:
            return StderrOnlyProcessRunner(logger)
        case _:
            raise ValueError(f"Invalid TaskOutputTypes: {output_type}")
