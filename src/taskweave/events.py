"""Structured execution events and a logger-backed listener."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from taskweave.logging import Logger

if TYPE_CHECKING:
    from taskweave.executor import RunResult, SkipReason, TaskState


class EventKind(enum.Enum):
    RUN_STARTED = "run_started"
    TASK_STARTED = "task_started"
    TASK_SKIPPED = "task_skipped"
    TASK_SUCCEEDED = "task_succeeded"
    TASK_FAILED = "task_failed"
    RUN_COMPLETE = "run_complete"


@dataclass(frozen=True)
class RunEvent:
    """A single event emitted by the executor.

    Task events carry task_name and state; RUN_STARTED carries the plan and
    RUN_COMPLETE carries the final RunResult.
    """

    kind: EventKind
    task_name: str | None = None
    state: TaskState | None = None
    reason: SkipReason | None = None
    error: BaseException | None = None
    duration: float | None = None
    plan: tuple[str, ...] = ()
    result: RunResult | None = None
    depth: int = 0


EventListener = Callable[[RunEvent], None]


class LoggingEventListener:
    """Renders executor events through a Logger."""

    def __init__(self, logger: Logger):
        self._logger = logger

    def __call__(self, event: RunEvent) -> None:
        indent = "  " * event.depth
        match event.kind:
            case EventKind.RUN_STARTED:
                self._logger.debug(f"{indent}Execution plan: {', '.join(event.plan)}")
            case EventKind.TASK_STARTED:
                self._logger.info(f"{indent}[bold cyan]Executing {event.task_name}[/bold cyan]")
            case EventKind.TASK_SKIPPED:
                self._logger.info(
                    f"{indent}[yellow]Skipping {event.task_name}: {event.reason.describe()}[/yellow]"
                )
            case EventKind.TASK_SUCCEEDED:
                self._logger.debug(
                    f"{indent}[green]{event.task_name} succeeded in {event.duration:.2f}s[/green]"
                )
            case EventKind.TASK_FAILED:
                self._logger.error(f"{indent}[red]{event.task_name} failed: {event.error}[/red]")
            case EventKind.RUN_COMPLETE:
                result = event.result
                if result is not None and result.tolerated_failures:
                    names = ", ".join(r.name for r in result.tolerated_failures)
                    self._logger.warn(
                        f"{indent}[yellow]Continued past failures in: {names}[/yellow]"
                    )
