"""Execute tasks command implementation."""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

import typer
from rich.table import Table

from taskweave.cli_commands import (
    EXIT_BUILD_FAILED,
    EXIT_CANCELLED,
    EXIT_RECIPE_ERROR,
    get_action_failure_string,
    get_action_success_string,
    get_recipe,
)
from taskweave.commands import CommandRunner
from taskweave.config import ConfigError, load_config_hierarchy
from taskweave.events import LoggingEventListener
from taskweave.executor import CancellationToken, Executor, RunResult, TaskState
from taskweave.graph import CyclicDependencyError
from taskweave.logging import Logger
from taskweave.process_runner import TaskOutputTypes, make_process_runner
from taskweave.properties import Properties, parse_property_overrides
from taskweave.registry import UnknownTaskError

DEFAULT_TASK = "Default"


@contextmanager
def _cancel_on_interrupt(token: CancellationToken, logger: Logger) -> Iterator[None]:
    """
    Turn the first Ctrl+C into a cancellation at the next task boundary.

    A second Ctrl+C falls through to the default handler.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.getsignal(signal.SIGINT)

    def handler(signum, frame):
        logger.warn("[yellow]Cancelling after the current task (Ctrl+C again to abort)[/yellow]")
        token.cancel()
        signal.signal(signal.SIGINT, previous)

    signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def execute_tasks(
    logger: Logger,
    targets: list[str],
    property_overrides: list[str] | None = None,
    tasks_file: Optional[str] = None,
    task_output: str | None = None,
) -> None:
    """
    Resolve and run the target tasks.

    Args:
        logger: Logger interface for output
        targets: Task names to build (Default when empty)
        property_overrides: KEY=VALUE strings overriding declared properties
        tasks_file: Path to recipe file (optional)
        task_output: Which command output streams to echo (all, out, err, none)

    Raises:
        typer.Exit: With EXIT_RECIPE_ERROR for invalid input, EXIT_BUILD_FAILED
            when a task failed and EXIT_CANCELLED when the run was cancelled
    """
    targets = targets or [DEFAULT_TASK]

    try:
        overrides = parse_property_overrides(property_overrides or [])
    except ValueError as e:
        logger.error(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_RECIPE_ERROR)

    try:
        output_type = TaskOutputTypes((task_output or "all").lower())
    except ValueError:
        valid = ", ".join(t.value for t in TaskOutputTypes)
        logger.error(f"[red]Invalid output mode '{task_output}'. Valid modes: {valid}[/red]")
        raise typer.Exit(EXIT_RECIPE_ERROR)

    recipe = get_recipe(logger, tasks_file)

    try:
        config = load_config_hierarchy(recipe.project_root, logger)
    except ConfigError as e:
        logger.error(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_RECIPE_ERROR)

    # recipe defaults < config files < command line
    properties = Properties(overrides)
    properties.declare_all(recipe.properties)
    properties.declare_all(config.properties)
    logger.debug(f"Properties: {properties.as_dict()}")

    command_runner = CommandRunner(
        logger,
        make_process_runner(output_type, logger),
        working_dir=recipe.project_root,
        shell=config.shell or None,
        shell_args=config.shell_args,
    )
    executor = Executor(
        recipe.registry,
        logger,
        command_runner=command_runner,
        properties=properties,
    )
    executor.add_listener(LoggingEventListener(logger))

    try:
        plan = executor.resolve(targets)
    except (UnknownTaskError, CyclicDependencyError) as e:
        logger.error(f"[red]{e}[/red]")
        if isinstance(e, UnknownTaskError) and e.required_by is None:
            logger.info("\nAvailable tasks:")
            for name in sorted(recipe.task_names()):
                logger.info(f"  - {name}")
        raise typer.Exit(EXIT_RECIPE_ERROR)

    token = CancellationToken()
    with _cancel_on_interrupt(token, logger):
        result = executor.run_plan(plan, token)

    _report(logger, result)

    if result.cancelled:
        logger.warn(f"[yellow]{get_action_failure_string()} Build cancelled[/yellow]")
        raise typer.Exit(EXIT_CANCELLED)

    if not result.success:
        logger.error(f"[red]{get_action_failure_string()} Build failed[/red]")
        for failure in result.failures:
            logger.error(f"[red]  {failure.name}: {failure.error}[/red]")
        raise typer.Exit(EXIT_BUILD_FAILED)

    logger.info(f"[green]{get_action_success_string()} Build succeeded[/green]")


def _report(logger: Logger, result: RunResult) -> None:
    """
    Print a build time report for the run at debug level.
    """
    table = Table(title="Build Time Report", show_edge=False)
    table.add_column("Task", style="cyan", no_wrap=True)
    table.add_column("State")
    table.add_column("Duration", justify="right")

    total = 0.0
    for name in result.plan:
        task_result = result.results[name]
        duration = task_result.duration or 0.0
        total += duration
        state = task_result.state.value
        if task_result.state == TaskState.SKIPPED and task_result.reason is not None:
            state = f"{state} ({task_result.reason.value})"
        table.add_row(name, state, f"{duration:.2f}s")
    table.add_row("Total", "", f"{total:.2f}s", style="bold")

    logger.debug(table)
