from __future__ import annotations

from typing import Optional

from rich.table import Table

from taskweave.cli_commands import get_recipe
from taskweave.logging import Logger
from taskweave.registry import Task


def list_tasks(logger: Logger, tasks_file: Optional[str] = None):
    """
    List all available tasks with descriptions.
    """
    recipe = get_recipe(logger, tasks_file)

    names = sorted(recipe.task_names())
    max_task_name_len = max((len(name) for name in names), default=0)

    # Borderless table: fixed-width name column, wrapping description
    table = Table(show_edge=False, show_header=False, box=None, padding=(0, 2))
    table.add_column("Task", style="bold cyan", no_wrap=True, width=max_task_name_len)
    table.add_column("Description", style="white", max_width=80)

    for name in names:
        table.add_row(name, recipe.registry.get(name).desc)

    logger.info(table)


def show_docs(logger: Logger, tasks_file: Optional[str] = None):
    """
    Print documentation for every task instead of running anything.
    """
    recipe = get_recipe(logger, tasks_file)

    table = Table(title="Tasks")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Depends On", style="white")
    table.add_column("Policy", style="dim")
    table.add_column("Description", style="white")

    for name in sorted(recipe.task_names()):
        task = recipe.registry.get(name)
        table.add_row(name, ", ".join(task.deps), _format_policy(task), task.desc)

    logger.info(table)


def _format_policy(task: Task) -> str:
    """
    Summarise the execution policy of a task.

    Examples:
        continue_on_error and a precondition -> "continue-on-error, conditional"
        retrying command action -> "retries: 3"
    """
    parts = []
    if task.continue_on_error:
        parts.append("continue-on-error")
    if task.precondition is not None:
        parts.append("conditional")
    options = getattr(task.action, "options", None)
    if options is not None and options.retry.max_attempts > 1:
        parts.append(f"retries: {options.retry.max_attempts}")
    if task.action is None:
        parts.append("aggregate")
    return ", ".join(parts)
