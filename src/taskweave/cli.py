"""Command-line interface for taskweave."""

from __future__ import annotations

from typing import List, Optional

import typer
from rich.console import Console

from taskweave import __version__
from taskweave.cli_commands import EXIT_RECIPE_ERROR
from taskweave.cli_commands.execute_tasks import execute_tasks
from taskweave.cli_commands.init_recipe import init_recipe
from taskweave.cli_commands.list_tasks import list_tasks, show_docs
from taskweave.cli_commands.show_tree import show_tree
from taskweave.console_logger import ConsoleLogger
from taskweave.logging import LogLevel

app = typer.Typer(
    help="taskweave - a dependency-driven build task runner",
    add_completion=False,
    no_args_is_help=False,
)


@app.command()
def main(
    tasks: Optional[List[str]] = typer.Argument(
        None, help="Tasks to run (default: the task named 'Default')"
    ),
    properties: Optional[List[str]] = typer.Option(
        None, "--property", "-p", help="Override a property (KEY=VALUE, repeatable)"
    ),
    docs: bool = typer.Option(
        False, "--docs", "-d", help="Print task documentation instead of running"
    ),
    nologo: bool = typer.Option(False, "--nologo", help="Suppress the banner"),
    list_opt: bool = typer.Option(False, "--list", "-l", help="List all available tasks"),
    tree: Optional[str] = typer.Option(None, "--tree", help="Show the dependency tree of a task"),
    init: bool = typer.Option(False, "--init", help="Create a starter taskweave.yaml"),
    version: bool = typer.Option(False, "--version", "-v", help="Show version"),
    tasks_file: Optional[str] = typer.Option(
        None, "--tasks", "-T", help="Path to recipe file (default: search upwards)"
    ),
    log_level: str = typer.Option(
        "info", "--log-level", "-L", help="Log verbosity (fatal, error, warn, info, debug, trace)"
    ),
    output: Optional[str] = typer.Option(
        None, "--output", "-O", help="Command output to show (all, out, err, none)"
    ),
):
    """Run build tasks and their dependencies."""
    console = Console()

    try:
        level = LogLevel.from_name(log_level)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_RECIPE_ERROR)

    logger = ConsoleLogger(console, level)

    if version:
        logger.info(f"taskweave version {__version__}")
        return

    if init:
        init_recipe(logger)
        return

    if list_opt:
        list_tasks(logger, tasks_file)
        return

    if docs:
        show_docs(logger, tasks_file)
        return

    if tree:
        show_tree(logger, tree, tasks_file)
        return

    if not nologo:
        logger.info(f"[bold]taskweave {__version__}[/bold]")

    execute_tasks(logger, tasks or [], properties or [], tasks_file, output)


if __name__ == "__main__":
    app()
