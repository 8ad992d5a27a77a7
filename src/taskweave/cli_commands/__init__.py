"""CLI command implementations and shared utilities."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import typer

from taskweave.errors import TaskweaveError
from taskweave.logging import Logger
from taskweave.parser import Recipe, find_recipe_file, parse_recipe

# Exit codes
EXIT_BUILD_FAILED = 1
EXIT_RECIPE_ERROR = 2
EXIT_CANCELLED = 130

NO_RECIPE_MESSAGE = "[red]No recipe file found (taskweave.yaml, taskweave.yml or tw.yaml)[/red]"


def _supports_unicode() -> bool:
    """
    Check if the terminal supports Unicode characters.

    Returns:
        True if terminal supports UTF-8, False otherwise
    """
    # Hard stop: classic Windows console (conhost)
    if os.name == "nt" and "WT_SESSION" not in os.environ:
        return False

    encoding = sys.stdout.encoding
    if not encoding:
        return False

    try:
        "✓✗".encode(encoding)
        return True
    except UnicodeEncodeError:
        return False


def get_action_success_string() -> str:
    """
    Get the appropriate success symbol based on terminal capabilities.
    """
    return "✓" if _supports_unicode() else "[ OK ]"


def get_action_failure_string() -> str:
    """
    Get the appropriate failure symbol based on terminal capabilities.
    """
    return "✗" if _supports_unicode() else "[ FAIL ]"


def get_recipe(logger: Logger, tasks_file: Optional[str] = None) -> Recipe:
    """
    Find and parse the recipe, exiting with a message when that fails.

    Args:
        logger: Logger for error output
        tasks_file: Explicit recipe path; searched for upwards from cwd when None

    Raises:
        typer.Exit: If no recipe is found or it cannot be parsed
    """
    if tasks_file:
        recipe_path = Path(tasks_file)
        if not recipe_path.exists():
            logger.error(f"[red]Recipe file not found: {tasks_file}[/red]")
            raise typer.Exit(EXIT_RECIPE_ERROR)
    else:
        recipe_path = find_recipe_file()
        if recipe_path is None:
            logger.error(NO_RECIPE_MESSAGE)
            raise typer.Exit(EXIT_RECIPE_ERROR)

    logger.debug(f"Using recipe {recipe_path}")
    try:
        return parse_recipe(recipe_path)
    except (TaskweaveError, OSError) as e:
        logger.error(f"[red]Error parsing recipe: {e}[/red]")
        raise typer.Exit(EXIT_RECIPE_ERROR)
