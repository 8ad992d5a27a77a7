from __future__ import annotations

from typing import Optional

import typer
from rich.tree import Tree

from taskweave.cli_commands import EXIT_RECIPE_ERROR, get_recipe
from taskweave.graph import build_dependency_tree
from taskweave.logging import Logger
from taskweave.registry import UnknownTaskError


def show_tree(logger: Logger, task_name: str, tasks_file: Optional[str] = None):
    """
    Show dependency tree structure.
    """
    recipe = get_recipe(logger, tasks_file)

    try:
        dep_tree = build_dependency_tree(recipe.registry, task_name)
    except UnknownTaskError as e:
        logger.error(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_RECIPE_ERROR)

    logger.info(_build_rich_tree(dep_tree))


def _build_rich_tree(dep_tree: dict) -> Tree:
    """
    Build a Rich Tree visualization from a dependency tree structure.

    Args:
        dep_tree: Nested dictionary representing task dependencies

    Returns:
        Rich Tree object for terminal display
    """
    task_name = dep_tree["name"]
    if dep_tree.get("cycle"):
        return Tree(f"[red]{task_name} (cycle)[/red]")

    tree = Tree(task_name)
    for dep in dep_tree.get("deps", []):
        tree.add(_build_rich_tree(dep))

    return tree
