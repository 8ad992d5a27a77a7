"""Parse recipe YAML files into a task registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from taskweave.commands import (
    BackoffPolicy,
    CommandOptions,
    ExponentialBackoff,
    ExternalCommandError,
    FixedBackoff,
    RetryPolicy,
)
from taskweave.errors import TaskweaveError
from taskweave.executor import TaskContext
from taskweave.registry import DuplicateTaskError, Task, TaskRegistry
from taskweave.substitution import substitute_all

RECIPE_FILE_NAMES = ("taskweave.yaml", "taskweave.yml", "tw.yaml")

_SECTION_KEYS = ("properties", "tasks")

_TASK_KEYS = {
    "desc",
    "deps",
    "cmd",
    "if",
    "continue_on_error",
    "retries",
    "error_message",
    "working_dir",
    "timeout",
    "capture",
    "env",
}


class RecipeError(TaskweaveError, ValueError):
    """Raised when a recipe file is invalid."""

    pass


@dataclass
class Recipe:
    """A parsed recipe file."""

    registry: TaskRegistry
    project_root: Path
    properties: dict[str, Any] = field(default_factory=dict)
    recipe_path: Path | None = None

    def get_task(self, name: str) -> Task | None:
        """Get task by name, or None if it isn't defined."""
        if name in self.registry:
            return self.registry.get(name)
        return None

    def task_names(self) -> list[str]:
        return self.registry.task_names()


@dataclass(frozen=True)
class CommandAction:
    """Task action that runs a recipe task's commands in sequence.

    All values are bound when the recipe is parsed; placeholders are resolved
    against the run's properties and context when the task executes.
    """

    commands: tuple[str, ...]
    options: CommandOptions = field(default_factory=CommandOptions)
    capture: str | None = None

    def __call__(self, ctx: TaskContext) -> None:
        properties = ctx.properties.as_dict()
        result = None
        for command in self.commands:
            text = substitute_all(command, properties, ctx.context_values())
            result = ctx.exec(text, self.options)
        if self.capture and result is not None:
            ctx.set(self.capture, result.stdout.strip())


@dataclass(frozen=True)
class CommandPrecondition:
    """Precondition that holds when a command exits with code 0."""

    command: str
    working_dir: str | None = None
    env: dict[str, str] | None = None

    def __call__(self, ctx: TaskContext) -> bool:
        text = substitute_all(self.command, ctx.properties.as_dict(), ctx.context_values())
        try:
            ctx.exec(text, CommandOptions(working_dir=self.working_dir, env=self.env))
        except ExternalCommandError:
            return False
        return True


def find_recipe_file(start_dir: Path | None = None) -> Path | None:
    """Find a recipe file in the current or parent directories.

    Args:
        start_dir: Directory to start searching from (defaults to cwd)

    Returns:
        Path to recipe file if found, None otherwise
    """
    if start_dir is None:
        start_dir = Path.cwd()

    current = start_dir.resolve()

    # Search up the directory tree
    while True:
        for filename in RECIPE_FILE_NAMES:
            recipe_path = current / filename
            if recipe_path.exists():
                return recipe_path

        parent = current.parent
        if parent == current:
            # Reached root
            break
        current = parent

    return None


def parse_recipe(recipe_path: Path) -> Recipe:
    """Parse a recipe file.

    Args:
        recipe_path: Path to the recipe file

    Returns:
        Recipe with a populated (not yet frozen) registry

    Raises:
        FileNotFoundError: If recipe file doesn't exist
        RecipeError: If the YAML or the recipe structure is invalid
    """
    if not recipe_path.exists():
        raise FileNotFoundError(f"Recipe file not found: {recipe_path}")

    try:
        with open(recipe_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RecipeError(f"Error parsing YAML in recipe '{recipe_path}': {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise RecipeError(f"Recipe '{recipe_path}' must be a mapping")

    properties = data.get("properties") or {}
    if not isinstance(properties, dict):
        raise RecipeError("'properties' must be a dictionary")

    # Tasks can be either at root level OR inside a "tasks:" key
    if "tasks" in data:
        tasks_data = data["tasks"] or {}
    else:
        tasks_data = {k: v for k, v in data.items() if k not in _SECTION_KEYS}
    if not isinstance(tasks_data, dict):
        raise RecipeError("'tasks' must be a dictionary")

    registry = TaskRegistry()
    for task_name, task_data in tasks_data.items():
        task = _parse_task(str(task_name), task_data, recipe_path)
        try:
            registry.register(task)
        except DuplicateTaskError as e:
            raise RecipeError(str(e)) from e

    return Recipe(
        registry=registry,
        project_root=recipe_path.parent,
        properties=properties,
        recipe_path=recipe_path,
    )


def _parse_task(name: str, task_data: Any, recipe_path: Path) -> Task:
    if task_data is None:
        task_data = {}
    if not isinstance(task_data, dict):
        raise RecipeError(f"Task '{name}' must be a dictionary")

    unknown = sorted(set(task_data) - _TASK_KEYS)
    if unknown:
        raise RecipeError(f"Task '{name}' has unknown field(s): {', '.join(unknown)}")

    deps = task_data.get("deps", [])
    if isinstance(deps, str):
        deps = [deps]
    if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
        raise RecipeError(f"Task '{name}': 'deps' must be a list of task names")

    working_dir = task_data.get("working_dir")
    if working_dir is not None and not isinstance(working_dir, str):
        raise RecipeError(f"Task '{name}': 'working_dir' must be a string")

    env = task_data.get("env")
    if env is not None:
        if not isinstance(env, dict):
            raise RecipeError(f"Task '{name}': 'env' must be a dictionary")
        env = {str(k): str(v) for k, v in env.items()}

    timeout = task_data.get("timeout")
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
        raise RecipeError(f"Task '{name}': 'timeout' must be a positive number")

    error_message = task_data.get("error_message")
    if error_message is not None and not isinstance(error_message, str):
        raise RecipeError(f"Task '{name}': 'error_message' must be a string")

    options = CommandOptions(
        error_message=error_message,
        retry=_parse_retries(name, task_data.get("retries")),
        working_dir=working_dir,
        env=env,
        timeout=timeout,
    )

    action = None
    cmd = task_data.get("cmd")
    if cmd is not None:
        commands = [cmd] if isinstance(cmd, str) else cmd
        if not isinstance(commands, list) or not all(
            isinstance(c, str) and c.strip() for c in commands
        ):
            raise RecipeError(f"Task '{name}': 'cmd' must be a string or a list of strings")
        capture = task_data.get("capture")
        if capture is not None and not isinstance(capture, str):
            raise RecipeError(f"Task '{name}': 'capture' must be a context key string")
        action = CommandAction(tuple(commands), options, capture)
    elif "capture" in task_data:
        raise RecipeError(f"Task '{name}': 'capture' requires 'cmd'")

    precondition = None
    condition = task_data.get("if")
    if condition is not None:
        if not isinstance(condition, str) or not condition.strip():
            raise RecipeError(f"Task '{name}': 'if' must be a command string")
        precondition = CommandPrecondition(condition, working_dir, env)

    continue_on_error = task_data.get("continue_on_error", False)
    if not isinstance(continue_on_error, bool):
        raise RecipeError(f"Task '{name}': 'continue_on_error' must be a boolean")

    desc = task_data.get("desc", "")
    if not isinstance(desc, str):
        raise RecipeError(f"Task '{name}': 'desc' must be a string")

    return Task(
        name=name,
        action=action,
        deps=deps,
        precondition=precondition,
        continue_on_error=continue_on_error,
        desc=desc,
        source_file=str(recipe_path),
    )


def _parse_retries(task_name: str, retries: Any) -> RetryPolicy:
    """Parse the 'retries' field.

    Accepts an attempt count, or a mapping:
        attempts: total attempts (default 1)
        delay: initial delay in seconds (default 0)
        backoff: 'fixed' (default) or 'exponential'
        factor, max_delay, jitter, seed: exponential backoff settings
        on: regular expression the output must match for a retry
    """
    if retries is None:
        return RetryPolicy()
    if isinstance(retries, bool):
        raise RecipeError(f"Task '{task_name}': 'retries' must be a number or a dictionary")
    if isinstance(retries, int):
        retries = {"attempts": retries}
    if not isinstance(retries, dict):
        raise RecipeError(f"Task '{task_name}': 'retries' must be a number or a dictionary")

    try:
        attempts = int(retries.get("attempts", 1))
        delay = float(retries.get("delay", 0))
        kind = retries.get("backoff", "fixed")
        backoff: BackoffPolicy
        if kind == "fixed":
            backoff = FixedBackoff(delay)
        elif kind == "exponential":
            max_delay = retries.get("max_delay")
            backoff = ExponentialBackoff(
                initial=delay,
                factor=float(retries.get("factor", 2.0)),
                max_delay=float(max_delay) if max_delay is not None else None,
                jitter=float(retries.get("jitter", 0.0)),
                seed=int(retries.get("seed", 0)),
            )
        else:
            raise RecipeError(
                f"Task '{task_name}': unknown backoff '{kind}' (expected 'fixed' or 'exponential')"
            )
        return RetryPolicy(max_attempts=attempts, backoff=backoff, retry_on=retries.get("on"))
    except RecipeError:
        raise
    except Exception as e:
        raise RecipeError(f"Task '{task_name}': invalid 'retries': {e}") from e
