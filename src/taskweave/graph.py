"""Dependency resolution using depth-first topological sorting."""

from __future__ import annotations

from typing import Iterable, Iterator

from taskweave.errors import TaskweaveError
from taskweave.registry import TaskRegistry, UnknownTaskError


class CyclicDependencyError(TaskweaveError):
    """Raised when a dependency cycle is detected.

    Attributes:
        cycle: Task names along the cycle, starting and ending with the same task
    """

    def __init__(self, cycle: list[str]):
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")
        self.cycle = cycle


def _normalize_targets(targets: str | Iterable[str]) -> list[str]:
    if isinstance(targets, str):
        return [targets]
    return list(targets)


def resolve_execution_order(
    registry: TaskRegistry, targets: str | Iterable[str]
) -> list[str]:
    """Resolve execution order for the target tasks and their dependencies.

    Tasks are emitted in depth-first post-order: targets in the order given and
    dependencies in the order they are declared. A task reachable through
    several paths appears once, at its first completion. The same registry and
    targets always produce the same plan.

    Resolving freezes the registry.

    Args:
        registry: Registry containing all tasks
        targets: Name, or names, of the tasks to execute

    Returns:
        List of task names in execution order (dependencies first)

    Raises:
        UnknownTaskError: If a target or any dependency doesn't exist
        CyclicDependencyError: If a dependency cycle is detected
    """
    target_names = _normalize_targets(targets)
    if not target_names:
        raise ValueError("At least one target task is required")

    registry.freeze()

    order: list[str] = []
    done: set[str] = set()
    visiting: set[str] = set()
    # Explicit stack of (task name, remaining deps) frames; deep chains must not
    # hit the interpreter recursion limit
    stack: list[tuple[str, Iterator[str]]] = []

    def enter(task_name: str, required_by: str | None) -> None:
        if task_name in visiting:
            path = [name for name, _ in stack]
            start = path.index(task_name)
            raise CyclicDependencyError(path[start:] + [task_name])
        if task_name not in registry:
            raise UnknownTaskError(task_name, required_by)

        visiting.add(task_name)
        stack.append((task_name, iter(registry.get(task_name).deps)))

    for target in target_names:
        if target in done:
            continue
        enter(target, None)

        while stack:
            task_name, deps = stack[-1]
            dep = next(deps, None)
            if dep is None:
                stack.pop()
                visiting.remove(task_name)
                done.add(task_name)
                order.append(task_name)
            elif dep not in done:
                enter(dep, task_name)

    return order


def transitive_dependents(registry: TaskRegistry, plan: list[str], task_name: str) -> list[str]:
    """Get the planned tasks that depend on task_name, directly or transitively.

    Args:
        registry: Registry the plan was resolved from
        plan: Execution plan
        task_name: Task whose dependents to collect

    Returns:
        Dependent task names in plan order
    """
    affected = {task_name}
    dependents = []
    for name in plan:
        if name == task_name:
            continue
        if any(dep in affected for dep in registry.get(name).deps):
            affected.add(name)
            dependents.append(name)
    return dependents


def build_dependency_tree(registry: TaskRegistry, target_task: str) -> dict:
    """Build a tree structure representing dependencies for visualization.

    Args:
        registry: Registry containing all tasks
        target_task: Name of the task to build tree for

    Returns:
        Nested dictionary representing the dependency tree. A node that closes a
        cycle is returned with ``"cycle": True`` and no children.

    Raises:
        UnknownTaskError: If the target or any dependency doesn't exist
    """
    visited: set[str] = set()

    def build_tree(task_name: str, required_by: str | None) -> dict:
        if task_name not in registry:
            raise UnknownTaskError(task_name, required_by)

        # Prevent infinite recursion on cycles
        if task_name in visited:
            return {"name": task_name, "deps": [], "cycle": True}

        visited.add(task_name)
        tree = {
            "name": task_name,
            "deps": [build_tree(dep, task_name) for dep in registry.get(task_name).deps],
        }
        visited.remove(task_name)

        return tree

    return build_tree(target_task, None)
