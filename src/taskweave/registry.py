"""Task definitions and the registry that holds them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterator

from taskweave.errors import TaskweaveError

if TYPE_CHECKING:
    from taskweave.executor import TaskContext

Action = Callable[["TaskContext"], Any]
Precondition = Callable[["TaskContext"], bool]


class DuplicateTaskError(TaskweaveError):
    """Raised when a task name is registered twice."""

    def __init__(self, name: str):
        super().__init__(f"Task already defined: {name}")
        self.name = name


class UnknownTaskError(TaskweaveError):
    """Raised when a task or dependency name is not registered."""

    def __init__(self, name: str, required_by: str | None = None):
        if required_by:
            message = f"Task not found: {name} (dependency of '{required_by}')"
        else:
            message = f"Task not found: {name}"
        super().__init__(message)
        self.name = name
        self.required_by = required_by


class RegistryFrozenError(TaskweaveError):
    """Raised when registering into a registry that has already been resolved."""

    pass


@dataclass
class Task:
    """Represents a task definition."""

    name: str
    action: Action | None = None
    deps: list[str] = field(default_factory=list)
    precondition: Precondition | None = None
    continue_on_error: bool = False
    desc: str = ""
    timeout: float | None = None
    source_file: str = ""  # Track which file defined this task

    def __post_init__(self):
        """Ensure deps is always a list."""
        if isinstance(self.deps, str):
            self.deps = [self.deps]
        else:
            self.deps = list(self.deps)
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"Task '{self.name}' timeout must be positive")


class TaskRegistry:
    """Mapping from task name to Task.

    Populated during the declaration phase and frozen once the dependency
    resolver has looked at it. Registration order has no effect on execution
    order.
    """

    def __init__(self, tasks: list[Task] | None = None):
        self._tasks: dict[str, Task] = {}
        self._frozen = False
        for task in tasks or []:
            self.register(task)

    def register(self, task: Task) -> Task:
        """Add a task to the registry.

        Returns:
            The registered task, so the call can be used inline

        Raises:
            DuplicateTaskError: If a task with the same name exists
            RegistryFrozenError: If resolution has already begun
        """
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register '{task.name}': the registry has already been resolved"
            )
        if task.name in self._tasks:
            raise DuplicateTaskError(task.name)
        self._tasks[task.name] = task
        return task

    def task(
        self,
        name: str,
        deps: list[str] | None = None,
        **kwargs: Any,
    ) -> Callable[[Action], Action]:
        """Decorator form of register() for declaring tasks from functions.

        Example:
            >>> registry = TaskRegistry()
            >>> @registry.task("Build", deps=["Clean"], desc="Compile")
            ... def build(ctx):
            ...     ctx.exec("make")
        """

        def decorator(fn: Action) -> Action:
            self.register(Task(name=name, action=fn, deps=deps or [], **kwargs))
            return fn

        return decorator

    def get(self, name: str) -> Task:
        """Get task by name.

        Raises:
            UnknownTaskError: If no such task is registered
        """
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTaskError(name) from None

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def task_names(self) -> list[str]:
        """Get all task names in declaration order."""
        return list(self._tasks.keys())

    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)
