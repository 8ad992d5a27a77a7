"""taskweave - dependency-driven build task orchestration."""

__version__ = "0.1.0"

from taskweave.commands import (
    CommandOptions,
    CommandResult,
    CommandRunner,
    ExponentialBackoff,
    ExternalCommandError,
    FixedBackoff,
    RetryPolicy,
)
from taskweave.context import MissingKeyError, SharedContext
from taskweave.errors import TaskweaveError
from taskweave.events import EventKind, LoggingEventListener, RunEvent
from taskweave.executor import (
    ActionError,
    ActionTimeoutError,
    CancellationToken,
    Executor,
    PreconditionEvaluationError,
    RecursiveInvocationError,
    RunResult,
    SkipReason,
    TaskContext,
    TaskResult,
    TaskState,
)
from taskweave.graph import CyclicDependencyError, build_dependency_tree, resolve_execution_order
from taskweave.parser import Recipe, RecipeError, find_recipe_file, parse_recipe
from taskweave.properties import Properties, UnknownPropertyError
from taskweave.registry import (
    DuplicateTaskError,
    RegistryFrozenError,
    Task,
    TaskRegistry,
    UnknownTaskError,
)

__all__ = [
    "__version__",
    "ActionError",
    "ActionTimeoutError",
    "CancellationToken",
    "CommandOptions",
    "CommandResult",
    "CommandRunner",
    "CyclicDependencyError",
    "DuplicateTaskError",
    "EventKind",
    "Executor",
    "ExponentialBackoff",
    "ExternalCommandError",
    "FixedBackoff",
    "LoggingEventListener",
    "MissingKeyError",
    "PreconditionEvaluationError",
    "Properties",
    "Recipe",
    "RecipeError",
    "RecursiveInvocationError",
    "RegistryFrozenError",
    "RetryPolicy",
    "RunEvent",
    "RunResult",
    "SharedContext",
    "SkipReason",
    "Task",
    "TaskContext",
    "TaskRegistry",
    "TaskResult",
    "TaskState",
    "TaskweaveError",
    "UnknownPropertyError",
    "UnknownTaskError",
    "build_dependency_tree",
    "find_recipe_file",
    "parse_recipe",
    "resolve_execution_order",
]
