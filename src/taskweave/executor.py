"""Task execution: walks an execution plan and applies failure policy."""

from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

from taskweave.commands import CommandOptions, CommandResult, CommandRunner, RetryPolicy
from taskweave.context import SharedContext
from taskweave.errors import TaskweaveError
from taskweave.events import EventKind, EventListener, RunEvent
from taskweave.graph import resolve_execution_order, transitive_dependents
from taskweave.logging import Logger
from taskweave.properties import Properties
from taskweave.registry import Task, TaskRegistry


class TaskState(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SkipReason(enum.Enum):
    PRECONDITION = "precondition"
    DEPENDENCY_FAILED = "dependency_failed"
    CANCELLED = "cancelled"

    def describe(self) -> str:
        match self:
            case SkipReason.PRECONDITION:
                return "precondition not met"
            case SkipReason.DEPENDENCY_FAILED:
                return "a dependency failed"
            case SkipReason.CANCELLED:
                return "run cancelled"


class PreconditionEvaluationError(TaskweaveError):
    """Raised when a task's precondition itself raises."""

    def __init__(self, task_name: str, cause: BaseException):
        super().__init__(f"Precondition of task '{task_name}' raised: {cause}")
        self.task_name = task_name


class ActionError(TaskweaveError):
    """Raised when a task's action fails."""

    def __init__(self, task_name: str, message: str):
        super().__init__(f"Task '{task_name}' failed: {message}")
        self.task_name = task_name


class ActionTimeoutError(ActionError):
    def __init__(self, task_name: str, timeout: float):
        super().__init__(task_name, f"action timed out after {timeout:g}s")
        self.timeout = timeout


class RecursiveInvocationError(TaskweaveError):
    """Raised when a nested run would re-enter a task that is still running."""

    def __init__(self, chain: list[str]):
        super().__init__(f"Recursive task invocation: {' -> '.join(chain)}")
        self.chain = chain


class ContextClosedError(TaskweaveError):
    """Raised when an action uses its TaskContext after the task has finished."""

    pass


@dataclass
class TaskResult:
    """Final state of one planned task."""

    name: str
    state: TaskState = TaskState.PENDING
    reason: SkipReason | None = None
    error: BaseException | None = None
    duration: float | None = None
    continue_on_error: bool = False

    @property
    def blocks_dependents(self) -> bool:
        """Whether dependents of this task must be skipped."""
        if self.state == TaskState.FAILED:
            return not self.continue_on_error
        return self.state == TaskState.SKIPPED and self.reason in (
            SkipReason.DEPENDENCY_FAILED,
            SkipReason.CANCELLED,
        )


@dataclass
class RunResult:
    """Outcome of one run. Skipped tasks are neutral for success."""

    plan: list[str]
    results: dict[str, TaskResult] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def failures(self) -> list[TaskResult]:
        """Failed tasks that fail the run, in plan order."""
        return [
            self.results[name]
            for name in self.plan
            if self.results[name].state == TaskState.FAILED
            and not self.results[name].continue_on_error
        ]

    @property
    def tolerated_failures(self) -> list[TaskResult]:
        """Failed tasks whose continue_on_error flag kept the run going."""
        return [
            self.results[name]
            for name in self.plan
            if self.results[name].state == TaskState.FAILED
            and self.results[name].continue_on_error
        ]

    @property
    def success(self) -> bool:
        return not self.failures

    def state_of(self, name: str) -> TaskState:
        return self.results[name].state

    @property
    def states(self) -> dict[str, TaskState]:
        return {name: self.results[name].state for name in self.plan}

    def __bool__(self) -> bool:
        return self.success


class CancellationToken:
    """Requests that a run stop at the next task boundary."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class TaskContext:
    """Handle passed to a task's precondition and action.

    Gives access to the run's shared context store, the build properties, the
    external command runner and nested runs. The handle is closed when the task
    finishes; an action abandoned by a timeout can then no longer write to the
    run's state.
    """

    def __init__(
        self,
        executor: Executor,
        task: Task,
        store: SharedContext,
        cancel_token: CancellationToken | None,
        ancestry: tuple[str, ...],
        depth: int,
    ):
        self._executor = executor
        self._task = task
        self._store = store
        self._cancel_token = cancel_token
        self._ancestry = ancestry
        self._depth = depth
        self._closed = False

    @property
    def task(self) -> Task:
        return self._task

    @property
    def name(self) -> str:
        return self._task.name

    @property
    def properties(self) -> Properties:
        return self._executor.properties

    @property
    def logger(self) -> Logger:
        return self._executor.logger

    def close(self) -> None:
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise ContextClosedError(f"Task '{self.name}' has already finished")

    def set(self, key: str, value: Any) -> None:
        """Publish a value for tasks that run later in this run."""
        self._check_open()
        self._store.set(key, value)

    def get(self, key: str) -> Any:
        """Read a value published earlier in this run (MissingKeyError if absent)."""
        return self._store.get(key)

    def lookup(self, key: str, default: Any = None) -> Any:
        return self._store.lookup(key, default)

    def has(self, key: str) -> bool:
        return key in self._store

    def context_values(self) -> dict[str, Any]:
        return self._store.as_dict()

    def exec(
        self,
        command: str | list[str],
        options: CommandOptions | None = None,
        *,
        error_message: str | None = None,
        max_attempts: int | None = None,
        working_dir: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run an external command for this task.

        Either pass a full CommandOptions, or the common options as keywords.

        Raises:
            ExternalCommandError: If the command fails after its last attempt
        """
        self._check_open()
        if options is None:
            options = CommandOptions(
                error_message=error_message,
                retry=RetryPolicy(max_attempts=max_attempts or 1),
                working_dir=working_dir,
                timeout=timeout,
            )
        return self._executor.command_runner.run(command, options)

    def invoke(self, targets: str | Iterable[str]) -> RunResult:
        """Run targets as a nested run with its own run state and context store.

        Returns:
            The nested run's RunResult; its success does not affect this task
            unless the action acts on it

        Raises:
            RecursiveInvocationError: If the nested plan contains a running task
        """
        self._check_open()
        return self._executor.run(
            targets,
            cancel_token=self._cancel_token,
            _ancestry=self._ancestry + (self.name,),
            _depth=self._depth + 1,
        )


class Executor:
    """Runs execution plans resolved from a task registry."""

    def __init__(
        self,
        registry: TaskRegistry,
        logger: Logger,
        command_runner: CommandRunner | None = None,
        properties: Properties | None = None,
        listeners: Iterable[EventListener] = (),
    ):
        """Initialize executor.

        Args:
            registry: Registry containing all tasks
            logger: Logger for diagnostic output
            command_runner: Runner for external commands (default: silent runner in cwd)
            properties: Build properties visible to actions
            listeners: Callables receiving every RunEvent
        """
        self.registry = registry
        self.logger = logger
        self.command_runner = command_runner or CommandRunner(logger)
        self.properties = properties or Properties()
        self._listeners = list(listeners)

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: RunEvent) -> None:
        for listener in self._listeners:
            listener(event)

    def resolve(self, targets: str | Iterable[str]) -> list[str]:
        """Resolve targets into an execution plan.

        Raises:
            UnknownTaskError: If a target or dependency is not registered
            CyclicDependencyError: If the dependencies contain a cycle
        """
        return resolve_execution_order(self.registry, targets)

    def run(
        self,
        targets: str | Iterable[str],
        cancel_token: CancellationToken | None = None,
        _ancestry: tuple[str, ...] = (),
        _depth: int = 0,
    ) -> RunResult:
        """Resolve targets and execute the resulting plan.

        Resolution errors propagate before any task is executed. Task failures
        never propagate; they are recorded on the returned RunResult.
        """
        plan = self.resolve(targets)
        recursive = [name for name in plan if name in _ancestry]
        if recursive:
            start = _ancestry.index(recursive[0])
            raise RecursiveInvocationError(list(_ancestry[start:]) + [recursive[0]])
        return self.run_plan(plan, cancel_token, _ancestry, _depth)

    def run_plan(
        self,
        plan: list[str],
        cancel_token: CancellationToken | None = None,
        _ancestry: tuple[str, ...] = (),
        _depth: int = 0,
    ) -> RunResult:
        """Execute an already resolved plan in order.

        Dependencies that are not part of the plan are treated as satisfied.

        Args:
            plan: Task names in execution order
            cancel_token: Token checked before each task starts

        Returns:
            RunResult with the final state of every planned task
        """
        tasks = [self.registry.get(name) for name in plan]
        result = RunResult(
            plan=list(plan),
            results={
                task.name: TaskResult(task.name, continue_on_error=task.continue_on_error)
                for task in tasks
            },
        )
        store = SharedContext()

        self.logger.trace(f"Starting run at depth {_depth} with plan: {plan}")
        self._emit(RunEvent(EventKind.RUN_STARTED, plan=tuple(plan), depth=_depth))

        for task in tasks:
            task_result = result.results[task.name]

            if cancel_token is not None and cancel_token.cancelled:
                result.cancelled = True
                self._skip(task_result, SkipReason.CANCELLED, _depth)
                continue

            blocked_by = [
                dep
                for dep in task.deps
                if dep in result.results and result.results[dep].blocks_dependents
            ]
            if blocked_by:
                self.logger.trace(f"{task.name} blocked by: {', '.join(blocked_by)}")
                self._skip(task_result, SkipReason.DEPENDENCY_FAILED, _depth)
                continue

            self._execute_task(task, task_result, store, cancel_token, _ancestry, _depth)

            if task_result.blocks_dependents:
                dependents = transitive_dependents(self.registry, plan, task.name)
                if dependents:
                    self.logger.debug(
                        f"Failure of {task.name} will skip: {', '.join(dependents)}"
                    )

        self._emit(RunEvent(EventKind.RUN_COMPLETE, result=result, depth=_depth))
        return result

    def _skip(self, task_result: TaskResult, reason: SkipReason, depth: int) -> None:
        task_result.state = TaskState.SKIPPED
        task_result.reason = reason
        self._emit(
            RunEvent(
                EventKind.TASK_SKIPPED,
                task_name=task_result.name,
                state=TaskState.SKIPPED,
                reason=reason,
                depth=depth,
            )
        )

    def _fail(self, task_result: TaskResult, error: BaseException, depth: int) -> None:
        task_result.state = TaskState.FAILED
        task_result.error = error
        self._emit(
            RunEvent(
                EventKind.TASK_FAILED,
                task_name=task_result.name,
                state=TaskState.FAILED,
                error=error,
                duration=task_result.duration,
                depth=depth,
            )
        )

    def _execute_task(
        self,
        task: Task,
        task_result: TaskResult,
        store: SharedContext,
        cancel_token: CancellationToken | None,
        ancestry: tuple[str, ...],
        depth: int,
    ) -> None:
        ctx = TaskContext(self, task, store, cancel_token, ancestry, depth)
        try:
            if task.precondition is not None:
                try:
                    should_run = task.precondition(ctx)
                except Exception as e:
                    error = PreconditionEvaluationError(task.name, e)
                    error.__cause__ = e
                    self._fail(task_result, error, depth)
                    return
                if not should_run:
                    self._skip(task_result, SkipReason.PRECONDITION, depth)
                    return

            task_result.state = TaskState.RUNNING
            self._emit(
                RunEvent(
                    EventKind.TASK_STARTED,
                    task_name=task.name,
                    state=TaskState.RUNNING,
                    depth=depth,
                )
            )

            started = time.monotonic()
            try:
                self._invoke_action(task, ctx)
            except Exception as e:
                task_result.duration = time.monotonic() - started
                self._fail(task_result, _as_task_error(task.name, e), depth)
                return

            task_result.duration = time.monotonic() - started
            task_result.state = TaskState.SUCCEEDED
            self._emit(
                RunEvent(
                    EventKind.TASK_SUCCEEDED,
                    task_name=task.name,
                    state=TaskState.SUCCEEDED,
                    duration=task_result.duration,
                    depth=depth,
                )
            )
        finally:
            ctx.close()

    def _invoke_action(self, task: Task, ctx: TaskContext) -> None:
        if task.action is None:
            return

        if task.timeout is None:
            outcome = task.action(ctx)
        else:
            outcome = self._call_with_timeout(task, ctx)

        if outcome is False:
            raise ActionError(task.name, "action reported failure")

    def _call_with_timeout(self, task: Task, ctx: TaskContext) -> Any:
        outcome: dict[str, Any] = {}

        def target() -> None:
            try:
                outcome["value"] = task.action(ctx)
            except BaseException as e:
                outcome["error"] = e

        thread = threading.Thread(target=target, name=f"task-{task.name}", daemon=True)
        thread.start()
        thread.join(task.timeout)

        if thread.is_alive():
            ctx.close()
            raise ActionTimeoutError(task.name, task.timeout)
        if "error" in outcome:
            error = outcome["error"]
            if isinstance(error, Exception):
                raise error
            raise ActionError(task.name, f"action terminated: {error!r}") from error
        if "value" not in outcome:
            raise ActionError(task.name, "action thread exited without a result")
        return outcome["value"]


def _as_task_error(task_name: str, error: Exception) -> TaskweaveError:
    """Keep taskweave errors as they are; wrap anything else in ActionError."""
    if isinstance(error, TaskweaveError):
        return error
    wrapped = ActionError(task_name, str(error) or type(error).__name__)
    wrapped.__cause__ = error
    return wrapped
