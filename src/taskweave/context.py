"""Run-scoped key-value store for passing data between tasks."""

from __future__ import annotations

from typing import Any

from taskweave.errors import TaskweaveError

_MISSING = object()


class MissingKeyError(TaskweaveError, KeyError):
    """Raised when reading a context key that was never set in this run."""

    def __init__(self, key: str):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Context key '{self.key}' has not been set in this run"


class SharedContext:
    """Key-value store shared by the tasks of a single run.

    Values written by a task are visible to every task that executes after it in
    the same run. A new, empty store is created for every run. Runs are single
    threaded, so no locking is done here.
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        if not isinstance(key, str) or not key:
            raise ValueError("Context keys must be non-empty strings")
        self._values[key] = value

    def get(self, key: str) -> Any:
        """Get the value stored under key.

        Raises:
            MissingKeyError: If the key was never set in this run
        """
        try:
            return self._values[key]
        except KeyError:
            raise MissingKeyError(key) from None

    def lookup(self, key: str, default: Any = None) -> Any:
        """Get the value stored under key, or default if it was never set."""
        return self._values.get(key, default)

    def keys(self) -> list[str]:
        return list(self._values.keys())

    def as_dict(self) -> dict[str, Any]:
        """Return a shallow copy of the stored values."""
        return dict(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)
