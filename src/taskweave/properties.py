"""Build properties: declared defaults layered under caller overrides."""

from __future__ import annotations

from typing import Any, Mapping

from taskweave.errors import TaskweaveError


class UnknownPropertyError(TaskweaveError, KeyError):
    """Raised when reading a property that was neither declared nor overridden."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Property '{self.name}' is not defined"


class Properties:
    """Build configuration values.

    Defaults are declared by recipes and configuration files; overrides come
    from the caller (e.g. ``tw -p configuration=Debug``). An override always
    wins: declaring a default for an overridden name, at any point, leaves the
    override in place.
    """

    def __init__(self, overrides: Mapping[str, Any] | None = None):
        self._defaults: dict[str, Any] = {}
        self._overrides: dict[str, Any] = dict(overrides or {})

    def override(self, values: Mapping[str, Any]) -> None:
        self._overrides.update(values)

    def declare(self, name: str, default: Any) -> None:
        """Declare a default value. Later declarations replace earlier defaults."""
        self._defaults[name] = default

    def declare_all(self, defaults: Mapping[str, Any]) -> None:
        for name, value in defaults.items():
            self.declare(name, value)

    def is_overridden(self, name: str) -> bool:
        return name in self._overrides

    def get(self, name: str) -> Any:
        """Get the effective value of a property.

        Raises:
            UnknownPropertyError: If the property was never declared or overridden
        """
        if name in self._overrides:
            return self._overrides[name]
        if name in self._defaults:
            return self._defaults[name]
        raise UnknownPropertyError(name)

    def as_dict(self) -> dict[str, Any]:
        """Return the effective values, overrides applied over defaults."""
        merged = dict(self._defaults)
        merged.update(self._overrides)
        return merged

    def __contains__(self, name: object) -> bool:
        return name in self._overrides or name in self._defaults

    def __getitem__(self, name: str) -> Any:
        return self.get(name)


def parse_property_overrides(values: list[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings into an override mapping.

    Raises:
        ValueError: If an entry has no '=' or an empty key
    """
    overrides: dict[str, str] = {}
    for entry in values:
        if "=" not in entry:
            raise ValueError(f"Invalid property override '{entry}': expected KEY=VALUE")
        key, value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError(f"Invalid property override '{entry}': empty property name")
        overrides[key] = value
    return overrides
