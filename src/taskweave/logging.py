"""Logging infrastructure for taskweave.

Provides the Logger interface that is injected into every component that
produces diagnostic output.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod


class LogLevel(enum.Enum):
    """Log verbosity levels for taskweave diagnostic messages.

    Lower numeric values represent higher severity / less verbosity.
    """

    FATAL = 0  # Only unrecoverable errors (bad recipe files, dependency cycles)
    ERROR = 1  # Fatal errors plus task failures
    WARN = 2  # Errors plus tolerated failures and configuration warnings
    INFO = 3  # Warnings plus normal execution progress (default)
    DEBUG = 4  # Info plus resolved plans, properties, command lines
    TRACE = 5  # Debug plus fine-grained execution tracing

    @classmethod
    def from_name(cls, name: str) -> LogLevel:
        """Look up a level by its case-insensitive name.

        Raises:
            ValueError: If the name is not a known level
        """
        try:
            return cls[name.upper()]
        except KeyError:
            valid = ", ".join(level.name.lower() for level in cls)
            raise ValueError(f"Invalid log level '{name}'. Valid levels: {valid}") from None


class Logger(ABC):
    """Abstract logger with a stack of active levels."""

    @abstractmethod
    def log(self, level: LogLevel = LogLevel.INFO, *args, **kwargs) -> None:
        """Log a message at the given level."""
        ...

    @abstractmethod
    def push_level(self, level: LogLevel) -> None:
        """Temporarily switch to a new log level."""
        ...

    @abstractmethod
    def pop_level(self) -> LogLevel:
        """Return to the previously active log level."""
        ...

    def fatal(self, *args, **kwargs) -> None:
        self.log(LogLevel.FATAL, *args, **kwargs)

    def error(self, *args, **kwargs) -> None:
        self.log(LogLevel.ERROR, *args, **kwargs)

    def warn(self, *args, **kwargs) -> None:
        self.log(LogLevel.WARN, *args, **kwargs)

    def info(self, *args, **kwargs) -> None:
        self.log(LogLevel.INFO, *args, **kwargs)

    def debug(self, *args, **kwargs) -> None:
        self.log(LogLevel.DEBUG, *args, **kwargs)

    def trace(self, *args, **kwargs) -> None:
        self.log(LogLevel.TRACE, *args, **kwargs)
