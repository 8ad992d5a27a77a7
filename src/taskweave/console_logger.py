from rich.console import Console

from taskweave.logging import Logger, LogLevel

# Default styles for plain-text messages; renderables and explicit styles are left alone
_LEVEL_STYLES = {
    LogLevel.FATAL: "bold red",
    LogLevel.ERROR: "red",
    LogLevel.WARN: "yellow",
}


class ConsoleLogger(Logger):
    """Logger that prints to a Rich console.

    A message is printed when its level is at most as verbose as the active
    level, the top of a level stack. Error and warning text gets a default
    colour unless the caller passes a style.
    """

    def __init__(self, console: Console, level: LogLevel = LogLevel.INFO) -> None:
        """
        Args:
            console: Rich Console that receives the output
            level: Base log level (default: INFO)
        """
        self._console = console
        self._levels = [level]

    @property
    def level(self) -> LogLevel:
        return self._levels[-1]

    def log(self, level: LogLevel = LogLevel.INFO, *args, **kwargs) -> None:
        """Print args through Console.print() if level passes the active level."""
        if level.value > self.level.value:
            return
        style = _LEVEL_STYLES.get(level)
        if style and args and all(isinstance(arg, str) for arg in args):
            kwargs.setdefault("style", style)
        self._console.print(*args, **kwargs)

    def push_level(self, level: LogLevel) -> None:
        self._levels.append(level)

    def pop_level(self) -> LogLevel:
        """
        Raises:
            RuntimeError: If only the base level is left
        """
        if len(self._levels) == 1:
            raise RuntimeError("Cannot pop the base log level")
        return self._levels.pop()
