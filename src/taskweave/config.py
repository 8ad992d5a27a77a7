"""
Configuration file parsing for default properties and shell settings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import platformdirs
import yaml

from taskweave.errors import TaskweaveError
from taskweave.logging import Logger

__all__ = [
    "Config",
    "ConfigError",
    "PROJECT_CONFIG_NAME",
    "get_user_config_path",
    "get_machine_config_path",
    "find_project_config",
    "parse_config_file",
    "load_config_hierarchy",
]

PROJECT_CONFIG_NAME = ".taskweave-config.yml"

_CONFIG_KEYS = {"properties", "shell", "shell_args"}


class ConfigError(TaskweaveError):
    """
    Raised when a configuration file is invalid.
    """

    pass


@dataclass
class Config:
    """Settings merged from the configuration file hierarchy."""

    properties: dict[str, Any] = field(default_factory=dict)
    shell: str = ""
    shell_args: Optional[list[str]] = None
    sources: list[Path] = field(default_factory=list)

    def merge(self, other: Config) -> Config:
        """Return a new Config with other's settings layered over this one."""
        properties = dict(self.properties)
        properties.update(other.properties)
        return Config(
            properties=properties,
            shell=other.shell or self.shell,
            shell_args=other.shell_args if other.shell_args is not None else self.shell_args,
            sources=self.sources + other.sources,
        )


def get_machine_config_path() -> Path:
    """
    Get the path to the machine-level (system-wide) configuration file.

    Uses platformdirs to determine the appropriate site config directory
    for the current platform, then appends 'taskweave/config.yml'.

    Returns:
        Path to the machine config file (may not exist)
    """
    config_dir = Path(platformdirs.site_config_dir("taskweave"))
    return config_dir / "config.yml"


def get_user_config_path() -> Path:
    """
    Get the path to the user-level configuration file.

    Returns:
        Path to the user config file (may not exist)
    """
    config_dir: Path = Path(platformdirs.user_config_dir("taskweave"))
    return config_dir / "config.yml"


def find_project_config(start_dir: Path) -> Optional[Path]:
    """
    Walk up the directory tree from start_dir to find .taskweave-config.yml.

    Args:
        start_dir: Directory to start searching from

    Returns:
        Path to .taskweave-config.yml if found, None otherwise
    """
    try:
        current = start_dir.resolve()
    except (OSError, RuntimeError):
        # resolve() raises OSError on invalid paths or RuntimeError on symlink loops
        return None

    # Maximum depth guards against pathological filesystem layouts
    max_depth = 100
    for _ in range(max_depth):
        try:
            config_path = current / PROJECT_CONFIG_NAME
            if config_path.exists():
                return config_path
        except OSError:
            # Unreadable directory: keep walking up
            pass

        parent = current.parent
        if parent == current:
            # We've reached the root
            break

        current = parent

    return None


def parse_config_file(path: Path) -> Optional[Config]:
    """
    Parse a taskweave configuration file.

    Empty files are valid and return an empty Config.

    Args:
        path: Path to the configuration file

    Returns:
        Config read from the file, or None if the file doesn't exist

    Raises:
        ConfigError: If the config file is invalid (malformed YAML, unknown keys,
                     wrongly typed values)

    Config File Example (.taskweave-config.yml):
        ```yaml
        shell: /bin/zsh
        shell_args: ["-c"]
        properties:
          configuration: Release
          verbosity: minimal
        ```
    """
    if not path.exists():
        return None

    try:
        with open(path, "r") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(f"Error reading config file '{path}': {e}") from e

    if not content.strip():
        return Config(sources=[path])

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML in config file '{path}': {e}") from e

    if data is None:
        return Config(sources=[path])

    if not isinstance(data, dict):
        raise ConfigError(f"Error in config file '{path}': top level must be a dictionary")

    unknown = sorted(set(data) - _CONFIG_KEYS)
    if unknown:
        raise ConfigError(
            f"Error in config file '{path}': unknown key(s): {', '.join(unknown)}"
        )

    properties = data.get("properties") or {}
    if not isinstance(properties, dict):
        raise ConfigError(
            f"Error in config file '{path}': 'properties' must be a dictionary"
        )

    shell = data.get("shell", "")
    if not isinstance(shell, str):
        raise ConfigError(f"Error in config file '{path}': Field 'shell' must be a string")

    shell_args = data.get("shell_args")
    if shell_args is not None and (
        not isinstance(shell_args, list) or not all(isinstance(a, str) for a in shell_args)
    ):
        raise ConfigError(
            f"Error in config file '{path}': Field 'shell_args' must be a list of strings"
        )

    return Config(
        properties={str(k): v for k, v in properties.items()},
        shell=shell,
        shell_args=shell_args,
        sources=[path],
    )


def load_config_hierarchy(start_dir: Path, logger: Optional[Logger] = None) -> Config:
    """
    Load and merge machine, user and project configuration, in that order.

    Later files override earlier ones.

    Raises:
        ConfigError: If any of the files is invalid
    """
    config = Config()
    paths = [get_machine_config_path(), get_user_config_path()]
    project_config = find_project_config(start_dir)
    if project_config is not None:
        paths.append(project_config)

    for path in paths:
        parsed = parse_config_file(path)
        if parsed is None:
            if logger:
                logger.trace(f"No config file at {path}")
            continue
        if logger:
            logger.debug(f"Loaded config from {path}")
        config = config.merge(parsed)

    return config
