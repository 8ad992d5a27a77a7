"""Placeholder substitution for properties, context values and environment variables.

This module provides functions to substitute {{ prop.name }}, {{ ctx.key }}
and {{ env.NAME }} placeholders in recipe commands.
"""

import os
import re
from typing import Any, Mapping

# Pattern matches: {{ prefix.name }} with optional whitespace
# Groups: (1) prefix (prop|ctx|env), (2) name
PLACEHOLDER_PATTERN = re.compile(
    r"\{\{\s*(prop|ctx|env)\s*\.\s*([a-zA-Z_][a-zA-Z0-9_.-]*)\s*\}\}"
)


def _substitute(text: str, sources: Mapping[str, tuple[Mapping[str, Any], str]]) -> str:
    """Replace every placeholder whose prefix is in sources in a single pass.

    Substituted values are never scanned again, so a value that itself looks
    like a placeholder is kept literally.
    """

    def replace_match(match: re.Match) -> str:
        prefix, name = match.group(1), match.group(2)
        if prefix not in sources:
            return match.group(0)  # Return unchanged

        values, kind = sources[prefix]
        if name not in values:
            raise ValueError(f"{kind} '{name}' is not defined")

        value = values[name]
        return value if isinstance(value, str) else str(value)

    return PLACEHOLDER_PATTERN.sub(replace_match, text)


def substitute_properties(text: str, properties: Mapping[str, Any]) -> str:
    """Substitute {{ prop.name }} placeholders with property values.

    Raises:
        ValueError: If a referenced property is not defined
    """
    return _substitute(text, {"prop": (properties, "Property")})


def substitute_context(text: str, context: Mapping[str, Any]) -> str:
    """Substitute {{ ctx.key }} placeholders with values from the shared context.

    Raises:
        ValueError: If a referenced key has not been set in this run
    """
    return _substitute(text, {"ctx": (context, "Context key")})


def substitute_environment(text: str) -> str:
    """Substitute {{ env.NAME }} placeholders with environment variable values.

    Environment variables are read from os.environ at substitution time.

    Raises:
        ValueError: If a referenced environment variable is not set

    Example:
        >>> os.environ['USER'] = 'alice'
        >>> substitute_environment("Hello {{ env.USER }}")
        'Hello alice'
    """
    return _substitute(text, {"env": (os.environ, "Environment variable")})


def substitute_all(
    text: str, properties: Mapping[str, Any], context: Mapping[str, Any]
) -> str:
    """Substitute all placeholder types: properties, context, environment.

    Raises:
        ValueError: If any referenced value is not defined
    """
    return _substitute(
        text,
        {
            "prop": (properties, "Property"),
            "ctx": (context, "Context key"),
            "env": (os.environ, "Environment variable"),
        },
    )
