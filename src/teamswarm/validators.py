"""Input validation utilities for teamswarm.

This module provides validation functions for:
- Agent and member names
- Team names (which double as directory names on disk)
- Protocol request prefixes

All validation functions raise ValidationError (a ValueError subclass)
with a helpful message when validation fails.
"""

from __future__ import annotations

import re
from typing import Any

__all__ = [
    "ValidationError",
    "validate_agent_name",
    "validate_team_name",
    "validate_request_prefix",
]

MAX_AGENT_NAME_LENGTH = 64
MAX_TEAM_NAME_LENGTH = 64

# Team names become directory names under ~/.claude/teams
TEAM_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")

REQUEST_PREFIX_PATTERN = re.compile(r"^[a-z0-9_]+$")


class ValidationError(ValueError):
    """Raised when validation fails.

    This is a subclass of ValueError so callers catching ValueError
    keep working.
    """

    pass


def validate_agent_name(name: Any) -> str:
    """Validate an agent or team member name.

    Names must be non-empty strings (after stripping), at most 64
    characters, and free of control characters. Surrounding whitespace
    is stripped from the returned value.

    Args:
        name: Value to validate

    Returns:
        The validated name

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> validate_agent_name("researcher")
        'researcher'
        >>> validate_agent_name("  ")
        ValidationError: Agent name is required
    """
    if not isinstance(name, str):
        raise ValidationError(f"Agent name must be a string, got {type(name).__name__}")

    name = name.strip()
    if not name:
        raise ValidationError("Agent name is required")

    if len(name) > MAX_AGENT_NAME_LENGTH:
        raise ValidationError(
            f"Agent name too long (max {MAX_AGENT_NAME_LENGTH} characters, got {len(name)})"
        )

    if any(ord(char) < 32 or ord(char) == 127 for char in name):
        raise ValidationError(f"Agent name contains control characters: {name!r}")

    return name


def validate_team_name(team_name: Any) -> str:
    """Validate a team name.

    Team names must:
    - Be non-empty strings
    - Start with an alphanumeric character
    - Contain only alphanumerics, dots, hyphens, and underscores
    - Be at most 64 characters long

    Args:
        team_name: Value to validate

    Returns:
        The validated team name

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> validate_team_name("acme")
        'acme'
        >>> validate_team_name("../etc")
        ValidationError: Team name contains invalid characters
    """
    if not isinstance(team_name, str):
        raise ValidationError(f"Team name must be a string, got {type(team_name).__name__}")

    team_name = team_name.strip()
    if not team_name:
        raise ValidationError("Team name is required")

    if len(team_name) > MAX_TEAM_NAME_LENGTH:
        raise ValidationError(
            f"Team name too long (max {MAX_TEAM_NAME_LENGTH} characters, got {len(team_name)})"
        )

    if not TEAM_NAME_PATTERN.match(team_name):
        raise ValidationError(
            f"Team name contains invalid characters. "
            f"Only alphanumeric, dots, hyphens, and underscores allowed: '{team_name}'"
        )

    return team_name


def validate_request_prefix(prefix: Any) -> str:
    """Validate the prefix used when generating protocol request ids."""
    if not isinstance(prefix, str) or not REQUEST_PREFIX_PATTERN.match(prefix):
        raise ValidationError(f"Invalid request id prefix: {prefix!r}")
    return prefix
