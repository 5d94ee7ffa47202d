"""Logging setup shared by every teamswarm module.

Modules never configure handlers themselves; each one asks for a logger
under the ``teamswarm`` hierarchy and the CLI wires up output once:

    # cli.py
    setup_logging(level=args.log_level)

    # swarm.py, tmux_backend.py, ...
    logger = get_logger(__name__)
    logger.info("Created team 'acme'")

Output goes to stderr so pane ids and JSON printed on stdout stay clean.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Union

__all__ = [
    "ROOT_LOGGER_NAME",
    "DEFAULT_LOG_FORMAT",
    "setup_logging",
    "get_logger",
]

ROOT_LOGGER_NAME = "teamswarm"

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def setup_logging(
    level: Union[str, int] = "INFO",
    format_string: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """Install stderr (and optionally file) handlers on the root logger.

    Replaces any handlers installed by an earlier call, so calling it again
    with a different level is safe.

    Args:
        level: Level name ("DEBUG", "info", ...) or numeric level
        format_string: Record format (default: DEFAULT_LOG_FORMAT)
        log_file: Also append records to this file

    Raises:
        ValueError: If ``level`` is not a known level name
    """
    numeric_level = _resolve_level(level)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='a'))

    logging.basicConfig(
        level=numeric_level,
        format=format_string or DEFAULT_LOG_FORMAT,
        handlers=handlers,
        force=True
    )
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(numeric_level)

    # asyncio reports slow subprocess callbacks at DEBUG
    logging.getLogger("asyncio").setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` inside the ``teamswarm`` hierarchy.

    ``__name__`` of a package module already carries the prefix and is used
    as is; any other name is nested under ``teamswarm.``.

    Examples:
        >>> get_logger("teamswarm.swarm").name
        'teamswarm.swarm'
        >>> get_logger("scripts.bootstrap").name
        'teamswarm.scripts.bootstrap'
    """
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
