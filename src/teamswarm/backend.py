"""Terminal backend abstraction for teamswarm.

This module provides a backend abstraction layer that lets a swarm lay out
one visual pane per teammate in different terminal multiplexers:
- TmuxBackend: tmux panes, in-session or on a dedicated leader socket
- ITermBackend: iTerm2 split sessions driven through the ``it2`` CLI

Every operation of the interface is required. Backends that lack a
primitive (iTerm2 has no border colors or hide/show) implement it as a
no-op returning False, which callers treat as "not applied".

Auto-detection picks the right backend based on environment variables,
config and which binaries are installed. The result is cached for the
process until reset_backend_detection() is called.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from .logging_config import get_logger
from .models import LEADER_SOCKET_NAME, AgentColor, BackendType, PaneCreationResult

logger = get_logger(__name__)

__all__ = [
    "TerminalBackend",
    "CommandResult",
    "CommandRunner",
    "BackendError",
    "BackendCommandError",
    "run_command",
    "is_inside_tmux",
    "is_inside_iterm2",
    "is_tmux_available",
    "is_iterm_available",
    "get_current_pane_id_from_env",
    "get_leader_tmux_socket",
    "register_backend",
    "get_backend_by_type",
    "detect_backend",
    "get_cached_backend",
    "reset_backend_detection",
]

TMUX_BINARY = "tmux"
ITERM_BINARY = "it2"
BACKEND_ENV_VAR = "TEAMSWARM_BACKEND"


class BackendError(Exception):
    """Base exception for terminal backend errors."""
    pass


class BackendCommandError(BackendError):
    """Raised when a multiplexer command exits non-zero.

    Attributes:
        argv: Command that failed
        code: Exit code
        stderr: Captured standard error
    """

    def __init__(self, message: str, argv: Sequence[str] = (), code: int = 1, stderr: str = ""):
        super().__init__(message)
        self.argv = list(argv)
        self.code = code
        self.stderr = stderr


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a subprocess invocation."""

    code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.code == 0


CommandRunner = Callable[[Sequence[str]], Awaitable[CommandResult]]


async def run_command(argv: Sequence[str]) -> CommandResult:
    """Run a command and capture its output.

    A binary that cannot be started yields ``code=1`` with the OS error in
    ``stderr`` rather than an exception.

    Args:
        argv: Program and arguments

    Returns:
        CommandResult with decoded stdout/stderr
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.debug(f"Failed to start {argv[0]}: {e}")
        return CommandResult(code=1, stdout="", stderr=str(e))

    stdout, stderr = await process.communicate()
    code = process.returncode if process.returncode is not None else 1
    return CommandResult(
        code=code,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


# Environment detection

def is_inside_tmux() -> bool:
    return bool(os.environ.get("TMUX"))


def is_inside_iterm2() -> bool:
    return os.environ.get("TERM_PROGRAM") == "iTerm.app"


def is_tmux_available() -> bool:
    return shutil.which(TMUX_BINARY) is not None


def is_iterm_available() -> bool:
    return shutil.which(ITERM_BINARY) is not None


def get_current_pane_id_from_env() -> str | None:
    return os.environ.get("TMUX_PANE") or None


def get_leader_tmux_socket() -> str:
    """Socket name (``tmux -L``) for externally spawned swarms."""
    try:
        from .config import get_config

        return get_config().backend.leader_socket
    except Exception as e:
        logger.debug(f"Config unavailable for leader socket, using default: {e}")
        return LEADER_SOCKET_NAME


class TerminalBackend(ABC):
    """Abstract base class for terminal backends.

    Defines the pane lifecycle every backend implementation must support:
    create, style, rebalance, hide/show and kill. Operations a backend
    cannot perform return False instead of raising.
    """

    @property
    @abstractmethod
    def backend_type(self) -> BackendType:
        """Return the backend type (tmux or iterm2)."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    @abstractmethod
    def supports_hide_show(self) -> bool:
        ...

    @abstractmethod
    async def is_available(self) -> bool:
        """Return True if the multiplexer can be driven from this process."""
        ...

    @abstractmethod
    async def is_running_inside(self) -> bool:
        """Return True if this process runs inside the multiplexer."""
        ...

    @abstractmethod
    async def create_teammate_pane_in_swarm_view(
        self, name: str, color: AgentColor
    ) -> PaneCreationResult:
        """Create a pane for a teammate in the swarm view.

        Calls on one backend instance are serialized: a second call waits
        until the first has finished mutating the layout.

        Args:
            name: Teammate name, used as the pane title
            color: Teammate color, used for the pane border

        Returns:
            PaneCreationResult with the new pane handle

        Raises:
            BackendCommandError: If the multiplexer rejects a command
        """
        ...

    @abstractmethod
    async def send_command_to_pane(self, pane_id: str, command: str) -> None:
        """Type a command into a pane and press Enter.

        Raises:
            BackendCommandError: If the command could not be delivered
        """
        ...

    @abstractmethod
    async def set_pane_border_color(self, pane_id: str, color: AgentColor) -> bool:
        ...

    @abstractmethod
    async def set_pane_title(self, pane_id: str, name: str, color: AgentColor) -> bool:
        ...

    @abstractmethod
    async def enable_pane_border_status(self, window_target: str | None = None) -> bool:
        ...

    @abstractmethod
    async def rebalance_panes(self, window_target: str, has_leader: bool) -> bool:
        """Re-apply the layout of a window.

        Args:
            window_target: ``session:window`` to rebalance
            has_leader: True to privilege the leader pane (main-vertical),
                False to tile all panes evenly
        """
        ...

    @abstractmethod
    async def kill_pane(self, pane_id: str) -> bool:
        ...

    @abstractmethod
    async def hide_pane(self, pane_id: str) -> bool:
        ...

    @abstractmethod
    async def show_pane(self, pane_id: str, target_window: str) -> bool:
        ...

    async def get_current_window_target(self) -> str | None:
        """Window hidden panes are shown back into.

        Optional method. Returns None if the backend has no notion of a
        target window (e.g., ITermBackend).

        Returns:
            ``session:window`` target if known, None otherwise.
        """
        return None


# Registry and detection
_registered_backends: dict[BackendType, TerminalBackend] = {}
_cached_backend: TerminalBackend | None = None


def register_backend(backend: TerminalBackend) -> None:
    """Register a backend instance to be used for its type during detection."""
    _registered_backends[backend.backend_type] = backend


def get_backend_by_type(backend_type: BackendType) -> TerminalBackend | None:
    return _registered_backends.get(backend_type)


def _backend_for(backend_type: BackendType) -> TerminalBackend:
    registered = _registered_backends.get(backend_type)
    if registered is not None:
        return registered

    if backend_type is BackendType.TMUX:
        from .tmux_backend import TmuxBackend

        return TmuxBackend()

    from .iterm_backend import ITermBackend

    return ITermBackend()


def _requested_backend_type() -> BackendType | None:
    """Backend forced by the environment or the config file, if any."""
    env_backend = os.environ.get(BACKEND_ENV_VAR, "").lower().strip()
    if env_backend:
        try:
            backend_type = BackendType(env_backend)
            logger.info(f"Using {backend_type.value} backend ({BACKEND_ENV_VAR} env var)")
            return backend_type
        except ValueError:
            # Truncate to prevent log injection with very long values
            logger.warning(
                f"Unknown {BACKEND_ENV_VAR} value '{env_backend[:30]}', "
                f"falling back to auto-detection"
            )

    try:
        from .config import get_config

        provider = (get_config().backend.provider or "auto").lower()
    except Exception as e:
        logger.debug(f"Config loading failed during backend detection: {e}")
        return None

    if provider != "auto":
        try:
            backend_type = BackendType(provider)
            logger.info(f"Using {backend_type.value} backend (config file)")
            return backend_type
        except ValueError:
            logger.warning(
                f"Unknown backend provider '{provider[:30]}' in config, "
                f"falling back to auto-detection"
            )
    return None


async def detect_backend() -> TerminalBackend | None:
    """Detect and cache the terminal backend for this process.

    Detection order:
    1. TEAMSWARM_BACKEND env var override ("tmux" or "iterm2")
    2. Config file backend.provider if not "auto"
    3. Inside tmux and tmux available -> tmux
    4. Inside iTerm2 and it2 available -> iTerm2
    5. tmux available (external swarm session) -> tmux
    6. None

    Returns:
        The detected backend, or None when no multiplexer is usable
    """
    global _cached_backend

    if _cached_backend is not None:
        return _cached_backend

    requested = _requested_backend_type()
    if requested is not None:
        _cached_backend = _backend_for(requested)
        return _cached_backend

    if is_inside_tmux():
        tmux = _backend_for(BackendType.TMUX)
        if await tmux.is_available():
            logger.info("Using tmux backend (inside tmux)")
            _cached_backend = tmux
            return tmux

    if is_inside_iterm2():
        iterm = _backend_for(BackendType.ITERM2)
        if await iterm.is_available():
            logger.info("Using iTerm2 backend (inside iTerm2)")
            _cached_backend = iterm
            return iterm

    tmux = _backend_for(BackendType.TMUX)
    if await tmux.is_available():
        logger.info("Using tmux backend (external session)")
        _cached_backend = tmux
        return tmux

    logger.warning("No terminal backend available (need tmux or iTerm2 with it2)")
    return None


def get_cached_backend() -> TerminalBackend | None:
    return _cached_backend


def reset_backend_detection() -> None:
    """Forget the detected backend and registered instances.

    Useful for testing or when the environment changes.
    """
    global _cached_backend

    _cached_backend = None
    _registered_backends.clear()
