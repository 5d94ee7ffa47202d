"""iTerm2 terminal backend for teamswarm.

Drives iTerm2 through the ``it2`` CLI. Splits form a linked chain: the
first teammate splits the current session vertically and every later
teammate splits the previous teammate's session. The CLI has no border
color, title, layout or hide/show primitives, so those operations are
no-ops returning False.
"""

from __future__ import annotations

import asyncio
from typing import Sequence

from .backend import (
    ITERM_BINARY,
    BackendCommandError,
    CommandResult,
    CommandRunner,
    TerminalBackend,
    is_inside_iterm2,
    is_iterm_available,
    run_command,
)
from .logging_config import get_logger
from .models import AgentColor, BackendType, PaneCreationResult

logger = get_logger(__name__)

__all__ = ["ITermBackend", "ITermCommandError"]


class ITermCommandError(BackendCommandError):
    """Raised when an it2 command needed for pane management fails."""
    pass


class ITermBackend(TerminalBackend):
    """iTerm2 backend using ``it2 session`` commands.

    Args:
        runner: Coroutine used to execute commands; defaults to run_command
    """

    def __init__(self, runner: CommandRunner | None = None):
        self._run = runner if runner is not None else run_command
        self._pane_lock = asyncio.Lock()
        self._teammate_session_ids: list[str] = []
        self._has_first_pane = False

    @property
    def backend_type(self) -> BackendType:
        return BackendType.ITERM2

    @property
    def display_name(self) -> str:
        return "iTerm2"

    @property
    def supports_hide_show(self) -> bool:
        return False

    async def is_available(self) -> bool:
        return is_inside_iterm2() and is_iterm_available()

    async def is_running_inside(self) -> bool:
        return is_inside_iterm2()

    async def create_teammate_pane_in_swarm_view(
        self, name: str, color: AgentColor
    ) -> PaneCreationResult:
        async with self._pane_lock:
            is_first_teammate = not self._has_first_pane

            if is_first_teammate:
                args = ["session", "split", "-v"]
            elif self._teammate_session_ids:
                args = ["session", "split", "-s", self._teammate_session_ids[-1]]
            else:
                args = ["session", "split"]

            result = await self._it2(args)
            if not result.ok:
                raise self._error("Failed to create iTerm2 split pane", args, result)

            if is_first_teammate:
                self._has_first_pane = True

            session_id = self._parse_session_id(result.stdout)
            if not session_id:
                raise ITermCommandError(
                    f"Failed to parse session id from output: {result.stdout!r}",
                    argv=args,
                    code=result.code,
                    stderr=result.stderr,
                )

            self._teammate_session_ids.append(session_id)
            logger.info(f"Created iTerm2 session {session_id} for teammate '{name}'")
            return PaneCreationResult(pane_id=session_id, is_first_teammate=is_first_teammate)

    async def send_command_to_pane(self, pane_id: str, command: str) -> None:
        if pane_id:
            args = ["session", "run", "-s", pane_id, command]
        else:
            args = ["session", "run", command]

        result = await self._it2(args)
        if not result.ok:
            raise self._error(f"Failed to send command to iTerm2 pane {pane_id}", args, result)

    async def set_pane_border_color(self, pane_id: str, color: AgentColor) -> bool:
        return False

    async def set_pane_title(self, pane_id: str, name: str, color: AgentColor) -> bool:
        return False

    async def enable_pane_border_status(self, window_target: str | None = None) -> bool:
        return False

    async def rebalance_panes(self, window_target: str, has_leader: bool) -> bool:
        return False

    async def kill_pane(self, pane_id: str) -> bool:
        result = await self._it2(["session", "close", "-s", pane_id])
        if result.ok and pane_id in self._teammate_session_ids:
            self._teammate_session_ids.remove(pane_id)
        return result.ok

    async def hide_pane(self, pane_id: str) -> bool:
        return False

    async def show_pane(self, pane_id: str, target_window: str) -> bool:
        return False

    def get_teammate_session_ids(self) -> list[str]:
        return list(self._teammate_session_ids)

    def reset(self) -> None:
        self._teammate_session_ids = []
        self._has_first_pane = False
        self._pane_lock = asyncio.Lock()

    @staticmethod
    def _parse_session_id(output: str) -> str | None:
        first_line = output.strip().split("\n")[0]
        return first_line.strip() or None

    async def _it2(self, args: Sequence[str]) -> CommandResult:
        argv = [ITERM_BINARY, *args]
        logger.debug(f"Running: {' '.join(argv)}")
        return await self._run(argv)

    def _error(self, message: str, argv: Sequence[str], result: CommandResult) -> ITermCommandError:
        stderr = result.stderr.strip()
        return ITermCommandError(f"{message}: {stderr}", argv=argv, code=result.code, stderr=stderr)
