"""Tmux terminal backend for teamswarm.

Two layout strategies, picked by whether this process runs inside a tmux
client:

In-session (``$TMUX`` set):
    The current pane is the leader. The first teammate splits the leader
    horizontally and takes 70% of the width. Later teammates split an
    existing teammate pane; with ``count`` teammate panes the split is
    vertical when ``count`` is odd and horizontal when even, targeting
    ``teammates[(count - 1) // 2]``. The window is then laid out
    ``main-vertical`` with the leader resized to 30%.

External:
    A detached session (``claude-swarm:swarm-view``) on a dedicated socket
    (``tmux -L claude-leader``) hosts the teammates. The first teammate
    reuses the session's initial pane, later ones use the same alternating
    rule over all panes, and the window is laid out ``tiled``.

After every layout change the backend sleeps for the configured settle
delay, since ``list-panes`` can briefly report the old topology.
"""

from __future__ import annotations

import asyncio
from typing import Sequence

from .backend import (
    BackendCommandError,
    BackendError,
    CommandResult,
    CommandRunner,
    TerminalBackend,
    get_current_pane_id_from_env,
    is_inside_tmux,
    is_tmux_available,
    run_command,
)
from .config import BackendConfig, get_config
from .logging_config import get_logger
from .models import AGENT_COLOR_TO_TMUX, AgentColor, BackendType, PaneCreationResult

logger = get_logger(__name__)

__all__ = ["TmuxBackend", "TmuxCommandError"]

PANE_ID_FORMAT = "#{pane_id}"


class TmuxCommandError(BackendCommandError):
    """Raised when a tmux command needed for pane management fails."""
    pass


def _split_lines(output: str) -> list[str]:
    return [line for line in output.strip().split("\n") if line]


class TmuxBackend(TerminalBackend):
    """Tmux-based terminal backend.

    Args:
        config: Backend settings (socket, session names, split sizes,
            settle delay); defaults to the loaded configuration
        runner: Coroutine used to execute commands; defaults to run_command
    """

    def __init__(
        self,
        config: BackendConfig | None = None,
        runner: CommandRunner | None = None,
    ):
        self.config = config if config is not None else get_config().backend
        self._run = runner if runner is not None else run_command
        self._pane_lock = asyncio.Lock()
        self._cached_window_target: str | None = None
        self._has_first_pane = False
        # Panes living on the leader socket; commands for them get "-L <socket>"
        self._external_panes: set[str] = set()

    @property
    def backend_type(self) -> BackendType:
        return BackendType.TMUX

    @property
    def display_name(self) -> str:
        return "tmux"

    @property
    def supports_hide_show(self) -> bool:
        return True

    @property
    def swarm_window_target(self) -> str:
        return f"{self.config.swarm_session_name}:{self.config.swarm_window_name}"

    async def is_available(self) -> bool:
        return is_tmux_available()

    async def is_running_inside(self) -> bool:
        return is_inside_tmux()

    # Pane creation

    async def create_teammate_pane_in_swarm_view(
        self, name: str, color: AgentColor
    ) -> PaneCreationResult:
        async with self._pane_lock:
            if await self.is_running_inside():
                return await self._create_pane_with_leader(name, color)
            return await self._create_pane_external(name, color)

    async def _create_pane_with_leader(self, name: str, color: AgentColor) -> PaneCreationResult:
        leader_pane = await self._get_current_pane_id()
        window_target = await self._get_current_window_target()
        if not leader_pane or not window_target:
            raise BackendError("Could not determine current tmux pane/window")

        panes = await self._list_panes(window_target)
        is_first_teammate = len(panes) == 1

        if is_first_teammate:
            argv = [
                "split-window", "-t", leader_pane,
                "-h", "-p", str(self.config.first_split_percent),
                "-P", "-F", PANE_ID_FORMAT,
            ]
        else:
            argv = self._alternating_split_args(panes[1:])

        result = await self._tmux(argv)
        if not result.ok:
            raise self._error("Failed to create teammate pane", argv, result)

        pane_id = result.stdout.strip()
        logger.info(f"Created pane {pane_id} for teammate '{name}' in {window_target}")

        await self.set_pane_border_color(pane_id, color)
        await self.set_pane_title(pane_id, name, color)
        await self.rebalance_panes(window_target, has_leader=True)
        await self._settle()

        return PaneCreationResult(pane_id=pane_id, is_first_teammate=is_first_teammate)

    async def _create_pane_external(self, name: str, color: AgentColor) -> PaneCreationResult:
        window_target, initial_pane = await self._ensure_swarm_session()

        panes = await self._list_panes(window_target, use_leader_socket=True)
        is_first_teammate = not self._has_first_pane and len(panes) == 1

        if is_first_teammate:
            pane_id = initial_pane
            self._has_first_pane = True
            await self.enable_pane_border_status(window_target, use_leader_socket=True)
        else:
            argv = self._alternating_split_args(panes)
            result = await self._tmux(argv, use_leader_socket=True)
            if not result.ok:
                raise self._error("Failed to create teammate pane", argv, result)
            pane_id = result.stdout.strip()

        self._external_panes.add(pane_id)
        logger.info(
            f"Created pane {pane_id} for teammate '{name}' in {window_target} "
            f"(socket {self.config.leader_socket})"
        )

        await self.set_pane_border_color(pane_id, color)
        await self.set_pane_title(pane_id, name, color)
        await self.rebalance_panes(window_target, has_leader=False)
        await self._settle()

        return PaneCreationResult(pane_id=pane_id, is_first_teammate=is_first_teammate)

    def _alternating_split_args(self, teammate_panes: Sequence[str]) -> list[str]:
        """split-window arguments for the next teammate.

        Alternates vertical/horizontal by parity of the pane count and
        splits the middle pane, which keeps the tiling roughly balanced.
        """
        if not teammate_panes:
            raise BackendError("No existing teammate pane to split")

        count = len(teammate_panes)
        direction = "-v" if count % 2 == 1 else "-h"
        target_index = (count - 1) // 2
        if target_index < len(teammate_panes):
            target_pane = teammate_panes[target_index]
        else:
            target_pane = teammate_panes[-1]

        return ["split-window", "-t", target_pane, direction, "-P", "-F", PANE_ID_FORMAT]

    async def _ensure_swarm_session(self) -> tuple[str, str]:
        """Create the external swarm session/window if missing.

        Returns:
            (window target, first pane id of the swarm window)
        """
        session = self.config.swarm_session_name
        window = self.config.swarm_window_name
        window_target = self.swarm_window_target

        has_session = await self._tmux(["has-session", "-t", session], use_leader_socket=True)
        if not has_session.ok:
            argv = ["new-session", "-d", "-s", session, "-n", window, "-P", "-F", PANE_ID_FORMAT]
            result = await self._tmux(argv, use_leader_socket=True)
            if not result.ok:
                raise self._error("Failed to create swarm session", argv, result)
            logger.info(f"Created swarm session {window_target} on socket {self.config.leader_socket}")
            return window_target, result.stdout.strip()

        windows = await self._list_windows(session)
        if window in windows:
            panes = await self._list_panes(window_target, use_leader_socket=True)
            return window_target, panes[0] if panes else ""

        argv = ["new-window", "-t", session, "-n", window, "-P", "-F", PANE_ID_FORMAT]
        result = await self._tmux(argv, use_leader_socket=True)
        if not result.ok:
            raise self._error("Failed to create swarm window", argv, result)
        return window_target, result.stdout.strip()

    # Pane operations

    async def send_command_to_pane(
        self, pane_id: str, command: str, use_leader_socket: bool | None = None
    ) -> None:
        argv = ["send-keys", "-t", pane_id, command, "Enter"]
        result = await self._tmux(argv, self._on_leader_socket(pane_id, use_leader_socket))
        if not result.ok:
            raise self._error(f"Failed to send command to pane {pane_id}", argv, result)

    async def set_pane_border_color(
        self, pane_id: str, color: AgentColor, use_leader_socket: bool | None = None
    ) -> bool:
        tmux_color = AGENT_COLOR_TO_TMUX.get(color, "default")
        leader = self._on_leader_socket(pane_id, use_leader_socket)

        results = [
            await self._tmux(["select-pane", "-t", pane_id, "-P", f"bg=default,fg={tmux_color}"], leader),
            await self._tmux(["set-option", "-p", "-t", pane_id, "pane-border-style", f"fg={tmux_color}"], leader),
            await self._tmux(
                ["set-option", "-p", "-t", pane_id, "pane-active-border-style", f"fg={tmux_color}"], leader
            ),
        ]
        return all(result.ok for result in results)

    async def set_pane_title(
        self, pane_id: str, name: str, color: AgentColor, use_leader_socket: bool | None = None
    ) -> bool:
        tmux_color = AGENT_COLOR_TO_TMUX.get(color, "default")
        leader = self._on_leader_socket(pane_id, use_leader_socket)

        title = await self._tmux(["select-pane", "-t", pane_id, "-T", name], leader)
        border_format = await self._tmux(
            [
                "set-option", "-p", "-t", pane_id, "pane-border-format",
                f"#[fg={tmux_color},bold] #{{pane_title}} #[default]",
            ],
            leader,
        )
        return title.ok and border_format.ok

    async def enable_pane_border_status(
        self, window_target: str | None = None, use_leader_socket: bool = False
    ) -> bool:
        target = window_target or await self._get_current_window_target()
        if not target:
            return False

        result = await self._tmux(
            ["set-option", "-w", "-t", target, "pane-border-status", "top"], use_leader_socket
        )
        return result.ok

    async def rebalance_panes(self, window_target: str, has_leader: bool) -> bool:
        if has_leader:
            return await self._rebalance_with_leader(window_target)
        return await self._rebalance_tiled(window_target)

    async def _rebalance_with_leader(self, window_target: str) -> bool:
        panes = await self._list_panes(window_target)
        if len(panes) <= 2:
            return False

        await self._tmux(["select-layout", "-t", window_target, "main-vertical"])
        await self._tmux(["resize-pane", "-t", panes[0], "-x", f"{self.config.leader_width_percent}%"])
        return True

    async def _rebalance_tiled(self, window_target: str) -> bool:
        panes = await self._list_panes(window_target, use_leader_socket=True)
        if len(panes) <= 1:
            return False

        result = await self._tmux(["select-layout", "-t", window_target, "tiled"], use_leader_socket=True)
        return result.ok

    async def kill_pane(self, pane_id: str, use_leader_socket: bool | None = None) -> bool:
        result = await self._tmux(["kill-pane", "-t", pane_id], self._on_leader_socket(pane_id, use_leader_socket))
        if result.ok:
            self._external_panes.discard(pane_id)
        else:
            logger.warning(f"Failed to kill pane {pane_id}: {result.stderr.strip()}")
        return result.ok

    async def hide_pane(self, pane_id: str, use_leader_socket: bool | None = None) -> bool:
        """Park a pane in the hidden session via break-pane."""
        leader = self._on_leader_socket(pane_id, use_leader_socket)
        hidden_session = self.config.hidden_session_name

        # Fails harmlessly when the session already exists
        await self._tmux(["new-session", "-d", "-s", hidden_session], leader)

        result = await self._tmux(["break-pane", "-d", "-s", pane_id, "-t", f"{hidden_session}:"], leader)
        if not result.ok:
            logger.warning(f"Failed to hide pane {pane_id}: {result.stderr.strip()}")
        return result.ok

    async def show_pane(
        self, pane_id: str, target_window: str, use_leader_socket: bool | None = None
    ) -> bool:
        """Join a hidden pane back into ``target_window`` and re-apply the layout."""
        leader = self._on_leader_socket(pane_id, use_leader_socket)

        result = await self._tmux(["join-pane", "-h", "-s", pane_id, "-t", target_window], leader)
        if not result.ok:
            logger.warning(f"Failed to show pane {pane_id}: {result.stderr.strip()}")
            return False

        await self._tmux(["select-layout", "-t", target_window, "main-vertical"], leader)

        panes = await self._list_panes(target_window, leader)
        if panes:
            await self._tmux(["resize-pane", "-t", panes[0], "-x", f"{self.config.leader_width_percent}%"], leader)

        return True

    async def get_current_window_target(self) -> str | None:
        """``session:window`` of the leader pane, or the swarm window when outside tmux."""
        if await self.is_running_inside():
            return await self._get_current_window_target()
        return self.swarm_window_target

    def reset(self) -> None:
        """Forget cached window, first-pane and leader-socket state."""
        self._cached_window_target = None
        self._has_first_pane = False
        self._external_panes.clear()
        self._pane_lock = asyncio.Lock()

    # Helpers

    async def _tmux(self, args: Sequence[str], use_leader_socket: bool = False) -> CommandResult:
        argv = ["tmux"]
        if use_leader_socket:
            argv += ["-L", self.config.leader_socket]
        argv += list(args)
        logger.debug(f"Running: {' '.join(argv)}")
        return await self._run(argv)

    def _on_leader_socket(self, pane_id: str, use_leader_socket: bool | None) -> bool:
        if use_leader_socket is not None:
            return use_leader_socket
        return pane_id in self._external_panes

    def _error(self, message: str, argv: Sequence[str], result: CommandResult) -> TmuxCommandError:
        stderr = result.stderr.strip()
        return TmuxCommandError(f"{message}: {stderr}", argv=argv, code=result.code, stderr=stderr)

    async def _get_current_pane_id(self) -> str | None:
        pane_id = get_current_pane_id_from_env()
        if pane_id:
            return pane_id

        result = await self._tmux(["display-message", "-p", PANE_ID_FORMAT])
        if not result.ok:
            return None
        return result.stdout.strip() or None

    async def _get_current_window_target(self) -> str | None:
        if self._cached_window_target:
            return self._cached_window_target

        argv = ["display-message"]
        pane_id = get_current_pane_id_from_env()
        if pane_id:
            argv += ["-t", pane_id]
        argv += ["-p", "#{session_name}:#{window_index}"]

        result = await self._tmux(argv)
        if not result.ok:
            return None

        self._cached_window_target = result.stdout.strip() or None
        return self._cached_window_target

    async def _list_panes(self, window_target: str, use_leader_socket: bool = False) -> list[str]:
        result = await self._tmux(["list-panes", "-t", window_target, "-F", PANE_ID_FORMAT], use_leader_socket)
        if not result.ok:
            return []
        return _split_lines(result.stdout)

    async def _list_windows(self, session_name: str) -> list[str]:
        result = await self._tmux(
            ["list-windows", "-t", session_name, "-F", "#{window_name}"], use_leader_socket=True
        )
        if not result.ok:
            return []
        return _split_lines(result.stdout)

    async def _settle(self) -> None:
        if self.config.settle_delay_ms > 0:
            await asyncio.sleep(self.config.settle_delay_ms / 1000)
