"""Top-level context wiring the swarm components together.

A SwarmContext owns exactly one of each collaborator and hands out
references to them:

    context = SwarmContext()
    context.create_team("acme", lead_agent_id="agent-lead")
    member = await context.spawn_teammate("alice", agent_type="Explore")

Tests build a fresh context instead of resetting module-level singletons.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .agent_manager import AgentManager
from .backend import BackendError, TerminalBackend, detect_backend
from .colors import ColorRegistry
from .config import TeamSwarmConfig, get_config
from .logging_config import get_logger
from .messaging import MessageBus
from .models import AgentSpawnConfig, TeamConfig, TeamMember
from .protocol import (
    AgentMessageType,
    create_agent_message,
    create_shutdown_request,
    serialize_message,
)
from .swarm import SwarmCoordinator, TeamNotLoadedError

logger = get_logger(__name__)

__all__ = ["SwarmContext"]


class SwarmContext:
    """Owner of the color registry, coordinator, message bus and backend.

    Args:
        config: Configuration (default: the loaded configuration)
        backend: Terminal backend; detected on first use when omitted
        config_root: Directory holding teams/ and tasks/ (default from
            config, then ~/.claude)
        self_agent_name: Name of the agent driving this context
    """

    def __init__(
        self,
        config: Optional[TeamSwarmConfig] = None,
        backend: Optional[TerminalBackend] = None,
        config_root: Optional[Path] = None,
        self_agent_name: Optional[str] = None,
    ):
        self.config = config if config is not None else get_config()
        self.color_registry = ColorRegistry()
        self.coordinator = SwarmCoordinator(
            config_root=config_root if config_root is not None else self.config.teams.config_root,
            color_registry=self.color_registry,
        )
        self.message_bus = MessageBus(
            self_agent_name=self_agent_name,
            default_sender=self.config.messaging.default_sender,
        )
        self._backend = backend

    @property
    def agent_manager(self) -> AgentManager:
        return self.coordinator.agent_manager

    async def get_backend(self) -> TerminalBackend:
        """The configured backend, detecting one on first use.

        Raises:
            BackendError: If no terminal backend is available
        """
        if self._backend is None:
            self._backend = await detect_backend()
            if self._backend is None:
                raise BackendError("No terminal backend available (need tmux or iTerm2 with it2)")
        return self._backend

    # Teams

    def create_team(
        self,
        team_name: str,
        description: Optional[str] = None,
        lead_agent_id: Optional[str] = None,
    ) -> TeamConfig:
        config = self.coordinator.create_team(team_name, description, lead_agent_id)
        self.message_bus.set_team_name(config.team_name)
        return config

    def load_team(self, team_name: str) -> Optional[TeamConfig]:
        config = self.coordinator.load_team_config(team_name)
        if config is not None:
            self.message_bus.set_team_name(config.team_name)
        return config

    # Teammates

    async def spawn_teammate(
        self,
        name: str,
        agent_type: Optional[str] = None,
        model: Optional[str] = None,
        prompt: Optional[str] = None,
        cwd: Optional[str] = None,
        command: Optional[str] = None,
    ) -> TeamMember:
        """Register a teammate, open its pane and start it.

        The agent is spawned, added to the team, given a pane and then
        started. If the pane cannot be created or the command cannot be
        sent, the pane is closed and the member and the agent are removed
        again before the error propagates, so the name can be reused.

        Args:
            name: Teammate name, unique in the team
            agent_type: Subagent type (selects the default model)
            model: Explicit model
            prompt: Initial prompt recorded on the member
            cwd: Working directory recorded on the member
            command: Shell command typed into the new pane

        Returns:
            The persisted member with its pane id

        Raises:
            TeamNotLoadedError: If no team is active
            BackendError: If the pane could not be created or the command not sent
        """
        team = self.coordinator.get_current_team_config()
        if team is None:
            raise TeamNotLoadedError("No team loaded")

        backend = await self.get_backend()
        manager = self.agent_manager

        runtime = manager.spawn_agent(AgentSpawnConfig(
            name=name,
            agent_type=agent_type,
            model=model,
            initial_prompt=prompt,
            cwd=cwd,
            team_name=team.team_name,
            backend_type=backend.backend_type,
        ))

        try:
            member = self.coordinator.add_member(TeamMember(
                name=runtime.name,
                agent_id=runtime.agent_id,
                agent_type=agent_type,
                model=runtime.model,
                prompt=prompt,
                color=runtime.color,
                cwd=cwd,
                backend_type=backend.backend_type,
            ))
        except Exception:
            manager.remove_agent(runtime.agent_id)
            raise

        try:
            pane = await backend.create_teammate_pane_in_swarm_view(member.name, runtime.color)
        except Exception as e:
            logger.error(f"Failed to create pane for '{name}', rolling back: {e}")
            self.coordinator.remove_member(member.name)
            manager.remove_agent(runtime.agent_id)
            raise

        manager.update_agent_pane_id(runtime.agent_id, pane.pane_id)
        member = self.coordinator.update_member_pane_id(member.name, pane.pane_id) or member

        if command:
            try:
                await backend.send_command_to_pane(pane.pane_id, command)
            except BackendError as e:
                logger.error(f"Failed to start '{name}' in pane {pane.pane_id}, rolling back: {e}")
                manager.fail_agent(runtime.agent_id, str(e))
                await backend.kill_pane(pane.pane_id)
                self.coordinator.remove_member(member.name)
                manager.remove_agent(runtime.agent_id)
                raise

        manager.start_agent(runtime.agent_id)
        logger.info(f"Spawned teammate '{name}' in pane {pane.pane_id}")
        return member

    async def shutdown_teammate(
        self,
        name: str,
        reason: Optional[str] = None,
        kill_pane: bool = True,
    ) -> bool:
        """Ask a teammate to shut down, then retire it.

        Sends a shutdown request over the bus (queued if the teammate has
        no handler yet), cancels the agent, optionally kills its pane and
        marks the member inactive.

        Returns:
            False if the teammate is unknown, True otherwise
        """
        member = self.coordinator.get_member(name)
        if member is None:
            return False

        sender = self.message_bus.self_agent_name or self.config.messaging.default_sender
        request = create_shutdown_request(sender, reason)
        await self.message_bus.send_message(
            name,
            create_agent_message(sender, serialize_message(request), AgentMessageType.SHUTDOWN_REQUEST),
        )

        runtime = self.agent_manager.get_agent(member.agent_id)
        if runtime is not None:
            self.agent_manager.shutdown_agent(runtime.agent_id, reason)

        if kill_pane and member.tmux_pane_id:
            backend = await self.get_backend()
            if not await backend.kill_pane(member.tmux_pane_id):
                logger.warning(f"Pane {member.tmux_pane_id} of '{name}' was not closed")
            self.coordinator.set_pane_hidden_state(member.tmux_pane_id, False)

        self.coordinator.deactivate_member(name)
        return True

    async def hide_teammate(self, name: str) -> bool:
        """Move a teammate's pane out of view. False if not applied."""
        member = self.coordinator.get_member(name)
        if member is None or not member.tmux_pane_id:
            return False

        backend = await self.get_backend()
        if not await backend.hide_pane(member.tmux_pane_id):
            return False

        self.coordinator.set_pane_hidden_state(member.tmux_pane_id, True)
        self.agent_manager.update_agent_hidden_state(member.agent_id, True)
        return True

    async def show_teammate(self, name: str, target_window: Optional[str] = None) -> bool:
        """Bring a hidden teammate pane back. False if not applied."""
        member = self.coordinator.get_member(name)
        if member is None or not member.tmux_pane_id:
            return False
        if not self.coordinator.is_pane_hidden(member.tmux_pane_id):
            return False

        backend = await self.get_backend()
        window = target_window or await backend.get_current_window_target()
        if not window:
            return False
        if not await backend.show_pane(member.tmux_pane_id, window):
            return False

        self.coordinator.set_pane_hidden_state(member.tmux_pane_id, False)
        self.agent_manager.update_agent_hidden_state(member.agent_id, False)
        return True
