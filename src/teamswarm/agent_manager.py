"""Agent registry and lifecycle management for teamswarm.

This module provides functionality to:
- Spawn agents with unique ids, colors and default models
- Drive the lifecycle state machine (pending -> running <-> idle -> terminal)
- Query agents by id, name and status
- Notify subscribers of lifecycle events
- Prune or clear the registry

Lifecycle:
    pending --start--> running <--idle/resume--> idle
    any non-terminal --complete/fail/shutdown--> completed | failed | cancelled

Terminal statuses are final. complete/fail/shutdown on a terminal agent
is a no-op, and set_agent_idle/resume_agent ignore agents that are not
in the matching state so out-of-order signals are harmless.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .colors import ColorRegistry
from .logging_config import get_logger
from .models import (
    AgentColor,
    AgentIdentity,
    AgentRuntimeInfo,
    AgentSpawnConfig,
    AgentStatus,
    BackendType,
    LifecycleEvent,
    get_default_model_for_agent_type,
    is_terminal_status,
)
from .utils import generate_id
from .validators import validate_agent_name

logger = get_logger(__name__)

__all__ = [
    "AgentManager",
    "LifecycleCallback",
    "AgentManagerError",
    "AgentNotFoundError",
    "AgentNameConflictError",
    "InvalidAgentStateError",
]

LifecycleCallback = Callable[[LifecycleEvent, str, Optional[Dict[str, Any]]], None]


class AgentManagerError(Exception):
    """Base exception for agent registry errors."""
    pass


class AgentNotFoundError(AgentManagerError):
    """Raised when an operation requires an agent that is not registered."""
    pass


class AgentNameConflictError(AgentManagerError):
    """Raised when spawning an agent whose name is taken in the team namespace."""
    pass


class InvalidAgentStateError(AgentManagerError):
    """Raised when a strict transition is requested from the wrong status."""
    pass


@dataclass
class _AgentRegistryEntry:
    identity: AgentIdentity
    runtime: AgentRuntimeInfo
    config: AgentSpawnConfig
    spawned_at: datetime
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    result: Optional[str] = None
    error: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AgentManager:
    """Authoritative in-memory registry of agents.

    Names are unique per team namespace: with a team set, the name key is
    ``"<team>:<name>"``, otherwise the bare name.

    Args:
        team_name: Team namespace for name uniqueness (optional)
        color_registry: Shared color registry; a private one is created if omitted
    """

    def __init__(
        self,
        team_name: Optional[str] = None,
        color_registry: Optional[ColorRegistry] = None,
    ):
        self.team_name = team_name
        self.color_registry = color_registry if color_registry is not None else ColorRegistry()
        self._agents: Dict[str, _AgentRegistryEntry] = {}
        self._agents_by_name: Dict[str, str] = {}
        self._lifecycle_callbacks: List[LifecycleCallback] = []

    # Colors

    def get_color_for_agent(self, agent_name: str) -> AgentColor:
        """Color previously given to this name, or the next palette color."""
        return self.color_registry.get_color(agent_name)

    def reset_color_assignments(self) -> None:
        self.color_registry.reset()

    # Lifecycle

    def spawn_agent(self, config: AgentSpawnConfig) -> AgentRuntimeInfo:
        """Register a new agent in ``pending`` status.

        Args:
            config: Spawn parameters; ``config.name`` is required

        Returns:
            The new runtime record

        Raises:
            ValidationError: If the name is empty
            AgentNameConflictError: If the name is already used in this team
        """
        name = validate_agent_name(config.name)

        name_key = self._name_key(name)
        if name_key in self._agents_by_name:
            raise AgentNameConflictError(f"Agent with name '{name}' already exists")

        agent_id = generate_id("agent")
        color = config.color or self.get_color_for_agent(name)
        model = config.model or get_default_model_for_agent_type(config.agent_type)

        identity = AgentIdentity(
            agent_id=agent_id,
            agent_name=name,
            agent_type=config.agent_type,
            color=color,
            team_name=config.team_name or self.team_name,
        )
        runtime = AgentRuntimeInfo(
            agent_id=agent_id,
            name=name,
            status=AgentStatus.PENDING,
            agent_type=config.agent_type,
            model=model,
            color=color,
            cwd=config.cwd,
            backend_type=config.backend_type,
        )

        self._agents[agent_id] = _AgentRegistryEntry(
            identity=identity,
            runtime=runtime,
            config=config,
            spawned_at=_now(),
        )
        self._agents_by_name[name_key] = agent_id

        logger.debug(f"Spawned agent '{name}' ({agent_id}) with color {color.value}")
        self._emit(LifecycleEvent.SPAWNED, agent_id, {"config": config})
        return runtime

    def start_agent(self, agent_id: str) -> None:
        """Move a pending agent to running.

        Raises:
            AgentNotFoundError: If the agent is unknown
            InvalidAgentStateError: If the agent is not pending
        """
        entry = self._agents.get(agent_id)
        if entry is None:
            raise AgentNotFoundError(f"Agent not found: {agent_id}")

        if entry.runtime.status is not AgentStatus.PENDING:
            raise InvalidAgentStateError(
                f"Cannot start agent in status: {entry.runtime.status.value}"
            )

        entry.runtime.status = AgentStatus.RUNNING
        entry.started_at = _now()
        self._emit(LifecycleEvent.STARTED, agent_id)

    def set_agent_idle(self, agent_id: str) -> None:
        entry = self._agents.get(agent_id)
        if entry is None:
            return

        if entry.runtime.status is AgentStatus.RUNNING:
            entry.runtime.status = AgentStatus.IDLE
            self._emit(LifecycleEvent.IDLE, agent_id)

    def resume_agent(self, agent_id: str) -> None:
        entry = self._agents.get(agent_id)
        if entry is None:
            return

        if entry.runtime.status is AgentStatus.IDLE:
            entry.runtime.status = AgentStatus.RUNNING
            self._emit(LifecycleEvent.RESUMED, agent_id)

    def complete_agent(self, agent_id: str, result: Optional[str] = None) -> None:
        entry = self._live_entry(agent_id)
        if entry is None:
            return

        entry.runtime.status = AgentStatus.COMPLETED
        entry.ended_at = _now()
        entry.result = result
        self._emit(LifecycleEvent.COMPLETED, agent_id, {"result": result})

    def fail_agent(self, agent_id: str, error: str) -> None:
        entry = self._live_entry(agent_id)
        if entry is None:
            return

        entry.runtime.status = AgentStatus.FAILED
        entry.ended_at = _now()
        entry.error = error
        logger.warning(f"Agent '{entry.runtime.name}' failed: {error}")
        self._emit(LifecycleEvent.FAILED, agent_id, {"error": error})

    def shutdown_agent(self, agent_id: str, reason: Optional[str] = None) -> None:
        entry = self._live_entry(agent_id)
        if entry is None:
            return

        entry.runtime.status = AgentStatus.CANCELLED
        entry.ended_at = _now()
        self._emit(LifecycleEvent.SHUTDOWN, agent_id, {"reason": reason})

    # Queries

    def get_agent(self, agent_id: str) -> Optional[AgentRuntimeInfo]:
        entry = self._agents.get(agent_id)
        return entry.runtime if entry else None

    def get_agent_by_name(self, name: str) -> Optional[AgentRuntimeInfo]:
        agent_id = self._agents_by_name.get(self._name_key(name))
        if agent_id is None:
            return None
        return self.get_agent(agent_id)

    def get_agent_identity(self, agent_id: str) -> Optional[AgentIdentity]:
        entry = self._agents.get(agent_id)
        return entry.identity if entry else None

    def get_agent_outcome(self, agent_id: str) -> Optional[Dict[str, Optional[str]]]:
        """Result and error recorded when the agent reached a terminal status."""
        entry = self._agents.get(agent_id)
        if entry is None:
            return None
        return {"result": entry.result, "error": entry.error}

    def get_all_agents(self) -> List[AgentRuntimeInfo]:
        return [entry.runtime for entry in self._agents.values()]

    def get_active_agents(self) -> List[AgentRuntimeInfo]:
        return [
            agent for agent in self.get_all_agents()
            if agent.status in (AgentStatus.RUNNING, AgentStatus.IDLE)
        ]

    def get_idle_agents(self) -> List[AgentRuntimeInfo]:
        return [agent for agent in self.get_all_agents() if agent.status is AgentStatus.IDLE]

    def has_agent(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def has_agent_by_name(self, name: str) -> bool:
        return self._name_key(name) in self._agents_by_name

    def get_agent_count(self) -> int:
        return len(self._agents)

    def get_active_agent_count(self) -> int:
        return len(self.get_active_agents())

    # Runtime updates (no-op for unknown ids)

    def update_agent_pane_id(self, agent_id: str, pane_id: str) -> None:
        self._update_runtime(agent_id, tmux_pane_id=pane_id)

    def update_agent_backend_type(self, agent_id: str, backend_type: BackendType) -> None:
        self._update_runtime(agent_id, backend_type=backend_type)

    def update_agent_hidden_state(self, agent_id: str, is_hidden: bool) -> None:
        self._update_runtime(agent_id, is_hidden=is_hidden)

    def update_agent_cwd(self, agent_id: str, cwd: str) -> None:
        self._update_runtime(agent_id, cwd=cwd)

    def update_agent_worktree_path(self, agent_id: str, worktree_path: str) -> None:
        self._update_runtime(agent_id, worktree_path=worktree_path)

    # Lifecycle callbacks

    def on_lifecycle_event(self, callback: LifecycleCallback) -> Callable[[], None]:
        """Register a lifecycle callback.

        Callbacks receive ``(event, agent_id, data)``. Exceptions raised by a
        callback are logged and do not reach the caller or other callbacks.

        Returns:
            A function that unregisters the callback
        """
        self._lifecycle_callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._lifecycle_callbacks:
                self._lifecycle_callbacks.remove(callback)

        return unsubscribe

    def _emit(
        self,
        event: LifecycleEvent,
        agent_id: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        for callback in list(self._lifecycle_callbacks):
            try:
                callback(event, agent_id, data)
            except Exception as e:
                logger.error(f"Error in lifecycle callback for event '{event.value}': {e}")

    # Cleanup

    def remove_agent(self, agent_id: str) -> None:
        entry = self._agents.pop(agent_id, None)
        if entry is not None:
            self._agents_by_name.pop(self._name_key(entry.identity.agent_name), None)

    def prune_terminated_agents(self) -> int:
        """Remove every agent in a terminal status.

        Returns:
            Number of agents removed
        """
        terminated = [
            agent_id for agent_id, entry in self._agents.items()
            if is_terminal_status(entry.runtime.status)
        ]
        for agent_id in terminated:
            self.remove_agent(agent_id)
        return len(terminated)

    def clear_all_agents(self) -> None:
        self._agents.clear()
        self._agents_by_name.clear()
        self.reset_color_assignments()

    # Helpers

    def _name_key(self, name: str) -> str:
        if self.team_name:
            return f"{self.team_name}:{name}"
        return name

    def _live_entry(self, agent_id: str) -> Optional[_AgentRegistryEntry]:
        entry = self._agents.get(agent_id)
        if entry is None or is_terminal_status(entry.runtime.status):
            return None
        return entry

    def _update_runtime(self, agent_id: str, **fields: Any) -> None:
        entry = self._agents.get(agent_id)
        if entry is None:
            return
        for key, value in fields.items():
            setattr(entry.runtime, key, value)
