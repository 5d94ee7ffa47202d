"""Core data types shared by the agent, team, messaging and backend modules.

On-disk and wire representations use camelCase keys (``teamName``,
``tmuxPaneId``) so team files stay compatible with other tools reading
``~/.claude/teams``. Optional fields that are unset are omitted from
serialized output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

__all__ = [
    "AgentColor",
    "AgentStatus",
    "BackendType",
    "LifecycleEvent",
    "AVAILABLE_AGENT_COLORS",
    "AGENT_COLOR_TO_TMUX",
    "TEAM_LEAD_NAME",
    "SWARM_SESSION_NAME",
    "SWARM_WINDOW_NAME",
    "HIDDEN_PANES_SESSION",
    "LEADER_SOCKET_NAME",
    "PANE_REBALANCE_DELAY_MS",
    "DEFAULT_AGENT_TIMEOUT_MS",
    "MAX_AGENT_TIMEOUT_MS",
    "DEFAULT_MODELS_BY_TYPE",
    "is_terminal_status",
    "get_default_model_for_agent_type",
    "AgentIdentity",
    "AgentRuntimeInfo",
    "AgentSpawnConfig",
    "TeamMember",
    "TeamConfig",
    "TeamContext",
    "PaneCreationResult",
]


class AgentColor(Enum):
    """Display colors for agents, in palette order."""

    RED = "red"
    BLUE = "blue"
    GREEN = "green"
    YELLOW = "yellow"
    PURPLE = "purple"
    ORANGE = "orange"
    PINK = "pink"
    CYAN = "cyan"


class AgentStatus(Enum):
    """Lifecycle status of an agent."""

    PENDING = "pending"
    RUNNING = "running"
    IDLE = "idle"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    HIDDEN = "hidden"


class BackendType(Enum):
    """Terminal multiplexer hosting an agent's pane."""

    TMUX = "tmux"
    ITERM2 = "iterm2"


class LifecycleEvent(Enum):
    """Events emitted by AgentManager to lifecycle callbacks."""

    SPAWNED = "spawned"
    STARTED = "started"
    IDLE = "idle"
    RESUMED = "resumed"
    COMPLETED = "completed"
    FAILED = "failed"
    SHUTDOWN = "shutdown"


AVAILABLE_AGENT_COLORS: List[AgentColor] = list(AgentColor)

AGENT_COLOR_TO_TMUX: Dict[AgentColor, str] = {
    AgentColor.RED: "red",
    AgentColor.BLUE: "blue",
    AgentColor.GREEN: "green",
    AgentColor.YELLOW: "yellow",
    AgentColor.PURPLE: "magenta",
    AgentColor.ORANGE: "colour208",
    AgentColor.PINK: "colour205",
    AgentColor.CYAN: "cyan",
}

TEAM_LEAD_NAME = "team-lead"

SWARM_SESSION_NAME = "claude-swarm"
SWARM_WINDOW_NAME = "swarm-view"
HIDDEN_PANES_SESSION = "claude-hidden"
LEADER_SOCKET_NAME = "claude-leader"

PANE_REBALANCE_DELAY_MS = 200
DEFAULT_AGENT_TIMEOUT_MS = 300_000
MAX_AGENT_TIMEOUT_MS = 1_800_000

DEFAULT_MODELS_BY_TYPE: Dict[str, str] = {
    "Plan": "claude-opus-4-5-20251101",
    "Explore": "claude-sonnet-4-5-20250929",
    "general-purpose": "claude-sonnet-4-5-20250929",
}

_TERMINAL_STATUSES = frozenset(
    {AgentStatus.COMPLETED, AgentStatus.FAILED, AgentStatus.CANCELLED}
)


def is_terminal_status(status: AgentStatus) -> bool:
    """Return True for completed, failed and cancelled."""
    return status in _TERMINAL_STATUSES


def get_default_model_for_agent_type(agent_type: Optional[str]) -> str:
    """Default model for an agent type; unknown types get the general-purpose model."""
    return DEFAULT_MODELS_BY_TYPE.get(agent_type or "general-purpose",
                                      DEFAULT_MODELS_BY_TYPE["general-purpose"])


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def _enum_value(value: Optional[Enum]) -> Optional[str]:
    return value.value if value is not None else None


def _parse_color(value: Any) -> Optional[AgentColor]:
    if value is None or isinstance(value, AgentColor):
        return value
    return AgentColor(value)


def _parse_backend_type(value: Any) -> Optional[BackendType]:
    if value is None or isinstance(value, BackendType):
        return value
    return BackendType(value)


@dataclass
class AgentIdentity:
    """Who an agent is.

    Attributes:
        agent_id: Globally unique generated id
        agent_name: Display name, unique within a team
        agent_type: Subagent type (e.g. "Plan", "Explore")
        color: Display color
        team_name: Team the agent belongs to
    """

    agent_id: str
    agent_name: str
    agent_type: Optional[str] = None
    color: Optional[AgentColor] = None
    team_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "agentId": self.agent_id,
            "agentName": self.agent_name,
            "agentType": self.agent_type,
            "color": _enum_value(self.color),
            "teamName": self.team_name,
        })


@dataclass
class AgentRuntimeInfo:
    """Mutable runtime record for an agent, owned by AgentManager."""

    agent_id: str
    name: str
    status: AgentStatus
    model: str
    color: AgentColor
    agent_type: Optional[str] = None
    tmux_pane_id: Optional[str] = None
    cwd: Optional[str] = None
    worktree_path: Optional[str] = None
    is_hidden: Optional[bool] = None
    backend_type: Optional[BackendType] = None
    mode: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "agentId": self.agent_id,
            "name": self.name,
            "status": self.status.value,
            "agentType": self.agent_type,
            "model": self.model,
            "color": self.color.value,
            "tmuxPaneId": self.tmux_pane_id,
            "cwd": self.cwd,
            "worktreePath": self.worktree_path,
            "isHidden": self.is_hidden,
            "backendType": _enum_value(self.backend_type),
            "mode": self.mode,
        })


@dataclass
class AgentSpawnConfig:
    """Parameters for AgentManager.spawn_agent()."""

    name: str
    agent_type: Optional[str] = None
    model: Optional[str] = None
    initial_prompt: Optional[str] = None
    system_prompt: Optional[str] = None
    cwd: Optional[str] = None
    team_name: Optional[str] = None
    color: Optional[AgentColor] = None
    backend_type: Optional[BackendType] = None
    plan_mode_required: bool = False
    timeout_ms: Optional[int] = None

    def __post_init__(self):
        self.color = _parse_color(self.color)
        self.backend_type = _parse_backend_type(self.backend_type)
        if self.timeout_ms is not None and not 0 < self.timeout_ms <= MAX_AGENT_TIMEOUT_MS:
            raise ValueError(
                f"timeout_ms must be between 1 and {MAX_AGENT_TIMEOUT_MS}, got {self.timeout_ms}"
            )


@dataclass
class TeamMember:
    """A member entry in a persisted team config.

    The reserved name ``team-lead`` marks the team leader.
    """

    name: str
    agent_id: str
    agent_type: Optional[str] = None
    model: Optional[str] = None
    prompt: Optional[str] = None
    color: Optional[AgentColor] = None
    tmux_pane_id: Optional[str] = None
    cwd: Optional[str] = None
    worktree_path: Optional[str] = None
    is_active: Optional[bool] = None
    backend_type: Optional[BackendType] = None
    mode: Optional[str] = None

    def __post_init__(self):
        self.color = _parse_color(self.color)
        self.backend_type = _parse_backend_type(self.backend_type)

    @property
    def is_lead(self) -> bool:
        return self.name == TEAM_LEAD_NAME

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "name": self.name,
            "agentId": self.agent_id,
            "agentType": self.agent_type,
            "model": self.model,
            "prompt": self.prompt,
            "color": _enum_value(self.color),
            "tmuxPaneId": self.tmux_pane_id,
            "cwd": self.cwd,
            "worktreePath": self.worktree_path,
            "isActive": self.is_active,
            "backendType": _enum_value(self.backend_type),
            "mode": self.mode,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TeamMember":
        return cls(
            name=data["name"],
            agent_id=data["agentId"],
            agent_type=data.get("agentType"),
            model=data.get("model"),
            prompt=data.get("prompt"),
            color=data.get("color"),
            tmux_pane_id=data.get("tmuxPaneId"),
            cwd=data.get("cwd"),
            worktree_path=data.get("worktreePath"),
            is_active=data.get("isActive"),
            backend_type=data.get("backendType"),
            mode=data.get("mode"),
        )


@dataclass
class TeamConfig:
    """Persisted team definition, one file per team."""

    team_name: str
    description: Optional[str] = None
    lead_agent_id: Optional[str] = None
    members: List[TeamMember] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = _compact({
            "teamName": self.team_name,
            "description": self.description,
            "leadAgentId": self.lead_agent_id,
        })
        data["members"] = [member.to_dict() for member in self.members]
        data.update(_compact({"createdAt": self.created_at, "updatedAt": self.updated_at}))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TeamConfig":
        if not isinstance(data, dict):
            raise ValueError(f"Team config must be a JSON object, got {type(data).__name__}")
        return cls(
            team_name=data["teamName"],
            description=data.get("description"),
            lead_agent_id=data.get("leadAgentId"),
            members=[TeamMember.from_dict(m) for m in data.get("members", [])],
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )


@dataclass
class TeamContext:
    """Per-agent view of its team."""

    team_name: str
    self_agent_name: str
    self_agent_color: Optional[AgentColor] = None
    teammates: Dict[str, TeamMember] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "teamName": self.team_name,
            "selfAgentName": self.self_agent_name,
            "selfAgentColor": _enum_value(self.self_agent_color),
            "teammates": {name: m.to_dict() for name, m in self.teammates.items()},
        })


@dataclass(frozen=True)
class PaneCreationResult:
    """Returned once per successful pane creation.

    Attributes:
        pane_id: Opaque multiplexer handle (tmux ``%N`` or an iTerm2 session id)
        is_first_teammate: True when this pane is the first teammate pane
    """

    pane_id: str
    is_first_teammate: bool
