"""Team lifecycle and membership for teamswarm.

This module provides functionality to:
- Create, load, save and clean up teams
- Add, update, deactivate and remove team members
- Assign member colors
- Track hidden panes for the current session
- Build the per-agent TeamContext
- Discover every team on disk

Each team is one JSON file, always rewritten in full:

    ~/.claude/teams/<team>/config.json
    ~/.claude/tasks/<team>/            (created, not populated here)

The coordinator keeps one active team in memory and an AgentManager
scoped to it, so agent names are unique per team.
"""

from __future__ import annotations

import dataclasses
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .agent_manager import AgentManager
from .colors import ColorRegistry
from .logging_config import get_logger
from .models import (
    AVAILABLE_AGENT_COLORS,
    TEAM_LEAD_NAME,
    AgentColor,
    TeamConfig,
    TeamContext,
    TeamMember,
)
from .utils import load_json, save_json, utc_now_iso
from .validators import ValidationError, validate_team_name

logger = get_logger(__name__)

__all__ = [
    "SwarmCoordinator",
    "SwarmError",
    "TeamExistsError",
    "TeamNotLoadedError",
    "MemberExistsError",
    "ReservedMemberError",
    "ActiveMembersError",
    "get_claude_home",
    "get_teams_dir",
    "get_team_dir",
    "get_team_config_path",
    "get_tasks_dir",
    "get_team_tasks_dir",
]

CLAUDE_DIR = ".claude"
TEAMS_DIR = "teams"
TASKS_DIR = "tasks"
TEAM_CONFIG_FILE = "config.json"

_IMMUTABLE_MEMBER_FIELDS = frozenset({"name", "agent_id"})
_MEMBER_FIELDS = frozenset(f.name for f in dataclasses.fields(TeamMember))


class SwarmError(Exception):
    """Base exception for team management errors."""
    pass


class TeamExistsError(SwarmError):
    """Raised when creating a team whose config file already exists."""
    pass


class TeamNotLoadedError(SwarmError):
    """Raised when a membership change is requested with no active team."""
    pass


class MemberExistsError(SwarmError):
    """Raised when adding a member whose name is already in the team."""
    pass


class ReservedMemberError(SwarmError):
    """Raised when trying to remove the team lead."""
    pass


class ActiveMembersError(SwarmError):
    """Raised when cleaning up a team that still has active teammates."""
    pass


# Paths

def get_claude_home(config_root: Optional[Path] = None) -> Path:
    """Directory holding teams/ and tasks/.

    Uses ``config_root`` when given, then the ``teams.config_root`` config
    setting, then ``$HOME/.claude`` (``$USERPROFILE`` on Windows).
    """
    if config_root is not None:
        return Path(config_root)

    try:
        from .config import get_config

        configured = get_config().teams.config_root
    except Exception as e:
        logger.debug(f"Config unavailable for teams root, using home directory: {e}")
        configured = None
    if configured is not None:
        return Path(configured)

    home = os.environ.get("HOME") or os.environ.get("USERPROFILE") or ""
    return Path(home) / CLAUDE_DIR


def get_teams_dir(config_root: Optional[Path] = None) -> Path:
    return get_claude_home(config_root) / TEAMS_DIR


def get_team_dir(team_name: str, config_root: Optional[Path] = None) -> Path:
    return get_teams_dir(config_root) / team_name


def get_team_config_path(team_name: str, config_root: Optional[Path] = None) -> Path:
    return get_team_dir(team_name, config_root) / TEAM_CONFIG_FILE


def get_tasks_dir(config_root: Optional[Path] = None) -> Path:
    return get_claude_home(config_root) / TASKS_DIR


def get_team_tasks_dir(team_name: str, config_root: Optional[Path] = None) -> Path:
    return get_tasks_dir(config_root) / team_name


def _remove_dir_if_empty(path: Path) -> None:
    try:
        path.rmdir()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug(f"Leaving {path} in place: {e}")


class SwarmCoordinator:
    """Owns the active team, its persisted config and its AgentManager.

    Args:
        config_root: Directory holding teams/ and tasks/ (default ~/.claude)
        color_registry: Registry shared with the AgentManager instances this
            coordinator creates
    """

    def __init__(
        self,
        config_root: Optional[Path] = None,
        color_registry: Optional[ColorRegistry] = None,
    ):
        self.config_root = get_claude_home(config_root)
        self.color_registry = color_registry if color_registry is not None else ColorRegistry()
        self._agent_manager = AgentManager(color_registry=self.color_registry)
        self._team_config: Optional[TeamConfig] = None
        self._hidden_panes: set[str] = set()
        self._color_index = 0

    @property
    def agent_manager(self) -> AgentManager:
        return self._agent_manager

    def _team_config_path(self, team_name: str) -> Path:
        return get_team_config_path(team_name, self.config_root)

    def _scope_to_team(self, team_name: str) -> None:
        self._agent_manager = AgentManager(team_name=team_name, color_registry=self.color_registry)

    # Team management

    def create_team(
        self,
        team_name: str,
        description: Optional[str] = None,
        lead_agent_id: Optional[str] = None,
    ) -> TeamConfig:
        """Create a team and make it the active team.

        Args:
            team_name: Unique team name
            description: Optional description
            lead_agent_id: Agent id of the leader; seeds a ``team-lead`` member

        Returns:
            The new TeamConfig

        Raises:
            ValidationError: If the name is empty or invalid
            TeamExistsError: If a config file for the team already exists
        """
        team_name = validate_team_name(team_name)

        config_path = self._team_config_path(team_name)
        if config_path.exists():
            raise TeamExistsError(f"Team '{team_name}' already exists")

        config_path.parent.mkdir(parents=True, exist_ok=True)
        get_team_tasks_dir(team_name, self.config_root).mkdir(parents=True, exist_ok=True)

        now = utc_now_iso()
        config = TeamConfig(
            team_name=team_name,
            description=description,
            lead_agent_id=lead_agent_id,
            created_at=now,
            updated_at=now,
        )
        if lead_agent_id:
            config.members.append(TeamMember(
                name=TEAM_LEAD_NAME,
                agent_id=lead_agent_id,
                agent_type=TEAM_LEAD_NAME,
                is_active=True,
            ))

        self.save_team_config(team_name, config)
        self._team_config = config
        self._scope_to_team(team_name)

        logger.info(f"Created team '{team_name}' at {config_path}")
        return config

    def load_team_config(self, team_name: str) -> Optional[TeamConfig]:
        """Load a team from disk and make it the active team.

        Returns:
            The TeamConfig, or None if the file is missing or unreadable
        """
        config = self._read_team_config(team_name)
        if config is None:
            return None

        self._team_config = config
        self._scope_to_team(team_name)
        return config

    def _read_team_config(self, team_name: str) -> Optional[TeamConfig]:
        config_path = self._team_config_path(team_name)
        if not config_path.exists():
            return None

        try:
            return TeamConfig.from_dict(load_json(config_path))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to load team config for '{team_name}': {e}")
            return None

    def save_team_config(self, team_name: str, config: TeamConfig) -> None:
        """Write the full team config, refreshing ``updatedAt``."""
        config.updated_at = utc_now_iso()
        save_json(self._team_config_path(team_name), config.to_dict())

    def get_current_team_config(self) -> Optional[TeamConfig]:
        return self._team_config

    def team_exists(self, team_name: str) -> bool:
        return self._team_config_path(team_name).exists()

    def cleanup_team(self, team_name: str) -> None:
        """Delete a team's files once all teammates are inactive.

        Removes the config file, then the team and tasks directories if they
        are empty. Clears in-memory state when it was the active team.

        Raises:
            ActiveMembersError: If a non-lead member is still active
        """
        config = self._read_team_config(team_name)
        if config is not None:
            active = [
                m for m in config.members
                if m.is_active is not False and m.name != TEAM_LEAD_NAME
            ]
            if active:
                raise ActiveMembersError(
                    f"Cannot cleanup team '{team_name}': still has {len(active)} active members"
                )

        config_path = self._team_config_path(team_name)
        if config_path.exists():
            config_path.unlink()

        _remove_dir_if_empty(get_team_dir(team_name, self.config_root))
        _remove_dir_if_empty(get_team_tasks_dir(team_name, self.config_root))

        if self._team_config is not None and self._team_config.team_name == team_name:
            self._team_config = None
            self._agent_manager.clear_all_agents()
            self._hidden_panes.clear()

        logger.info(f"Cleaned up team '{team_name}'")

    # Member management

    def add_member(self, member: TeamMember) -> TeamMember:
        """Add a member to the active team and persist.

        The member is marked active and given a color if it has none.

        Raises:
            TeamNotLoadedError: If no team is active
            MemberExistsError: If the name is already in the team
        """
        if self._team_config is None:
            raise TeamNotLoadedError("No team loaded")

        if any(m.name == member.name for m in self._team_config.members):
            raise MemberExistsError(f"Member '{member.name}' already exists in team")

        new_member = dataclasses.replace(
            member,
            color=member.color or self._assign_color(),
            is_active=True,
        )
        self._team_config.members.append(new_member)
        self._save_current()

        logger.debug(f"Added member '{new_member.name}' to team '{self._team_config.team_name}'")
        return new_member

    def remove_member(self, member_name: str) -> bool:
        """Remove a member from the active team.

        Returns:
            True if removed, False if no team is active or the member is unknown

        Raises:
            ReservedMemberError: If ``member_name`` is the team lead
        """
        if member_name == TEAM_LEAD_NAME:
            raise ReservedMemberError(f"Cannot remove {TEAM_LEAD_NAME}")

        if self._team_config is None:
            return False

        members = self._team_config.members
        for index, member in enumerate(members):
            if member.name == member_name:
                del members[index]
                self._save_current()
                return True
        return False

    def update_member(self, member_name: str, **updates: Any) -> Optional[TeamMember]:
        """Shallow-merge fields into a member and persist.

        Args:
            member_name: Member to update
            **updates: TeamMember fields other than ``name`` and ``agent_id``

        Returns:
            The updated member, or None if no team is active or the member is unknown

        Raises:
            ValidationError: If an immutable or unknown field is given
        """
        immutable = _IMMUTABLE_MEMBER_FIELDS.intersection(updates)
        if immutable:
            raise ValidationError(f"Cannot update member fields: {', '.join(sorted(immutable))}")
        unknown = set(updates) - _MEMBER_FIELDS
        if unknown:
            raise ValidationError(f"Unknown member fields: {', '.join(sorted(unknown))}")

        if self._team_config is None:
            return None

        members = self._team_config.members
        for index, member in enumerate(members):
            if member.name == member_name:
                updated = dataclasses.replace(member, **updates)
                members[index] = updated
                self._save_current()
                return updated
        return None

    def get_member(self, member_name: str) -> Optional[TeamMember]:
        if self._team_config is None:
            return None
        for member in self._team_config.members:
            if member.name == member_name:
                return member
        return None

    def get_all_members(self) -> List[TeamMember]:
        if self._team_config is None:
            return []
        return list(self._team_config.members)

    def get_active_members(self) -> List[TeamMember]:
        """Active members, excluding the team lead."""
        return [
            m for m in self.get_all_members()
            if m.is_active is not False and m.name != TEAM_LEAD_NAME
        ]

    def get_teammates(self) -> List[TeamMember]:
        """All members except the team lead, active or not."""
        return [m for m in self.get_all_members() if m.name != TEAM_LEAD_NAME]

    def deactivate_member(self, member_name: str) -> Optional[TeamMember]:
        return self.update_member(member_name, is_active=False)

    def activate_member(self, member_name: str) -> Optional[TeamMember]:
        return self.update_member(member_name, is_active=True)

    def update_member_pane_id(self, member_name: str, pane_id: str) -> Optional[TeamMember]:
        return self.update_member(member_name, tmux_pane_id=pane_id)

    # Colors

    def _assign_color(self) -> AgentColor:
        """First palette color no member uses, else round-robin."""
        used = {m.color for m in self.get_all_members() if m.color is not None}
        for color in AVAILABLE_AGENT_COLORS:
            if color not in used:
                return color

        color = AVAILABLE_AGENT_COLORS[self._color_index % len(AVAILABLE_AGENT_COLORS)]
        self._color_index += 1
        return color

    def reset_color_index(self) -> None:
        self._color_index = 0

    # Hidden panes (session-local, never persisted)

    def set_pane_hidden_state(self, pane_id: str, is_hidden: bool) -> None:
        if is_hidden:
            self._hidden_panes.add(pane_id)
        else:
            self._hidden_panes.discard(pane_id)

    def is_pane_hidden(self, pane_id: str) -> bool:
        return pane_id in self._hidden_panes

    def get_hidden_panes(self) -> List[str]:
        return sorted(self._hidden_panes)

    # Context

    def create_team_context(self, self_name: str) -> Optional[TeamContext]:
        """Team view for one agent; ``teammates`` excludes the agent itself."""
        if self._team_config is None:
            return None

        self_member = self.get_member(self_name)
        teammates: Dict[str, TeamMember] = {
            m.name: m for m in self._team_config.members if m.name != self_name
        }
        return TeamContext(
            team_name=self._team_config.team_name,
            self_agent_name=self_name,
            self_agent_color=self_member.color if self_member else None,
            teammates=teammates,
        )

    @staticmethod
    def discover_teams(teams_dir: Optional[Path] = None) -> List[TeamConfig]:
        """Every parsable team config under the teams directory.

        Malformed or unreadable files are skipped.
        """
        teams_dir = Path(teams_dir) if teams_dir is not None else get_teams_dir()
        if not teams_dir.is_dir():
            return []

        teams = []
        for config_path in sorted(teams_dir.glob(f"*/{TEAM_CONFIG_FILE}")):
            try:
                teams.append(TeamConfig.from_dict(load_json(config_path)))
            except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping unreadable team config {config_path}: {e}")
        return teams

    def _save_current(self) -> None:
        if self._team_config is None:
            raise TeamNotLoadedError("No team loaded")
        self.save_team_config(self._team_config.team_name, self._team_config)
