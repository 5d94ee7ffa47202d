"""Round-robin color assignment that remembers colors per agent name."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from .models import AVAILABLE_AGENT_COLORS, AgentColor

__all__ = ["ColorRegistry"]


class ColorRegistry:
    """Assigns palette colors to agent names.

    A name keeps the color it was first given until reset(), so an agent
    that is respawned under the same name keeps its color. New names draw
    the next palette entry, wrapping after the last one.

    One registry is owned by the SwarmContext and shared by every
    AgentManager it creates.
    """

    def __init__(self, palette: Optional[Sequence[AgentColor]] = None):
        self._palette: List[AgentColor] = list(palette or AVAILABLE_AGENT_COLORS)
        if not self._palette:
            raise ValueError("palette cannot be empty")
        self._assigned: Dict[str, AgentColor] = {}
        self._index = 0

    def get_color(self, agent_name: str) -> AgentColor:
        existing = self._assigned.get(agent_name)
        if existing is not None:
            return existing

        color = self._palette[self._index % len(self._palette)]
        self._assigned[agent_name] = color
        self._index += 1
        return color

    def reset(self) -> None:
        self._assigned.clear()
        self._index = 0

    def assigned_colors(self) -> Dict[str, AgentColor]:
        return dict(self._assigned)

    def __len__(self) -> int:
        return len(self._assigned)
