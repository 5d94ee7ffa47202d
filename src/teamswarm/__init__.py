"""teamswarm - Multi-agent team orchestration in terminal panes.

This package coordinates AI agents that each run in their own terminal
pane (tmux or iTerm2) through:
- Agent lifecycle tracking and color assignment
- Team membership persisted under ~/.claude/teams
- In-process messaging with deferred delivery
- Shutdown, join and plan-approval handshake messages
- Pane layout management for tmux and iTerm2
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "agent_manager",
    "backend",
    "cli",
    "colors",
    "config",
    "iterm_backend",
    "logging_config",
    "messaging",
    "models",
    "orchestrator",
    "protocol",
    "swarm",
    "tmux_backend",
    "utils",
    "validators",
]
