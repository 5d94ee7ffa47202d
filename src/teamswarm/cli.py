"""Command-line interface for teamswarm.

Every subcommand maps to a ``cmd_*`` handler. Results are printed to stdout
(as JSON with ``--json``); failures print to stderr and exit with status 1.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import NoReturn, Optional, Sequence

from teamswarm.agent_manager import AgentManagerError
from teamswarm.backend import BackendError, detect_backend
from teamswarm.config import (
    CONFIG_FILE_STEM,
    ConfigValidationError,
    find_config_file,
    get_config,
    load_config,
    reload_config,
)
from teamswarm.logging_config import setup_logging
from teamswarm.models import AgentColor, TeamConfig, TeamMember
from teamswarm.orchestrator import SwarmContext
from teamswarm.swarm import SwarmCoordinator, SwarmError
from teamswarm.utils import generate_id
from teamswarm.validators import ValidationError

__all__ = ["main"]

DEFAULT_CONFIG_FILENAME = f"{CONFIG_FILE_STEM}.yaml"

DEFAULT_CONFIG_YAML = """# teamswarm configuration

# Terminal backend used to lay out teammate panes
backend:
  # auto, tmux or iterm2
  provider: auto
  # Pause after a tmux layout change (milliseconds)
  settle_delay_ms: 200
  # tmux socket (-L) for swarms spawned from outside tmux
  leader_socket: claude-leader
  swarm_session_name: claude-swarm
  swarm_window_name: swarm-view
  hidden_session_name: claude-hidden
  # Width of the first teammate split and of the leader after rebalance (%)
  first_split_percent: 70
  leader_width_percent: 30

# Team persistence
teams:
  # Directory holding teams/ and tasks/ (null = ~/.claude)
  config_root: null

# Message bus
messaging:
  # Sender name when none is given
  default_sender: unknown
"""


def _fail(message: str) -> NoReturn:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _load_team(coordinator: SwarmCoordinator, team_name: str) -> TeamConfig:
    config = coordinator.load_team_config(team_name)
    if config is None:
        _fail(f"Team '{team_name}' not found")
    return config


def _print_team(config: TeamConfig) -> None:
    print(f"Team: {config.team_name}")
    if config.description:
        print(f"  Description: {config.description}")
    if config.lead_agent_id:
        print(f"  Lead: {config.lead_agent_id}")
    print(f"  Updated: {config.updated_at}")
    print(f"  Members ({len(config.members)}):")
    for member in config.members:
        status = "active" if member.is_active is not False else "inactive"
        color = member.color.value if member.color else "-"
        pane = member.tmux_pane_id or "-"
        print(f"    {member.name:<20} | {color:<8} | {status:<8} | pane {pane}")


def cmd_create_team(args: argparse.Namespace) -> None:
    """Create a new team."""
    coordinator = SwarmCoordinator()
    try:
        config = coordinator.create_team(args.team_name, args.description, args.lead_agent_id)
    except (ValidationError, SwarmError) as e:
        _fail(str(e))

    if args.json:
        print(json.dumps(config.to_dict(), indent=2))
    else:
        print(f"Created team: {config.team_name}")
    sys.exit(0)


def cmd_list_teams(args: argparse.Namespace) -> None:
    """List every team found on disk."""
    teams = SwarmCoordinator.discover_teams()

    if args.json:
        print(json.dumps([team.to_dict() for team in teams], indent=2))
        sys.exit(0)

    if not teams:
        print("No teams found.")
        sys.exit(0)

    print(f"Teams ({len(teams)}):")
    for team in teams:
        active = sum(1 for m in team.members if m.is_active is not False)
        print(f"  {team.team_name:<24} {len(team.members)} members, {active} active")
    sys.exit(0)


def cmd_show_team(args: argparse.Namespace) -> None:
    """Show one team's configuration."""
    config = _load_team(SwarmCoordinator(), args.team_name)

    if args.json:
        print(json.dumps(config.to_dict(), indent=2))
    else:
        _print_team(config)
    sys.exit(0)


def cmd_cleanup_team(args: argparse.Namespace) -> None:
    """Delete a team whose teammates are all inactive."""
    coordinator = SwarmCoordinator()
    if not coordinator.team_exists(args.team_name):
        _fail(f"Team '{args.team_name}' not found")

    try:
        coordinator.cleanup_team(args.team_name)
    except SwarmError as e:
        _fail(str(e))

    print(f"Cleaned up team: {args.team_name}")
    sys.exit(0)


def cmd_add_member(args: argparse.Namespace) -> None:
    """Add a member record to a team without spawning a pane."""
    coordinator = SwarmCoordinator()
    _load_team(coordinator, args.team_name)

    try:
        member = coordinator.add_member(TeamMember(
            name=args.name,
            agent_id=args.agent_id or generate_id("agent"),
            agent_type=args.agent_type,
            color=args.color,
        ))
    except (ValidationError, SwarmError, ValueError) as e:
        _fail(str(e))

    if args.json:
        print(json.dumps(member.to_dict(), indent=2))
    else:
        print(f"Added {member.name} ({member.color.value}) to {args.team_name}")
    sys.exit(0)


def cmd_remove_member(args: argparse.Namespace) -> None:
    """Remove a member from a team."""
    coordinator = SwarmCoordinator()
    _load_team(coordinator, args.team_name)

    try:
        removed = coordinator.remove_member(args.name)
    except SwarmError as e:
        _fail(str(e))

    if not removed:
        _fail(f"Member '{args.name}' not found in team '{args.team_name}'")

    print(f"Removed {args.name} from {args.team_name}")
    sys.exit(0)


def cmd_deactivate_member(args: argparse.Namespace) -> None:
    """Mark a member inactive."""
    coordinator = SwarmCoordinator()
    _load_team(coordinator, args.team_name)

    if coordinator.deactivate_member(args.name) is None:
        _fail(f"Member '{args.name}' not found in team '{args.team_name}'")

    print(f"Deactivated {args.name} in {args.team_name}")
    sys.exit(0)


async def _spawn_teammate(args: argparse.Namespace) -> TeamMember:
    context = SwarmContext()
    if context.load_team(args.team_name) is None:
        raise SwarmError(f"Team '{args.team_name}' not found")

    return await context.spawn_teammate(
        args.name,
        agent_type=args.agent_type,
        model=args.model,
        prompt=args.prompt,
        cwd=args.cwd,
        command=args.command_line,
    )


def cmd_spawn_teammate(args: argparse.Namespace) -> None:
    """Add a teammate and open its pane."""
    try:
        member = asyncio.run(_spawn_teammate(args))
    except (ValidationError, SwarmError, AgentManagerError, BackendError) as e:
        _fail(str(e))

    if args.json:
        print(json.dumps(member.to_dict(), indent=2))
    else:
        print(f"Spawned {member.name} in pane {member.tmux_pane_id}")
    sys.exit(0)


def cmd_detect_backend(args: argparse.Namespace) -> None:
    """Report which terminal backend would be used."""
    backend = asyncio.run(detect_backend())
    if backend is None:
        _fail("No terminal backend available (need tmux or iTerm2 with it2)")

    if args.json:
        print(json.dumps({
            "backendType": backend.backend_type.value,
            "displayName": backend.display_name,
            "supportsHideShow": backend.supports_hide_show,
        }, indent=2))
    else:
        print(f"Backend: {backend.display_name}")
    sys.exit(0)


def cmd_config_init(args: argparse.Namespace) -> None:
    """Create default configuration file."""
    config_path = Path(args.output or DEFAULT_CONFIG_FILENAME)

    if config_path.exists() and not args.force:
        print(f"Error: Config file already exists: {config_path}", file=sys.stderr)
        print("Use --force to overwrite", file=sys.stderr)
        sys.exit(1)

    try:
        config_path.write_text(DEFAULT_CONFIG_YAML, encoding="utf-8")
    except OSError as e:
        _fail(f"Error creating config file: {e}")

    print(f"Created config file: {config_path.resolve()}")
    sys.exit(0)


def cmd_config_show(args: argparse.Namespace) -> None:
    """Display current configuration."""
    try:
        if args.file:
            config = load_config(Path(args.file))
            source = args.file
        else:
            config_path = find_config_file()
            config = load_config(config_path)
            source = str(config_path) if config_path else "defaults (no config file found)"
    except ConfigValidationError as e:
        _fail(f"Error loading config: {e}")

    if args.json:
        print(json.dumps(config.to_dict(), indent=2))
        sys.exit(0)

    print(f"Configuration source: {source}")
    print()
    for section, values in config.to_dict().items():
        print(f"{section}:")
        for key, value in values.items():
            print(f"  {key}: {value}")
        print()
    sys.exit(0)


def cmd_config_validate(args: argparse.Namespace) -> None:
    """Validate configuration file."""
    config_path = Path(args.file) if args.file else find_config_file()
    if config_path is None:
        print("No config file found to validate", file=sys.stderr)
        print("Create one with: teamswarm config init", file=sys.stderr)
        sys.exit(1)

    try:
        load_config(config_path)
    except ConfigValidationError as e:
        print(f"Invalid config: {config_path}", file=sys.stderr)
        print(f"  - {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Config file is valid: {config_path}")
    sys.exit(0)


def _add_json_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--json", action="store_true", help="Output as JSON")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="teamswarm",
        description="teamswarm - Multi-agent team orchestration in terminal panes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Path to config file (default: search for {DEFAULT_CONFIG_FILENAME})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # create-team
    create_parser = subparsers.add_parser("create-team", help="Create a new team")
    create_parser.add_argument("team_name", help="Team name")
    create_parser.add_argument("--description", help="Team description")
    create_parser.add_argument("--lead-agent-id", help="Agent id of the team lead")
    _add_json_flag(create_parser)
    create_parser.set_defaults(func=cmd_create_team)

    # list-teams
    list_parser = subparsers.add_parser("list-teams", help="List teams on disk")
    _add_json_flag(list_parser)
    list_parser.set_defaults(func=cmd_list_teams)

    # show-team
    show_parser = subparsers.add_parser("show-team", help="Show a team's members")
    show_parser.add_argument("team_name", help="Team name")
    _add_json_flag(show_parser)
    show_parser.set_defaults(func=cmd_show_team)

    # cleanup-team
    cleanup_parser = subparsers.add_parser(
        "cleanup-team",
        help="Delete a team (all teammates must be inactive)",
    )
    cleanup_parser.add_argument("team_name", help="Team name")
    cleanup_parser.set_defaults(func=cmd_cleanup_team)

    # add-member
    add_parser = subparsers.add_parser("add-member", help="Add a member record to a team")
    add_parser.add_argument("team_name", help="Team name")
    add_parser.add_argument("name", help="Member name")
    add_parser.add_argument("--agent-id", help="Agent id (default: generated)")
    add_parser.add_argument("--agent-type", help="Agent type")
    add_parser.add_argument(
        "--color",
        choices=[color.value for color in AgentColor],
        help="Member color (default: first unused)",
    )
    _add_json_flag(add_parser)
    add_parser.set_defaults(func=cmd_add_member)

    # remove-member
    remove_parser = subparsers.add_parser("remove-member", help="Remove a member from a team")
    remove_parser.add_argument("team_name", help="Team name")
    remove_parser.add_argument("name", help="Member name")
    remove_parser.set_defaults(func=cmd_remove_member)

    # deactivate-member
    deactivate_parser = subparsers.add_parser("deactivate-member", help="Mark a member inactive")
    deactivate_parser.add_argument("team_name", help="Team name")
    deactivate_parser.add_argument("name", help="Member name")
    deactivate_parser.set_defaults(func=cmd_deactivate_member)

    # spawn-teammate
    spawn_parser = subparsers.add_parser(
        "spawn-teammate",
        help="Add a teammate to a team and open its pane",
    )
    spawn_parser.add_argument("team_name", help="Team name")
    spawn_parser.add_argument("name", help="Teammate name")
    spawn_parser.add_argument("--agent-type", help="Agent type (selects the default model)")
    spawn_parser.add_argument("--model", help="Model override")
    spawn_parser.add_argument("--prompt", help="Initial prompt recorded on the member")
    spawn_parser.add_argument("--cwd", help="Working directory recorded on the member")
    spawn_parser.add_argument(
        "--command",
        dest="command_line",
        help="Shell command to run in the new pane",
    )
    _add_json_flag(spawn_parser)
    spawn_parser.set_defaults(func=cmd_spawn_teammate)

    # detect-backend
    detect_parser = subparsers.add_parser("detect-backend", help="Show the detected terminal backend")
    _add_json_flag(detect_parser)
    detect_parser.set_defaults(func=cmd_detect_backend)

    # config command group
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config command")

    config_init_parser = config_subparsers.add_parser("init", help="Create default configuration file")
    config_init_parser.add_argument(
        "-o", "--output",
        type=str,
        help=f"Output path (default: {DEFAULT_CONFIG_FILENAME})",
    )
    config_init_parser.add_argument("-f", "--force", action="store_true", help="Overwrite existing file")
    config_init_parser.set_defaults(func=cmd_config_init)

    config_show_parser = config_subparsers.add_parser("show", help="Display current configuration")
    config_show_parser.add_argument("--file", type=str, help="Path to config file")
    _add_json_flag(config_show_parser)
    config_show_parser.set_defaults(func=cmd_config_show)

    config_validate_parser = config_subparsers.add_parser("validate", help="Validate configuration file")
    config_validate_parser.add_argument("--file", type=str, help="Path to config file")
    config_validate_parser.set_defaults(func=cmd_config_validate)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> NoReturn:
    """Console-script entry point: set up logging and config, then dispatch."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command or not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    setup_logging(level=args.log_level)

    try:
        if args.config is not None:
            reload_config(args.config)
        else:
            get_config()
    except ConfigValidationError as e:
        _fail(f"Invalid configuration: {e}")

    args.func(args)
    sys.exit(0)


if __name__ == "__main__":
    main()
