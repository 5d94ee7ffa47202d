"""Tests for the teamswarm command-line interface.

Handlers always exit: 0 on success, 1 on error with a message on stderr.
"""

import json
import logging

import pytest

from teamswarm.cli import DEFAULT_CONFIG_YAML, build_parser, main
from teamswarm.config import load_config
from teamswarm.swarm import SwarmCoordinator


def run(argv):
    """Run the CLI and return its exit code."""
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Drop the stderr handler main() installs via setup_logging."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def acme(claude_home):
    SwarmCoordinator(config_root=claude_home).create_team("acme", lead_agent_id="agent-lead")


class TestParser:

    def test_no_command_prints_help(self, capsys):
        assert run([]) == 1
        assert "usage:" in capsys.readouterr().out

    def test_spawn_command_flag(self):
        args = build_parser().parse_args(["spawn-teammate", "acme", "alice", "--command", "claude"])
        assert args.command == "spawn-teammate"
        assert args.command_line == "claude"

    def test_color_choices(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["add-member", "acme", "alice", "--color", "mauve"])
        assert "invalid choice" in capsys.readouterr().err


class TestTeamCommands:

    def test_create_team(self, capsys, claude_home):
        assert run(["create-team", "acme", "--description", "demo"]) == 0
        assert "Created team: acme" in capsys.readouterr().out
        assert (claude_home / "teams" / "acme" / "config.json").exists()

    def test_create_team_json(self, capsys):
        assert run(["create-team", "acme", "--lead-agent-id", "agent-1", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["teamName"] == "acme"
        assert data["members"][0]["name"] == "team-lead"

    def test_create_existing_team(self, capsys, acme):
        assert run(["create-team", "acme"]) == 1
        assert "already exists" in capsys.readouterr().err

    def test_create_invalid_name(self, capsys):
        assert run(["create-team", "../etc"]) == 1
        assert capsys.readouterr().err.startswith("Error:")

    def test_list_teams_empty(self, capsys):
        assert run(["list-teams"]) == 0
        assert "No teams found." in capsys.readouterr().out

    def test_list_teams(self, capsys, acme):
        assert run(["list-teams", "--json"]) == 0
        [team] = json.loads(capsys.readouterr().out)
        assert team["teamName"] == "acme"

    def test_show_team(self, capsys, acme):
        assert run(["show-team", "acme"]) == 0
        out = capsys.readouterr().out
        assert "Team: acme" in out
        assert "team-lead" in out

    def test_show_missing_team(self, capsys):
        assert run(["show-team", "ghost"]) == 1
        assert "not found" in capsys.readouterr().err

    def test_cleanup_team(self, capsys, acme, claude_home):
        assert run(["cleanup-team", "acme"]) == 0
        assert not (claude_home / "teams" / "acme").exists()

    def test_cleanup_blocked_by_active_member(self, capsys, acme):
        run(["add-member", "acme", "alice"])
        assert run(["cleanup-team", "acme"]) == 1
        assert "active members" in capsys.readouterr().err

        assert run(["deactivate-member", "acme", "alice"]) == 0
        assert run(["cleanup-team", "acme"]) == 0


class TestMemberCommands:

    def test_add_member(self, capsys, acme):
        assert run(["add-member", "acme", "alice", "--color", "cyan", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["name"] == "alice"
        assert data["color"] == "cyan"
        assert data["agentId"].startswith("agent-")

    def test_add_duplicate_member(self, capsys, acme):
        run(["add-member", "acme", "alice"])
        capsys.readouterr()
        assert run(["add-member", "acme", "alice"]) == 1
        assert "already exists" in capsys.readouterr().err

    def test_add_member_to_missing_team(self, capsys):
        assert run(["add-member", "ghost", "alice"]) == 1

    def test_remove_member(self, capsys, acme):
        run(["add-member", "acme", "alice"])
        assert run(["remove-member", "acme", "alice"]) == 0
        assert run(["remove-member", "acme", "alice"]) == 1

    def test_remove_team_lead(self, capsys, acme):
        assert run(["remove-member", "acme", "team-lead"]) == 1
        assert "Cannot remove team-lead" in capsys.readouterr().err

    def test_deactivate_unknown_member(self, capsys, acme):
        assert run(["deactivate-member", "acme", "ghost"]) == 1


class TestSpawnAndDetect:

    def test_spawn_without_backend(self, capsys, acme, monkeypatch):
        monkeypatch.setattr("teamswarm.backend.shutil.which", lambda name: None)
        assert run(["spawn-teammate", "acme", "alice"]) == 1
        assert "No terminal backend" in capsys.readouterr().err

    def test_spawn_missing_team(self, capsys):
        assert run(["spawn-teammate", "ghost", "alice"]) == 1
        assert "not found" in capsys.readouterr().err

    def test_detect_backend_none(self, capsys, monkeypatch):
        monkeypatch.setattr("teamswarm.backend.shutil.which", lambda name: None)
        assert run(["detect-backend"]) == 1

    def test_detect_backend_json(self, capsys, monkeypatch):
        monkeypatch.setattr("teamswarm.backend.shutil.which", lambda name: f"/usr/bin/{name}")
        assert run(["detect-backend", "--json"]) == 0
        assert json.loads(capsys.readouterr().out) == {
            "backendType": "tmux",
            "displayName": "tmux",
            "supportsHideShow": True,
        }


class TestConfigCommands:

    def test_init_writes_loadable_defaults(self, capsys, tmp_path):
        path = tmp_path / "conf.yaml"
        assert run(["config", "init", "-o", str(path)]) == 0
        assert path.read_text() == DEFAULT_CONFIG_YAML
        assert load_config(path).backend.settle_delay_ms == 200

    def test_init_refuses_overwrite(self, capsys, tmp_path):
        path = tmp_path / "conf.yaml"
        path.write_text("{}")
        assert run(["config", "init", "-o", str(path)]) == 1
        assert "--force" in capsys.readouterr().err
        assert run(["config", "init", "-o", str(path), "--force"]) == 0

    def test_show_json(self, capsys):
        assert run(["config", "show", "--json"]) == 0
        assert json.loads(capsys.readouterr().out)["backend"]["provider"] == "auto"

    def test_validate_without_file(self, capsys):
        assert run(["config", "validate"]) == 1
        assert "No config file found" in capsys.readouterr().err

    def test_validate_invalid_file(self, capsys, tmp_path):
        path = tmp_path / "conf.yaml"
        path.write_text("backend:\n  settle_delay_ms: -5\n")
        assert run(["config", "validate", "--file", str(path)]) == 1
        assert "Invalid config" in capsys.readouterr().err

    def test_global_config_flag(self, capsys, tmp_path):
        path = tmp_path / "conf.yaml"
        path.write_text("teams:\n  config_root: " + str(tmp_path / "root") + "\n")
        assert run(["--config", str(path), "create-team", "acme"]) == 0
        assert (tmp_path / "root" / "teams" / "acme" / "config.json").exists()

    def test_invalid_global_config(self, capsys, tmp_path):
        path = tmp_path / "conf.yaml"
        path.write_text("backend:\n  provider: screen\n")
        assert run(["--config", str(path), "list-teams"]) == 1
        assert "Invalid configuration" in capsys.readouterr().err
