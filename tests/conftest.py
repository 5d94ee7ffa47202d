"""Pytest configuration and shared fixtures for teamswarm tests.

This module provides test fixtures including:
- An isolated HOME and working directory for every test
- Reset of the config and backend-detection singletons
- FakeTmux, an in-memory tmux that records argv and tracks panes
- FakeIt2, an in-memory it2 CLI
"""

import logging
from pathlib import Path

import pytest

from teamswarm import backend as backend_module
from teamswarm import config as config_module
from teamswarm.backend import CommandResult
from teamswarm.config import BackendConfig, TeamSwarmConfig, TeamsConfig
from teamswarm.iterm_backend import ITermBackend
from teamswarm.logging_config import ROOT_LOGGER_NAME
from teamswarm.tmux_backend import TmuxBackend


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path_factory, monkeypatch):
    """Point HOME at a temp dir and clear terminal env vars.

    Also runs each test from an empty directory so no .teamswarm.yaml
    from the checkout is picked up.
    """
    home = tmp_path_factory.mktemp("home")
    workdir = tmp_path_factory.mktemp("work")

    monkeypatch.setenv("HOME", str(home))
    for var in ("USERPROFILE", "TMUX", "TMUX_PANE", "TERM_PROGRAM", "TEAMSWARM_BACKEND"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(workdir)
    return home


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset config, backend-detection and log-level state around each test."""
    config_module._config_instance = None
    backend_module.reset_backend_detection()
    yield
    config_module._config_instance = None
    backend_module.reset_backend_detection()
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(logging.NOTSET)


@pytest.fixture
def claude_home(isolated_environment) -> Path:
    return isolated_environment / ".claude"


class FakeTmux:
    """In-memory tmux server(s) driven through argv.

    Servers are keyed by socket name (None for the default server). Each
    server maps session -> window name -> ordered pane ids. Every call is
    recorded in ``calls``; subcommands listed in ``fail_commands`` exit 1.
    """

    def __init__(self):
        self.calls = []
        self.servers = {None: {}}
        self.fail_commands = set()
        self.leader_pane = None
        self.leader_window = None
        self._next_pane = 0

    # Setup helpers

    def new_pane_id(self):
        pane_id = f"%{self._next_pane}"
        self._next_pane += 1
        return pane_id

    def add_session(self, session, window="0", socket=None):
        pane_id = self.new_pane_id()
        self.servers.setdefault(socket, {})[session] = {window: [pane_id]}
        return pane_id

    def start_leader_session(self, session="main"):
        """Create the session the orchestrator runs in; returns the leader pane."""
        self.leader_pane = self.add_session(session)
        self.leader_window = f"{session}:0"
        return self.leader_pane

    def panes(self, target, socket=None):
        session, _, window = target.partition(":")
        return self.servers.get(socket, {}).get(session, {}).get(window)

    def commands(self, name):
        """Recorded argv lists whose subcommand is ``name``."""
        return [call for call in self.calls if name in call]

    # Dispatch

    async def __call__(self, argv):
        self.calls.append(list(argv))
        args = list(argv[1:])
        socket = None
        if args[:1] == ["-L"]:
            socket = args[1]
            args = args[2:]

        command = args[0]
        if command in self.fail_commands:
            return CommandResult(code=1, stdout="", stderr=f"{command} failed")

        handler = getattr(self, "_" + command.replace("-", "_"), None)
        if handler is None:
            return CommandResult(code=0, stdout="", stderr="")
        return handler(args[1:], socket)

    @staticmethod
    def _opt(args, flag):
        return args[args.index(flag) + 1] if flag in args else None

    @staticmethod
    def _ok(stdout=""):
        return CommandResult(code=0, stdout=stdout, stderr="")

    @staticmethod
    def _err(message):
        return CommandResult(code=1, stdout="", stderr=message)

    def _find(self, pane_id, socket):
        for windows in self.servers.get(socket, {}).values():
            for panes in windows.values():
                if pane_id in panes:
                    return panes
        return None

    # tmux subcommands

    def _display_message(self, args, socket):
        if args[-1] == "#{pane_id}":
            return self._ok(f"{self.leader_pane}\n") if self.leader_pane else self._err("no client")
        if self.leader_window is None:
            return self._err("no client")
        return self._ok(f"{self.leader_window}\n")

    def _list_panes(self, args, socket):
        panes = self.panes(self._opt(args, "-t"), socket)
        if panes is None:
            return self._err("can't find window")
        return self._ok("".join(f"{pane}\n" for pane in panes))

    def _split_window(self, args, socket):
        target = self._opt(args, "-t")
        panes = self._find(target, socket)
        if panes is None:
            return self._err(f"can't find pane: {target}")
        pane_id = self.new_pane_id()
        panes.insert(panes.index(target) + 1, pane_id)
        return self._ok(f"{pane_id}\n")

    def _has_session(self, args, socket):
        if self._opt(args, "-t") in self.servers.get(socket, {}):
            return self._ok()
        return self._err("can't find session")

    def _new_session(self, args, socket):
        session = self._opt(args, "-s")
        if session in self.servers.get(socket, {}):
            return self._err(f"duplicate session: {session}")
        pane_id = self.add_session(session, self._opt(args, "-n") or "0", socket)
        return self._ok(f"{pane_id}\n")

    def _list_windows(self, args, socket):
        windows = self.servers.get(socket, {}).get(self._opt(args, "-t"))
        if windows is None:
            return self._err("can't find session")
        return self._ok("".join(f"{name}\n" for name in windows))

    def _new_window(self, args, socket):
        windows = self.servers.get(socket, {}).get(self._opt(args, "-t"))
        if windows is None:
            return self._err("can't find session")
        pane_id = self.new_pane_id()
        windows[self._opt(args, "-n") or str(len(windows))] = [pane_id]
        return self._ok(f"{pane_id}\n")

    def _kill_pane(self, args, socket):
        target = self._opt(args, "-t")
        panes = self._find(target, socket)
        if panes is None:
            return self._err(f"can't find pane: {target}")
        panes.remove(target)
        return self._ok()

    def _break_pane(self, args, socket):
        pane_id = self._opt(args, "-s")
        session = self._opt(args, "-t").rstrip(":")
        panes = self._find(pane_id, socket)
        windows = self.servers.get(socket, {}).get(session)
        if panes is None or windows is None:
            return self._err("can't break pane")
        panes.remove(pane_id)
        windows[str(len(windows))] = [pane_id]
        return self._ok()

    def _join_pane(self, args, socket):
        pane_id = self._opt(args, "-s")
        source = self._find(pane_id, socket)
        target = self.panes(self._opt(args, "-t"), socket)
        if source is None or target is None:
            return self._err("can't join pane")
        source.remove(pane_id)
        target.append(pane_id)
        return self._ok()

    def _send_keys(self, args, socket):
        target = self._opt(args, "-t")
        if self._find(target, socket) is None:
            return self._err(f"can't find pane: {target}")
        return self._ok()


class FakeIt2:
    """In-memory it2 CLI that hands out session ids."""

    def __init__(self):
        self.calls = []
        self.fail = False
        self.sessions = []
        self._next = 1

    async def __call__(self, argv):
        self.calls.append(list(argv))
        if self.fail:
            return CommandResult(code=1, stdout="", stderr="it2 failed")

        action = argv[1:3]
        if action == ["session", "split"]:
            session_id = f"sess-{self._next}"
            self._next += 1
            self.sessions.append(session_id)
            return CommandResult(code=0, stdout=f"{session_id}\nsplit ok\n", stderr="")
        if action == ["session", "close"]:
            session_id = argv[-1]
            if session_id not in self.sessions:
                return CommandResult(code=1, stdout="", stderr="no such session")
            self.sessions.remove(session_id)
        return CommandResult(code=0, stdout="", stderr="")


@pytest.fixture
def fake_tmux():
    return FakeTmux()


@pytest.fixture
def fake_it2():
    return FakeIt2()


@pytest.fixture
def backend_config():
    """Backend settings with no settle delay."""
    return BackendConfig(settle_delay_ms=0)


@pytest.fixture
def in_tmux(fake_tmux, monkeypatch):
    """Simulate running inside tmux with a leader pane."""
    leader = fake_tmux.start_leader_session()
    monkeypatch.setenv("TMUX", "/tmp/tmux-1000/default,4242,0")
    monkeypatch.setenv("TMUX_PANE", leader)
    return leader


@pytest.fixture
def tmux_backend(fake_tmux, backend_config):
    return TmuxBackend(config=backend_config, runner=fake_tmux)


@pytest.fixture
def iterm_backend(fake_it2):
    return ITermBackend(runner=fake_it2)


@pytest.fixture
def swarm_config(claude_home, backend_config):
    return TeamSwarmConfig(backend=backend_config, teams=TeamsConfig(config_root=claude_home))
