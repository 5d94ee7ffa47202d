"""Tests for backend detection, registration and command execution."""

import pytest

from teamswarm import backend as backend_module
from teamswarm.backend import (
    detect_backend,
    get_backend_by_type,
    get_cached_backend,
    get_current_pane_id_from_env,
    get_leader_tmux_socket,
    is_inside_iterm2,
    is_inside_tmux,
    register_backend,
    reset_backend_detection,
    run_command,
)
from teamswarm.config import BackendConfig, TeamSwarmConfig
from teamswarm.iterm_backend import ITermBackend
from teamswarm.models import BackendType
from teamswarm.tmux_backend import TmuxBackend


@pytest.fixture
def installed(monkeypatch):
    """Control which binaries shutil.which reports as installed."""
    binaries = set()
    monkeypatch.setattr(
        "teamswarm.backend.shutil.which",
        lambda name: f"/usr/bin/{name}" if name in binaries else None,
    )
    return binaries


class TestEnvironment:

    def test_inside_tmux(self, monkeypatch):
        assert not is_inside_tmux()
        monkeypatch.setenv("TMUX", "/tmp/tmux-1000/default,1,0")
        assert is_inside_tmux()

    def test_inside_iterm2(self, monkeypatch):
        monkeypatch.setenv("TERM_PROGRAM", "Apple_Terminal")
        assert not is_inside_iterm2()
        monkeypatch.setenv("TERM_PROGRAM", "iTerm.app")
        assert is_inside_iterm2()

    def test_pane_id_from_env(self, monkeypatch):
        assert get_current_pane_id_from_env() is None
        monkeypatch.setenv("TMUX_PANE", "%4")
        assert get_current_pane_id_from_env() == "%4"

    def test_leader_socket_from_config(self, monkeypatch):
        assert get_leader_tmux_socket() == "claude-leader"
        monkeypatch.setattr(
            "teamswarm.config._config_instance",
            TeamSwarmConfig(backend=BackendConfig(leader_socket="alt")),
        )
        assert get_leader_tmux_socket() == "alt"


class TestDetectBackend:

    @pytest.mark.asyncio
    async def test_inside_tmux(self, installed, monkeypatch):
        installed.update({"tmux", "it2"})
        monkeypatch.setenv("TMUX", "/tmp/tmux-1000/default,1,0")
        monkeypatch.setenv("TERM_PROGRAM", "iTerm.app")

        backend = await detect_backend()
        assert backend.backend_type is BackendType.TMUX

    @pytest.mark.asyncio
    async def test_inside_iterm(self, installed, monkeypatch):
        installed.update({"tmux", "it2"})
        monkeypatch.setenv("TERM_PROGRAM", "iTerm.app")

        backend = await detect_backend()
        assert backend.backend_type is BackendType.ITERM2

    @pytest.mark.asyncio
    async def test_iterm_without_cli_falls_back_to_tmux(self, installed, monkeypatch):
        installed.add("tmux")
        monkeypatch.setenv("TERM_PROGRAM", "iTerm.app")

        backend = await detect_backend()
        assert backend.backend_type is BackendType.TMUX

    @pytest.mark.asyncio
    async def test_tmux_installed_outside_any_multiplexer(self, installed):
        installed.add("tmux")
        backend = await detect_backend()
        assert isinstance(backend, TmuxBackend)

    @pytest.mark.asyncio
    async def test_nothing_available(self, installed):
        assert await detect_backend() is None
        assert get_cached_backend() is None

    @pytest.mark.asyncio
    async def test_env_override(self, installed, monkeypatch):
        installed.add("tmux")
        monkeypatch.setenv("TEAMSWARM_BACKEND", "iterm2")

        backend = await detect_backend()
        assert isinstance(backend, ITermBackend)

    @pytest.mark.asyncio
    async def test_unknown_env_value_ignored(self, installed, monkeypatch, caplog):
        installed.add("tmux")
        monkeypatch.setenv("TEAMSWARM_BACKEND", "screen")

        backend = await detect_backend()
        assert backend.backend_type is BackendType.TMUX
        assert "Unknown TEAMSWARM_BACKEND value" in caplog.text

    @pytest.mark.asyncio
    async def test_config_provider(self, installed, monkeypatch):
        installed.add("tmux")
        monkeypatch.setattr(
            "teamswarm.config._config_instance",
            TeamSwarmConfig(backend=BackendConfig(provider="iterm2")),
        )
        backend = await detect_backend()
        assert backend.backend_type is BackendType.ITERM2

    @pytest.mark.asyncio
    async def test_result_cached_until_reset(self, installed, monkeypatch):
        installed.add("tmux")
        first = await detect_backend()

        monkeypatch.setenv("TEAMSWARM_BACKEND", "iterm2")
        assert await detect_backend() is first
        assert get_cached_backend() is first

        reset_backend_detection()
        assert isinstance(await detect_backend(), ITermBackend)

    @pytest.mark.asyncio
    async def test_registered_instance_used(self, installed, fake_tmux, backend_config):
        installed.add("tmux")
        registered = TmuxBackend(config=backend_config, runner=fake_tmux)
        register_backend(registered)

        assert get_backend_by_type(BackendType.TMUX) is registered
        assert await detect_backend() is registered

    def test_reset_clears_registrations(self, iterm_backend):
        register_backend(iterm_backend)
        reset_backend_detection()
        assert get_backend_by_type(BackendType.ITERM2) is None
        assert backend_module._cached_backend is None


class TestRunCommand:

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        result = await run_command(["teamswarm-no-such-binary-xyz"])
        assert result.code == 1
        assert not result.ok
        assert result.stderr

    @pytest.mark.asyncio
    async def test_captures_output(self):
        result = await run_command(["sh", "-c", "echo out; echo err >&2; exit 3"])
        assert result.code == 3
        assert result.stdout == "out\n"
        assert result.stderr == "err\n"
