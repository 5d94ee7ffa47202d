"""Tests for SwarmContext, which ties teams, agents, messaging and panes together."""

import pytest

from teamswarm.agent_manager import AgentNameConflictError
from teamswarm.backend import BackendError
from teamswarm.models import AgentColor, AgentStatus, BackendType, LifecycleEvent
from teamswarm.orchestrator import SwarmContext
from teamswarm.protocol import AgentMessageType, parse_shutdown_request
from teamswarm.swarm import TeamNotLoadedError
from teamswarm.tmux_backend import TmuxCommandError


@pytest.fixture
def context(swarm_config, tmux_backend, in_tmux):
    context = SwarmContext(config=swarm_config, backend=tmux_backend, self_agent_name="team-lead")
    context.create_team("acme", lead_agent_id="agent-lead")
    return context


class TestSwarmContext:

    def test_owns_one_of_each_collaborator(self, swarm_config, claude_home):
        context = SwarmContext(config=swarm_config)
        assert context.coordinator.color_registry is context.color_registry
        assert context.agent_manager.color_registry is context.color_registry
        assert context.coordinator.config_root == claude_home

    def test_contexts_are_isolated(self, swarm_config):
        first = SwarmContext(config=swarm_config)
        second = SwarmContext(config=swarm_config)
        first.color_registry.get_color("alice")
        assert second.color_registry.get_color("bob") is AgentColor.RED

    def test_team_name_reaches_bus(self, context):
        assert context.message_bus.team_name == "acme"

    def test_load_team(self, context, swarm_config):
        other = SwarmContext(config=swarm_config)
        assert other.load_team("acme").team_name == "acme"
        assert other.message_bus.team_name == "acme"
        assert other.load_team("missing") is None

    @pytest.mark.asyncio
    async def test_no_backend_available(self, swarm_config, monkeypatch):
        monkeypatch.setattr("teamswarm.backend.shutil.which", lambda name: None)
        context = SwarmContext(config=swarm_config)
        with pytest.raises(BackendError, match="No terminal backend"):
            await context.get_backend()


class TestSpawnTeammate:

    @pytest.mark.asyncio
    async def test_spawn_runs_agent_in_new_pane(self, context, fake_tmux, in_tmux):
        member = await context.spawn_teammate(
            "alice", agent_type="Explore", prompt="map the repo", command="claude --resume"
        )

        assert member.tmux_pane_id in fake_tmux.panes("main:0")
        assert member.is_active is True
        assert member.backend_type is BackendType.TMUX

        agent = context.agent_manager.get_agent_by_name("alice")
        assert agent.status is AgentStatus.RUNNING
        assert agent.tmux_pane_id == member.tmux_pane_id
        assert agent.color is member.color
        assert fake_tmux.commands("send-keys")[-1][-2:] == ["claude --resume", "Enter"]

    @pytest.mark.asyncio
    async def test_member_persisted(self, context, swarm_config):
        member = await context.spawn_teammate("alice")
        reloaded = SwarmContext(config=swarm_config)
        reloaded.load_team("acme")
        assert reloaded.coordinator.get_member("alice").tmux_pane_id == member.tmux_pane_id

    @pytest.mark.asyncio
    async def test_without_command_sends_nothing(self, context, fake_tmux):
        await context.spawn_teammate("alice")
        assert fake_tmux.commands("send-keys") == []

    @pytest.mark.asyncio
    async def test_pane_failure_rolls_back(self, context, fake_tmux):
        fake_tmux.fail_commands = {"split-window"}

        with pytest.raises(TmuxCommandError):
            await context.spawn_teammate("alice")

        assert context.coordinator.get_member("alice") is None
        assert not context.agent_manager.has_agent_by_name("alice")

        fake_tmux.fail_commands = set()
        member = await context.spawn_teammate("alice")
        assert member.name == "alice"

    @pytest.mark.asyncio
    async def test_command_failure_rolls_back(self, context, fake_tmux, in_tmux):
        events = []
        context.agent_manager.on_lifecycle_event(lambda event, agent_id, data: events.append(event))
        fake_tmux.fail_commands = {"send-keys"}

        with pytest.raises(TmuxCommandError):
            await context.spawn_teammate("alice", command="claude")

        assert LifecycleEvent.FAILED in events
        assert context.coordinator.get_member("alice") is None
        assert not context.agent_manager.has_agent_by_name("alice")
        assert fake_tmux.panes("main:0") == [in_tmux]

        fake_tmux.fail_commands = set()
        member = await context.spawn_teammate("alice", command="claude")
        assert context.agent_manager.get_agent_by_name("alice").status is AgentStatus.RUNNING
        assert fake_tmux.panes("main:0") == [in_tmux, member.tmux_pane_id]

    @pytest.mark.asyncio
    async def test_command_failure_leaves_team_removable(self, context, fake_tmux, claude_home):
        fake_tmux.fail_commands = {"send-keys"}
        with pytest.raises(TmuxCommandError):
            await context.spawn_teammate("alice", command="claude")

        context.coordinator.cleanup_team("acme")
        assert not (claude_home / "teams" / "acme").exists()

    @pytest.mark.asyncio
    async def test_duplicate_name(self, context, fake_tmux):
        await context.spawn_teammate("alice")
        with pytest.raises(AgentNameConflictError):
            await context.spawn_teammate("alice")
        assert len(fake_tmux.commands("split-window")) == 1

    @pytest.mark.asyncio
    async def test_requires_team(self, swarm_config, tmux_backend):
        context = SwarmContext(config=swarm_config, backend=tmux_backend)
        with pytest.raises(TeamNotLoadedError):
            await context.spawn_teammate("alice")

    @pytest.mark.asyncio
    async def test_teammates_get_distinct_colors(self, context):
        alice = await context.spawn_teammate("alice")
        bob = await context.spawn_teammate("bob")
        assert (alice.color, bob.color) == (AgentColor.RED, AgentColor.BLUE)


class TestShutdownTeammate:

    @pytest.mark.asyncio
    async def test_shutdown_sends_request_and_retires(self, context, fake_tmux, in_tmux):
        await context.spawn_teammate("alice")
        received = []
        await context.message_bus.on_message("alice", received.append)

        assert await context.shutdown_teammate("alice", reason="done") is True

        [message] = received
        assert message.type is AgentMessageType.SHUTDOWN_REQUEST
        request = parse_shutdown_request(message.text)
        assert request.sender == "team-lead"
        assert request.reason == "done"

        assert context.agent_manager.get_agent_by_name("alice").status is AgentStatus.CANCELLED
        assert context.coordinator.get_member("alice").is_active is False
        assert fake_tmux.panes("main:0") == [in_tmux]

        context.coordinator.cleanup_team("acme")

    @pytest.mark.asyncio
    async def test_request_queued_without_handler(self, context, fake_tmux):
        member = await context.spawn_teammate("alice")
        await context.shutdown_teammate("alice", kill_pane=False)

        assert context.message_bus.get_queued_message_count("alice") == 1
        assert member.tmux_pane_id in fake_tmux.panes("main:0")

    @pytest.mark.asyncio
    async def test_unknown_teammate(self, context):
        assert await context.shutdown_teammate("ghost") is False


class TestHideShow:

    @pytest.mark.asyncio
    async def test_hide_then_show(self, context, fake_tmux, in_tmux):
        member = await context.spawn_teammate("alice")
        agent_id = member.agent_id

        assert await context.hide_teammate("alice") is True
        assert context.coordinator.get_hidden_panes() == [member.tmux_pane_id]
        assert context.agent_manager.get_agent(agent_id).is_hidden is True
        assert member.tmux_pane_id not in fake_tmux.panes("main:0")

        assert await context.show_teammate("alice") is True
        assert context.coordinator.get_hidden_panes() == []
        assert context.agent_manager.get_agent(agent_id).is_hidden is False
        assert member.tmux_pane_id in fake_tmux.panes("main:0")

    @pytest.mark.asyncio
    async def test_show_requires_hidden_pane(self, context):
        await context.spawn_teammate("alice")
        assert await context.show_teammate("alice") is False

    @pytest.mark.asyncio
    async def test_unknown_teammate(self, context):
        assert await context.hide_teammate("ghost") is False
        assert await context.show_teammate("ghost") is False

    @pytest.mark.asyncio
    async def test_iterm_cannot_hide(self, swarm_config, iterm_backend):
        context = SwarmContext(config=swarm_config, backend=iterm_backend)
        context.create_team("acme")
        await context.spawn_teammate("alice")
        assert await context.hide_teammate("alice") is False
        assert context.coordinator.get_hidden_panes() == []
