"""
Tests for the swarm coordinator: lifecycle, registry and metrics.
"""

import asyncio

import pytest

from agent_orchestrator.agents.factory import AgentStatus
from agent_orchestrator.errors import ConfigurationError, OrchestrationError, ResourceExhaustedError
from agent_orchestrator.models import AgentType
from agent_orchestrator.swarm.coordinator import AgentCapabilities, SwarmCoordinator, SwarmStatus
from agent_orchestrator.swarm.events import EventType


@pytest.fixture
def coordinator(events):
    """A coordinator without a heartbeat task."""
    return SwarmCoordinator(events, max_agents=10, heartbeat_interval=0, swarm_id="test-swarm")


class TestLifecycle:
    """Tests for initialize, pause, resume and shutdown."""

    @pytest.mark.asyncio
    async def test_initialize(self, coordinator, events):
        """Initialize moves to executing and announces the swarm."""
        assert coordinator.get_status() == SwarmStatus.PLANNING

        await coordinator.initialize()

        assert coordinator.get_status() == SwarmStatus.EXECUTING
        assert coordinator.is_running()
        assert events.history[-1].type == EventType.SWARM_STARTED

    @pytest.mark.asyncio
    async def test_double_initialize_rejected(self, coordinator):
        """A running swarm cannot be initialized again."""
        await coordinator.initialize()
        with pytest.raises(OrchestrationError, match="already running"):
            await coordinator.initialize()

    @pytest.mark.asyncio
    async def test_invalid_config_fails(self, events):
        """Bad limits fail initialization."""
        coordinator = SwarmCoordinator(events, max_agents=0, heartbeat_interval=0)
        with pytest.raises(ConfigurationError):
            await coordinator.initialize()
        assert coordinator.get_status() == SwarmStatus.FAILED

    @pytest.mark.asyncio
    async def test_shutdown_reports_metrics(self, coordinator, events):
        """Shutdown completes the swarm with duration and metrics."""
        await coordinator.initialize()
        await coordinator.shutdown()

        assert coordinator.get_status() == SwarmStatus.COMPLETED
        event = events.history[-1]
        assert event.type == EventType.SWARM_COMPLETED
        assert "metrics" in event.payload
        assert event.payload["duration_seconds"] >= 0

    @pytest.mark.asyncio
    async def test_shutdown_when_stopped_is_noop(self, coordinator, events):
        """Shutting down a swarm that never started emits nothing."""
        await coordinator.shutdown()
        assert events.history == []

    @pytest.mark.asyncio
    async def test_pause_resume(self, coordinator):
        """Pausing keeps the swarm running."""
        await coordinator.initialize()
        coordinator.pause()
        assert coordinator.get_status() == SwarmStatus.PAUSED
        assert coordinator.is_running()
        coordinator.resume()
        assert coordinator.get_status() == SwarmStatus.EXECUTING

    def test_pause_requires_executing(self, coordinator):
        """Only an executing swarm can pause."""
        with pytest.raises(OrchestrationError):
            coordinator.pause()

    @pytest.mark.asyncio
    async def test_heartbeat_runs_and_stops(self, events):
        """The heartbeat task emits while running and stops on shutdown."""
        coordinator = SwarmCoordinator(events, heartbeat_interval=0.01)
        await coordinator.initialize()
        await asyncio.sleep(0.05)
        await coordinator.shutdown()

        beats = [e for e in events.history if e.type == EventType.AGENT_HEARTBEAT]
        assert beats
        count = len(beats)
        await asyncio.sleep(0.03)
        assert len([e for e in events.history if e.type == EventType.AGENT_HEARTBEAT]) == count


class TestRegistry:
    """Tests for agent registration."""

    def test_register_builds_state(self, coordinator, events):
        """Registered agents get a sandbox and capability flags."""
        agent_id = coordinator.register_agent(
            "Code Specialist", AgentType.CODER, ["code_generation", "rust"], tools=["read_file"]
        )
        state = coordinator.get_agent(agent_id)

        assert state.type == AgentType.CODER
        assert state.status == AgentStatus.IDLE
        assert state.capabilities.code_generation is True
        assert state.capabilities.domains == ["rust"]
        assert state.capabilities.tools == ["read_file"]
        assert state.environment.working_directory == f"/tmp/swarm/test-swarm/agents/{agent_id}"
        assert state.environment.log_directory.endswith("/logs")
        assert events.history[-1].type == EventType.AGENT_REGISTERED

    def test_register_with_given_id(self, coordinator):
        """Callers can reuse their own agent id."""
        assert coordinator.register_agent("x", AgentType.TESTER, agent_id="agent-1") == "agent-1"

    def test_eleventh_agent_rejected(self, coordinator):
        """The registry refuses agents beyond max_agents and keeps the rest."""
        ids = [coordinator.register_agent(f"a{i}", AgentType.EXECUTOR) for i in range(10)]

        with pytest.raises(ResourceExhaustedError):
            coordinator.register_agent("a10", AgentType.EXECUTOR)

        assert [s.id for s in coordinator.get_agents()] == ids
        assert all(coordinator.get_agent(i).status == AgentStatus.IDLE for i in ids)

    def test_unregister(self, coordinator, events):
        """Unregistering frees the slot."""
        agent_id = coordinator.register_agent("x", AgentType.CODER)
        assert coordinator.unregister_agent(agent_id) is True
        assert coordinator.get_agent(agent_id) is None
        assert coordinator.unregister_agent(agent_id) is False
        assert events.history[-1].type == EventType.AGENT_UNREGISTERED

    def test_assign_unknown_agent(self, coordinator):
        """Assigning to an unknown agent is an error."""
        with pytest.raises(ConfigurationError):
            coordinator.assign_task("missing", "t-1")

    def test_capability_aliases(self):
        """code_analysis maps to analysis and review."""
        caps = AgentCapabilities.from_names(["code_analysis", "testing"])
        assert caps.analysis and caps.code_review and caps.testing
        assert caps.domains == []


class TestMetrics:
    """Tests for task bookkeeping and metrics."""

    def test_task_results_update_metrics(self, coordinator):
        """Completions and failures roll up per agent and per swarm."""
        agent_id = coordinator.register_agent("x", AgentType.CODER)
        coordinator.assign_task(agent_id, "t-1")
        assert coordinator.get_agent(agent_id).status == AgentStatus.BUSY
        assert coordinator.get_agent(agent_id).current_task == "t-1"

        coordinator.record_task_result(agent_id, True, 100.0)
        coordinator.assign_task(agent_id, "t-2")
        coordinator.record_task_result(agent_id, False, 300.0)

        state = coordinator.get_agent(agent_id)
        assert state.metrics.tasks_completed == 1
        assert state.metrics.tasks_failed == 1
        assert state.metrics.average_execution_ms == 200.0
        assert state.metrics.success_rate == 0.5
        assert state.status == AgentStatus.ERROR
        assert state.workload == 0

        metrics = coordinator.get_metrics()
        assert metrics["tasks_completed"] == 1
        assert metrics["tasks_failed"] == 1
        assert metrics["error_agents"] == 1
        assert metrics["success_rate"] == 0.5

    def test_heartbeat_degrades_errored_agents(self, coordinator):
        """Errored agents lose health on every tick."""
        agent_id = coordinator.register_agent("x", AgentType.CODER)
        coordinator.assign_task(agent_id, "t-1")
        coordinator.record_task_result(agent_id, False, 10.0)

        coordinator._heartbeat_tick()

        assert coordinator.get_agent(agent_id).health == 0.9

    def test_uptime_before_start(self, coordinator):
        """A swarm that never started has no uptime."""
        assert coordinator.get_uptime() == 0.0

    def test_state_to_dict(self, coordinator):
        """Agent state serializes enums to values."""
        agent_id = coordinator.register_agent("x", AgentType.CODER)
        data = coordinator.get_agent(agent_id).to_dict()
        assert data["type"] == "coder"
        assert data["status"] == "idle"
