"""
Tests for the orchestrator: decisions, execution, failure handling and control.
"""

import asyncio

import pytest
from unittest.mock import MagicMock

from agent_orchestrator.agents.factory import AgentFactory
from agent_orchestrator.backends.base import EntryFilter
from agent_orchestrator.backends.store import MemoryStore
from agent_orchestrator.error_handler import ErrorCategory, ErrorSeverity
from agent_orchestrator.errors import ConfigurationError
from agent_orchestrator.orchestrator import OrchestrationMode, OrchestrationResult
from agent_orchestrator.swarm.coordinator import SwarmCoordinator, SwarmStatus
from agent_orchestrator.swarm.events import EventBus, EventType

from conftest import (
    COMPLEX_TASK,
    SIMPLE_TASK,
    FakeModelBackend,
    make_test_config,
    make_test_orchestrator,
)


async def wait_for_calls(backend, count):
    async def poll():
        while len(backend.calls) < count:
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), timeout=1)


class TestShouldOrchestrate:
    """Tests for the orchestration decision."""

    def test_simple_task(self):
        """Simple tasks stay with a single agent."""
        assert make_test_orchestrator().should_orchestrate(SIMPLE_TASK) is False

    def test_complex_task(self):
        """Complex tasks are orchestrated."""
        assert make_test_orchestrator().should_orchestrate(COMPLEX_TASK) is True

    def test_disabled(self):
        """Nothing is orchestrated when disabled."""
        orchestrator = make_test_orchestrator(config=make_test_config(enabled=False))
        assert orchestrator.should_orchestrate(COMPLEX_TASK) is False

    @pytest.mark.parametrize("description", ["", None])
    def test_bad_input(self, description):
        """Empty input never raises."""
        assert make_test_orchestrator().should_orchestrate(description) is False

    def test_threshold_is_exclusive(self):
        """Complexity equal to the threshold does not orchestrate."""
        orchestrator = make_test_orchestrator(config=make_test_config(complexity_threshold=0.1))
        assert orchestrator.should_orchestrate(SIMPLE_TASK) is False


class TestOrchestrationModes:
    """Tests for the non-executing modes."""

    @pytest.mark.asyncio
    async def test_disabled_mode(self, fake_backend):
        """Disabled mode returns immediately."""
        result = await make_test_orchestrator(fake_backend).orchestrate_task(
            COMPLEX_TASK, mode=OrchestrationMode.DISABLED
        )
        assert result.success is True
        assert result.orchestrated is False
        assert result.warnings == ["Orchestration is disabled"]
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_disabled_config(self, fake_backend):
        """A disabled config wins over the requested mode."""
        orchestrator = make_test_orchestrator(fake_backend, config=make_test_config(enabled=False))
        result = await orchestrator.orchestrate_task(COMPLEX_TASK, mode=OrchestrationMode.FULL_ORCHESTRATION)
        assert result.orchestrated is False
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_analysis_only(self, fake_backend):
        """Analysis-only returns the analysis without running agents."""
        result = await make_test_orchestrator(fake_backend).orchestrate_task(
            COMPLEX_TASK, mode=OrchestrationMode.ANALYSIS_ONLY
        )
        assert result.analysis is not None
        assert result.warnings[0].startswith("Analysis only")
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_single_agent_fallback(self, fake_backend):
        """Fallback mode tells the caller to use one agent."""
        result = await make_test_orchestrator(fake_backend).orchestrate_task(
            COMPLEX_TASK, mode=OrchestrationMode.SINGLE_AGENT_FALLBACK
        )
        assert result.success is True
        assert result.warnings == ["Falling back to single agent execution"]

    @pytest.mark.asyncio
    async def test_adaptive_simple_task_falls_back(self, fake_backend):
        """Adaptive mode skips orchestration for simple tasks."""
        result = await make_test_orchestrator(fake_backend).orchestrate_task(SIMPLE_TASK)
        assert result.orchestrated is False
        assert result.analysis.complexity == pytest.approx(0.1)
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_task_ids_unique(self):
        """Every call gets a fresh orchestration task id."""
        orchestrator = make_test_orchestrator()
        first = await orchestrator.orchestrate_task(SIMPLE_TASK)
        second = await orchestrator.orchestrate_task(SIMPLE_TASK)
        assert first.task_id.startswith("orchestration_task_")
        assert first.task_id != second.task_id


class TestOrchestrateTask:
    """Tests for full orchestration runs."""

    @pytest.mark.asyncio
    async def test_complex_task_succeeds(self, fake_backend):
        """A complex task runs a multi-agent plan and returns its output."""
        orchestrator = make_test_orchestrator(fake_backend)

        result = await orchestrator.orchestrate_task(COMPLEX_TASK)

        assert isinstance(result, OrchestrationResult)
        assert result.success is True
        assert result.orchestrated is True
        assert result.strategy == "swarm"
        assert result.output == fake_backend.response
        assert len(result.agents) == 5
        assert result.plan["status"] == "completed"
        assert result.error is None
        assert orchestrator.get_active_tasks() == []

    @pytest.mark.asyncio
    async def test_agents_released(self, fake_backend):
        """Agents are unregistered and retired after the run."""
        orchestrator = make_test_orchestrator(fake_backend)
        await orchestrator.orchestrate_task(COMPLEX_TASK)

        assert orchestrator.coordinator.get_agents() == []
        assert orchestrator.agent_factory.get_active_agents() == []
        assert orchestrator.coordinator.get_metrics()["tasks_completed"] == 5

    @pytest.mark.asyncio
    async def test_result_persisted(self, fake_backend):
        """Every orchestration result is appended to the store."""
        orchestrator = make_test_orchestrator(fake_backend)
        result = await orchestrator.orchestrate_task(COMPLEX_TASK)

        entries = orchestrator.store.query(EntryFilter(payload_match={"task_id": result.task_id}))
        assert len(entries) == 1
        assert entries[0].payload["kind"] == "orchestration_result"
        assert entries[0].payload["success"] is True

    @pytest.mark.asyncio
    async def test_events_published(self, fake_backend):
        """Plan events and agent registrations reach the bus."""
        events = EventBus()
        orchestrator = make_test_orchestrator(fake_backend, events=events)
        result = await orchestrator.orchestrate_task(COMPLEX_TASK)

        plan_events = events.correlate_events(result.plan["id"])
        assert plan_events[0].type == EventType.TASK_STARTED
        assert plan_events[-1].type == EventType.TASK_COMPLETED
        registered = events.filter_events(lambda e: e.type == EventType.AGENT_REGISTERED)
        assert len(registered) == 5

    @pytest.mark.asyncio
    async def test_full_orchestration_forces_plan(self, fake_backend):
        """Full orchestration runs even a simple task."""
        result = await make_test_orchestrator(fake_backend).orchestrate_task(
            SIMPLE_TASK, mode=OrchestrationMode.FULL_ORCHESTRATION
        )
        assert result.orchestrated is True
        assert result.strategy == "sequential"
        assert len(fake_backend.calls) == len(result.agents)

    @pytest.mark.asyncio
    async def test_strategy_failure_reported(self):
        """A failing plan yields success False with recovery warnings."""
        backend = FakeModelBackend(fail_on_calls=set(range(1, 100)))
        orchestrator = make_test_orchestrator(backend)

        result = await orchestrator.orchestrate_task(COMPLEX_TASK)

        assert result.success is False
        assert result.orchestrated is True
        assert "Quorum not reached" in result.error
        assert "Falling back to single agent execution" in result.warnings
        assert result.output is None
        assert orchestrator.error_handler.get_error_statistics()["total_errors"] == 1

    @pytest.mark.asyncio
    async def test_no_fallback_warning_when_disabled(self):
        """Without fallback the caller is not told to fall back."""
        backend = FakeModelBackend(fail_on_calls=set(range(1, 100)))
        orchestrator = make_test_orchestrator(backend, config=make_test_config(fallback_to_single_agent=False))

        result = await orchestrator.orchestrate_task(COMPLEX_TASK)

        assert "Falling back to single agent execution" not in result.warnings


class TestFailureIsolation:
    """Tests that failures never escape orchestrate_task."""

    @pytest.mark.asyncio
    async def test_factory_configuration_error(self):
        """A factory that raises yields a failed result and no active task."""
        factory = MagicMock(spec=AgentFactory)
        factory.create_agent.side_effect = ConfigurationError("no such role")
        orchestrator = make_test_orchestrator(agent_factory=factory)

        result = await orchestrator.orchestrate_task(COMPLEX_TASK)

        assert result.success is False
        assert result.error == "no such role"
        assert orchestrator.get_active_tasks() == []

    @pytest.mark.asyncio
    async def test_unexpected_exception(self):
        """Even unexpected exceptions become a failed result."""
        factory = MagicMock(spec=AgentFactory)
        factory.create_agent.side_effect = RuntimeError("kaboom")
        orchestrator = make_test_orchestrator(agent_factory=factory)

        result = await orchestrator.orchestrate_task(COMPLEX_TASK)

        assert result.success is False
        assert result.error == "kaboom"
        assert orchestrator.get_active_tasks() == []
        assert orchestrator.get_metrics().failed_tasks == 1

    @pytest.mark.asyncio
    async def test_agent_limit_exceeded(self, fake_backend):
        """More agents than the swarm allows fails cleanly."""
        events = EventBus()
        coordinator = SwarmCoordinator(events, max_agents=3, heartbeat_interval=0)
        orchestrator = make_test_orchestrator(fake_backend, events=events, coordinator=coordinator)

        result = await orchestrator.orchestrate_task(COMPLEX_TASK)

        assert result.success is False
        assert "max 3" in result.error
        assert coordinator.get_agents() == []
        assert orchestrator.agent_factory.get_active_agents() == []
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_timeout(self):
        """A plan that outlives the timeout fails with a timeout error."""
        backend = FakeModelBackend(gate=asyncio.Event())
        orchestrator = make_test_orchestrator(backend, config=make_test_config(timeout_minutes=0.001))

        result = await orchestrator.orchestrate_task(SIMPLE_TASK, mode=OrchestrationMode.FULL_ORCHESTRATION)

        assert result.success is False
        assert "timed out" in result.error
        assert result.plan["status"] == "failed"
        assert orchestrator.get_active_tasks() == []

    @pytest.mark.asyncio
    async def test_timeout_message_keeps_fractions(self):
        """Sub-second timeouts are reported with their real value."""
        backend = FakeModelBackend(gate=asyncio.Event())
        orchestrator = make_test_orchestrator(backend, config=make_test_config(timeout_minutes=0.001))

        result = await orchestrator.orchestrate_task(SIMPLE_TASK, mode=OrchestrationMode.FULL_ORCHESTRATION)

        assert result.error == "Orchestration timed out after 0.06 seconds"

    @pytest.mark.asyncio
    async def test_timeout_recorded_as_timeout(self):
        """Timeouts reach the error handler as timeout errors with retry advice."""
        backend = FakeModelBackend(gate=asyncio.Event())
        orchestrator = make_test_orchestrator(backend, config=make_test_config(timeout_minutes=0.001))

        result = await orchestrator.orchestrate_task(SIMPLE_TASK, mode=OrchestrationMode.FULL_ORCHESTRATION)

        record = orchestrator.error_handler.get_history()[-1]
        assert record.category == ErrorCategory.TIMEOUT
        assert record.severity == ErrorSeverity.MEDIUM
        assert record.recovery_action == "Retry with extended timeout"
        assert "Retry with extended timeout" in result.warnings

    @pytest.mark.asyncio
    async def test_store_failure_does_not_escape(self, fake_backend, caplog):
        """A store that raises is logged and the result is still returned."""
        store = MagicMock(spec=MemoryStore)
        store.store.side_effect = RuntimeError("db connection lost")
        orchestrator = make_test_orchestrator(fake_backend, store=store)

        result = await orchestrator.orchestrate_task(COMPLEX_TASK)

        assert result.success is True
        store.store.assert_called_once()
        assert "Failed to persist result" in caplog.text


class TestAdmission:
    """Tests for resource admission control."""

    @pytest.mark.asyncio
    async def test_memory_budget(self, fake_backend):
        """A reservation larger than the budget is refused before any agent runs."""
        orchestrator = make_test_orchestrator(fake_backend, config=make_test_config(max_memory_usage=1000))

        result = await orchestrator.orchestrate_task(COMPLEX_TASK)

        assert result.success is False
        assert "Memory budget exceeded" in result.error
        assert result.orchestrated is False
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_task_limit(self):
        """A second orchestration beyond max_concurrent_tasks is refused."""
        gate = asyncio.Event()
        backend = FakeModelBackend(gate=gate)
        orchestrator = make_test_orchestrator(backend, config=make_test_config(max_concurrent_tasks=1))

        first = asyncio.create_task(orchestrator.orchestrate_task(COMPLEX_TASK))
        await wait_for_calls(backend, 1)
        second = await orchestrator.orchestrate_task(COMPLEX_TASK)
        gate.set()
        first_result = await first

        assert second.success is False
        assert "Too many active orchestrations" in second.error
        assert first_result.success is True


class TestControlSurface:
    """Tests for cancellation, status, metrics, health and config."""

    @pytest.mark.asyncio
    async def test_cancel_during_sequential(self):
        """Cancelling stops the plan at the next step boundary."""
        gate = asyncio.Event()
        backend = FakeModelBackend(gate=gate)
        orchestrator = make_test_orchestrator(backend)

        running = asyncio.create_task(
            orchestrator.orchestrate_task(SIMPLE_TASK, mode=OrchestrationMode.FULL_ORCHESTRATION)
        )
        await wait_for_calls(backend, 1)
        active = orchestrator.get_active_tasks()
        assert len(active) == 1
        assert orchestrator.get_task_status(active[0]["id"])["status"] == "running"

        assert orchestrator.cancel_task(active[0]["id"]) is True
        gate.set()
        result = await running

        assert result.success is False
        assert result.plan["status"] == "cancelled"
        assert result.error == "Cancelled by caller"
        assert len(backend.calls) == 1
        assert orchestrator.get_active_tasks() == []

        record = orchestrator.error_handler.get_history()[-1]
        assert record.category == ErrorCategory.COORDINATION
        assert record.severity == ErrorSeverity.LOW
        assert orchestrator.error_handler.get_system_health()["status"] == "healthy"

    def test_cancel_unknown_task(self):
        """Unknown ids cannot be cancelled."""
        orchestrator = make_test_orchestrator()
        assert orchestrator.cancel_task("nope") is False
        assert orchestrator.get_task_status("nope") is None

    @pytest.mark.asyncio
    async def test_metrics(self, fake_backend):
        """Completed orchestrations update the metrics."""
        orchestrator = make_test_orchestrator(fake_backend)
        await orchestrator.orchestrate_task(COMPLEX_TASK)

        metrics = orchestrator.get_metrics()
        assert metrics.total_tasks == 1
        assert metrics.successful_tasks == 1
        assert metrics.strategy_usage == {"swarm": 1}
        assert metrics.agent_type_usage["coder"] == 1
        assert metrics.average_agents_used == 5
        assert metrics.efficiency == 1.0

    @pytest.mark.asyncio
    async def test_metrics_snapshot_and_reset(self, fake_backend):
        """get_metrics returns a copy; reset_metrics zeroes everything."""
        orchestrator = make_test_orchestrator(fake_backend)
        await orchestrator.orchestrate_task(COMPLEX_TASK)

        snapshot = orchestrator.get_metrics()
        snapshot.strategy_usage["swarm"] = 99
        assert orchestrator.get_metrics().strategy_usage == {"swarm": 1}

        orchestrator.reset_metrics()
        assert orchestrator.get_metrics().total_tasks == 0
        assert orchestrator.get_metrics().strategy_usage == {}

    @pytest.mark.asyncio
    async def test_monitor_records_task(self, fake_backend):
        """The performance monitor sees every executed orchestration."""
        orchestrator = make_test_orchestrator(fake_backend)
        result = await orchestrator.orchestrate_task(COMPLEX_TASK)

        history = orchestrator.monitor.get_history()
        assert history[-1]["task_id"] == result.task_id
        assert history[-1]["success"] is True

    def test_health_when_idle(self):
        """An idle orchestrator is healthy."""
        status = make_test_orchestrator().get_health_status()
        assert status["is_healthy"] is True
        assert status["active_tasks"] == 0
        assert status["memory_usage_ratio"] == 0.0
        assert status["error_status"] == "healthy"

    def test_update_config(self):
        """Host-owned settings can be changed at runtime."""
        orchestrator = make_test_orchestrator()
        updated = orchestrator.update_config(complexity_threshold=0.05, max_concurrent_agents=2)

        assert updated["complexity_threshold"] == 0.05
        assert orchestrator.get_config()["max_concurrent_agents"] == 2
        assert orchestrator.monitor.limits.max_concurrent_agents == 2
        assert orchestrator.should_orchestrate(SIMPLE_TASK) is True

    def test_update_config_rejects_unknown_key(self):
        """Only host-owned keys can be updated."""
        orchestrator = make_test_orchestrator()
        with pytest.raises(ConfigurationError, match="Unknown config keys"):
            orchestrator.update_config(model_backend="anthropic-api")

    def test_update_config_rejects_invalid_value(self):
        """Invalid values leave the config unchanged."""
        orchestrator = make_test_orchestrator()
        with pytest.raises(ConfigurationError):
            orchestrator.update_config(complexity_threshold=2.0)
        assert orchestrator.get_config()["complexity_threshold"] == 0.4

    @pytest.mark.asyncio
    async def test_initialize_and_shutdown(self):
        """Lifecycle calls drive the swarm coordinator."""
        orchestrator = make_test_orchestrator()
        await orchestrator.initialize()
        await orchestrator.initialize()
        assert orchestrator.coordinator.get_status() == SwarmStatus.EXECUTING

        await orchestrator.shutdown()
        assert orchestrator.coordinator.get_status() == SwarmStatus.COMPLETED

    def test_result_to_dict(self):
        """Results serialize for persistence."""
        data = OrchestrationResult(success=True, task_id="t-1", warnings=["w"]).to_dict()
        assert data["task_id"] == "t-1"
        assert data["analysis"] is None
        assert data["warnings"] == ["w"]
