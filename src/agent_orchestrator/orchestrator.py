"""
Composition root: decides whether to orchestrate, runs the selected strategy
and turns every outcome into an OrchestrationResult.

orchestrate_task never raises. A result with success=False tells the caller
to fall back to single-agent execution.
"""

import asyncio
import copy
import itertools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .agents.factory import Agent, AgentFactory
from .backends import (
    AnthropicAPIBackend,
    ClaudeCLIBackend,
    JsonlStore,
    LogEntry,
    MemoryStore,
    ModelBackend,
    PersistenceBackend,
)
from .cancellation import CancellationToken
from .config import OrchestrationConfig
from .error_handler import ErrorHandler
from .errors import OrchestrationError, OrchestrationTimeoutError, ResourceExhaustedError
from .models import StrategyKind, Task, TaskAnalysis, TaskContext
from .monitor import PerformanceMonitor, ResourceLimits
from .strategies import CoordinationPlan, CoordinationStrategy, ResourceRequirements, StepStatus, create_strategy
from .swarm import EventBus, SwarmCoordinator
from .task_analyzer import TaskAnalyzer


logger = logging.getLogger(__name__)

HEALTHY_MEMORY_RATIO = 0.8


class OrchestrationMode(Enum):
    DISABLED = "disabled"
    ANALYSIS_ONLY = "analysis_only"
    SINGLE_AGENT_FALLBACK = "single_agent_fallback"
    FULL_ORCHESTRATION = "full_orchestration"
    ADAPTIVE = "adaptive"


@dataclass
class OrchestrationResult:
    """
    Outcome of one orchestrate_task call.

    Attributes:
        success: False means the caller should fall back to a single agent
        task_id: Orchestration task id
        agents: Agent types that took part
        execution_time_ms: Wall-clock time of the call
        error: Failure reason when success is False
        orchestrated: Whether a multi-agent plan actually ran
        strategy: Strategy that ran, if any
        output: Final merged output of the plan
        analysis: Task analysis, when one was made
        plan: Plan summary, when a plan was built
        warnings: Non-fatal notes (fallback, analysis-only, recovery advice)
    """

    success: bool
    task_id: str
    agents: list[str] = field(default_factory=list)
    execution_time_ms: float = 0.0
    error: str | None = None
    orchestrated: bool = False
    strategy: str | None = None
    output: str | None = None
    analysis: TaskAnalysis | None = None
    plan: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "task_id": self.task_id,
            "agents": list(self.agents),
            "execution_time_ms": round(self.execution_time_ms, 1),
            "error": self.error,
            "orchestrated": self.orchestrated,
            "strategy": self.strategy,
            "output": self.output,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "plan": self.plan,
            "warnings": list(self.warnings),
        }


@dataclass
class OrchestrationMetrics:
    """Aggregate counters over completed orchestrations."""

    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    average_execution_time_ms: float = 0.0
    average_agents_used: float = 0.0
    strategy_usage: dict[str, int] = field(default_factory=dict)
    agent_type_usage: dict[str, int] = field(default_factory=dict)

    @property
    def efficiency(self) -> float:
        return self.successful_tasks / self.total_tasks if self.total_tasks else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_tasks": self.total_tasks,
            "successful_tasks": self.successful_tasks,
            "failed_tasks": self.failed_tasks,
            "average_execution_time_ms": round(self.average_execution_time_ms, 1),
            "average_agents_used": round(self.average_agents_used, 2),
            "strategy_usage": dict(self.strategy_usage),
            "agent_type_usage": dict(self.agent_type_usage),
            "efficiency": round(self.efficiency, 4),
        }


@dataclass
class ActiveTask:
    """Bookkeeping for an orchestration in flight."""

    task: Task
    strategy: StrategyKind
    requirements: ResourceRequirements
    token: CancellationToken
    started_at: float = field(default_factory=time.time)
    agents: list[Agent] = field(default_factory=list)
    registered: list[str] = field(default_factory=list)
    plan: CoordinationPlan | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.task.id,
            "description": self.task.description,
            "strategy": self.strategy.value,
            "status": self.plan.status.value if self.plan else "initializing",
            "agents": [a.type.value for a in self.agents],
            "memory_mb": self.requirements.memory_mb,
            "cancelled": self.token.cancelled,
            "elapsed_ms": round((time.time() - self.started_at) * 1000, 1),
        }


class Orchestrator:
    """
    Runs tasks through analysis, strategy selection and agent coordination.

    Collaborators default from the config but can all be injected.

    Args:
        config: Engine configuration
        model_backend: Model invocation backend for all agents
        agent_factory: Agent factory (default: bound to model_backend)
        analyzer: Task analyzer
        events: Shared event bus
        coordinator: Swarm coordinator (default: uses events)
        store: Persistence backend for results
        monitor: Performance monitor
        error_handler: Error handler
    """

    def __init__(
        self,
        config: OrchestrationConfig | None = None,
        model_backend: ModelBackend | None = None,
        agent_factory: AgentFactory | None = None,
        analyzer: TaskAnalyzer | None = None,
        events: EventBus | None = None,
        coordinator: SwarmCoordinator | None = None,
        store: PersistenceBackend | None = None,
        monitor: PerformanceMonitor | None = None,
        error_handler: ErrorHandler | None = None,
    ):
        self.config = config or OrchestrationConfig()
        self.events = events or EventBus()
        self.analyzer = analyzer or TaskAnalyzer()
        if agent_factory is None:
            agent_factory = AgentFactory(model_backend or self._create_model_backend())
        self.agent_factory = agent_factory
        self.coordinator = coordinator or SwarmCoordinator(
            self.events,
            max_agents=self.config.max_agents,
            heartbeat_interval=self.config.heartbeat_interval,
        )
        self.store = store or self._create_store()
        self.monitor = monitor or PerformanceMonitor(
            ResourceLimits(
                max_memory_mb=self.config.max_memory_usage,
                max_concurrent_agents=self.config.max_concurrent_agents,
                max_execution_time_ms=int(self.config.timeout_seconds * 1000),
            )
        )
        self.error_handler = error_handler or ErrorHandler()

        self._active: dict[str, ActiveTask] = {}
        self._metrics = OrchestrationMetrics()
        self._task_counter = itertools.count(1)
        self._started_at = time.monotonic()

    def _create_model_backend(self) -> ModelBackend:
        """Create model backend based on config."""
        if self.config.model_backend == "claude-cli":
            return ClaudeCLIBackend(timeout=self.config.llm_timeout)
        if self.config.model_backend == "anthropic-api":
            return AnthropicAPIBackend(model=self.config.llm_model)
        raise ValueError(f"Unknown model backend: {self.config.model_backend}")

    def _create_store(self) -> PersistenceBackend:
        """Create persistence backend based on config."""
        if self.config.store_backend == "memory":
            return MemoryStore()
        if self.config.store_backend == "jsonl":
            return JsonlStore()
        raise ValueError(f"Unknown store backend: {self.config.store_backend}")

    # Lifecycle

    async def initialize(self) -> None:
        """Start the swarm coordinator. Safe to call more than once."""
        if not self.coordinator.is_running():
            await self.coordinator.initialize()
        logger.info("Orchestrator initialized")

    async def shutdown(self) -> None:
        """Cancel active tasks and stop the coordinator. Never raises."""
        for task_id in list(self._active):
            self.cancel_task(task_id)
        try:
            await self.coordinator.shutdown()
        except Exception:
            logger.exception("Swarm shutdown failed")
        self.agent_factory.terminate_all()
        logger.info("Orchestrator shut down")

    # Decision

    def should_orchestrate(self, description: str) -> bool:
        """True only if enabled and the task is complex enough. Never raises."""
        try:
            if not self.config.enabled:
                return False
            if not isinstance(description, str) or not description.strip():
                return False
            complexity = self.analyzer.calculate_complexity(description)
            return complexity > self.config.complexity_threshold
        except Exception:
            logger.exception("Complexity check failed; not orchestrating")
            return False

    def _next_task_id(self) -> str:
        return f"orchestration_task_{int(time.time() * 1000)}_{next(self._task_counter)}"

    async def orchestrate_task(
        self,
        description: str,
        mode: OrchestrationMode = OrchestrationMode.ADAPTIVE,
        context: dict[str, Any] | None = None,
        task_context: TaskContext | None = None,
    ) -> OrchestrationResult:
        """
        Analyze and, if warranted, run a task across multiple agents.

        Args:
            description: Natural language task
            mode: How to decide between orchestration and fallback
            context: Free-form context passed to every agent
            task_context: Affected files/imports used for strategy scoring

        Returns:
            OrchestrationResult; success=False means fall back to one agent
        """
        start = time.monotonic()
        task_id = self._next_task_id()

        if mode == OrchestrationMode.DISABLED or not self.config.enabled:
            return self._skipped(task_id, start, "Orchestration is disabled")

        try:
            analysis = self.analyzer.analyze_task(description, task_context)
        except Exception as e:
            logger.exception("Task analysis failed")
            return self._failed(task_id, start, f"Task analysis failed: {e}")

        if mode == OrchestrationMode.ANALYSIS_ONLY:
            return self._skipped(
                task_id, start,
                f"Analysis only: complexity {analysis.complexity:.2f}, "
                f"recommended {analysis.strategy.value} with {len(analysis.required_agents)} agents",
                analysis=analysis,
            )
        if mode == OrchestrationMode.SINGLE_AGENT_FALLBACK or (
            mode == OrchestrationMode.ADAPTIVE and not self._worth_orchestrating(analysis)
        ):
            return self._skipped(task_id, start, "Falling back to single agent execution", analysis=analysis)

        try:
            result = await self._run(task_id, description, analysis, context, start)
        except Exception as e:
            logger.exception("Orchestration %s failed unexpectedly", task_id)
            result = self._failed(task_id, start, str(e) or type(e).__name__, analysis=analysis)
            self._active.pop(task_id, None)
            self.monitor.complete_task(task_id, False)
            self._record_metrics(result)

        self._persist(result)
        return result

    def _worth_orchestrating(self, analysis: TaskAnalysis) -> bool:
        return (
            analysis.complexity > self.config.complexity_threshold
            and len(analysis.required_agents) > 1
        )

    def _skipped(
        self, task_id: str, start: float, warning: str, analysis: TaskAnalysis | None = None
    ) -> OrchestrationResult:
        return OrchestrationResult(
            success=True,
            task_id=task_id,
            execution_time_ms=(time.monotonic() - start) * 1000,
            analysis=analysis,
            warnings=[warning],
        )

    def _failed(
        self, task_id: str, start: float, error: str, analysis: TaskAnalysis | None = None
    ) -> OrchestrationResult:
        warnings = ["Falling back to single agent execution"] if self.config.fallback_to_single_agent else []
        return OrchestrationResult(
            success=False,
            task_id=task_id,
            execution_time_ms=(time.monotonic() - start) * 1000,
            error=error,
            analysis=analysis,
            warnings=warnings,
        )

    # Execution

    def _select_strategy(self, task: Task, analysis: TaskAnalysis) -> CoordinationStrategy:
        options = dict(
            events=self.events,
            step_retries=self.config.step_retries,
            max_concurrent_agents=self.config.max_concurrent_agents,
            quorum_fraction=self.config.quorum_fraction,
            executor_factory=self.agent_factory.get_executor,
        )
        strategy = create_strategy(analysis.strategy, **options)
        if not strategy.can_handle(task):
            logger.info(
                "%s cannot handle task %s (priority %d); using sequential",
                strategy.name, task.id, task.priority,
            )
            strategy = create_strategy(StrategyKind.SEQUENTIAL, **options)
        return strategy

    def _reserved_memory(self) -> int:
        return sum(a.requirements.memory_mb for a in self._active.values())

    def _admit(self, requirements: ResourceRequirements) -> None:
        """
        Raises:
            ResourceExhaustedError: If task or memory limits are saturated
        """
        if len(self._active) >= self.config.max_concurrent_tasks:
            raise ResourceExhaustedError(
                f"Too many active orchestrations ({len(self._active)}/{self.config.max_concurrent_tasks})"
            )
        reserved = self._reserved_memory()
        if reserved + requirements.memory_mb > self.config.max_memory_usage:
            raise ResourceExhaustedError(
                f"Memory budget exceeded: {reserved}MB reserved + {requirements.memory_mb}MB requested "
                f"> {self.config.max_memory_usage}MB"
            )

    async def _run(
        self,
        task_id: str,
        description: str,
        analysis: TaskAnalysis,
        context: dict[str, Any] | None,
        start: float,
    ) -> OrchestrationResult:
        task = Task.from_analysis(description, analysis, task_id=task_id, context=context)
        strategy = self._select_strategy(task, analysis)
        requirements = strategy.get_resource_requirements(task)

        try:
            self._admit(requirements)
        except ResourceExhaustedError as e:
            await self.error_handler.handle_resource_error(
                e, "memory", self._reserved_memory() + requirements.memory_mb, self.config.max_memory_usage
            )
            result = self._failed(task_id, start, str(e), analysis=analysis)
            result.strategy = strategy.name
            self._record_metrics(result)
            return result

        timeout = self.config.timeout_seconds
        if task.constraints.timeout_seconds is not None:
            timeout = min(timeout, task.constraints.timeout_seconds)
        active = ActiveTask(task, strategy.kind, requirements, CancellationToken(timeout=timeout))
        self._active[task_id] = active
        self.monitor.start_task(task_id, strategy.name, analysis.complexity, len(analysis.required_agents))

        success = False
        error: str | None = None
        failure: BaseException | None = None
        try:
            if not self.coordinator.is_running():
                await self.coordinator.initialize()
            for agent_type in strategy.agent_types_for(task, list(analysis.required_agents)):
                active.agents.append(self.agent_factory.create_agent(agent_type, analysis=analysis))
            for agent in active.agents:
                self.coordinator.register_agent(
                    agent.name, agent.type, agent.capabilities, agent_id=agent.id, tools=agent.tools
                )
                active.registered.append(agent.id)
                self.coordinator.assign_task(agent.id, task_id)

            active.plan = strategy.build_plan(task, active.agents)
            success = await asyncio.wait_for(strategy.execute(active.plan, active.token), timeout=timeout)
            if not success:
                error = active.plan.error or f"{strategy.name} strategy reported failure"
        except (asyncio.TimeoutError, OrchestrationTimeoutError) as e:
            active.token.cancel("Timed out")
            error = f"Orchestration timed out after {timeout:g} seconds"
            failure = e
        except OrchestrationError as e:
            error = str(e) or type(e).__name__
            failure = e
        finally:
            self._record_agent_results(active)
            self._cleanup(active)

        result = OrchestrationResult(
            success=success,
            task_id=task_id,
            agents=[a.type.value for a in active.agents],
            execution_time_ms=(time.monotonic() - start) * 1000,
            error=error,
            orchestrated=True,
            strategy=strategy.name,
            output=active.plan.final_output if active.plan and success else None,
            analysis=analysis,
            plan=active.plan.to_dict() if active.plan else None,
        )
        if not success:
            recovery = await self.error_handler.handle_orchestration_error(
                failure if failure is not None else error, task_id, strategy.name
            )
            result.warnings.append(recovery.message)
            if self.config.fallback_to_single_agent:
                result.warnings.append("Falling back to single agent execution")

        failed_steps = active.plan.failed_steps if active.plan else 0
        self.monitor.complete_task(task_id, success, error_count=failed_steps)
        self._record_metrics(result)
        logger.info(
            "Orchestration %s %s via %s in %.0fms",
            task_id, "succeeded" if success else "failed", strategy.name, result.execution_time_ms,
        )
        return result

    def _record_agent_results(self, active: ActiveTask) -> None:
        if active.plan is None:
            return
        durations = {r.agent_id: r.metrics.duration_ms for r in active.plan.results}
        for step in active.plan.steps:
            if step.agent_id not in active.registered:
                continue
            if step.status == StepStatus.COMPLETED:
                self.coordinator.record_task_result(step.agent_id, True, durations.get(step.agent_id, 0.0))
            elif step.status == StepStatus.FAILED:
                self.coordinator.record_task_result(step.agent_id, False, 0.0)

    def _cleanup(self, active: ActiveTask) -> None:
        """Release agents and the active entry. Faults are logged only."""
        for agent_id in active.registered:
            try:
                self.coordinator.unregister_agent(agent_id)
            except Exception:
                logger.exception("Failed to unregister agent %s", agent_id)
        for agent in active.agents:
            try:
                self.agent_factory.terminate_agent(agent.id)
            except Exception:
                logger.exception("Failed to retire agent %s", agent.id)
        self._active.pop(active.task.id, None)

    def _persist(self, result: OrchestrationResult) -> None:
        if self.store is None:
            return
        try:
            self.store.store(LogEntry(payload={"kind": "orchestration_result", **result.to_dict()}))
        except Exception:
            logger.exception("Failed to persist result for %s", result.task_id)

    # Control surface

    def cancel_task(self, task_id: str) -> bool:
        """
        Ask an active orchestration to stop at its next step boundary.

        Returns:
            False if no such task is active
        """
        active = self._active.get(task_id)
        if active is None:
            return False
        active.token.cancel("Cancelled by caller")
        logger.info("Cancellation requested for %s", task_id)
        return True

    def get_active_tasks(self) -> list[dict[str, Any]]:
        return [a.to_dict() for a in self._active.values()]

    def get_task_status(self, task_id: str) -> dict[str, Any] | None:
        active = self._active.get(task_id)
        return active.to_dict() if active else None

    def _record_metrics(self, result: OrchestrationResult) -> None:
        metrics = self._metrics
        metrics.total_tasks += 1
        if result.success:
            metrics.successful_tasks += 1
        else:
            metrics.failed_tasks += 1
        n = metrics.total_tasks
        metrics.average_execution_time_ms += (result.execution_time_ms - metrics.average_execution_time_ms) / n
        metrics.average_agents_used += (len(result.agents) - metrics.average_agents_used) / n
        if result.strategy:
            metrics.strategy_usage[result.strategy] = metrics.strategy_usage.get(result.strategy, 0) + 1
        for agent_type in result.agents:
            metrics.agent_type_usage[agent_type] = metrics.agent_type_usage.get(agent_type, 0) + 1

    def get_metrics(self) -> OrchestrationMetrics:
        return copy.deepcopy(self._metrics)

    def reset_metrics(self) -> None:
        self._metrics = OrchestrationMetrics()

    def get_health_status(self) -> dict[str, Any]:
        reserved = self._reserved_memory()
        ratio = reserved / self.config.max_memory_usage
        errors = self.error_handler.get_system_health()

        issues = list(errors["issues"])
        recommendations = list(errors["recommendations"])
        if ratio >= HEALTHY_MEMORY_RATIO:
            issues.append(f"Reserved memory at {ratio:.0%} of budget")
            recommendations.append("Wait for active orchestrations to finish or raise max_memory_usage")
        if len(self._active) >= self.config.max_concurrent_tasks:
            issues.append("At concurrent task capacity")

        return {
            "is_healthy": ratio < HEALTHY_MEMORY_RATIO and errors["status"] != "critical",
            "active_tasks": len(self._active),
            "memory_usage_mb": reserved,
            "memory_usage_ratio": round(ratio, 4),
            "uptime_seconds": round(time.monotonic() - self._started_at, 3),
            "swarm_status": self.coordinator.get_status().value,
            "error_status": errors["status"],
            "issues": issues,
            "recommendations": recommendations,
        }

    # Configuration

    def update_config(self, **updates: Any) -> dict[str, Any]:
        """
        Apply a partial update of the host-owned settings.

        Raises:
            ConfigurationError: On an unknown key or invalid value
        """
        self.config = self.config.apply_updates(updates)
        self.monitor.limits = ResourceLimits(
            max_memory_mb=self.config.max_memory_usage,
            max_concurrent_agents=self.config.max_concurrent_agents,
            max_execution_time_ms=int(self.config.timeout_seconds * 1000),
        )
        return self.get_config()

    def get_config(self) -> dict[str, Any]:
        return self.config.host_view()
