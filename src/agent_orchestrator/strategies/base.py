"""
Common interface and plan model for coordination strategies.

A strategy decides whether it suits a task, reports the resources it would
reserve, turns a task plus agents into a CoordinationPlan and executes it.
Cancellation is cooperative: the token is checked before every step and
after every model call.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..agents.executors import AgentExecutor, AgentTaskResult, create_executor
from ..agents.factory import Agent
from ..cancellation import CancellationToken
from ..errors import AgentExecutionError, CancellationError, OrchestrationError
from ..models import AgentType, StrategyKind, Task
from ..swarm.events import EventBus, EventType


logger = logging.getLogger(__name__)


class PlanStatus(Enum):
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ResourceRequirements:
    """What a strategy reserves while it runs a task."""

    max_concurrent_agents: int
    memory_mb: int
    estimated_duration_ms: int
    priority: str  # "low", "medium" or "high"


@dataclass
class CoordinationStep:
    """
    One unit of agent work inside a plan.

    Attributes:
        name: Human-readable step name
        agent_id: Agent that runs the step (None for merge/vote steps)
        instruction: Narrower sub-task for the agent, if any
        group: Stage, wave or level index the step belongs to
    """

    name: str
    agent_id: str | None = None
    instruction: str | None = None
    group: int = 0
    id: str = field(default_factory=lambda: f"step-{uuid.uuid4().hex[:8]}")
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    output: str | None = None
    error: str | None = None


@dataclass
class CoordinationPlan:
    """Steps, agents and progress for one orchestration."""

    task: Task
    strategy: StrategyKind
    agents: list[Agent]
    steps: list[CoordinationStep] = field(default_factory=list)
    estimated_duration_ms: int = 0
    id: str = field(default_factory=lambda: f"plan-{uuid.uuid4().hex[:8]}")
    status: PlanStatus = PlanStatus.READY
    results: list[AgentTaskResult] = field(default_factory=list)
    final_output: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def completed_steps(self) -> int:
        return sum(1 for s in self.steps if s.status == StepStatus.COMPLETED)

    @property
    def failed_steps(self) -> int:
        return sum(1 for s in self.steps if s.status == StepStatus.FAILED)

    def get_agent(self, agent_id: str) -> Agent | None:
        return next((a for a in self.agents if a.id == agent_id), None)

    def skip_remaining(self) -> None:
        for step in self.steps:
            if step.status in (StepStatus.PENDING, StepStatus.RUNNING):
                step.status = StepStatus.SKIPPED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task.id,
            "strategy": self.strategy.value,
            "status": self.status.value,
            "agents": [a.id for a in self.agents],
            "total_steps": self.total_steps,
            "completed_steps": self.completed_steps,
            "failed_steps": self.failed_steps,
            "estimated_duration_ms": self.estimated_duration_ms,
            "error": self.error,
        }


def priority_label(priority: int, high: int, medium: int) -> str:
    if priority > high:
        return "high"
    if priority > medium:
        return "medium"
    return "low"


def scaled(base: float, complexity: float) -> int:
    """Scale a base figure monotonically with complexity in [0, 1]."""
    return int(base * (1 + max(0.0, min(1.0, complexity))))


class CoordinationStrategy(ABC):
    """
    Base class for coordination strategies.

    Args:
        events: Bus that receives task lifecycle events
        step_retries: Extra attempts per failed step
        max_concurrent_agents: Upper bound on simultaneous model calls
        quorum_fraction: Success fraction required by merge-based strategies
        executor_factory: Builds the executor for an agent
    """

    kind: StrategyKind
    base_duration_ms: int = 600000
    base_memory_mb: int = 512
    priority_thresholds: tuple[int, int] = (7, 4)

    def __init__(
        self,
        events: EventBus | None = None,
        step_retries: int = 1,
        max_concurrent_agents: int = 5,
        quorum_fraction: float = 0.5,
        executor_factory: Callable[[Agent], AgentExecutor] = create_executor,
    ):
        self.events = events
        self.step_retries = step_retries
        self.max_concurrent_agents = max_concurrent_agents
        self.quorum_fraction = quorum_fraction
        self.executor_factory = executor_factory

    @property
    def name(self) -> str:
        return self.kind.value

    @abstractmethod
    def can_handle(self, task: Task) -> bool:
        """Whether this strategy suits the task."""
        pass

    def concurrency_for(self, task: Task) -> int:
        return 1

    def agent_types_for(self, task: Task, required: list[AgentType]) -> list[AgentType]:
        """Roster of agent roles this strategy runs for the task."""
        return list(required)

    def get_resource_requirements(self, task: Task) -> ResourceRequirements:
        """Reservation used for admission control. Grows with complexity."""
        high, medium = self.priority_thresholds
        return ResourceRequirements(
            max_concurrent_agents=self.concurrency_for(task),
            memory_mb=scaled(self.base_memory_mb, task.complexity),
            estimated_duration_ms=scaled(self.base_duration_ms, task.complexity),
            priority=priority_label(task.priority, high, medium),
        )

    def build_plan(self, task: Task, agents: list[Agent]) -> CoordinationPlan:
        """One step per agent in the given order."""
        steps = [
            CoordinationStep(name=f"{agent.type.value}: {agent.name}", agent_id=agent.id)
            for agent in agents
        ]
        return self._new_plan(task, agents, steps)

    def _new_plan(self, task: Task, agents: list[Agent], steps: list[CoordinationStep]) -> CoordinationPlan:
        return CoordinationPlan(
            task=task,
            strategy=self.kind,
            agents=list(agents),
            steps=steps,
            estimated_duration_ms=self.get_resource_requirements(task).estimated_duration_ms,
        )

    async def execute(self, plan: CoordinationPlan, token: CancellationToken | None = None) -> bool:
        """
        Run a plan to completion.

        Args:
            plan: Plan built by this strategy
            token: Cancellation token checked at step boundaries

        Returns:
            True if the plan completed successfully

        Raises:
            CancellationError: If the token was cancelled (plan is cancelled)
            OrchestrationTimeoutError: If the token's deadline passed
        """
        token = token or CancellationToken()
        plan.status = PlanStatus.RUNNING
        self._emit(EventType.TASK_STARTED, plan, {"steps": plan.total_steps, "agents": len(plan.agents)})
        logger.info("Executing %s plan %s with %d agents", self.name, plan.id, len(plan.agents))

        try:
            success = await self._run(plan, token)
        except CancellationError as e:
            plan.status = PlanStatus.CANCELLED
            plan.error = str(e)
            plan.skip_remaining()
            self._emit(EventType.TASK_CANCELLED, plan, {"reason": str(e)})
            raise
        except (OrchestrationError, asyncio.CancelledError) as e:
            plan.status = PlanStatus.FAILED
            plan.error = plan.error or str(e) or type(e).__name__
            plan.skip_remaining()
            self._emit(EventType.TASK_FAILED, plan, {"error": plan.error})
            raise

        plan.status = PlanStatus.COMPLETED if success else PlanStatus.FAILED
        if success:
            self._emit(EventType.TASK_COMPLETED, plan, {"completed_steps": plan.completed_steps})
        else:
            plan.skip_remaining()
            self._emit(EventType.TASK_FAILED, plan, {"error": plan.error, "failed_steps": plan.failed_steps})
        return success

    @abstractmethod
    async def _run(self, plan: CoordinationPlan, token: CancellationToken) -> bool:
        pass

    async def run_step(
        self,
        plan: CoordinationPlan,
        step: CoordinationStep,
        token: CancellationToken,
        previous_outputs: list[str] | None = None,
    ) -> AgentTaskResult | None:
        """
        Run one agent step with the retry budget.

        Returns:
            The agent's result, or None once every attempt has failed
        """
        agent = plan.get_agent(step.agent_id)
        executor = self.executor_factory(agent)
        step.status = StepStatus.RUNNING

        for attempt in range(1, self.step_retries + 2):
            token.raise_if_cancelled()
            step.attempts = attempt
            try:
                result = await executor.execute(plan.task, previous_outputs, step.instruction)
            except AgentExecutionError as e:
                step.error = str(e)
                logger.warning("Step %s attempt %d failed: %s", step.name, attempt, e)
                continue

            # in-flight result is dropped once cancellation was requested
            token.raise_if_cancelled()
            step.status = StepStatus.COMPLETED
            step.output = result.output
            step.error = None
            plan.results.append(result)
            self._emit(
                EventType.TASK_COMPLETED, plan,
                {"step": step.id, "name": step.name, "attempts": attempt},
                source=agent.id,
            )
            return result

        step.status = StepStatus.FAILED
        self._emit(EventType.TASK_FAILED, plan, {"step": step.id, "error": step.error}, source=agent.id)
        return None

    async def run_concurrently(
        self,
        plan: CoordinationPlan,
        steps: list[CoordinationStep],
        token: CancellationToken,
        limit: int,
        previous_outputs: list[str] | None = None,
    ) -> list[AgentTaskResult | None]:
        """
        Run steps concurrently under a semaphore and wait for all to settle.

        Results come back in step order. Cancellation or timeout raised by any
        step is re-raised only after every step has settled.
        """
        semaphore = asyncio.Semaphore(max(1, limit))

        async def bounded(step: CoordinationStep) -> AgentTaskResult | None:
            async with semaphore:
                return await self.run_step(plan, step, token, previous_outputs)

        settled = await asyncio.gather(*(bounded(s) for s in steps), return_exceptions=True)
        for outcome in settled:
            if isinstance(outcome, BaseException):
                raise outcome
        return settled

    def _emit(
        self,
        event_type: EventType,
        plan: CoordinationPlan,
        payload: dict[str, Any],
        source: str | None = None,
    ) -> None:
        if self.events is None:
            return
        self.events.emit(
            event_type,
            source=source or f"strategy:{self.name}",
            payload={"task_id": plan.task.id, **payload},
            correlation_id=plan.id,
        )
