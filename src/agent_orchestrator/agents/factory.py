"""
Agent construction and lifecycle.

AgentFactory turns an AgentType tag into a role-bound Agent: a system prompt,
a bounded tool set, a capability set and a reference to the injected model
backend. Construction never invokes the model.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable

from ..backends.base import ModelBackend
from ..errors import ConfigurationError, InvalidTransitionError
from ..models import AgentType, TaskAnalysis


logger = logging.getLogger(__name__)


class AgentStatus(Enum):
    """Lifecycle state of an agent."""
    INITIALIZING = "initializing"
    IDLE = "idle"
    BUSY = "busy"
    ERROR = "error"
    RETIRED = "retired"


ALLOWED_TRANSITIONS = {
    AgentStatus.INITIALIZING: {AgentStatus.IDLE, AgentStatus.ERROR, AgentStatus.RETIRED},
    AgentStatus.IDLE: {AgentStatus.BUSY, AgentStatus.RETIRED},
    AgentStatus.BUSY: {AgentStatus.IDLE, AgentStatus.ERROR, AgentStatus.RETIRED},
    AgentStatus.ERROR: {AgentStatus.IDLE, AgentStatus.RETIRED},
    AgentStatus.RETIRED: set(),
}


class AgentCapability(Enum):
    CODE_GENERATION = "code_generation"
    CODE_ANALYSIS = "code_analysis"
    DEBUGGING = "debugging"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    RESEARCH = "research"
    ARCHITECTURE_DESIGN = "architecture_design"
    PERFORMANCE_OPTIMIZATION = "performance_optimization"
    SECURITY_ANALYSIS = "security_analysis"
    TASK_DECOMPOSITION = "task_decomposition"
    COMMAND_EXECUTION = "command_execution"


@dataclass(frozen=True)
class AgentTemplate:
    """Static capability record for one agent role."""

    name: str
    capabilities: frozenset[AgentCapability]
    system_prompt: str
    tools: tuple[str, ...]
    preferred_models: tuple[str, ...]


_OPUS = "claude-opus-4-20250514"
_SONNET = "claude-sonnet-4-20250514"
_HAIKU = "claude-3-5-haiku-20241022"

AGENT_TEMPLATES: dict[AgentType, AgentTemplate] = {
    AgentType.COORDINATOR: AgentTemplate(
        name="Coordination Lead",
        capabilities=frozenset({AgentCapability.TASK_DECOMPOSITION, AgentCapability.ARCHITECTURE_DESIGN}),
        system_prompt=(
            "You coordinate a team of specialist agents. Break the task into "
            "independent sub-tasks, one per line, each small enough for a single "
            "agent, and keep track of what remains."
        ),
        tools=("read_file", "search_files", "list_files"),
        preferred_models=(_OPUS, _SONNET, _SONNET),
    ),
    AgentType.PLANNER: AgentTemplate(
        name="Task Planning Specialist",
        capabilities=frozenset({
            AgentCapability.TASK_DECOMPOSITION,
            AgentCapability.CODE_ANALYSIS,
            AgentCapability.RESEARCH,
        }),
        system_prompt=(
            "You are a planning agent. Analyze requirements and dependencies, then "
            "produce a clear, ordered execution plan with success criteria for each step."
        ),
        tools=("read_file", "search_files", "list_files", "list_code_definition_names"),
        preferred_models=(_OPUS, _SONNET, _HAIKU),
    ),
    AgentType.CODER: AgentTemplate(
        name="Code Specialist",
        capabilities=frozenset({
            AgentCapability.CODE_GENERATION,
            AgentCapability.CODE_ANALYSIS,
            AgentCapability.DEBUGGING,
        }),
        system_prompt=(
            "You are a coding agent. Write clean, maintainable code that follows "
            "the conventions of the surrounding codebase, with error handling where it matters."
        ),
        tools=("write_to_file", "replace_in_file", "read_file", "execute_command", "search_files"),
        preferred_models=(_OPUS, _SONNET, _HAIKU),
    ),
    AgentType.REVIEWER: AgentTemplate(
        name="Code Reviewer",
        capabilities=frozenset({
            AgentCapability.CODE_ANALYSIS,
            AgentCapability.SECURITY_ANALYSIS,
            AgentCapability.PERFORMANCE_OPTIMIZATION,
        }),
        system_prompt=(
            "You are a code review agent. Check correctness, security, performance "
            "and maintainability, and list concrete, actionable findings."
        ),
        tools=("read_file", "search_files", "list_files"),
        preferred_models=(_OPUS, _SONNET, _HAIKU),
    ),
    AgentType.RESEARCHER: AgentTemplate(
        name="Research Specialist",
        capabilities=frozenset({
            AgentCapability.RESEARCH,
            AgentCapability.CODE_ANALYSIS,
            AgentCapability.DOCUMENTATION,
        }),
        system_prompt=(
            "You are a research agent. Gather relevant information about the "
            "technologies and existing code involved and compare possible approaches."
        ),
        tools=("read_file", "search_files", "web_fetch"),
        preferred_models=(_SONNET, _SONNET, _HAIKU),
    ),
    AgentType.EXECUTOR: AgentTemplate(
        name="Execution Worker",
        capabilities=frozenset({AgentCapability.COMMAND_EXECUTION, AgentCapability.CODE_GENERATION}),
        system_prompt=(
            "You are an execution agent. Carry out the assigned sub-task exactly "
            "as specified and report what was done."
        ),
        tools=("execute_command", "read_file", "write_to_file"),
        preferred_models=(_SONNET, _SONNET, _HAIKU),
    ),
    AgentType.TESTER: AgentTemplate(
        name="Testing Specialist",
        capabilities=frozenset({
            AgentCapability.TESTING,
            AgentCapability.CODE_ANALYSIS,
            AgentCapability.DEBUGGING,
        }),
        system_prompt=(
            "You are a testing agent. Write focused tests covering behavior and "
            "edge cases, and report which cases fail."
        ),
        tools=("write_to_file", "execute_command", "read_file", "search_files"),
        preferred_models=(_OPUS, _SONNET, _HAIKU),
    ),
    AgentType.DOCUMENTATION: AgentTemplate(
        name="Documentation Specialist",
        capabilities=frozenset({AgentCapability.DOCUMENTATION, AgentCapability.CODE_ANALYSIS}),
        system_prompt=(
            "You are a documentation agent. Document the changes for their readers: "
            "usage, configuration and anything that behaves unexpectedly."
        ),
        tools=("write_to_file", "read_file", "search_files"),
        preferred_models=(_SONNET, _SONNET, _HAIKU),
    ),
    AgentType.DEBUGGER: AgentTemplate(
        name="Debug Specialist",
        capabilities=frozenset({
            AgentCapability.DEBUGGING,
            AgentCapability.CODE_ANALYSIS,
            AgentCapability.TESTING,
        }),
        system_prompt=(
            "You are a debugging agent. Reproduce the problem, find the root cause "
            "and propose the smallest fix that resolves it."
        ),
        tools=("read_file", "execute_command", "search_files", "replace_in_file"),
        preferred_models=(_OPUS, _SONNET, _HAIKU),
    ),
    AgentType.ARCHITECT: AgentTemplate(
        name="Architecture Specialist",
        capabilities=frozenset({
            AgentCapability.ARCHITECTURE_DESIGN,
            AgentCapability.PERFORMANCE_OPTIMIZATION,
            AgentCapability.SECURITY_ANALYSIS,
        }),
        system_prompt=(
            "You are an architecture agent. Design module boundaries, data flow "
            "and interfaces, and state the trade-offs of the chosen approach."
        ),
        tools=("read_file", "search_files", "write_to_file", "list_files"),
        preferred_models=(_OPUS, _SONNET, _SONNET),
    ),
}


@dataclass
class Agent:
    """
    A role-bound wrapper around one model backend.

    Status changes go through transition(), which enforces the lifecycle
    state machine.
    """

    type: AgentType
    name: str
    model: str
    system_prompt: str
    tools: tuple[str, ...]
    capabilities: frozenset[str]
    backend: ModelBackend = field(repr=False, compare=False)
    id: str = field(default_factory=lambda: f"agent-{uuid.uuid4().hex[:8]}")
    status: AgentStatus = AgentStatus.INITIALIZING
    created_at: datetime = field(default_factory=datetime.now)
    last_active_at: datetime = field(default_factory=datetime.now)
    tasks_completed: int = 0
    tasks_failed: int = 0
    total_latency_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        total = self.tasks_completed + self.tasks_failed
        return self.tasks_completed / total if total else 0.0

    @property
    def average_latency_ms(self) -> float:
        total = self.tasks_completed + self.tasks_failed
        return self.total_latency_ms / total if total else 0.0

    def transition(self, new_status: AgentStatus) -> None:
        """
        Move to a new lifecycle state.

        Raises:
            InvalidTransitionError: If the state machine forbids the move
        """
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Agent {self.id} cannot go from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self.last_active_at = datetime.now()

    def record_result(self, success: bool, latency_ms: float) -> None:
        if success:
            self.tasks_completed += 1
        else:
            self.tasks_failed += 1
        self.total_latency_ms += latency_ms


def resolve_agent_type(agent_type: AgentType | str) -> AgentType:
    """
    Resolve a tag into an AgentType.

    Raises:
        ConfigurationError: For an unrecognized type
    """
    if isinstance(agent_type, AgentType):
        return agent_type
    try:
        return AgentType(agent_type)
    except ValueError:
        valid = [t.value for t in AgentType]
        raise ConfigurationError(f"Unknown agent type: {agent_type!r}. Valid types: {valid}")


def select_model(template: AgentTemplate, complexity: float) -> str:
    """Stronger models for harder tasks."""
    models = template.preferred_models
    if complexity > 0.8:
        return models[0]
    if complexity > 0.5:
        return models[min(1, len(models) - 1)]
    return models[min(2, len(models) - 1)]


class AgentFactory:
    """
    Creates and tracks agents bound to one model backend.

    Args:
        backend: Model backend every created agent invokes
        stream: Whether executors stream model output
    """

    def __init__(self, backend: ModelBackend, stream: bool = False):
        self.backend = backend
        self.stream = stream
        self._agents: dict[str, Agent] = {}

    def create_agent(
        self,
        agent_type: AgentType | str,
        capabilities: Iterable[str] | None = None,
        analysis: TaskAnalysis | None = None,
    ) -> Agent:
        """
        Construct an agent for a role. No model call happens here.

        Args:
            agent_type: AgentType or its string value
            capabilities: Extra capabilities beyond the role's template
            analysis: Task analysis used to pick the model tier

        Returns:
            An idle Agent

        Raises:
            ConfigurationError: For an unrecognized agent type
        """
        resolved = resolve_agent_type(agent_type)
        template = AGENT_TEMPLATES[resolved]
        complexity = analysis.complexity if analysis is not None else 0.0

        agent = Agent(
            type=resolved,
            name=template.name,
            model=select_model(template, complexity),
            system_prompt=template.system_prompt,
            tools=template.tools,
            capabilities=frozenset(c.value for c in template.capabilities) | frozenset(capabilities or ()),
            backend=self.backend,
        )
        agent.transition(AgentStatus.IDLE)
        self._agents[agent.id] = agent
        logger.debug("Created %s agent %s (model=%s)", resolved.value, agent.id, agent.model)
        return agent

    def create_agents_for_task(self, analysis: TaskAnalysis) -> list[Agent]:
        """One agent per required role in the analysis."""
        return [self.create_agent(t, analysis=analysis) for t in analysis.required_agents]

    def get_executor(self, agent: Agent):
        """Return the role-specific executor for an agent."""
        from .executors import create_executor

        return create_executor(agent, stream=self.stream)

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def get_active_agents(self) -> list[Agent]:
        return [a for a in self._agents.values() if a.status != AgentStatus.RETIRED]

    def terminate_agent(self, agent_id: str) -> bool:
        """Retire an agent and stop tracking it. Returns False if unknown."""
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            return False
        if agent.status != AgentStatus.RETIRED:
            agent.transition(AgentStatus.RETIRED)
        return True

    def terminate_all(self) -> None:
        for agent_id in list(self._agents):
            self.terminate_agent(agent_id)

    def get_agent_metrics(self) -> dict:
        """Aggregate counts by type and status plus average success rate."""
        agents = list(self._agents.values())
        return {
            "total_agents": len(agents),
            "agents_by_type": {
                t.value: sum(1 for a in agents if a.type == t) for t in AgentType
            },
            "agents_by_status": {
                s.value: sum(1 for a in agents if a.status == s) for s in AgentStatus
            },
            "average_success_rate": (
                sum(a.success_rate for a in agents) / len(agents) if agents else 0.0
            ),
            "total_tasks_completed": sum(a.tasks_completed for a in agents),
        }
