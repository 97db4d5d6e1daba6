"""
Shared data model for tasks and their analysis.

Task and TaskAnalysis are frozen: a task is immutable once analyzed and an
analysis is derived once and never mutated.
"""

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AgentType(Enum):
    """Closed set of agent roles."""
    COORDINATOR = "coordinator"
    PLANNER = "planner"
    CODER = "coder"
    REVIEWER = "reviewer"
    RESEARCHER = "researcher"
    EXECUTOR = "executor"
    TESTER = "tester"
    DOCUMENTATION = "documentation"
    DEBUGGER = "debugger"
    ARCHITECT = "architect"


class StrategyKind(Enum):
    """Closed set of coordination strategies, cheapest first."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    PIPELINE = "pipeline"
    HIERARCHICAL = "hierarchical"
    SWARM = "swarm"


class TaskCategory(Enum):
    CODE_GENERATION = "code_generation"
    CODE_REFACTORING = "code_refactoring"
    BUG_FIXING = "bug_fixing"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    RESEARCH = "research"
    ARCHITECTURE = "architecture"
    DEPLOYMENT = "deployment"
    MAINTENANCE = "maintenance"


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class TaskContext:
    """Optional information about the code a task touches."""

    affected_files: tuple[str, ...] = ()
    imports: tuple[str, ...] = ()


@dataclass(frozen=True)
class TaskConstraints:
    """Per-task budget overrides."""

    timeout_seconds: float | None = None
    memory_budget_mb: int | None = None


@dataclass(frozen=True)
class ResourceEstimate:
    """Estimated resources for a task, scaled by complexity and agent count."""

    memory_mb: int
    cpu_cores: int
    network_bandwidth: int
    api_calls_estimate: int
    timeout_minutes: int


@dataclass(frozen=True)
class TaskAnalysis:
    """Result of analyzing a task description."""

    complexity: float
    categories: tuple[TaskCategory, ...]
    strategy: StrategyKind
    required_agents: tuple[AgentType, ...]
    risk_level: RiskLevel
    estimated_duration_minutes: int
    resources: ResourceEstimate
    strategy_scores: dict[StrategyKind, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "complexity": self.complexity,
            "categories": [c.value for c in self.categories],
            "strategy": self.strategy.value,
            "required_agents": [a.value for a in self.required_agents],
            "risk_level": self.risk_level.value,
            "estimated_duration_minutes": self.estimated_duration_minutes,
            "resources": {
                "memory_mb": self.resources.memory_mb,
                "cpu_cores": self.resources.cpu_cores,
                "network_bandwidth": self.resources.network_bandwidth,
                "api_calls_estimate": self.resources.api_calls_estimate,
                "timeout_minutes": self.resources.timeout_minutes,
            },
            "strategy_scores": {k.value: v for k, v in self.strategy_scores.items()},
        }


@dataclass(frozen=True)
class StrategyRecommendation:
    """Recommended strategy with its reasoning and runners-up."""

    strategy: StrategyKind
    confidence: float
    explanation: str
    alternatives: tuple[StrategyKind, ...]
    scores: dict[StrategyKind, float]


def priority_from_complexity(complexity: float) -> int:
    """Map a complexity score onto the 1-10 task priority scale."""
    return max(1, min(10, round(complexity * 10)))


@dataclass(frozen=True)
class Task:
    """
    A unit of work handed to a coordination strategy.

    Attributes:
        id: Unique task identifier
        description: Natural language task description
        priority: 1 (trivial) to 10 (critical)
        task_type: Primary category value, or a custom tag such as
                   "sequential_dependent"
        complexity: Analyzed complexity in [0, 1]
        flags: Explicit signals ("complex", "distributed", ...)
        context: Free-form context passed to agents
        constraints: Timeout/memory overrides
    """

    description: str
    priority: int = 1
    task_type: str = TaskCategory.CODE_GENERATION.value
    complexity: float = 0.1
    flags: frozenset[str] = frozenset()
    context: dict[str, Any] = field(default_factory=dict)
    constraints: TaskConstraints = field(default_factory=TaskConstraints)
    id: str = field(default_factory=lambda: f"task-{uuid.uuid4().hex[:8]}")

    def has_signal(self, signal: str) -> bool:
        """True if the signal is flagged explicitly or named as a word in the description."""
        if signal in self.flags:
            return True
        return re.search(rf"\b{re.escape(signal)}\b", self.description.lower()) is not None

    @classmethod
    def from_analysis(
        cls,
        description: str,
        analysis: TaskAnalysis,
        task_id: str | None = None,
        context: dict[str, Any] | None = None,
        constraints: TaskConstraints | None = None,
    ) -> "Task":
        """Build a task whose priority and flags follow from its analysis."""
        flags = set()
        if analysis.complexity > 0.6:
            flags.add("complex")
        if "distributed" in description.lower():
            flags.add("distributed")

        kwargs: dict[str, Any] = {}
        if task_id:
            kwargs["id"] = task_id
        return cls(
            description=description,
            priority=priority_from_complexity(analysis.complexity),
            task_type=analysis.categories[0].value,
            complexity=analysis.complexity,
            flags=frozenset(flags),
            context=dict(context or {}),
            constraints=constraints or TaskConstraints(),
            **kwargs,
        )
