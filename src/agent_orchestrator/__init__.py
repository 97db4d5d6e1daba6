"""
Agent Orchestrator - adaptive multi-agent orchestration for LLM tasks

Scores each task for complexity, decides whether it is worth splitting
across specialized agents, and runs the chosen agents under one of five
coordination strategies:
- Sequential: one agent after another, each sees the previous outputs
- Parallel: independent agents at once, outputs merged afterwards
- Pipeline: ordered stages connected by bounded buffers
- Hierarchical: a coordinator decomposes, workers execute, coordinator integrates
- Swarm: weighted agents produce candidates and vote on the result
"""

__version__ = "0.1.0"

from .config import OrchestrationConfig, load_config, save_config
from .errors import (
    AgentExecutionError,
    CancellationError,
    ConfigurationError,
    InvalidTransitionError,
    OrchestrationError,
    ResourceExhaustedError,
)
from .models import AgentType, StrategyKind, TaskAnalysis, TaskCategory
from .task_analyzer import TaskAnalyzer
from .agents import AgentFactory
from .swarm import EventBus, SwarmCoordinator
from .orchestrator import (
    OrchestrationMetrics,
    OrchestrationMode,
    OrchestrationResult,
    Orchestrator,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "OrchestrationConfig",
    "load_config",
    "save_config",
    # Errors
    "AgentExecutionError",
    "CancellationError",
    "ConfigurationError",
    "InvalidTransitionError",
    "OrchestrationError",
    "ResourceExhaustedError",
    # Analysis
    "AgentType",
    "StrategyKind",
    "TaskAnalysis",
    "TaskCategory",
    "TaskAnalyzer",
    # Agents and swarm
    "AgentFactory",
    "EventBus",
    "SwarmCoordinator",
    # Orchestrator
    "Orchestrator",
    "OrchestrationMode",
    "OrchestrationResult",
    "OrchestrationMetrics",
]
