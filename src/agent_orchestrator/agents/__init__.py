"""Agent construction, lifecycle and per-type execution."""

from .factory import (
    AGENT_TEMPLATES,
    Agent,
    AgentCapability,
    AgentFactory,
    AgentStatus,
    AgentTemplate,
)
from .executors import AgentExecutor, AgentTaskResult, ExecutionMetrics, create_executor

__all__ = [
    "AGENT_TEMPLATES",
    "Agent",
    "AgentCapability",
    "AgentFactory",
    "AgentStatus",
    "AgentTemplate",
    "AgentExecutor",
    "AgentTaskResult",
    "ExecutionMetrics",
    "create_executor",
]
