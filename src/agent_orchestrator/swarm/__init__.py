"""Swarm lifecycle, agent registry and event bus."""

from .events import EventBus, EventType, SwarmEvent
from .coordinator import (
    AgentCapabilities,
    AgentEnvironment,
    AgentMetrics,
    AgentState,
    SwarmCoordinator,
    SwarmStatus,
)

__all__ = [
    "EventBus",
    "EventType",
    "SwarmEvent",
    "AgentCapabilities",
    "AgentEnvironment",
    "AgentMetrics",
    "AgentState",
    "SwarmCoordinator",
    "SwarmStatus",
]
