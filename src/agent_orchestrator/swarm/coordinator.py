"""
Swarm lifecycle and agent registry.

The coordinator owns the registered agent states and the swarm status
machine (planning -> initializing -> executing -> (paused) -> completed |
failed). It publishes lifecycle events on the injected EventBus and runs a
heartbeat task while executing.
"""

import asyncio
import contextlib
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Iterable

from ..agents.factory import AgentStatus
from ..errors import ConfigurationError, OrchestrationError, ResourceExhaustedError
from ..models import AgentType
from .events import EventBus, EventType


logger = logging.getLogger(__name__)

SANDBOX_ROOT = PurePosixPath("/tmp/swarm")


class SwarmStatus(Enum):
    PLANNING = "planning"
    INITIALIZING = "initializing"
    EXECUTING = "executing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class AgentCapabilities:
    """Capability flags and limits for a registered agent."""

    code_generation: bool = False
    code_review: bool = False
    testing: bool = False
    documentation: bool = False
    research: bool = False
    analysis: bool = False
    web_search: bool = False
    api_integration: bool = False
    file_system: bool = True
    terminal_access: bool = True
    domains: list[str] = field(default_factory=list)
    tools: list[str] = field(default_factory=list)
    max_concurrent_tasks: int = 3
    reliability: float = 0.8

    @classmethod
    def from_names(cls, names: Iterable[str], tools: Iterable[str] = ()) -> "AgentCapabilities":
        """Set the flag for every known name; keep the rest as domains."""
        caps = cls(tools=list(tools))
        flags = {f.name for f in fields(cls) if f.type is bool}
        for name in sorted(names):
            if name in flags:
                setattr(caps, name, True)
            elif name == "code_analysis":
                caps.analysis = True
                caps.code_review = True
            else:
                caps.domains.append(name)
        return caps


@dataclass
class AgentMetrics:
    tasks_completed: int = 0
    tasks_failed: int = 0
    average_execution_ms: float = 0.0
    success_rate: float = 1.0


@dataclass
class AgentEnvironment:
    """Sandbox directory descriptors. Nothing is created on disk."""

    working_directory: str
    temp_directory: str
    log_directory: str


@dataclass
class AgentState:
    """Everything the coordinator tracks about one agent."""

    id: str
    name: str
    type: AgentType
    capabilities: AgentCapabilities
    environment: AgentEnvironment
    status: AgentStatus = AgentStatus.IDLE
    metrics: AgentMetrics = field(default_factory=AgentMetrics)
    workload: int = 0
    health: float = 1.0
    current_task: str | None = None
    last_heartbeat: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["status"] = self.status.value
        return data


class SwarmCoordinator:
    """
    Registry and lifecycle for the agents of one swarm.

    Args:
        events: Shared event bus
        max_agents: Registration limit
        heartbeat_interval: Seconds between heartbeat ticks (0 disables)
        swarm_id: Identifier used in events and sandbox paths
    """

    def __init__(
        self,
        events: EventBus,
        max_agents: int = 10,
        heartbeat_interval: float = 5.0,
        swarm_id: str | None = None,
    ):
        self.events = events
        self.max_agents = max_agents
        self.heartbeat_interval = heartbeat_interval
        self.swarm_id = swarm_id or f"swarm-{uuid.uuid4().hex[:8]}"
        self.status = SwarmStatus.PLANNING
        self._agents: dict[str, AgentState] = {}
        self._started_at: float | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._tasks_completed = 0
        self._tasks_failed = 0
        self._total_execution_ms = 0.0

    @property
    def source(self) -> str:
        return f"swarm:{self.swarm_id}"

    def _validate(self) -> None:
        if self.max_agents < 1:
            raise ConfigurationError(f"max_agents must be at least 1, got {self.max_agents}")
        if self.heartbeat_interval < 0:
            raise ConfigurationError(f"heartbeat_interval must be >= 0, got {self.heartbeat_interval}")

    async def initialize(self) -> None:
        """
        Start the swarm.

        Raises:
            OrchestrationError: If the swarm is already running
            ConfigurationError: If the configuration is invalid
        """
        if self.is_running():
            raise OrchestrationError(f"Swarm {self.swarm_id} is already running")

        self.status = SwarmStatus.INITIALIZING
        try:
            self._validate()
        except ConfigurationError:
            self.status = SwarmStatus.FAILED
            raise

        self.status = SwarmStatus.EXECUTING
        self._started_at = time.monotonic()
        if self.heartbeat_interval > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self.events.emit(EventType.SWARM_STARTED, self.source, {"swarm_id": self.swarm_id})
        logger.info("Swarm %s started (max_agents=%d)", self.swarm_id, self.max_agents)

    async def shutdown(self) -> None:
        """Stop background work and complete the swarm. No-op when not running."""
        if not self.is_running():
            return
        await self._stop_heartbeat()
        duration = self.get_uptime()
        self.status = SwarmStatus.COMPLETED
        self.events.emit(
            EventType.SWARM_COMPLETED,
            self.source,
            {"swarm_id": self.swarm_id, "duration_seconds": duration, "metrics": self.get_metrics()},
        )
        logger.info("Swarm %s completed after %.1fs", self.swarm_id, duration)

    def pause(self) -> None:
        if self.status != SwarmStatus.EXECUTING:
            raise OrchestrationError(f"Cannot pause swarm in status {self.status.value}")
        self.status = SwarmStatus.PAUSED
        self.events.emit(EventType.SWARM_PAUSED, self.source, {"swarm_id": self.swarm_id})

    def resume(self) -> None:
        if self.status != SwarmStatus.PAUSED:
            raise OrchestrationError(f"Cannot resume swarm in status {self.status.value}")
        self.status = SwarmStatus.EXECUTING
        self.events.emit(EventType.SWARM_RESUMED, self.source, {"swarm_id": self.swarm_id})

    def register_agent(
        self,
        name: str,
        agent_type: AgentType,
        capabilities: Iterable[str] | None = None,
        agent_id: str | None = None,
        tools: Iterable[str] = (),
    ) -> str:
        """
        Build and store the state for a new agent.

        Args:
            name: Display name
            agent_type: Agent role
            capabilities: Capability names to flag
            agent_id: Reuse an existing id (default: generated)
            tools: Tool names available to the agent

        Returns:
            The agent id

        Raises:
            ResourceExhaustedError: If max_agents agents are already registered
        """
        if len(self._agents) >= self.max_agents:
            raise ResourceExhaustedError(
                f"Swarm {self.swarm_id} already has {len(self._agents)} agents (max {self.max_agents})"
            )

        agent_id = agent_id or f"agent-{uuid.uuid4().hex[:8]}"
        base = SANDBOX_ROOT / self.swarm_id / "agents" / agent_id
        state = AgentState(
            id=agent_id,
            name=name,
            type=agent_type,
            capabilities=AgentCapabilities.from_names(capabilities or (), tools),
            environment=AgentEnvironment(
                working_directory=str(base),
                temp_directory=str(base / "temp"),
                log_directory=str(base / "logs"),
            ),
        )
        self._agents[agent_id] = state
        self.events.emit(
            EventType.AGENT_REGISTERED,
            self.source,
            {"agent_id": agent_id, "name": name, "type": agent_type.value},
        )
        return agent_id

    def unregister_agent(self, agent_id: str) -> bool:
        state = self._agents.pop(agent_id, None)
        if state is None:
            return False
        self.events.emit(EventType.AGENT_UNREGISTERED, self.source, {"agent_id": agent_id})
        return True

    def assign_task(self, agent_id: str, task_id: str) -> None:
        state = self._require(agent_id)
        state.current_task = task_id
        state.workload += 1
        state.status = AgentStatus.BUSY

    def record_task_result(self, agent_id: str, success: bool, duration_ms: float) -> None:
        """Fold one finished task into the agent's and the swarm's metrics."""
        state = self._require(agent_id)
        metrics = state.metrics
        if success:
            metrics.tasks_completed += 1
            self._tasks_completed += 1
        else:
            metrics.tasks_failed += 1
            self._tasks_failed += 1
        total = metrics.tasks_completed + metrics.tasks_failed
        metrics.average_execution_ms += (duration_ms - metrics.average_execution_ms) / total
        metrics.success_rate = metrics.tasks_completed / total
        self._total_execution_ms += duration_ms

        state.workload = max(0, state.workload - 1)
        state.current_task = None
        state.status = AgentStatus.IDLE if success else AgentStatus.ERROR
        state.last_heartbeat = time.time()

    def _require(self, agent_id: str) -> AgentState:
        state = self._agents.get(agent_id)
        if state is None:
            raise ConfigurationError(f"Unknown agent: {agent_id}")
        return state

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self._heartbeat_tick()

    def _heartbeat_tick(self) -> None:
        now = time.time()
        for state in self._agents.values():
            if state.status == AgentStatus.ERROR:
                state.health = max(0.0, round(state.health - 0.1, 2))
            else:
                state.last_heartbeat = now
        self.events.emit(
            EventType.AGENT_HEARTBEAT,
            self.source,
            {"swarm_id": self.swarm_id, "agents": len(self._agents)},
        )

    async def _stop_heartbeat(self) -> None:
        if self._heartbeat_task is None:
            return
        self._heartbeat_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._heartbeat_task
        self._heartbeat_task = None

    def get_status(self) -> SwarmStatus:
        return self.status

    def get_agents(self) -> list[AgentState]:
        return list(self._agents.values())

    def get_agent(self, agent_id: str) -> AgentState | None:
        return self._agents.get(agent_id)

    def is_running(self) -> bool:
        return self.status in (SwarmStatus.EXECUTING, SwarmStatus.PAUSED)

    def get_uptime(self) -> float:
        """Seconds since initialize(), or 0 if never started."""
        if self._started_at is None:
            return 0.0
        return round(time.monotonic() - self._started_at, 3)

    def get_metrics(self) -> dict[str, Any]:
        agents = self._agents.values()
        finished = self._tasks_completed + self._tasks_failed
        return {
            "total_agents": len(self._agents),
            "idle_agents": sum(1 for a in agents if a.status == AgentStatus.IDLE),
            "busy_agents": sum(1 for a in agents if a.status == AgentStatus.BUSY),
            "error_agents": sum(1 for a in agents if a.status == AgentStatus.ERROR),
            "tasks_completed": self._tasks_completed,
            "tasks_failed": self._tasks_failed,
            "success_rate": self._tasks_completed / finished if finished else 0.0,
            "average_execution_ms": self._total_execution_ms / finished if finished else 0.0,
            "uptime_seconds": self.get_uptime(),
        }
