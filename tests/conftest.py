"""
Shared pytest fixtures for agent_orchestrator tests.
"""

import asyncio

import pytest

from agent_orchestrator.agents.factory import AgentFactory
from agent_orchestrator.backends.base import Completion, Message, ModelBackend
from agent_orchestrator.backends.llm import ModelBackendError
from agent_orchestrator.backends.store import MemoryStore
from agent_orchestrator.config import OrchestrationConfig
from agent_orchestrator.models import Task
from agent_orchestrator.orchestrator import Orchestrator
from agent_orchestrator.swarm.coordinator import SwarmCoordinator
from agent_orchestrator.swarm.events import EventBus


COMPLEX_TASK = "architecture microservices distributed database"
SIMPLE_TASK = "fix typo in README"


class FakeModelBackend(ModelBackend):
    """
    Records every call and answers with canned text.

    Args:
        response: Text returned for every successful call
        fail_on_calls: 1-based call numbers that raise ModelBackendError
        fail_when: Substrings; a call whose system prompt or prompt contains one fails
        gate: Event every call waits on before answering
        responses: Per-role overrides keyed by a system prompt substring
    """

    def __init__(
        self,
        response: str = "Done.\n- first change\n- second change",
        fail_on_calls: set[int] | None = None,
        fail_when: tuple[str, ...] = (),
        gate: asyncio.Event | None = None,
        responses: dict[str, str] | None = None,
    ):
        self.response = response
        self.fail_on_calls = fail_on_calls or set()
        self.fail_when = fail_when
        self.gate = gate
        self.responses = responses or {}
        self.calls: list[tuple[str, str]] = []
        self.started = asyncio.Event()

    async def complete(self, system_prompt: str, messages: list[Message]) -> Completion:
        prompt = messages[-1].content
        self.calls.append((system_prompt, prompt))
        number = len(self.calls)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()

        if number in self.fail_on_calls or any(s in system_prompt or s in prompt for s in self.fail_when):
            raise ModelBackendError(f"call {number} failed")

        text = next((t for key, t in self.responses.items() if key in system_prompt), self.response)
        return Completion(text=text, input_tokens=10, output_tokens=20, model="fake")

    def prompts_containing(self, text: str) -> list[str]:
        return [prompt for system, prompt in self.calls if text in system or text in prompt]


def make_test_task(
    description: str = "implement the feature",
    priority: int = 5,
    task_type: str = "code_generation",
    complexity: float = 0.5,
    flags: frozenset[str] = frozenset(),
    context: dict | None = None,
) -> Task:
    """Helper to create test tasks with defaults."""
    return Task(
        description=description,
        priority=priority,
        task_type=task_type,
        complexity=complexity,
        flags=flags,
        context=context or {},
    )


def make_test_config(**overrides) -> OrchestrationConfig:
    """Helper to create a config that never touches disk or the network."""
    values = {"heartbeat_interval": 0, "store_backend": "memory", **overrides}
    return OrchestrationConfig(**values)


def make_test_orchestrator(
    backend: ModelBackend | None = None,
    config: OrchestrationConfig | None = None,
    **kwargs,
) -> Orchestrator:
    """Helper to create an orchestrator wired to fakes."""
    config = config or make_test_config()
    events = kwargs.pop("events", None) or EventBus()
    return Orchestrator(
        config=config,
        model_backend=backend or FakeModelBackend(),
        events=events,
        coordinator=kwargs.pop(
            "coordinator",
            SwarmCoordinator(events, max_agents=config.max_agents, heartbeat_interval=0),
        ),
        store=kwargs.pop("store", MemoryStore()),
        **kwargs,
    )


@pytest.fixture
def fake_backend():
    """A backend that always succeeds."""
    return FakeModelBackend()


@pytest.fixture
def factory(fake_backend):
    """An agent factory bound to the fake backend."""
    return AgentFactory(fake_backend)


@pytest.fixture
def events():
    """A fresh event bus."""
    return EventBus()


@pytest.fixture
def sample_task():
    """A mid-priority code generation task."""
    return make_test_task()
