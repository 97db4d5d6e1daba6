"""
Per-type agent executors.

An executor is the only place a model call happens. It renders a role-specific
prompt, invokes the agent's backend and records latency, token usage and a
quality estimate. Backend failures and empty output surface as
AgentExecutionError.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..backends.base import Message
from ..backends.llm import ModelBackendError
from ..errors import AgentExecutionError
from ..models import AgentType, Task
from .factory import Agent, AgentStatus


logger = logging.getLogger(__name__)


@dataclass
class ExecutionMetrics:
    """Measurements from one agent invocation."""

    duration_ms: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    api_calls: int = 0
    tools_used: tuple[str, ...] = ()
    quality_score: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def efficiency(self) -> float:
        """Quality per second of wall-clock time."""
        seconds = max(self.duration_ms / 1000, 0.001)
        return round(self.quality_score / seconds, 4)


@dataclass
class AgentTaskResult:
    """Output of one successful agent invocation."""

    agent_id: str
    agent_type: AgentType
    task_id: str
    output: str
    metrics: ExecutionMetrics = field(default_factory=ExecutionMetrics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_type": self.agent_type.value,
            "task_id": self.task_id,
            "output": self.output,
            "duration_ms": self.metrics.duration_ms,
            "tokens": self.metrics.total_tokens,
            "quality_score": self.metrics.quality_score,
        }


class AgentExecutor:
    """
    Runs one agent against a task.

    Subclasses override `deliverables` to describe what the role must produce.

    Args:
        agent: Agent to run
        stream: Consume the backend's stream() instead of complete()
    """

    deliverables: tuple[str, ...] = ("A complete response to the task",)

    def __init__(self, agent: Agent, stream: bool = False):
        self.agent = agent
        self.stream = stream

    def build_prompt(
        self,
        task: Task,
        previous_outputs: list[str] | None = None,
        instruction: str | None = None,
    ) -> str:
        """Render the user prompt for this role."""
        sections = [f"**Task**: {instruction or task.description}"]
        if instruction:
            sections.append(f"**Overall Goal**: {task.description}")

        requirements = "\n".join(f"- {d}" for d in self.deliverables)
        sections.append(f"**Requirements**:\n{requirements}")

        if task.context:
            context = "\n".join(f"- {k}: {v}" for k, v in task.context.items())
            sections.append(f"**Context**:\n{context}")

        if previous_outputs:
            joined = "\n\n---\n\n".join(previous_outputs)
            sections.append(f"**Previous Agent Outputs**:\n{joined}")

        if self.agent.tools:
            sections.append(f"**Available Tools**: {', '.join(self.agent.tools)}")

        return "\n\n".join(sections)

    def assess_quality(self, output: str) -> float:
        """Crude 0-1 quality estimate from output shape."""
        text = output.strip()
        if not text:
            return 0.0
        score = 0.6
        if len(text) > 200:
            score += 0.2
        if "\n" in text:
            score += 0.1
        if "```" in text or text.lstrip().startswith(("-", "1.", "#")):
            score += 0.1
        return round(min(score, 1.0), 2)

    async def execute(
        self,
        task: Task,
        previous_outputs: list[str] | None = None,
        instruction: str | None = None,
    ) -> AgentTaskResult:
        """
        Invoke the model for this agent.

        The agent goes busy for the duration of the call and returns to idle
        on success or moves to error on failure.

        Args:
            task: Task being worked on
            previous_outputs: Outputs from earlier steps to build on
            instruction: Narrower sub-task for this agent, if any

        Returns:
            AgentTaskResult with output and metrics

        Raises:
            AgentExecutionError: If the backend fails or returns empty output
        """
        agent = self.agent
        if agent.status == AgentStatus.ERROR:
            agent.transition(AgentStatus.IDLE)
        agent.transition(AgentStatus.BUSY)

        prompt = self.build_prompt(task, previous_outputs, instruction)
        messages = [Message(role="user", content=prompt)]
        start = time.monotonic()
        try:
            if self.stream:
                chunks = [chunk async for chunk in agent.backend.stream(agent.system_prompt, messages)]
                text = "".join(chunks)
                input_tokens = output_tokens = 0
            else:
                completion = await agent.backend.complete(agent.system_prompt, messages)
                text = completion.text
                input_tokens = completion.input_tokens
                output_tokens = completion.output_tokens
        except ModelBackendError as e:
            self._fail(start)
            raise AgentExecutionError(f"{agent.type.value} agent {agent.id} failed: {e}", agent_id=agent.id)

        if not text.strip():
            self._fail(start)
            raise AgentExecutionError(
                f"{agent.type.value} agent {agent.id} returned empty output", agent_id=agent.id
            )

        duration_ms = (time.monotonic() - start) * 1000
        agent.record_result(True, duration_ms)
        agent.transition(AgentStatus.IDLE)

        metrics = ExecutionMetrics(
            duration_ms=duration_ms,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            api_calls=1,
            tools_used=agent.tools,
            quality_score=self.assess_quality(text),
        )
        logger.debug(
            "%s agent %s finished in %.0fms (%d tokens)",
            agent.type.value, agent.id, duration_ms, metrics.total_tokens,
        )
        return AgentTaskResult(
            agent_id=agent.id,
            agent_type=agent.type,
            task_id=task.id,
            output=text,
            metrics=metrics,
        )

    def _fail(self, start: float) -> None:
        duration_ms = (time.monotonic() - start) * 1000
        self.agent.record_result(False, duration_ms)
        if self.agent.status == AgentStatus.BUSY:
            self.agent.transition(AgentStatus.ERROR)


class CoordinatorExecutor(AgentExecutor):
    deliverables = (
        "Independent sub-tasks, one per line, with no numbering or commentary",
        "Each sub-task small enough for a single agent",
    )


class PlannerExecutor(AgentExecutor):
    deliverables = (
        "Task breakdown with clear, ordered steps",
        "Dependencies between steps",
        "Success criteria for each step",
        "Risks and mitigations",
    )


class CoderExecutor(AgentExecutor):
    deliverables = (
        "Working code that follows the project's conventions",
        "Error handling at the boundaries",
        "A short summary of the files changed",
    )


class ReviewerExecutor(AgentExecutor):
    deliverables = (
        "Correctness issues",
        "Security and performance concerns",
        "Concrete suggestions for improvement",
    )


class ResearcherExecutor(AgentExecutor):
    deliverables = (
        "Relevant technologies and existing code",
        "Comparison of possible approaches",
        "A recommended approach",
    )


class ExecutorAgentExecutor(AgentExecutor):
    deliverables = (
        "The assigned sub-task carried out as specified",
        "A report of what was done",
    )


class TesterExecutor(AgentExecutor):
    deliverables = (
        "Test cases covering behavior and edge cases",
        "Which cases fail and why",
    )


class DocumentationExecutor(AgentExecutor):
    deliverables = (
        "Usage documentation",
        "Configuration notes",
        "Known limitations",
    )


class DebuggerExecutor(AgentExecutor):
    deliverables = (
        "Root cause of the problem",
        "The smallest fix that resolves it",
        "How to verify the fix",
    )


class ArchitectExecutor(AgentExecutor):
    deliverables = (
        "Module boundaries and interfaces",
        "Data flow",
        "Trade-offs of the chosen design",
    )


EXECUTORS: dict[AgentType, type[AgentExecutor]] = {
    AgentType.COORDINATOR: CoordinatorExecutor,
    AgentType.PLANNER: PlannerExecutor,
    AgentType.CODER: CoderExecutor,
    AgentType.REVIEWER: ReviewerExecutor,
    AgentType.RESEARCHER: ResearcherExecutor,
    AgentType.EXECUTOR: ExecutorAgentExecutor,
    AgentType.TESTER: TesterExecutor,
    AgentType.DOCUMENTATION: DocumentationExecutor,
    AgentType.DEBUGGER: DebuggerExecutor,
    AgentType.ARCHITECT: ArchitectExecutor,
}


def create_executor(agent: Agent, stream: bool = False) -> AgentExecutor:
    return EXECUTORS[agent.type](agent, stream=stream)
