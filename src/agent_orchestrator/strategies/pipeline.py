"""
Pipeline strategy: agents grouped into ordered stages with buffered hand-off.
"""

import asyncio
import logging

from ..agents.factory import Agent
from ..cancellation import CancellationToken
from ..models import AgentType, StrategyKind, Task
from .base import CoordinationPlan, CoordinationStep, CoordinationStrategy


logger = logging.getLogger(__name__)

STAGES: list[tuple[str, tuple[AgentType, ...]]] = [
    ("Input Processing and Research", (AgentType.RESEARCHER, AgentType.PLANNER)),
    ("Architecture and Design", (AgentType.ARCHITECT, AgentType.COORDINATOR)),
    ("Implementation", (AgentType.CODER, AgentType.EXECUTOR)),
    ("Quality Assurance", (AgentType.TESTER, AgentType.REVIEWER)),
    ("Output Processing and Documentation", (AgentType.DOCUMENTATION, AgentType.DEBUGGER)),
]

STAGE_SIGNALS = ("transform", "process")


def stage_index(agent_type: AgentType) -> int:
    for index, (_, types) in enumerate(STAGES):
        if agent_type in types:
            return index
    return len(STAGES) - 1


class PipelineStrategy(CoordinationStrategy):
    """
    Runs stages in order. Within a stage, agents run in role order and each
    one sees everything the previous stage produced. A stage's outputs are
    buffered in a queue sized to the stage, so nothing produced upstream is
    dropped before the downstream stage drains it. Any failed step fails the
    plan.
    """

    kind = StrategyKind.PIPELINE
    base_duration_ms = 450000
    base_memory_mb = 2048
    priority_thresholds = (6, 3)

    def can_handle(self, task: Task) -> bool:
        text = f"{task.task_type} {task.description}".lower()
        if any(signal in text for signal in STAGE_SIGNALS):
            return True
        return task.priority >= 4

    def concurrency_for(self, task: Task) -> int:
        return min(5, max(2, task.priority // 2))

    def build_plan(self, task: Task, agents: list[Agent]) -> CoordinationPlan:
        ordered = sorted(agents, key=lambda a: stage_index(a.type))
        steps = []
        for agent in ordered:
            index = stage_index(agent.type)
            steps.append(
                CoordinationStep(
                    name=f"{STAGES[index][0]}: {agent.type.value}",
                    agent_id=agent.id,
                    group=index,
                )
            )
        return self._new_plan(task, ordered, steps)

    def stages(self, plan: CoordinationPlan) -> list[list[CoordinationStep]]:
        """Non-empty stages in pipeline order."""
        grouped: dict[int, list[CoordinationStep]] = {}
        for step in plan.steps:
            grouped.setdefault(step.group, []).append(step)
        return [grouped[k] for k in sorted(grouped)]

    async def _run(self, plan: CoordinationPlan, token: CancellationToken) -> bool:
        upstream: list[str] = []
        stages = self.stages(plan)

        for number, stage in enumerate(stages, start=1):
            buffer: asyncio.Queue[str] = asyncio.Queue(maxsize=len(stage))
            for step in stage:
                token.raise_if_cancelled()
                result = await self.run_step(plan, step, token, previous_outputs=list(upstream))
                if result is None:
                    plan.error = f"Stage {number} step '{step.name}' failed: {step.error}"
                    return False
                await buffer.put(result.output)

            upstream = []
            while not buffer.empty():
                upstream.append(buffer.get_nowait())
            logger.debug("Pipeline %s stage %d/%d handed off %d outputs", plan.id, number, len(stages), len(upstream))

        plan.final_output = "\n\n".join(upstream) if upstream else None
        return True
