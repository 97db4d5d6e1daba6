"""
Parallel strategy: independent agents at once, then a single merge.
"""

import logging
from dataclasses import replace

from ..agents.executors import AgentTaskResult
from ..agents.factory import Agent
from ..cancellation import CancellationToken
from ..models import AgentType, StrategyKind, Task
from ..voting import hash_output
from .base import (
    CoordinationPlan,
    CoordinationStep,
    CoordinationStrategy,
    ResourceRequirements,
    StepStatus,
)


logger = logging.getLogger(__name__)

SEQUENTIAL_DEPENDENT = "sequential_dependent"
MERGE_STEP_NAME = "merge: resolve conflicts"


class ParallelStrategy(CoordinationStrategy):
    """
    Dispatches every agent concurrently against its own slice of the task.
    The merge step runs exactly once, after all agents have settled, and the
    plan succeeds when the success fraction reaches the quorum fraction.
    """

    kind = StrategyKind.PARALLEL
    base_duration_ms = 300000
    base_memory_mb = 512  # per concurrent agent
    priority_thresholds = (8, 5)

    def can_handle(self, task: Task) -> bool:
        if task.task_type == SEQUENTIAL_DEPENDENT or SEQUENTIAL_DEPENDENT in task.flags:
            return False
        return task.priority >= 3

    def concurrency_for(self, task: Task) -> int:
        return min(5, max(2, task.priority // 2), self.max_concurrent_agents)

    def agent_types_for(self, task: Task, required: list[AgentType]) -> list[AgentType]:
        roster = list(required)
        while len(roster) < 2:
            roster.append(AgentType.EXECUTOR)
        return roster

    def get_resource_requirements(self, task: Task) -> ResourceRequirements:
        requirements = super().get_resource_requirements(task)
        return replace(requirements, memory_mb=requirements.memory_mb * requirements.max_concurrent_agents)

    def build_plan(self, task: Task, agents: list[Agent]) -> CoordinationPlan:
        steps = [
            CoordinationStep(
                name=f"{agent.type.value}: {agent.name}",
                agent_id=agent.id,
                instruction=f"Handle the {agent.type.value} part of this task independently: {task.description}",
            )
            for agent in agents
        ]
        steps.append(CoordinationStep(name=MERGE_STEP_NAME, group=1))
        return self._new_plan(task, agents, steps)

    async def _run(self, plan: CoordinationPlan, token: CancellationToken) -> bool:
        work = [s for s in plan.steps if s.agent_id is not None]
        merge_step = next(s for s in plan.steps if s.agent_id is None)

        settled = await self.run_concurrently(plan, work, token, self.concurrency_for(plan.task))
        token.raise_if_cancelled()

        successes = [r for r in settled if r is not None]
        merge_step.status = StepStatus.RUNNING
        plan.final_output = self.merge(plan, successes)
        merge_step.output = plan.final_output
        merge_step.status = StepStatus.COMPLETED

        fraction = len(successes) / len(work) if work else 0.0
        plan.metadata["success_fraction"] = round(fraction, 4)
        if not successes or fraction < self.quorum_fraction:
            plan.error = (
                f"Only {len(successes)}/{len(work)} agents succeeded "
                f"(quorum {self.quorum_fraction:.0%})"
            )
            return False
        return True

    def merge(self, plan: CoordinationPlan, results: list[AgentTaskResult]) -> str:
        """
        Combine agent outputs, dropping exact duplicates.

        Duplicate outputs are recorded as conflicts in plan metadata.
        """
        seen: dict[str, str] = {}
        sections = []
        conflicts = []
        for result in results:
            key = hash_output(result.output)
            if key in seen:
                conflicts.append({"agent_id": result.agent_id, "duplicate_of": seen[key]})
                continue
            seen[key] = result.agent_id
            sections.append(f"## {result.agent_type.value} ({result.agent_id})\n\n{result.output.strip()}")

        if conflicts:
            logger.info("Merged %d duplicate outputs in plan %s", len(conflicts), plan.id)
        plan.metadata["conflicts"] = conflicts
        return "\n\n".join(sections)
