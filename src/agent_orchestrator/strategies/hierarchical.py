"""
Hierarchical strategy: a coordinator decomposes, workers execute in waves.
"""

import logging
import re

from ..agents.factory import Agent
from ..cancellation import CancellationToken
from ..models import AgentType, StrategyKind, Task
from .base import CoordinationPlan, CoordinationStep, CoordinationStrategy, StepStatus


logger = logging.getLogger(__name__)

COORDINATOR_PREFERENCE = (AgentType.COORDINATOR, AgentType.PLANNER, AgentType.ARCHITECT)

_LIST_MARKER = re.compile(r"^\s*(?:[-*+]|\d+[.)]|\[\s?\])\s*")


def parse_subtasks(text: str, limit: int) -> list[str]:
    """One sub-task per non-empty line, list markers stripped."""
    subtasks = []
    for line in text.splitlines():
        cleaned = _LIST_MARKER.sub("", line).strip()
        if cleaned and not cleaned.endswith(":"):
            subtasks.append(cleaned)
    return subtasks[:limit]


def pick_coordinator(agents: list[Agent]) -> Agent:
    for agent_type in COORDINATOR_PREFERENCE:
        for agent in agents:
            if agent.type == agent_type:
                return agent
    return agents[0]


class HierarchicalStrategy(CoordinationStrategy):
    """
    The coordinator asks the model for sub-tasks, one per line, and hands
    them out round robin to workers. Sub-tasks run in waves, one wave per
    level below the coordinator, and each wave sees the outputs of earlier
    waves. A failed sub-task is reassigned once to another worker. The
    coordinator integrates the results at the end.
    """

    kind = StrategyKind.HIERARCHICAL
    base_duration_ms = 500000
    base_memory_mb = 1536
    priority_thresholds = (8, 5)

    def can_handle(self, task: Task) -> bool:
        return task.priority >= 5 and task.has_signal("complex")

    def levels_for(self, task: Task) -> int:
        return min(4, max(2, task.priority // 3))

    def concurrency_for(self, task: Task) -> int:
        return min(self.levels_for(task) * 2, self.max_concurrent_agents)

    def build_plan(self, task: Task, agents: list[Agent]) -> CoordinationPlan:
        coordinator = pick_coordinator(agents)
        steps = [
            CoordinationStep(
                name="decompose",
                agent_id=coordinator.id,
                instruction=(
                    "Break this task into independent sub-tasks. "
                    f"Reply with one sub-task per line: {task.description}"
                ),
            )
        ]
        plan = self._new_plan(task, agents, steps)
        plan.metadata["coordinator_id"] = coordinator.id
        plan.metadata["levels"] = self.levels_for(task)
        return plan

    def workers(self, plan: CoordinationPlan) -> list[Agent]:
        coordinator_id = plan.metadata["coordinator_id"]
        others = [a for a in plan.agents if a.id != coordinator_id]
        return others or [plan.get_agent(coordinator_id)]

    async def _run(self, plan: CoordinationPlan, token: CancellationToken) -> bool:
        coordinator_id = plan.metadata["coordinator_id"]
        workers = self.workers(plan)
        waves = plan.metadata["levels"] - 1

        decomposition = await self.run_step(plan, plan.steps[0], token)
        if decomposition is None:
            plan.error = f"Decomposition failed: {plan.steps[0].error}"
            return False

        subtasks = parse_subtasks(decomposition.output, limit=len(workers) * waves)
        if not subtasks:
            subtasks = [f"Handle the {w.type.value} part of: {plan.task.description}" for w in workers]
        plan.metadata["subtasks"] = subtasks

        assigned = []
        for i, subtask in enumerate(subtasks):
            worker = workers[i % len(workers)]
            wave = min(i // len(workers), waves - 1) + 1
            step = CoordinationStep(name=f"subtask {i + 1}", agent_id=worker.id, instruction=subtask, group=wave)
            plan.steps.append(step)
            assigned.append(step)

        outputs = [decomposition.output]
        for wave in range(1, waves + 1):
            wave_steps = [s for s in assigned if s.group == wave]
            if not wave_steps:
                continue
            token.raise_if_cancelled()
            await self.run_concurrently(plan, wave_steps, token, self.concurrency_for(plan.task), list(outputs))

            for step in wave_steps:
                if step.status == StepStatus.FAILED:
                    retry = await self.reassign(plan, step, workers, token, outputs)
                    if retry is None:
                        plan.error = f"Sub-task '{step.instruction}' failed after reassignment: {step.error}"
                        return False
                    outputs.append(retry.output)
                else:
                    outputs.append(step.output)

        token.raise_if_cancelled()
        integrate = CoordinationStep(
            name="integrate",
            agent_id=coordinator_id,
            instruction="Integrate the worker results into one final answer.",
            group=waves + 1,
        )
        plan.steps.append(integrate)
        final = await self.run_step(plan, integrate, token, previous_outputs=outputs[1:])
        if final is None:
            plan.error = f"Integration failed: {integrate.error}"
            return False
        plan.final_output = final.output
        return True

    async def reassign(self, plan, step, workers, token, outputs):
        """Give a failed sub-task one more try on a different worker."""
        others = [w for w in workers if w.id != step.agent_id]
        target = others[0] if others else plan.get_agent(plan.metadata["coordinator_id"])
        logger.info("Reassigning %s from %s to %s", step.name, step.agent_id, target.id)

        retry = CoordinationStep(
            name=f"{step.name} (reassigned)",
            agent_id=target.id,
            instruction=step.instruction,
            group=step.group,
        )
        plan.steps.append(retry)
        return await self.run_step(plan, retry, token, previous_outputs=list(outputs))
