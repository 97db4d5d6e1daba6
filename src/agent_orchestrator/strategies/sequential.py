"""
Sequential strategy: one agent at a time, each building on the last.
"""

from ..agents.factory import Agent
from ..cancellation import CancellationToken
from ..models import AgentType, StrategyKind, Task
from .base import CoordinationPlan, CoordinationStep, CoordinationStrategy


EXECUTION_ORDER = {
    AgentType.RESEARCHER: 1,
    AgentType.PLANNER: 2,
    AgentType.ARCHITECT: 3,
    AgentType.COORDINATOR: 4,
    AgentType.CODER: 5,
    AgentType.EXECUTOR: 6,
    AgentType.TESTER: 7,
    AgentType.DEBUGGER: 8,
    AgentType.REVIEWER: 9,
    AgentType.DOCUMENTATION: 10,
}


class SequentialStrategy(CoordinationStrategy):
    """
    Catch-all strategy. Agents run strictly in role order and every agent
    receives all earlier outputs. The first step that exhausts its retries
    aborts the rest of the plan.
    """

    kind = StrategyKind.SEQUENTIAL
    base_duration_ms = 600000
    base_memory_mb = 512
    priority_thresholds = (7, 4)

    def can_handle(self, task: Task) -> bool:
        return True

    def build_plan(self, task: Task, agents: list[Agent]) -> CoordinationPlan:
        ordered = sorted(agents, key=lambda a: EXECUTION_ORDER.get(a.type, 99))
        steps = [
            CoordinationStep(name=f"{agent.type.value}: {agent.name}", agent_id=agent.id, group=i)
            for i, agent in enumerate(ordered)
        ]
        return self._new_plan(task, ordered, steps)

    async def _run(self, plan: CoordinationPlan, token: CancellationToken) -> bool:
        outputs: list[str] = []
        for step in plan.steps:
            token.raise_if_cancelled()
            result = await self.run_step(plan, step, token, previous_outputs=list(outputs))
            if result is None:
                plan.error = f"Step '{step.name}' failed: {step.error}"
                return False
            outputs.append(result.output)

        plan.final_output = outputs[-1] if outputs else None
        return True
