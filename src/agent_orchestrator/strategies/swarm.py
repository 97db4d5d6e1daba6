"""
Swarm strategy: every agent proposes an answer, a weighted quorum decides.
"""

import logging
from enum import Enum

from ..agents.factory import Agent
from ..cancellation import CancellationToken
from ..models import AgentType, StrategyKind, Task
from ..voting import Ballot, format_vote_summary, tally
from .base import CoordinationPlan, CoordinationStep, CoordinationStrategy, StepStatus


logger = logging.getLogger(__name__)

VOTE_STEP_NAME = "vote: weighted quorum"


class SwarmRole(Enum):
    COORDINATOR = "coordinator"
    SPECIALIST = "specialist"
    VALIDATOR = "validator"
    SCOUT = "scout"
    MAINTAINER = "maintainer"
    WORKER = "worker"
    COMMUNICATOR = "communicator"


ROLE_WEIGHTS = {
    SwarmRole.COORDINATOR: 1.5,
    SwarmRole.SPECIALIST: 1.3,
    SwarmRole.VALIDATOR: 1.2,
    SwarmRole.SCOUT: 1.0,
    SwarmRole.MAINTAINER: 1.0,
    SwarmRole.WORKER: 0.9,
    SwarmRole.COMMUNICATOR: 0.8,
}


def assign_role(agent_type: AgentType, complexity: float) -> SwarmRole:
    if agent_type in (AgentType.COORDINATOR, AgentType.PLANNER, AgentType.ARCHITECT):
        return SwarmRole.COORDINATOR
    if agent_type == AgentType.RESEARCHER:
        return SwarmRole.SCOUT
    if agent_type == AgentType.CODER:
        return SwarmRole.SPECIALIST if complexity > 0.6 else SwarmRole.WORKER
    if agent_type in (AgentType.TESTER, AgentType.REVIEWER):
        return SwarmRole.VALIDATOR
    if agent_type == AgentType.DEBUGGER:
        return SwarmRole.MAINTAINER
    if agent_type == AgentType.DOCUMENTATION:
        return SwarmRole.COMMUNICATOR
    return SwarmRole.WORKER


class SwarmStrategy(CoordinationStrategy):
    """
    All agents run concurrently and propose candidate outputs. The result is
    accepted only if the role-weighted share of successful agents reaches the
    quorum fraction; the winning output is the heaviest group of identical
    proposals.
    """

    kind = StrategyKind.SWARM
    base_duration_ms = 400000
    base_memory_mb = 2048
    priority_thresholds = (9, 6)

    def can_handle(self, task: Task) -> bool:
        if task.priority >= 8:
            return True
        return task.priority >= 6 and task.has_signal("distributed")

    def swarm_size(self, task: Task) -> int:
        return min(8, max(3, task.priority))

    def concurrency_for(self, task: Task) -> int:
        return min(self.swarm_size(task), self.max_concurrent_agents)

    def agent_types_for(self, task: Task, required: list[AgentType]) -> list[AgentType]:
        """Pad with executors to at least three members, cap at the swarm size."""
        roster = list(required)
        while len(roster) < 3:
            roster.append(AgentType.EXECUTOR)
        return roster[:self.swarm_size(task)]

    def build_plan(self, task: Task, agents: list[Agent]) -> CoordinationPlan:
        roles = {a.id: assign_role(a.type, task.complexity) for a in agents}
        steps = [
            CoordinationStep(
                name=f"{roles[agent.id].value}: {agent.type.value}",
                agent_id=agent.id,
                instruction=f"Propose a complete solution as a swarm {roles[agent.id].value}: {task.description}",
            )
            for agent in agents
        ]
        steps.append(CoordinationStep(name=VOTE_STEP_NAME, group=1))
        plan = self._new_plan(task, agents, steps)
        plan.metadata["roles"] = {agent_id: role.value for agent_id, role in roles.items()}
        return plan

    async def _run(self, plan: CoordinationPlan, token: CancellationToken) -> bool:
        work = [s for s in plan.steps if s.agent_id is not None]
        vote_step = next(s for s in plan.steps if s.agent_id is None)
        roles = plan.metadata["roles"]

        await self.run_concurrently(plan, work, token, self.concurrency_for(plan.task))
        token.raise_if_cancelled()

        vote_step.status = StepStatus.RUNNING
        ballots = [
            Ballot(
                voter=step.agent_id,
                output=step.output or "",
                weight=ROLE_WEIGHTS[SwarmRole(roles[step.agent_id])],
                succeeded=step.status == StepStatus.COMPLETED,
            )
            for step in work
        ]
        result = tally(ballots, self.quorum_fraction)
        logger.debug("Swarm vote for %s:\n%s", plan.id, format_vote_summary(result))

        plan.metadata["success_fraction"] = result.success_fraction
        plan.metadata["confidence"] = result.confidence
        vote_step.output = format_vote_summary(result)
        vote_step.status = StepStatus.COMPLETED

        if not result.quorum_reached:
            plan.error = (
                f"Quorum not reached: {result.success_fraction:.0%} of agent weight succeeded "
                f"(need {self.quorum_fraction:.0%})"
            )
            return False

        plan.final_output = result.winner.output
        return True
