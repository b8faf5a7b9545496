"""Task allocation and result integration for the multi-agent system."""

import logging
from typing import (
    List,
    Sequence,
    Tuple,
)

from troupe.agent.agent import Agent
from troupe.core.schema import (
    CoordinationStrategy,
    TaskAllocation,
    TaskResult,
)

logger = logging.getLogger(__name__)

AgentEntry = Tuple[str, Agent]


class AgentCoordinator:
    """
    Describes how a strategy distributes a task.

    Allocations are a plan only; execution always flows through ``agent.run`` in
    :class:`~troupe.multi_agent.system.MultiAgentSystem`.
    """

    def __init__(self, strategy: CoordinationStrategy = CoordinationStrategy.SEQUENTIAL) -> None:
        self.strategy = CoordinationStrategy(strategy)

    def allocate_tasks(
        self,
        task: str,
        agents: Sequence[AgentEntry],
        strategy: CoordinationStrategy | None = None,
    ) -> List[TaskAllocation]:
        strategy = CoordinationStrategy(strategy or self.strategy)
        if strategy is CoordinationStrategy.SEQUENTIAL:
            return [
                TaskAllocation(
                    agent_id=agent_id,
                    agent_name=agent.name,
                    task=task,
                    priority=index,
                    dependencies=[agents[index - 1][0]] if index > 0 else [],
                )
                for index, (agent_id, agent) in enumerate(agents)
            ]

        if strategy is CoordinationStrategy.HIERARCHICAL:
            if not agents:
                return []
            coordinator_id, coordinator = agents[0]
            allocations = [
                TaskAllocation(
                    agent_id=coordinator_id,
                    agent_name=coordinator.name,
                    task=f"Coordinate and decompose the task: {task}",
                    priority=0,
                )
            ]
            allocations.extend(
                TaskAllocation(
                    agent_id=agent_id,
                    agent_name=agent.name,
                    task="Execute an assigned sub-task",
                    priority=1,
                    dependencies=[coordinator_id],
                )
                for agent_id, agent in agents[1:]
            )
            return allocations

        if strategy is CoordinationStrategy.COLLABORATIVE:
            task = f"Take part in the discussion: {task}"

        # parallel and collaborative: everyone at once, no dependencies
        return [
            TaskAllocation(agent_id=agent_id, agent_name=agent.name, task=task, priority=0)
            for agent_id, agent in agents
        ]

    @staticmethod
    def integrate_results(results: Sequence[TaskResult]) -> str:
        """Render per-agent results as one markdown document."""
        sections = ["# Task results"]
        for result in results:
            status = "" if result.success else f" (failed: {result.error})"
            sections.append(f"## {result.agent_name}{status}\n{result.output}")
        return "\n\n".join(sections)
