"""
Multi-agent system for troupe.

Registers named agents and runs a task over them with one of four coordination strategies:

* **sequential** - each agent builds on the previous agent's output.
* **parallel** - every agent works on the unmodified task concurrently.
* **hierarchical** - the first agent decomposes the task, the others solve one sub-task each, and
  the first agent integrates their answers.
* **collaborative** - a fixed number of discussion rounds, then the first agent concludes.

Per-agent work always goes through ``agent.run``; any participant failure aborts the whole task.
"""

import asyncio
import logging
import re
from typing import (
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
)

from pydantic import (
    BaseModel,
    Field,
    TypeAdapter,
    ValidationError,
)

from troupe.agent.agent import Agent
from troupe.config import settings
from troupe.core.schema import (
    CommunicationMode,
    CoordinationStrategy,
    MessageType,
    ParallelResultOrder,
    TaskAllocation,
    TaskResult,
)
from troupe.multi_agent.communication import AgentCommunication
from troupe.multi_agent.coordinator import (
    AgentCoordinator,
    AgentEntry,
)

logger = logging.getLogger(__name__)

SYSTEM_SENDER = "system"

_SUBTASKS = TypeAdapter(List[str])
_FENCED = re.compile(r"```(?:json)?\s*(.+?)```", re.DOTALL)

DECOMPOSE_PROMPT = """\
You are the coordinator. Split the following task into exactly {count} sub-tasks, one per worker.

Task:
{task}

Reply with a JSON array of {count} strings and nothing else, e.g. ["first sub-task", "second sub-task"].
"""

INTEGRATE_PROMPT = """\
Integrate the following worker results into one final answer.

Original task:
{task}

Worker results:
{results}
"""

DISCUSSION_PROMPT = """\
Task under discussion:
{task}

Discussion so far:
{discussion}

Give your view and suggestions based on the above.
"""

CONCLUSION_PROMPT = """\
Based on the following discussion, state the final conclusion.

{discussion}
"""


class MultiAgentError(RuntimeError):
    """Base class for coordinator-level failures."""


class AgentNotFoundError(MultiAgentError):
    """A requested agent id is not registered."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent '{agent_id}' is not registered.")
        self.agent_id = agent_id


class NoAgentsAvailableError(MultiAgentError):
    """The participant set is empty."""

    def __init__(self) -> None:
        super().__init__("No agents available to execute the task.")


class CoordinationFailedError(MultiAgentError):
    """A strategy could not proceed (e.g. an unusable task decomposition)."""


class MultiAgentConfig(BaseModel):
    """Strategy, channel mode and concurrency limits of a :class:`MultiAgentSystem`."""

    coordination_strategy: CoordinationStrategy = CoordinationStrategy.SEQUENTIAL
    communication_mode: CommunicationMode = CommunicationMode.SHARED
    max_concurrent_tasks: int = Field(5, ge=1)
    collaboration_rounds: int = Field(3, ge=1)
    parallel_result_order: ParallelResultOrder = ParallelResultOrder.REGISTRATION
    strict_decomposition: bool = False

    @classmethod
    def from_settings(cls) -> "MultiAgentConfig":
        return cls(
            coordination_strategy=CoordinationStrategy(settings.COORDINATION_STRATEGY),
            communication_mode=CommunicationMode(settings.COMMUNICATION_MODE),
            max_concurrent_tasks=settings.MAX_CONCURRENT_TASKS,
            collaboration_rounds=settings.COLLABORATION_ROUNDS,
            parallel_result_order=ParallelResultOrder(settings.PARALLEL_RESULT_ORDER),
        )


def parse_subtasks(text: str) -> Optional[List[str]]:
    """
    Extract a JSON array of strings from a coordinator reply.

    Accepts a bare array, a fenced ```json block, or an array embedded in surrounding prose.
    Items are stripped but never dropped, so sub-task positions line up with workers; a blank
    item stays an empty string.  Returns *None* when no such array can be decoded.
    """
    candidates = [text.strip()]
    fenced = _FENCED.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    start, end = text.find("["), text.rfind("]")
    if 0 <= start < end:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            items = _SUBTASKS.validate_json(candidate)
        except ValidationError:
            continue
        return [item.strip() for item in items]
    return None


class MultiAgentSystem:
    """Registry of named agents plus the strategies that run a task over them."""

    def __init__(
        self,
        config: Optional[MultiAgentConfig] = None,
        communication: Optional[AgentCommunication] = None,
    ) -> None:
        self.config = config or MultiAgentConfig.from_settings()
        self._agents: Dict[str, Agent] = {}
        self.coordinator = AgentCoordinator(self.config.coordination_strategy)
        self.communication = communication or AgentCommunication(self.config.communication_mode)
        self.last_results: List[TaskResult] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def register(self, agent_id: str, agent: Agent) -> None:
        """Add *agent* under *agent_id*; an existing mapping is replaced."""
        if agent_id in self._agents:
            logger.info("Replacing agent '%s' with %s", agent_id, agent.name)
        self._agents[agent_id] = agent
        logger.info("Agent registered: %s (%s)", agent.name, agent_id)

    def unregister(self, agent_id: str) -> None:
        if self._agents.pop(agent_id, None) is not None:
            logger.info("Agent unregistered: %s", agent_id)

    def get_agent(self, agent_id: str) -> Agent:
        try:
            return self._agents[agent_id]
        except KeyError:
            raise AgentNotFoundError(agent_id) from None

    def agent_ids(self) -> List[str]:
        return list(self._agents)

    def agent_count(self) -> int:
        return len(self._agents)

    def _participants(self, agent_ids: Optional[Sequence[str]]) -> List[AgentEntry]:
        ids = list(agent_ids) if agent_ids is not None else list(self._agents)
        return [(agent_id, self.get_agent(agent_id)) for agent_id in ids]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def plan_task(
        self,
        task: str,
        agent_ids: Optional[Sequence[str]] = None,
        strategy: Optional[CoordinationStrategy] = None,
    ) -> List[TaskAllocation]:
        """Allocations the chosen strategy would make, without running anything."""
        return self.coordinator.allocate_tasks(task, self._participants(agent_ids), strategy)

    async def execute_task(
        self,
        task: str,
        agent_ids: Optional[Sequence[str]] = None,
        strategy: Optional[CoordinationStrategy] = None,
    ) -> str:
        """
        Run *task* over the selected agents (all registered agents by default).

        Raises
        ------
        AgentNotFoundError
            If any id in *agent_ids* is unknown.
        NoAgentsAvailableError
            If the participant set is empty.
        Exception
            Whatever a participant's ``run`` raised; the strategy is aborted.
        """
        participants = self._participants(agent_ids)
        if not participants:
            raise NoAgentsAvailableError()

        strategy = CoordinationStrategy(strategy or self.config.coordination_strategy)
        handlers: Dict[
            CoordinationStrategy, Callable[[str, List[AgentEntry], List[TaskResult]], Awaitable[str]]
        ] = {
            CoordinationStrategy.SEQUENTIAL: self._execute_sequential,
            CoordinationStrategy.PARALLEL: self._execute_parallel,
            CoordinationStrategy.HIERARCHICAL: self._execute_hierarchical,
            CoordinationStrategy.COLLABORATIVE: self._execute_collaborative,
        }

        records: List[TaskResult] = []
        logger.info(
            "Executing task with %s strategy over %d agent(s): %s",
            strategy.value,
            len(participants),
            [agent_id for agent_id, _ in participants],
        )
        try:
            return await handlers[strategy](task, participants, records)
        finally:
            self.last_results = records

    def report(self) -> str:
        """Markdown summary of every agent invocation made by the last :meth:`execute_task`."""
        return self.coordinator.integrate_results(self.last_results)

    async def _run_agent(
        self, agent_id: str, agent: Agent, task: str, records: List[TaskResult]
    ) -> str:
        logger.info("[%s] starting task", agent.name)
        await self.communication.post(
            sender=SYSTEM_SENDER, receiver=agent_id, type=MessageType.TASK, content=task
        )
        try:
            output = await agent.run(task)
        except Exception as exc:
            records.append(
                TaskResult(
                    agent_id=agent_id,
                    agent_name=agent.name,
                    output="",
                    success=False,
                    error=f"{type(exc).__name__}: {exc}",
                )
            )
            raise
        records.append(TaskResult(agent_id=agent_id, agent_name=agent.name, output=output))
        await self.communication.post(
            sender=agent_id,
            type=MessageType.RESULT,
            content=output,
            metadata={"agent_name": agent.name},
        )
        return output

    async def _execute_sequential(
        self, task: str, agents: List[AgentEntry], records: List[TaskResult]
    ) -> str:
        results: List[str] = []
        current = task
        for agent_id, agent in agents:
            output = await self._run_agent(agent_id, agent, current, records)
            results.append(f"[{agent.name}]: {output}")
            current = f"Based on the previous result: {output}\n\nContinue with: {task}"
        return "\n\n".join(results)

    async def _execute_parallel(
        self, task: str, agents: List[AgentEntry], records: List[TaskResult]
    ) -> str:
        semaphore = asyncio.Semaphore(self.config.max_concurrent_tasks)
        completed: List[Tuple[int, str]] = []

        async def _worker(index: int, agent_id: str, agent: Agent) -> None:
            async with semaphore:
                output = await self._run_agent(agent_id, agent, task, records)
            completed.append((index, f"[{agent.name}]: {output}"))

        tasks = [
            asyncio.create_task(_worker(index, agent_id, agent), name=f"agent:{agent_id}")
            for index, (agent_id, agent) in enumerate(agents)
        ]
        try:
            _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            for pending_task in tasks:
                if not pending_task.done():
                    pending_task.cancel()

        failures = [
            t.exception() for t in tasks if t.done() and not t.cancelled() and t.exception()
        ]
        if failures:
            # let cancelled siblings unwind before surfacing the first failure
            await asyncio.gather(*pending, return_exceptions=True)
            raise failures[0]  # type: ignore[misc]

        if self.config.parallel_result_order is ParallelResultOrder.REGISTRATION:
            completed.sort(key=lambda item: item[0])
        return "\n\n".join(text for _, text in completed)

    async def _execute_hierarchical(
        self, task: str, agents: List[AgentEntry], records: List[TaskResult]
    ) -> str:
        coordinator_id, coordinator = agents[0]
        workers = agents[1:]
        if not workers:
            return await self._run_agent(coordinator_id, coordinator, task, records)

        reply = await self._run_agent(
            coordinator_id,
            coordinator,
            DECOMPOSE_PROMPT.format(count=len(workers), task=task),
            records,
        )
        subtasks = parse_subtasks(reply)
        if subtasks is None:
            if self.config.strict_decomposition:
                raise CoordinationFailedError(
                    f"Coordinator '{coordinator.name}' did not return a JSON array of sub-tasks"
                )
            logger.warning(
                "Coordinator '%s' returned no usable sub-task list; workers get the full task",
                coordinator.name,
            )
            subtasks = []

        assignments: List[str] = []
        worker_results: List[str] = []
        for index, (worker_id, worker) in enumerate(workers):
            subtask = subtasks[index] if index < len(subtasks) and subtasks[index] else task
            assignments.append(f"{index + 1}. [{worker.name}] {subtask}")
            output = await self._run_agent(worker_id, worker, subtask, records)
            worker_results.append(f"[{worker.name}]: {output}")

        final = await self._run_agent(
            coordinator_id,
            coordinator,
            INTEGRATE_PROMPT.format(task=task, results="\n".join(worker_results)),
            records,
        )
        return (
            "## Sub-task assignment\n"
            + "\n".join(assignments)
            + "\n\n## Worker results\n"
            + "\n\n".join(worker_results)
            + "\n\n## Final result\n"
            + final
        )

    async def _execute_collaborative(
        self, task: str, agents: List[AgentEntry], records: List[TaskResult]
    ) -> str:
        discussion: List[str] = []
        for round_number in range(1, self.config.collaboration_rounds + 1):
            discussion.append(f"## Round {round_number}")
            for agent_id, agent in agents:
                prompt = DISCUSSION_PROMPT.format(task=task, discussion="\n\n".join(discussion))
                response = await self._run_agent(agent_id, agent, prompt, records)
                discussion.append(f"[{agent.name}]: {response}")

        transcript = "\n\n".join(discussion)
        lead_id, lead = agents[0]
        conclusion = await self._run_agent(
            lead_id, lead, CONCLUSION_PROMPT.format(discussion=transcript), records
        )
        return f"{transcript}\n\n## Final conclusion\n{conclusion}"
