"""Think -> act -> observe state machine driving a single :class:`~troupe.agent.agent.Agent`."""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from troupe.config import settings
from troupe.core.schema import (
    Action,
    AgentLoopEvent,
    AgentLoopState,
    ModelResponse,
    Observation,
    Thought,
    ToolCall,
    ToolCallPolicy,
)

if TYPE_CHECKING:
    from troupe.agent.agent import Agent

logger = logging.getLogger(__name__)

EventCallback = Callable[[AgentLoopEvent], Any]

_THOUGHT_MARKER = re.compile(r"thought:", re.IGNORECASE)
_ACTION_MARKER = re.compile(r"action:", re.IGNORECASE)
_FINISH_ANSWER = re.compile(r'finish\(answer\s*=\s*"([^"]+)"\)')
COMPLETION_MARKER = "finish("


class AgentLoopConfig(BaseModel):
    """Bounds and knobs of the agent loop."""

    max_iterations: int = Field(10, ge=1)
    stop_on_finish: bool = True
    temperature: float = 0.7
    tool_call_policy: ToolCallPolicy = ToolCallPolicy.FIRST

    @classmethod
    def from_settings(cls) -> "AgentLoopConfig":
        return cls(
            max_iterations=settings.MAX_ITERATIONS,
            stop_on_finish=settings.STOP_ON_FINISH,
            temperature=settings.TEMPERATURE,
            tool_call_policy=ToolCallPolicy(settings.TOOL_CALL_POLICY),
        )


class Decision(BaseModel):
    """Outcome of one Think step: the thought plus the pending actions, in call order."""

    content: str
    thought: Thought
    actions: List[Action] = Field(default_factory=list)
    tool_calls: List[ToolCall] = Field(default_factory=list)
    done: bool = False


# ---------------------------------------------------------------------------
# Response interpretation
# ---------------------------------------------------------------------------
def parse_thought(content: str) -> Thought:
    """
    Best-effort split of free text into a :class:`Thought`.

    Text after a ``Thought:`` marker is the reasoning; if that part contains ``Action:``, what
    follows becomes ``next_action``.  Without markers the whole text is the reasoning.
    """
    reasoning = content
    next_action: Optional[str] = None

    thought_match = _THOUGHT_MARKER.search(content)
    if thought_match:
        segment = content[thought_match.end() :]
        reasoning = segment.strip()
        action_match = _ACTION_MARKER.search(segment)
        if action_match:
            next_action = segment[action_match.end() :].strip()
            reasoning = segment[: action_match.start()].strip()

    return Thought(reasoning=reasoning, next_action=next_action)


def is_completion(response: ModelResponse) -> bool:
    """A response without tool calls finishes the loop on a completion marker or a stop signal."""
    return COMPLETION_MARKER in response.content or response.finish_reason == "stop"


def extract_final_answer(thought: Thought, fallback: str) -> str:
    """Prefer the answer of a ``finish(answer="...")`` action, else *fallback*."""
    if thought.next_action and thought.next_action.startswith("finish"):
        match = _FINISH_ANSWER.search(thought.next_action)
        if match:
            return match.group(1)
    return fallback


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------
class AgentLoop:
    """
    Runs ``Think -> Act -> Observe`` until the model is done or ``max_iterations`` is reached.

    Reaching the iteration bound is not an error: the most recent assistant text is returned.
    Tool failures come back as error observations and never abort the loop; backend failures do.
    """

    def __init__(self, agent: "Agent", config: Optional[AgentLoopConfig] = None) -> None:
        self.agent = agent
        self.config = config or AgentLoopConfig()
        self.state = AgentLoopState.IDLE
        self.iteration_count = 0

    async def run(self, task: str, on_event: Optional[EventCallback] = None) -> str:
        self.state = AgentLoopState.IDLE
        self.iteration_count = 0
        last_text = ""

        self.agent.add_user_message(task)
        await self._emit(on_event, "started", task)

        try:
            while self.iteration_count < self.config.max_iterations:
                self.iteration_count += 1

                self.state = AgentLoopState.THINKING
                decision = await self.agent.think()
                if decision.content:
                    last_text = decision.content
                await self._emit(on_event, "thought", decision.thought)

                if decision.actions:
                    self.state = AgentLoopState.ACTING
                    await self._emit(on_event, "action", decision.actions)
                    observations = await self._act(decision)

                    self.state = AgentLoopState.OBSERVING
                    await self._emit(on_event, "observation", observations)
                    continue

                if decision.done and self.config.stop_on_finish:
                    answer = extract_final_answer(decision.thought, last_text)
                    self.state = AgentLoopState.FINISHED
                    logger.debug(
                        "[%s] finished after %d iteration(s)", self.agent.name, self.iteration_count
                    )
                    await self._emit(on_event, "finished", answer)
                    return answer
        except Exception as exc:
            self.state = AgentLoopState.ERROR
            await self._emit(on_event, "error", exc)
            raise

        self.state = AgentLoopState.FINISHED
        logger.info(
            "[%s] reached max iterations (%d) without finishing",
            self.agent.name,
            self.config.max_iterations,
        )
        await self._emit(on_event, "finished", last_text)
        return last_text

    async def _act(self, decision: Decision) -> List[Observation]:
        pairs = list(zip(decision.actions, decision.tool_calls))
        if self.config.tool_call_policy is ToolCallPolicy.CONCURRENT and len(pairs) > 1:
            observations = await asyncio.gather(
                *(self.agent.execute_action(action, call) for action, call in pairs)
            )
            for (action, call), observation in zip(pairs, observations):
                self.agent.record_observation(action, call, observation)
            return list(observations)

        return [await self.agent.act(action, call) for action, call in pairs]

    async def _emit(self, callback: Optional[EventCallback], kind: str, payload: Any) -> None:
        if callback is None:
            return
        result = callback(AgentLoopEvent(kind=kind, iteration=self.iteration_count, payload=payload))
        if inspect.isawaitable(result):
            await result
