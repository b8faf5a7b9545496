"""The :class:`Agent`: one conversation, one backend, one tool registry."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import (
    Iterable,
    List,
    Optional,
)

from troupe.agent.agent_loop import (
    AgentLoop,
    AgentLoopConfig,
    Decision,
    EventCallback,
    is_completion,
    parse_thought,
)
from troupe.agent.backend_interface import (
    ChatBackend,
    ChunkCallback,
)
from troupe.agent.tool_executor import (
    InvalidArgumentsError,
    ToolExecutionError,
    ToolExecutor,
    decode_arguments,
)
from troupe.core.history import MessageHistory
from troupe.core.schema import (
    Action,
    Message,
    ModelResponse,
    Observation,
    Thought,
    ToolCall,
    ToolCallPolicy,
)
from troupe.tools import (
    Tool,
    ToolRegistry,
)

logger = logging.getLogger(__name__)


class Agent:
    """
    A stateful conversational unit.

    The agent exclusively owns its message history; every mutation goes through its own methods and
    :meth:`run` is serialized with a lock, so one agent never interleaves two conversations.
    """

    def __init__(
        self,
        name: str,
        backend: ChatBackend,
        system_prompt: str = "",
        registry: Optional[ToolRegistry] = None,
        loop_config: Optional[AgentLoopConfig] = None,
    ) -> None:
        self.name = name
        self.backend = backend
        self.registry = registry if registry is not None else ToolRegistry()
        self.executor = ToolExecutor(self.registry)
        self.loop_config = loop_config or AgentLoopConfig.from_settings()
        self._history = MessageHistory(system_prompt)
        self._loop: Optional[AgentLoop] = None
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<Agent {self.name!r} tools={self.registry.names()}>"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def loop(self) -> AgentLoop:
        if self._loop is None:
            self._loop = AgentLoop(self, self.loop_config)
        return self._loop

    async def run(self, task: str, on_event: Optional[EventCallback] = None) -> str:
        """Drive the think/act/observe loop on *task* and return the final assistant text."""
        async with self._lock:
            logger.debug("[%s] run: %s", self.name, task)
            return await self.loop.run(task, on_event=on_event)

    async def stream_run(self, task: str, on_chunk: Optional[ChunkCallback] = None) -> str:
        """
        One streamed Think step: content is pushed to *on_chunk* as it arrives.  Tool calls in
        the response are recorded but not executed.
        """
        async with self._lock:
            self.add_user_message(task)
            response = await self.backend.chat_stream(
                self._history.messages(),
                tools=self.registry.to_model_tools() or None,
                temperature=self.loop_config.temperature,
                on_chunk=on_chunk,
            )
            self._record_response(response)
            return response.content

    @property
    def system_prompt(self) -> str:
        return self._history.system_prompt or ""

    def set_system_prompt(self, prompt: str) -> None:
        """Replace the system message; it moves to the head of the history."""
        self._history.update_system_prompt(prompt)

    def register_tool(self, tool_obj: Tool) -> None:
        self.registry.register(tool_obj)

    def register_tools(self, tools: Iterable[Tool]) -> None:
        self.registry.register_many(tools)

    def clear_history(self) -> None:
        """Forget the conversation, keeping only the system message."""
        self._history.clear()

    def history(self) -> List[Message]:
        return self._history.messages()

    # ------------------------------------------------------------------
    # Loop steps
    # ------------------------------------------------------------------
    def add_user_message(self, content: str) -> None:
        self._history.add(Message.user(content))

    async def think(self) -> Decision:
        """Ask the backend for the next step given the whole history."""
        tools = self.registry.to_model_tools()
        response = await self.backend.chat(
            self._history.messages(),
            tools=tools or None,
            temperature=self.loop_config.temperature,
        )
        return self._record_response(response)

    def _record_response(self, response: ModelResponse) -> Decision:
        calls = list(response.tool_calls)
        if self.loop_config.tool_call_policy is ToolCallPolicy.FIRST and len(calls) > 1:
            logger.debug(
                "[%s] acting on first of %d tool calls: %s",
                self.name,
                len(calls),
                [call.name for call in calls],
            )
            calls = calls[:1]

        self._history.add(Message.assistant(response.content, calls))

        thought = response.thought or parse_thought(response.content)
        actions = [self._action_for(call, thought) for call in calls]
        return Decision(
            content=response.content,
            thought=thought,
            actions=actions,
            tool_calls=calls,
            done=not actions and is_completion(response),
        )

    def _action_for(self, call: ToolCall, thought: Thought) -> Action:
        try:
            arguments = decode_arguments(call.name, call.arguments)
        except InvalidArgumentsError:
            # The executor re-decodes the raw call and reports the problem as an observation
            arguments = {}
        return Action(tool_name=call.name, arguments=arguments, thought=thought, tool_call_id=call.id)

    async def act(self, action: Action, call: Optional[ToolCall] = None) -> Observation:
        """Execute *action* and append its observation to the history as a tool message."""
        call = call or self._call_for(action)
        observation = await self.execute_action(action, call)
        self.record_observation(action, call, observation)
        return observation

    async def execute_action(self, action: Action, call: ToolCall) -> Observation:
        """Run the tool; failures are folded into an error observation."""
        try:
            return await self.executor.execute(call)
        except ToolExecutionError as exc:
            logger.warning("[%s] tool '%s' failed: %s", self.name, action.tool_name, exc)
            return Observation(
                content=f"Tool '{action.tool_name}' failed: {exc}",
                tool_name=action.tool_name,
                metadata={
                    "error": "true",
                    "error_type": type(exc).__name__,
                    "tool_call_id": call.id,
                },
            )

    def record_observation(self, action: Action, call: ToolCall, observation: Observation) -> None:
        self._history.add(Message.tool(observation.content, call.id, action.tool_name))

    @staticmethod
    def _call_for(action: Action) -> ToolCall:
        if action.tool_call_id:
            return ToolCall(
                id=action.tool_call_id, name=action.tool_name, arguments=json.dumps(action.arguments)
            )
        return ToolCall(name=action.tool_name, arguments=json.dumps(action.arguments))
