"""Shared fixtures: scripted backends that stand in for a real language model."""

import asyncio
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Union,
)

import pytest

from troupe.agent.agent import Agent
from troupe.agent.agent_loop import AgentLoopConfig
from troupe.agent.backend_interface import ChatBackend
from troupe.core.schema import (
    Message,
    MessageRole,
    ModelResponse,
    ToolCall,
)
from troupe.tools import (
    FunctionTool,
    ToolRegistry,
    tool,
)

Scripted = Union[ModelResponse, str, Exception, Callable[[Sequence[Message]], ModelResponse]]


class ScriptedBackend(ChatBackend):
    """Plays back a fixed list of responses and records every request."""

    model_name = "scripted"

    def __init__(self, responses: Optional[List[Scripted]] = None, default: Optional[Scripted] = None):
        self.responses = list(responses or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    async def chat(self, messages, tools=None, temperature=0.7) -> ModelResponse:
        self.calls.append({"messages": list(messages), "tools": tools, "temperature": temperature})
        if self.responses:
            item = self.responses.pop(0)
        elif self.default is not None:
            item = self.default
        else:
            raise AssertionError("ScriptedBackend ran out of responses")

        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(messages)
        if isinstance(item, str):
            item = ModelResponse(content=item, finish_reason="stop")
        return item


class ReplyBackend(ChatBackend):
    """Answers every prompt with ``"<label> says: <prompt>"`` and signals completion."""

    model_name = "reply"

    def __init__(self, label: str, delay: float = 0.0, error: Optional[Exception] = None):
        self.label = label
        self.delay = delay
        self.error = error
        self.inputs: List[str] = []

    async def chat(self, messages, tools=None, temperature=0.7) -> ModelResponse:
        prompt = [m for m in messages if m.role is MessageRole.USER][-1].content
        self.inputs.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ModelResponse(content=f"{self.label} says: {prompt}", finish_reason="stop")


def tool_call(name: str, arguments: str, call_id: str = "call_1") -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)


def calls_response(*calls: ToolCall, content: str = "") -> ModelResponse:
    return ModelResponse(content=content, tool_calls=list(calls), finish_reason="tool_calls")


@pytest.fixture
def echo_tool() -> FunctionTool:
    @tool("echo", param_descriptions={"text": "Text to echo back"})
    def echo(text: str) -> str:
        """Echo the input text back to the caller."""
        return "Echo: " + text

    return echo


@pytest.fixture
def registry(echo_tool: FunctionTool) -> ToolRegistry:
    return ToolRegistry([echo_tool])


@pytest.fixture
def loop_config() -> AgentLoopConfig:
    return AgentLoopConfig(max_iterations=5, stop_on_finish=True, temperature=0.2)


@pytest.fixture
def make_agent(loop_config: AgentLoopConfig) -> Callable[..., Agent]:
    def _make(name: str, backend: ChatBackend, **kwargs: Any) -> Agent:
        kwargs.setdefault("loop_config", loop_config)
        return Agent(name=name, backend=backend, **kwargs)

    return _make
