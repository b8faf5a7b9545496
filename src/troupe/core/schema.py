"""
Schema definitions for backend <-> agent <-> tool <-> coordinator messages.

These data models serve as the contract between the language-model backend, the agent loop, the
tool executor and the multi-agent coordinator.  We keep them separate from runtime logic so they
can be imported anywhere without side-effects.
"""

import uuid
from datetime import (
    datetime,
    timezone,
)
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class MessageRole(str, Enum):
    """Speaker of a conversation message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCallPolicy(str, Enum):
    """How the agent loop acts on a response that carries several tool calls."""

    FIRST = "first"
    SEQUENTIAL = "sequential"
    CONCURRENT = "concurrent"


class AgentLoopState(str, Enum):
    """States of the think -> act -> observe machine."""

    IDLE = "idle"
    THINKING = "thinking"
    ACTING = "acting"
    OBSERVING = "observing"
    FINISHED = "finished"
    ERROR = "error"


class CoordinationStrategy(str, Enum):
    """Algorithm used to combine several agents into one result."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    HIERARCHICAL = "hierarchical"
    COLLABORATIVE = "collaborative"


class CommunicationMode(str, Enum):
    """Delivery rule of the agent communication channel."""

    SHARED = "shared"
    DIRECTED = "directed"
    BROADCAST = "broadcast"


class ParallelResultOrder(str, Enum):
    """Order in which parallel outputs are assembled."""

    REGISTRATION = "registration"
    COMPLETION = "completion"


class MessageType(str, Enum):
    """Kind of inter-agent message."""

    TASK = "task"
    RESULT = "result"
    QUESTION = "question"
    ANSWER = "answer"
    NOTIFICATION = "notification"
    COLLABORATION = "collaboration"


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------
class ToolCall(BaseModel):
    """A tool invocation requested by the backend; ``arguments`` is a JSON object blob."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Backend call id")
    name: str = Field(..., description="Registered tool name")
    arguments: str = Field("{}", description="JSON-encoded argument object")


class Message(BaseModel):
    """One entry in an agent's conversation history."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str = ""
    tool_name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[List[ToolCall]] = None) -> "Message":
        return cls(role=MessageRole.ASSISTANT, content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool(cls, content: str, tool_call_id: str, tool_name: str) -> "Message":
        return cls(
            role=MessageRole.TOOL, content=content, tool_call_id=tool_call_id, tool_name=tool_name
        )


class TokenUsage(BaseModel):
    """Token accounting reported by a backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class Thought(BaseModel):
    """The model's stated rationale for the current step."""

    reasoning: str
    plan: List[str] = Field(default_factory=list)
    next_action: Optional[str] = None


class ModelResponse(BaseModel):
    """
    What a backend returns for one chat call.

    ``thought`` is set by backends that produce a structured decision; when it is absent the agent
    derives one from ``content``.
    """

    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Optional[TokenUsage] = None
    thought: Optional[Thought] = None


class Action(BaseModel):
    """An intent to call exactly one tool."""

    tool_name: str
    arguments: Dict[str, str] = Field(default_factory=dict)
    thought: Optional[Thought] = None
    tool_call_id: Optional[str] = None


class Observation(BaseModel):
    """Result of executing an :class:`Action`, successful or recovered."""

    content: str
    tool_name: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.metadata.get("error") == "true"


class ToolParameter(BaseModel):
    """Declared parameter of a tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "string"
    description: str = ""
    required: bool = True
    enum_values: Optional[List[str]] = None


# ---------------------------------------------------------------------------
# Multi-agent coordination
# ---------------------------------------------------------------------------
class TaskAllocation(BaseModel):
    """A planned assignment of work to one agent."""

    agent_id: str
    agent_name: str
    task: str
    priority: int = 0
    dependencies: List[str] = Field(default_factory=list)


class TaskResult(BaseModel):
    """Output of one agent inside a coordination strategy."""

    agent_id: str
    agent_name: str
    output: str
    success: bool = True
    error: Optional[str] = None


class CommunicationMessage(BaseModel):
    """A message exchanged over the agent communication channel; never mutated once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    sender: str
    receiver: Optional[str] = None
    type: MessageType
    content: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MessageFilter(BaseModel):
    """Criteria for querying the channel history; unset fields match anything."""

    sender: Optional[str] = None
    receiver: Optional[str] = None
    type: Optional[MessageType] = None

    def matches(self, message: CommunicationMessage) -> bool:
        if self.sender is not None and message.sender != self.sender:
            return False
        if self.receiver is not None and message.receiver != self.receiver:
            return False
        if self.type is not None and message.type != self.type:
            return False
        return True


class AgentLoopEvent(BaseModel):
    """Progress notification emitted by the agent loop."""

    kind: str  # started | thought | action | observation | finished | error
    iteration: int = 0
    payload: Any = None
