"""
Backend interface for troupe.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, tools,
coordination) stays model-agnostic and talks to a :class:`ChatBackend`.

We support two back-ends out of the box:

1. **OpenAI** chat completions with function calling (also any OpenAI-compatible endpoint via
   ``OPENAI_BASE_URL``).
2. **Anthropic** messages API with ``tool_use`` blocks.

Additional providers can be added by subclassing :class:`ChatBackend` and registering via
:func:`register_backend`.  Every network call goes through a :class:`RetryExecutor`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Type,
)

import anthropic
import openai

from troupe.agent.retry import (
    RetryExecutor,
    RetryPolicy,
)
from troupe.config import settings
from troupe.core.schema import (
    Message,
    MessageRole,
    ModelResponse,
    TokenUsage,
    ToolCall,
)

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Any]
ToolDeclarations = Sequence[Mapping[str, Any]]


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_BACKEND_REGISTRY: dict[str, Type["ChatBackend"]] = {}


def register_backend(name: str) -> Callable:
    """Decorator to register a backend class under *name*."""

    def wrapper(cls: Type["ChatBackend"]) -> Type["ChatBackend"]:
        _BACKEND_REGISTRY[name] = cls
        return cls

    return wrapper


def load_backend(name: str | None = None, **kwargs: Any) -> "ChatBackend":
    """
    Factory that returns an instantiated backend.

    Fallback order:
    1. *name* arg
    2. ``settings.BACKEND`` env option
    """
    target = name or settings.BACKEND
    cls = _BACKEND_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Backend '{target}' is not registered.")
    return cls(**kwargs)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class ChatBackend(ABC):
    """Abstract backend: ``chat(messages, tools, temperature) -> ModelResponse``."""

    model_name: str = "unknown"

    @abstractmethod
    async def chat(
        self,
        messages: Sequence[Message],
        tools: Optional[ToolDeclarations] = None,
        temperature: float = 0.7,
    ) -> ModelResponse:
        """Send the conversation and return the model's decision."""

    async def chat_stream(
        self,
        messages: Sequence[Message],
        tools: Optional[ToolDeclarations] = None,
        temperature: float = 0.7,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> ModelResponse:
        """
        Streaming variant.  Backends without native streaming deliver the whole content as one
        chunk.
        """
        response = await self.chat(messages, tools=tools, temperature=temperature)
        if on_chunk is not None and response.content:
            on_chunk(response.content)
        return response


# ---------------------------------------------------------------------------
# Concrete backends
# ---------------------------------------------------------------------------
@register_backend("openai")
class OpenAIBackend(ChatBackend):
    """OpenAI chat-completions backend."""

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        max_tokens: int | None = None,
        retry_policy: RetryPolicy | None = None,
        client: Any = None,
    ) -> None:
        self.model_name = model or settings.OPENAI_MODEL
        self.max_tokens = max_tokens
        self._client = client or openai.AsyncOpenAI(
            api_key=api_key or settings.OPENAI_API_KEY,
            base_url=base_url or settings.OPENAI_BASE_URL,
        )
        self._retry = RetryExecutor(retry_policy or RetryPolicy.from_settings())

    @staticmethod
    def _wire_message(message: Message) -> Dict[str, Any]:
        if message.role is MessageRole.TOOL:
            return {
                "role": "tool",
                "tool_call_id": message.tool_call_id,
                "content": message.content,
            }
        if message.role is MessageRole.ASSISTANT and message.tool_calls:
            return {
                "role": "assistant",
                "content": message.content or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in message.tool_calls
                ],
            }
        return {"role": message.role.value, "content": message.content}

    def _request(
        self, messages: Sequence[Message], tools: Optional[ToolDeclarations], temperature: float
    ) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": self.model_name,
            "messages": [self._wire_message(m) for m in messages],
            "temperature": temperature,
        }
        if tools:
            request["tools"] = [{"type": "function", "function": dict(decl)} for decl in tools]
        if self.max_tokens:
            request["max_tokens"] = self.max_tokens
        return request

    async def chat(
        self,
        messages: Sequence[Message],
        tools: Optional[ToolDeclarations] = None,
        temperature: float = 0.7,
    ) -> ModelResponse:
        request = self._request(messages, tools, temperature)
        resp = await self._retry.execute(lambda: self._client.chat.completions.create(**request))

        choice = resp.choices[0]
        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "{}")
            for tc in choice.message.tool_calls or []
        ]
        usage = None
        if resp.usage is not None:
            usage = TokenUsage(
                prompt_tokens=resp.usage.prompt_tokens,
                completion_tokens=resp.usage.completion_tokens,
                total_tokens=resp.usage.total_tokens,
            )
        logger.debug(
            "OpenAI response: finish=%s tool_calls=%d", choice.finish_reason, len(tool_calls)
        )
        return ModelResponse(
            content=choice.message.content or "",
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason,
            usage=usage,
        )

    async def chat_stream(
        self,
        messages: Sequence[Message],
        tools: Optional[ToolDeclarations] = None,
        temperature: float = 0.7,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> ModelResponse:
        request = self._request(messages, tools, temperature)
        request["stream"] = True
        stream = await self._retry.execute(lambda: self._client.chat.completions.create(**request))

        parts: List[str] = []
        pending: Dict[int, Dict[str, str]] = {}
        finish_reason: str | None = None
        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            if delta.content:
                parts.append(delta.content)
                if on_chunk is not None:
                    on_chunk(delta.content)
            # Tool-call fragments arrive keyed by index; concatenate them
            for fragment in delta.tool_calls or []:
                acc = pending.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                if fragment.id:
                    acc["id"] = fragment.id
                if fragment.function is not None:
                    acc["name"] += fragment.function.name or ""
                    acc["arguments"] += fragment.function.arguments or ""
            finish_reason = choice.finish_reason or finish_reason

        tool_calls = [
            ToolCall(id=acc["id"] or f"call_{index}", name=acc["name"], arguments=acc["arguments"] or "{}")
            for index, acc in sorted(pending.items())
        ]
        return ModelResponse(content="".join(parts), tool_calls=tool_calls, finish_reason=finish_reason)


def _tool_input(arguments: str) -> Dict[str, Any]:
    # A malformed blob was already reported to the model as an error observation
    try:
        decoded = json.loads(arguments or "{}")
    except json.JSONDecodeError:
        return {}
    return decoded if isinstance(decoded, dict) else {}


_ANTHROPIC_STOP_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "tool_use": "tool_calls",
    "max_tokens": "length",
}


@register_backend("anthropic")
class AnthropicBackend(ChatBackend):
    """Anthropic Claude messages backend."""

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        max_tokens: int | None = None,
        retry_policy: RetryPolicy | None = None,
        client: Any = None,
    ) -> None:
        self.model_name = model or settings.ANTHROPIC_MODEL
        self.max_tokens = max_tokens or settings.MAX_TOKENS
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key or settings.ANTHROPIC_API_KEY
        )
        self._retry = RetryExecutor(retry_policy or RetryPolicy.from_settings())

    @staticmethod
    def _wire_messages(messages: Sequence[Message]) -> tuple[str, List[Dict[str, Any]]]:
        """Split out the system prompt and convert the rest into content-block messages."""
        system_parts: List[str] = []
        wire: List[Dict[str, Any]] = []
        for message in messages:
            if message.role is MessageRole.SYSTEM:
                system_parts.append(message.content)
            elif message.role is MessageRole.TOOL:
                block = {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id,
                    "content": message.content,
                }
                # Results for one assistant turn must share a single user message
                previous = wire[-1] if wire else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                ):
                    previous["content"].append(block)
                else:
                    wire.append({"role": "user", "content": [block]})
            elif message.role is MessageRole.ASSISTANT:
                blocks: List[Dict[str, Any]] = []
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
                for call in message.tool_calls:
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": call.id,
                            "name": call.name,
                            "input": _tool_input(call.arguments),
                        }
                    )
                if blocks:
                    wire.append({"role": "assistant", "content": blocks})
            else:
                wire.append({"role": "user", "content": message.content})
        return "\n\n".join(system_parts), wire

    async def chat(
        self,
        messages: Sequence[Message],
        tools: Optional[ToolDeclarations] = None,
        temperature: float = 0.7,
    ) -> ModelResponse:
        system, wire = self._wire_messages(messages)
        request: Dict[str, Any] = {
            "model": self.model_name,
            "max_tokens": self.max_tokens,
            "messages": wire,
            "temperature": temperature,
        }
        if system:
            request["system"] = system
        if tools:
            request["tools"] = [
                {
                    "name": decl["name"],
                    "description": decl.get("description", ""),
                    "input_schema": decl["parameters"],
                }
                for decl in tools
            ]

        response = await self._retry.execute(lambda: self._client.messages.create(**request))

        texts: List[str] = []
        tool_calls: List[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(id=block.id, name=block.name, arguments=json.dumps(block.input))
                )

        usage = None
        if getattr(response, "usage", None) is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            )
        stop_reason = response.stop_reason
        logger.debug("Anthropic response: stop=%s tool_calls=%d", stop_reason, len(tool_calls))
        return ModelResponse(
            content="".join(texts),
            tool_calls=tool_calls,
            finish_reason=_ANTHROPIC_STOP_REASONS.get(stop_reason, stop_reason),
            usage=usage,
        )
