"""Tests for the agent communication channel."""

from typing import (
    Dict,
    List,
)

import pytest

from troupe.core.schema import (
    CommunicationMessage,
    CommunicationMode,
    MessageFilter,
    MessageType,
)
from troupe.multi_agent.communication import AgentCommunication


def _channel(mode: CommunicationMode) -> tuple[AgentCommunication, Dict[str, List[str]]]:
    channel = AgentCommunication(mode)
    inbox: Dict[str, List[str]] = {"alice": [], "bob": [], "carol": []}
    for agent_id, received in inbox.items():
        channel.subscribe(agent_id, lambda message, received=received: received.append(message.content))
    return channel, inbox


@pytest.mark.parametrize(
    "mode, expected",
    [
        (CommunicationMode.SHARED, {"alice": ["hi"], "bob": ["hi"], "carol": ["hi"]}),
        (CommunicationMode.DIRECTED, {"alice": [], "bob": ["hi"], "carol": []}),
        (CommunicationMode.BROADCAST, {"alice": [], "bob": ["hi"], "carol": ["hi"]}),
    ],
)
async def test_delivery_by_mode(mode: CommunicationMode, expected: Dict[str, List[str]]) -> None:
    channel, inbox = _channel(mode)

    await channel.send(
        CommunicationMessage(sender="alice", receiver="bob", type=MessageType.QUESTION, content="hi")
    )

    assert inbox == expected
    assert len(channel.get_history()) == 1


async def test_undeliverable_message_is_still_recorded() -> None:
    channel = AgentCommunication(CommunicationMode.DIRECTED)
    message = CommunicationMessage(sender="a", receiver="nobody", type=MessageType.TASK, content="x")

    await channel.send(message)

    assert channel.get_history() == [message]


async def test_async_handlers_are_awaited() -> None:
    channel = AgentCommunication(CommunicationMode.SHARED)
    received: List[str] = []

    async def handler(message: CommunicationMessage) -> None:
        received.append(message.id)

    channel.subscribe("x", handler)
    sent = await channel.post("y", "ping")

    assert received == [sent.id]
    assert sent.type is MessageType.NOTIFICATION


async def test_unsubscribe_stops_delivery() -> None:
    channel, inbox = _channel(CommunicationMode.SHARED)
    channel.unsubscribe("carol")

    await channel.post("alice", "after")

    assert inbox["carol"] == []
    assert channel.subscribers == ["alice", "bob"]


async def test_history_filters() -> None:
    channel = AgentCommunication(CommunicationMode.SHARED)
    await channel.post("a", "task for b", type=MessageType.TASK, receiver="b")
    await channel.post("b", "result", type=MessageType.RESULT, receiver="a")
    await channel.post("a", "task for c", type=MessageType.TASK, receiver="c")

    assert [m.content for m in channel.get_history(sender="a")] == ["task for b", "task for c"]
    assert [m.content for m in channel.get_history(receiver="a")] == ["result"]
    assert [m.content for m in channel.get_history(MessageFilter(type=MessageType.TASK, receiver="c"))] == [
        "task for c"
    ]

    channel.clear_history()
    assert channel.get_history() == []


async def test_handler_error_propagates_after_recording() -> None:
    channel = AgentCommunication(CommunicationMode.SHARED)

    def broken(message: CommunicationMessage) -> None:
        raise RuntimeError("handler failed")

    channel.subscribe("x", broken)
    with pytest.raises(RuntimeError):
        await channel.post("y", "hello")

    assert [m.content for m in channel.get_history()] == ["hello"]
