"""Message bus that lets independently addressed agents talk to each other."""

import asyncio
import inspect
import logging
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
)

from troupe.core.schema import (
    CommunicationMessage,
    CommunicationMode,
    MessageFilter,
    MessageType,
)

logger = logging.getLogger(__name__)

MessageHandler = Callable[[CommunicationMessage], Any]


class AgentCommunication:
    """
    Append-only message history plus synchronous delivery to subscribers.

    Delivery depends on the channel mode:

    * ``shared`` - every subscriber, the sender included.
    * ``directed`` - only the declared receiver, if subscribed.
    * ``broadcast`` - every subscriber except the sender.

    A message is recorded before it is delivered, so it stays in the history even when nobody is
    subscribed to receive it.  Handlers may be plain or async callables.  A handler must not await
    :meth:`send` on the same channel; schedule a task instead.
    """

    def __init__(self, mode: CommunicationMode = CommunicationMode.SHARED) -> None:
        self.mode = CommunicationMode(mode)
        self._history: List[CommunicationMessage] = []
        self._subscribers: Dict[str, MessageHandler] = {}
        self._lock = asyncio.Lock()

    def subscribe(self, agent_id: str, handler: MessageHandler) -> None:
        """Register *handler* for *agent_id*, replacing any previous one."""
        self._subscribers[agent_id] = handler

    def unsubscribe(self, agent_id: str) -> None:
        self._subscribers.pop(agent_id, None)

    @property
    def subscribers(self) -> List[str]:
        return list(self._subscribers)

    async def send(self, message: CommunicationMessage) -> None:
        """Record *message* and deliver it; deliveries of one message finish before the next."""
        async with self._lock:
            self._history.append(message)
            for agent_id in self._recipients(message):
                handler = self._subscribers.get(agent_id)
                if handler is None:
                    continue
                logger.debug("Delivering %s message %s to '%s'", message.type.value, message.id, agent_id)
                result = handler(message)
                if inspect.isawaitable(result):
                    await result

    async def post(
        self,
        sender: str,
        content: str,
        type: MessageType = MessageType.NOTIFICATION,  # pylint: disable=redefined-builtin
        receiver: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CommunicationMessage:
        """Build a message and :meth:`send` it."""
        message = CommunicationMessage(
            sender=sender, receiver=receiver, type=type, content=content, metadata=metadata or {}
        )
        await self.send(message)
        return message

    def _recipients(self, message: CommunicationMessage) -> List[str]:
        if self.mode is CommunicationMode.DIRECTED:
            return [message.receiver] if message.receiver is not None else []
        if self.mode is CommunicationMode.BROADCAST:
            return [agent_id for agent_id in self._subscribers if agent_id != message.sender]
        return list(self._subscribers)

    def get_history(
        self, message_filter: Optional[MessageFilter] = None, **criteria: Any
    ) -> List[CommunicationMessage]:
        """
        Return recorded messages, oldest first.

        Filter either with a :class:`MessageFilter` or with ``sender=``, ``receiver=`` and
        ``type=`` keyword arguments.
        """
        if message_filter is None and criteria:
            message_filter = MessageFilter(**criteria)
        if message_filter is None:
            return list(self._history)
        return [m for m in self._history if message_filter.matches(m)]

    def clear_history(self) -> None:
        self._history.clear()
