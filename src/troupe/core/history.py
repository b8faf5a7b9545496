"""Ordered conversation history owned by a single agent."""

import logging
from typing import (
    Dict,
    Iterable,
    List,
    Optional,
)

from pydantic import TypeAdapter

from troupe.core.schema import (
    Message,
    MessageRole,
)

logger = logging.getLogger(__name__)

_MESSAGES = TypeAdapter(List[Message])


class MessageHistory:
    """
    Append-only message list with the system message (if any) pinned at index 0.

    The only ways to drop messages are :meth:`clear`/:meth:`reset`, :meth:`remove_last`,
    :meth:`remove_at` and :meth:`update_system_prompt`, which swaps the system message.
    """

    def __init__(self, system_prompt: Optional[str] = None) -> None:
        self._system_prompt = system_prompt or None
        self._messages: List[Message] = []
        self._seed()

    def _seed(self) -> None:
        self._messages.clear()
        if self._system_prompt:
            self._messages.append(Message.system(self._system_prompt))

    @property
    def system_prompt(self) -> Optional[str]:
        return self._system_prompt

    def add(self, message: Message) -> None:
        """Append one message; a system message goes through :meth:`update_system_prompt`."""
        if message.role is MessageRole.SYSTEM:
            self.update_system_prompt(message.content)
            return
        self._messages.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        for message in messages:
            self.add(message)

    def messages(self) -> List[Message]:
        """Return a copy of the full sequence, system message first."""
        return list(self._messages)

    def recent(self, count: int) -> List[Message]:
        if count <= 0:
            return []
        return self._messages[-count:]

    def by_role(self, role: MessageRole) -> List[Message]:
        return [m for m in self._messages if m.role is role]

    def clear(self) -> None:
        """Drop every message except the system message."""
        self._seed()

    reset = clear

    def update_system_prompt(self, prompt: str) -> None:
        """Replace the system message and move it to position 0."""
        self._system_prompt = prompt or None
        self._messages = [m for m in self._messages if m.role is not MessageRole.SYSTEM]
        if self._system_prompt:
            self._messages.insert(0, Message.system(self._system_prompt))

    def remove_last(self) -> Optional[Message]:
        if not self._messages:
            return None
        return self._messages.pop()

    def remove_at(self, index: int) -> Optional[Message]:
        if not 0 <= index < len(self._messages):
            return None
        return self._messages.pop(index)

    def count(self) -> int:
        return len(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def summary(self) -> Dict[str, int]:
        """Per-role message counts plus the total."""
        counts = {role.value: 0 for role in MessageRole}
        for message in self._messages:
            counts[message.role.value] += 1
        counts["total"] = len(self._messages)
        return counts

    def export_json(self) -> str:
        return _MESSAGES.dump_json(self._messages, indent=2).decode("utf-8")

    def import_json(self, text: str) -> None:
        """
        Replace the history with messages decoded from *text*.

        Only the first system message survives and it is moved to index 0.
        """
        imported = _MESSAGES.validate_json(text)
        systems = [m for m in imported if m.role is MessageRole.SYSTEM]
        if len(systems) > 1:
            logger.warning("Imported history had %d system messages; keeping the first", len(systems))
        self._messages = [m for m in imported if m.role is not MessageRole.SYSTEM]
        self._system_prompt = systems[0].content if systems else None
        if self._system_prompt:
            self._messages.insert(0, Message.system(self._system_prompt))
