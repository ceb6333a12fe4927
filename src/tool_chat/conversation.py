"""Append-only conversation log owned by a single Agent."""

from __future__ import annotations

from typing import Iterable, Iterator, List, Tuple

from .messages import Message


def recent_user_text(messages: Iterable[Message], max_turns: int = 3) -> str:
    """Join the content of the last ``max_turns`` user messages."""
    if max_turns <= 0:
        return ""
    users = [m for m in messages if m.role == "user"]
    return "\n".join(m.content or "" for m in users[-max_turns:])


class Conversation:
    """Ordered, role-tagged message log replayed to the model each round."""

    def __init__(self, messages: List[Message] | None = None):
        self._messages: List[Message] = list(messages or [])

    def append(self, message: Message) -> None:
        if message.role == "tool" and not message.tool_call_id:
            raise ValueError("tool messages must carry a tool_call_id")
        self._messages.append(message)

    def extend(self, messages: Iterable[Message]) -> None:
        for message in messages:
            self.append(message)

    def snapshot(self) -> Tuple[Message, ...]:
        """Read-only view of the log at this instant."""
        return tuple(self._messages)

    def recent_user_text(self, max_turns: int = 3) -> str:
        return recent_user_text(self._messages, max_turns)

    def to_wire(self) -> List[dict]:
        return [m.to_wire() for m in self._messages]

    def clear(self) -> None:
        self._messages.clear()

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __getitem__(self, index):
        return self._messages[index]
