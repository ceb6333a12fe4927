"""Message types exchanged with the model and the tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ToolCallRecord:
    """One tool invocation as reconstructed from the stream.

    ``arguments`` holds the raw JSON text exactly as streamed; it is only
    parsed by the dispatcher.
    """

    id: str
    name: str
    arguments: str = ""

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ToolResult:
    """Normalized tool output; ``content`` is always a JSON string."""

    tool_call_id: str
    name: str
    content: str
    is_error: bool = False

    def to_message(self) -> "Message":
        return Message(
            role="tool",
            content=self.content,
            tool_call_id=self.tool_call_id,
            name=self.name,
        )


@dataclass
class Message:
    role: str  # "system" | "user" | "assistant" | "tool"
    content: str = ""
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        """Chat Completions representation of this message."""
        data: Dict[str, Any] = {"role": self.role, "content": self.content or ""}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.role == "tool":
            data["tool_call_id"] = self.tool_call_id
            if self.name:
                data["name"] = self.name
        return data
