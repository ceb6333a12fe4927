import asyncio
import json
import logging
from datetime import datetime

from fastapi import WebSocket

from ..messages import ToolResult


class UILogHandler(logging.Handler):
    """Logging handler that forwards one agent's structured log records to the UI."""

    def __init__(self, ui: "UIPlugin", agent_id: str = None):
        super().__init__()
        self.ui = ui
        self.agent_id = agent_id

    def emit(self, record: logging.LogRecord) -> None:
        # Filter out debug level logs from being sent to client
        if record.levelno <= logging.DEBUG or not hasattr(record, "structured"):
            return
        if self.agent_id and record.structured.get("agent_id") != self.agent_id:
            return
        self.ui.log_structured(record.structured)


class UIPlugin:
    """Bridges one websocket client and the agent's observer hooks."""

    def __init__(self, websocket: WebSocket = None):
        self.websocket = websocket
        self.message_queue = asyncio.Queue()
        self.status = "Connected"
        self.step_counter = 0

    async def set_websocket(self, websocket: WebSocket):
        self.websocket = websocket
        self.status = "Connected"
        await self._send_state_update()

    async def add_message(self, content: str):
        await self.message_queue.put(content)

    async def read_message(self, first_message: str = None) -> str:
        """Combine the first queued message with anything sent meanwhile."""
        if first_message is None:
            first_message = await self.message_queue.get()
        extras = []
        while not self.message_queue.empty():
            extras.append(self.message_queue.get_nowait())
        return "\n".join([first_message, *extras])

    async def _send_to_ui(self, message_data: dict):
        if self.websocket:
            await self.websocket.send_text(json.dumps(message_data, ensure_ascii=False))

    async def _send_state_update(self):
        await self._send_to_ui({"type": "state", "status": self.status})

    def log_structured(self, structured_data: dict) -> None:
        asyncio.create_task(
            self._send_to_ui({"type": "structured_log", "content": self._format_structured_log(structured_data)})
        )

    def _format_structured_log(self, data: dict) -> str:
        log_type = data.get("log_type", "")
        agent_id = data.get("agent_id", "main")
        prefix = f"[{agent_id}] " if agent_id != "main" else ""

        formatters = {
            "tool_call": lambda: f"{data.get('tool_name', 'unknown')}({data.get('arguments', '')})",
            "tool_result": lambda: f"{data.get('tool_name', 'unknown')} executed - returned: {data.get('result', '')}",
            "user_input": lambda: data.get("content", ""),
            "round_start": lambda: f"{data.get('messages', 0)} messages",
            "round_end": lambda: f"round {data.get('round', '?')}",
            "cancelled": lambda: f"round {data.get('round', '?')}",
        }
        if log_type in formatters:
            return f"{prefix}{log_type.upper()}: {formatters[log_type]()}"
        return data.get("content", str(data))

    async def hook_on_text_delta(self, text: str):
        await self._send_to_ui({"type": "delta", "content": text})

    async def hook_on_assistant_message(self, text: str):
        await self._send_to_ui(
            {"type": "chat", "content": text, "timestamp": datetime.now().isoformat()}
        )

    async def hook_on_tool_result(self, result: ToolResult):
        self.step_counter += 1
        await self._send_to_ui(
            {
                "type": "tool",
                "name": result.name,
                "content": result.content,
                "is_error": result.is_error,
                "step": self.step_counter,
            }
        )

    async def hook_on_notice(self, kind: str, text: str):
        await self._send_to_ui({"type": "alert", "kind": kind, "content": text})

    async def hook_on_state(self, state: str):
        self.status = "Running" if state == "streaming" else "Connected"
        await self._send_state_update()
