import asyncio
import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from .agent import Agent
from .config import Settings, load_settings
from .plugins.js_plugin import JSPlugin
from .plugins.pipe_plugin import PipePlugin
from .plugins.search_plugin import SearchPlugin
from .plugins.ui_plugin import UILogHandler, UIPlugin
from .session_manager import SessionManager

logger = logging.getLogger(__name__)

settings: Settings = load_settings()


def create_agent(session_id: str, extra_plugins: list) -> Agent:
    """Build an agent with the three standard tools plus per-connection plugins."""
    plugins = [
        SearchPlugin(api_key=settings.google_key, cx=settings.google_cx),
        PipePlugin(url=settings.aipipe_url, token=settings.aipipe_token),
        JSPlugin(timeout=settings.exec_timeout),
        *extra_plugins,
    ]
    return Agent(plugins, settings=settings, agent_id=session_id)


session_manager = SessionManager(create_agent)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await session_manager.cleanup_all()


app = FastAPI(title="Tool Chat", lifespan=lifespan)


async def message_loop(agent: Agent, ui_plugin: UIPlugin):
    """Feed queued user messages to the agent, one run at a time."""
    while True:
        message = await ui_plugin.read_message()
        try:
            await agent.run(message)
        except Exception as e:
            logger.error(f"ERROR: Error processing message: {e}")
            await ui_plugin.hook_on_notice("danger", f"Sorry, I encountered an error: {e}")


async def handle_client_message(message_data: dict, agent: Agent, ui_plugin: UIPlugin):
    message_type = message_data.get("type", "user_message")
    if message_type == "stop":
        agent.cancel()
    elif message_type == "clear":
        if agent.is_running:
            await ui_plugin.hook_on_notice("warning", "Stop the agent before clearing")
        else:
            agent.clear()
            ui_plugin.step_counter = 0
            await ui_plugin._send_to_ui({"type": "cleared"})
    elif message_type == "user_message":
        content = (message_data.get("content") or "").strip()
        if content:
            await ui_plugin.add_message(content)
    else:
        logger.warning(f"SYSTEM: Unknown message type {message_type!r}")


@app.get("/health")
async def health():
    return {"status": "ok", "sessions": session_manager.get_session_count()}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    ui_plugin = UIPlugin()
    await ui_plugin.set_websocket(websocket)
    session_id = session_manager.create_session(ui_plugin)
    agent = session_manager.get_session(session_id)

    log_handler = UILogHandler(ui_plugin, agent_id=session_id)
    package_logger = logging.getLogger("tool_chat")
    package_logger.addHandler(log_handler)

    processing_task = asyncio.create_task(message_loop(agent, ui_plugin))
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message_data = json.loads(data)
            except json.JSONDecodeError:
                message_data = None
            if not isinstance(message_data, dict):
                message_data = {"type": "user_message", "content": data}
            await handle_client_message(message_data, agent, ui_plugin)
    except WebSocketDisconnect:
        logger.info(f"SYSTEM: Client disconnected from session {session_id}")
    finally:
        processing_task.cancel()
        package_logger.removeHandler(log_handler)
        ui_plugin.websocket = None
        await session_manager.cleanup_session(session_id)
