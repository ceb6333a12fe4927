from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tool_chat.app import app, create_agent
from tool_chat.plugins.ui_plugin import UIPlugin
from tool_chat.session_manager import SessionManager


class StubAgent:
    def __init__(self, session_id, plugins):
        self.session_id = session_id
        self.plugins = plugins
        self.cancelled = False
        self.closed = False

    def cancel(self):
        self.cancelled = True

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_session_manager_lifecycle():
    manager = SessionManager(StubAgent)
    ui = UIPlugin()

    first = manager.create_session(ui)
    second = manager.create_session()
    agent = manager.get_session(first)

    assert first != second
    assert agent.plugins == [ui]
    assert manager.get_session_count() == 2

    await manager.cleanup_session(first)
    assert agent.cancelled and agent.closed
    assert manager.get_session(first) is None

    await manager.cleanup_all()
    assert manager.get_session_count() == 0


def test_create_agent_registers_standard_tools():
    agent = create_agent("s1", [])
    assert agent.env.tool_registry.get_tool_names() == ["google_search", "ai_pipe", "js_exec"]


def test_health():
    with TestClient(app) as client:
        response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_websocket_reports_state_and_handles_clear():
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == {"type": "state", "status": "Connected"}
            ws.send_json({"type": "clear"})
            assert ws.receive_json() == {"type": "cleared"}


def test_websocket_treats_non_object_json_as_user_text(monkeypatch):
    import tool_chat.app as app_module

    monkeypatch.setattr(app_module.settings, "api_key", "")
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["type"] == "state"
            ws.send_text("[]")
            ws.send_json({"type": "clear"})
            frames = [ws.receive_json(), ws.receive_json()]

    assert {"type": "alert", "kind": "warning", "content": "Missing API key"} in frames
    assert {"type": "cleared"} in frames
