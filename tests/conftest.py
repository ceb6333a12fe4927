from __future__ import annotations

import asyncio
import copy
import json

import pytest

from tool_chat.agent import Agent
from tool_chat.config import Settings


def sse(*payloads, done: bool = True) -> bytes:
    """Encode payloads the way a streaming completion endpoint frames them."""
    lines = [f"data: {json.dumps(p)}\n\n" for p in payloads]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def text_delta(text: str) -> dict:
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


def tool_delta(index=None, call_id=None, name=None, arguments=None) -> dict:
    fragment: dict = {}
    if index is not None:
        fragment["index"] = index
    if call_id is not None:
        fragment["id"] = call_id
    function = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    if function:
        fragment["function"] = function
    return {"choices": [{"index": 0, "delta": {"tool_calls": [fragment]}}]}


class ScriptedClient:
    """Stands in for LLMClient: each round replays a list of byte chunks."""

    def __init__(self, rounds):
        self.rounds = list(rounds)
        self.requests: list[dict] = []
        self.closed = False

    async def stream(self, body):
        self.requests.append(copy.deepcopy(body))
        script = self.rounds.pop(0)
        if isinstance(script, Exception):
            raise script
        for chunk in script:
            await asyncio.sleep(0)
            yield chunk

    async def close(self):
        self.closed = True


class RecordingPlugin:
    """Collects every observer notification the agent emits."""

    def __init__(self):
        self.deltas: list[str] = []
        self.assistant_messages: list[str] = []
        self.tool_results = []
        self.notices: list[tuple[str, str]] = []
        self.states: list[str] = []
        self.first_delta = asyncio.Event()

    def hook_on_text_delta(self, text):
        self.deltas.append(text)
        self.first_delta.set()

    def hook_on_assistant_message(self, text):
        self.assistant_messages.append(text)

    def hook_on_tool_result(self, result):
        self.tool_results.append(result)

    async def hook_on_notice(self, kind, text):
        self.notices.append((kind, text))

    def hook_on_state(self, state):
        self.states.append(state)


@pytest.fixture
def settings():
    return Settings(api_key="test-key", model="test-model", max_rounds=5)


@pytest.fixture
def recorder():
    return RecordingPlugin()


@pytest.fixture
def make_agent(settings, recorder):
    def _make(rounds, plugins=(), **kwargs):
        client = ScriptedClient(rounds)
        agent = Agent([*plugins, recorder], settings=settings, client=client, **kwargs)
        return agent, client

    return _make
