"""Tests for tool schema generation and dispatch."""
from __future__ import annotations

import asyncio
import json

import pytest

from tool_chat.messages import Message, ToolCallRecord
from tool_chat.plugins.js_plugin import JSPlugin
from tool_chat.plugins.pipe_plugin import PipePlugin
from tool_chat.plugins.search_plugin import SearchPlugin
from tool_chat.tool_registry import (
    ToolContext,
    ToolRegistry,
    callable_to_tool_schema,
    parse_arguments,
    tool,
)
from tool_chat.errors import ArgumentParseError


def _call(name: str, arguments: str, call_id: str = "call_1") -> ToolCallRecord:
    return ToolCallRecord(id=call_id, name=name, arguments=arguments)


# ─── Schemas ──────────────────────────────────────────────────────────────────

def test_schema_for_plain_function():
    def add(a: int, b: float = 1.5) -> float:
        """Add two numbers."""
        return a + b

    schema = callable_to_tool_schema(add, "add")
    assert schema["type"] == "function"
    fn = schema["function"]
    assert fn["name"] == "add"
    assert fn["description"] == "Add two numbers."
    assert fn["parameters"]["properties"]["a"]["type"] == "integer"
    assert fn["parameters"]["properties"]["b"] == {
        "type": "number",
        "description": "The b parameter",
        "default": 1.5,
    }
    assert fn["parameters"]["required"] == ["a"]


def test_schema_honours_tool_decorator_and_skips_context():
    @tool(required=["payload"], payload={"additionalProperties": True})
    def send(payload: dict = None, context: ToolContext = None):
        """Send a payload.

        Args:
            payload: Body to send
        """

    params = callable_to_tool_schema(send, "send")["function"]["parameters"]
    assert list(params["properties"]) == ["payload"]
    assert params["properties"]["payload"] == {
        "type": "object",
        "description": "Body to send",
        "additionalProperties": True,
    }
    assert params["required"] == ["payload"]


def test_standard_tool_schemas():
    registry = ToolRegistry()
    for plugin in (SearchPlugin(), PipePlugin(), JSPlugin(sandbox=object())):
        for method in plugin.hook_provide_tools():
            registry.register_callable(method)

    by_name = {s["function"]["name"]: s["function"] for s in registry.get_schemas()}
    assert set(by_name) == {"google_search", "ai_pipe", "js_exec"}

    search = by_name["google_search"]["parameters"]
    assert search["required"] == ["query"]
    assert search["properties"]["query"]["type"] == "string"
    assert search["properties"]["num"] == {
        "type": "number",
        "description": "Number of results (1-5)",
        "default": 3,
        "minimum": 1,
        "maximum": 5,
    }
    assert by_name["ai_pipe"]["parameters"]["properties"]["payload"]["type"] == "object"
    assert by_name["ai_pipe"]["parameters"]["required"] == ["payload"]
    assert by_name["js_exec"]["parameters"]["required"] == ["code"]
    assert by_name["js_exec"]["description"].startswith("Execute JavaScript code")


def test_register_duplicate_name_rejected():
    registry = ToolRegistry()
    registry.register_callable(lambda: None, name="dup")
    with pytest.raises(ValueError):
        registry.register_callable(lambda: None, name="dup")


# ─── Arguments ────────────────────────────────────────────────────────────────

def test_parse_arguments_empty_is_empty_object():
    assert parse_arguments("") == {}


@pytest.mark.parametrize("text", ['{"query": ', "[1, 2]", "nope"])
def test_parse_arguments_rejects_non_objects(text):
    with pytest.raises(ArgumentParseError):
        parse_arguments(text)


# ─── Dispatch ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_dispatch_sync_and_async_handlers():
    registry = ToolRegistry()

    def echo(msg: str) -> dict:
        return {"echo": msg}

    async def shout(msg: str) -> str:
        return msg.upper()

    registry.register_callable(echo)
    registry.register_callable(shout)

    first = await registry.dispatch(_call("echo", '{"msg": "hi"}'))
    second = await registry.dispatch(_call("shout", '{"msg": "hi"}', "call_2"))

    assert json.loads(first.content) == {"echo": "hi"}
    assert first.tool_call_id == "call_1"
    assert json.loads(second.content) == {"text": "HI"}
    assert not first.is_error and not second.is_error


@pytest.mark.asyncio
async def test_dispatch_unknown_tool_becomes_error_result():
    registry = ToolRegistry()
    errors = []
    result = await registry.dispatch(
        _call("nonexistent", "{}"), on_error=lambda name, msg: errors.append((name, msg))
    )
    assert result.is_error
    assert json.loads(result.content) == {"error": "Unknown tool nonexistent"}
    assert errors == [("nonexistent", "Unknown tool nonexistent")]


@pytest.mark.asyncio
async def test_dispatch_bad_arguments_becomes_error_result():
    registry = ToolRegistry()
    registry.register_callable(lambda code: code, name="js_exec")
    result = await registry.dispatch(_call("js_exec", '{"code": "1'))
    assert result.is_error
    assert json.loads(result.content)["error"].startswith("Error parsing arguments")


@pytest.mark.asyncio
async def test_dispatch_passes_read_only_context():
    registry = ToolRegistry()
    seen = {}

    def peek(context: ToolContext = None):
        seen["text"] = context.recent_user_text(2)
        return "ok"

    registry.register_callable(peek)
    context = ToolContext(
        messages=(
            Message(role="user", content="one"),
            Message(role="assistant", content="reply"),
            Message(role="user", content="two"),
            Message(role="user", content="three"),
        )
    )
    await registry.dispatch(_call("peek", ""), context)
    assert seen["text"] == "two\nthree"


@pytest.mark.asyncio
async def test_dispatch_all_runs_concurrently_and_keeps_call_order():
    registry = ToolRegistry()
    second_started = asyncio.Event()
    finished = []

    async def slow() -> str:
        # Deadlocks unless fast() runs at the same time
        await asyncio.wait_for(second_started.wait(), timeout=2)
        await asyncio.sleep(0.01)
        finished.append("slow")
        return "slow"

    async def fast() -> str:
        second_started.set()
        finished.append("fast")
        return "fast"

    def broken() -> str:
        raise RuntimeError("boom")

    registry.register_callable(slow)
    registry.register_callable(fast)
    registry.register_callable(broken)

    results = await registry.dispatch_all(
        [_call("slow", "", "a"), _call("broken", "", "b"), _call("fast", "", "c")]
    )

    assert finished == ["fast", "slow"]
    assert [r.tool_call_id for r in results] == ["a", "b", "c"]
    assert json.loads(results[0].content) == {"text": "slow"}
    assert json.loads(results[1].content) == {"error": "boom"}
    assert json.loads(results[2].content) == {"text": "fast"}
