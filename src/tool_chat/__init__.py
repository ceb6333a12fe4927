"""
Tool Chat - a streaming LLM agent that calls tools mid-response.

The agent streams a chat completion, rebuilds text and tool calls from the
deltas, runs the requested tools concurrently and loops until the model
answers without tools.
"""

__version__ = "0.1.0"

from .agent import Agent, AgentState, Outcome, RunResult, steering_hint
from .config import Settings, load_settings
from .stream import DeltaAccumulator, SSEDecoder
from .tool_registry import ToolRegistry, callable_to_tool_schema

__all__ = [
    "Agent",
    "AgentState",
    "DeltaAccumulator",
    "Outcome",
    "RunResult",
    "SSEDecoder",
    "Settings",
    "ToolRegistry",
    "callable_to_tool_schema",
    "load_settings",
    "steering_hint",
]
