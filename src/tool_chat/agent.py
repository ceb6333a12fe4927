import asyncio
import enum
import inspect
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import Settings
from .conversation import Conversation
from .errors import MissingCredentialError, RoundLimitExceeded, TransportError
from .llm_client import LLMClient
from .messages import Message, ToolCallRecord, ToolResult
from .stream import DeltaAccumulator, iter_events
from .tool_registry import ToolContext, ToolRegistry

# Set up logging for message history
logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful browser-based agent. Use tools when needed. Prefer concise answers. "
    "Tools available: google_search (for web snippets), ai_pipe (proxy API), js_exec "
    "(sandboxed JS). When you call tools, ask only for what you need and then integrate "
    "results before continuing. Continue calling tools until the task is complete. "
    "Interviewing mode: ask exactly one question at a time and wait for the user's answer "
    "before asking the next. Do not batch multiple questions in one message."
)

RECENCY_PATTERN = re.compile(r"\b(news|recent|latest|today|breaking)\b", re.IGNORECASE)
RECENCY_HINT = "User requested recent information. Consider calling google_search."
TOOLS_NOTICE = "Working with tools..."


def steering_hint(user_text: Optional[str]) -> Optional[str]:
    """Ephemeral system hint for the outbound request, or None."""
    if user_text and RECENCY_PATTERN.search(user_text):
        return RECENCY_HINT
    return None


class AgentState(str, enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"


class Outcome(str, enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TRANSPORT_ERROR = "transport_error"
    MISSING_CREDENTIAL = "missing_credential"
    ROUND_LIMIT = "round_limit"


@dataclass
class RunResult:
    outcome: Outcome
    text: str = ""
    rounds: int = 0
    error: Optional[str] = None


class AgentLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that automatically injects agent_id into structured logs."""

    def __init__(self, logger, agent_id):
        self.agent_id = agent_id
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        # Inject agent_id into structured logs
        if "extra" in kwargs and "structured" in kwargs["extra"]:
            kwargs["extra"]["structured"]["agent_id"] = self.agent_id
        return msg, kwargs


class Environment:
    """Environment owns tools, the system prompt and plugin notifications."""

    def __init__(self, base_system_prompt: str, plugins: list, logger: logging.LoggerAdapter):
        self.base_system_prompt = base_system_prompt
        self.plugins = plugins
        self.logger = logger

        # Initialize tool registry and register plugin tools
        self.tool_registry = ToolRegistry()
        for plugin in plugins:
            if hasattr(plugin, "hook_provide_tools"):
                for method in plugin.hook_provide_tools():
                    self.tool_registry.register_callable(method)

        self._instructions = self._assemble_system_prompt()

    def _assemble_system_prompt(self) -> str:
        instructions = self.base_system_prompt
        additions = []
        for plugin in self.plugins:
            if hasattr(plugin, "hook_provide_system_prompt"):
                try:
                    addition = plugin.hook_provide_system_prompt()
                    if addition and addition.strip():
                        additions.append(addition.strip())
                except Exception as e:
                    self.logger.error(
                        f"Error collecting system prompt from {plugin.__class__.__name__}: {e}"
                    )
        if additions:
            instructions = f"{instructions}\n\n" + "\n\n".join(additions)
        return instructions

    def instructions(self) -> str:
        """Return the assembled system prompt."""
        return self._instructions

    def tool_schemas(self) -> list:
        return self.tool_registry.get_schemas()

    async def notify(self, hook_name: str, *args) -> None:
        """Call ``hook_name`` on every plugin that has it; failures are logged."""
        for plugin in self.plugins:
            if hasattr(plugin, hook_name):
                try:
                    result = getattr(plugin, hook_name)(*args)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    self.logger.error(
                        f"Error in {hook_name} from {plugin.__class__.__name__}: {e}"
                    )

    def log_item(self, item_type: str, extra: dict):
        structured = {"log_type": item_type, **extra}
        self.logger.info(
            f"{item_type.replace('_', ' ').title()} received", extra={"structured": structured}
        )


class Agent:
    """Streaming tool-calling loop over a single conversation.

    One ``run`` call is one user turn: rounds of request, stream and tool
    dispatch repeat until the model answers without tool calls, the run is
    cancelled, the transport fails, or ``max_rounds`` is reached.
    """

    def __init__(
        self,
        plugins: list,
        settings: Optional[Settings] = None,
        client=None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_rounds: Optional[int] = None,
        agent_id: Optional[str] = None,
    ):
        self.settings = settings or Settings()
        self.client = client
        self.plugins = plugins
        self.conversation = Conversation()
        self.max_rounds = max_rounds or self.settings.max_rounds
        self.state = AgentState.IDLE

        self.logger = AgentLoggerAdapter(logger, agent_id or "main")
        self.env = Environment(system_prompt, self.plugins, self.logger)

        self._stream_task: Optional[asyncio.Task] = None
        self._cancel_requested = False

    @property
    def is_running(self) -> bool:
        return self.state is AgentState.STREAMING

    def _get_client(self):
        if self.client is None:
            if not self.settings.api_key:
                raise MissingCredentialError("Missing API key")
            self.client = LLMClient(
                api_key=self.settings.api_key,
                base_url=self.settings.base_url,
                timeout=self.settings.request_timeout,
                max_retries=self.settings.max_retries,
            )
        return self.client

    async def _set_state(self, state: AgentState) -> None:
        self.state = state
        await self.env.notify("hook_on_state", state.value)

    async def _notice(self, kind: str, text: str) -> None:
        await self.env.notify("hook_on_notice", kind, text)

    async def run(self, message: Optional[str] = None) -> RunResult:
        """Process one user message (or continue with ``None``) through the tool loop."""
        if self.is_running:
            raise RuntimeError("A round is already in flight for this agent")

        try:
            self._get_client()
        except MissingCredentialError as e:
            self.logger.warning(f"Not starting round: {e}")
            await self._notice("warning", str(e))
            return RunResult(Outcome.MISSING_CREDENTIAL, error=str(e))

        user_text = (message or "").strip()
        if user_text:
            self.env.log_item("user_input", {"content": user_text})
            self.conversation.append(Message(role="user", content=user_text))

        self._cancel_requested = False
        await self._set_state(AgentState.STREAMING)
        hint = steering_hint(user_text)
        rounds = 0
        try:
            while True:
                # A stop that landed while a hook was awaited has no stream to abort
                if self._cancel_requested:
                    return await self._finish_cancelled("", rounds)
                if rounds >= self.max_rounds:
                    error = RoundLimitExceeded(f"Stopped after {self.max_rounds} tool rounds")
                    self.logger.warning(f"Tool loop hit max_rounds={self.max_rounds}")
                    await self._notice("warning", str(error))
                    return RunResult(Outcome.ROUND_LIMIT, rounds=rounds, error=str(error))
                rounds += 1

                accumulator = DeltaAccumulator()
                try:
                    await self._stream_round(accumulator, hint)
                except asyncio.CancelledError:
                    # Only a cancel() of the stream is absorbed; cancelling run() itself propagates
                    current = asyncio.current_task()
                    if not self._cancel_requested or (current and current.cancelling()):
                        raise
                    return await self._finish_cancelled(accumulator.text, rounds)
                except TransportError as e:
                    await self._notice("danger", f"Agent error: {e}")
                    return RunResult(Outcome.TRANSPORT_ERROR, rounds=rounds, error=str(e))
                hint = None

                text, tool_calls = accumulator.result()
                await self.env.notify("hook_on_assistant_message", text or "(no text)")

                if not tool_calls:
                    self.conversation.append(Message(role="assistant", content=text))
                    self.env.log_item("round_end", {"round": rounds, "content": text})
                    return RunResult(Outcome.COMPLETED, text=text, rounds=rounds)

                results = await self._dispatch_tools(tool_calls)
                self.conversation.append(
                    Message(role="assistant", content=text, tool_calls=tool_calls)
                )
                self.conversation.extend(r.to_message() for r in results)

                if self._cancel_requested:
                    return await self._finish_cancelled("", rounds)

                await self._notice("info", TOOLS_NOTICE)
        finally:
            self._stream_task = None
            await self._set_state(AgentState.IDLE)

    def _build_request(self, hint: Optional[str]) -> Dict[str, Any]:
        messages = [{"role": "system", "content": self.env.instructions()}]
        messages.extend(self.conversation.to_wire())
        if hint:
            messages.append({"role": "system", "content": hint})

        body: Dict[str, Any] = {"model": self.settings.model, "messages": messages}
        schemas = self.env.tool_schemas()
        if schemas:
            body["tools"] = schemas
            body["tool_choice"] = "auto"
        return body

    async def _stream_round(self, accumulator: DeltaAccumulator, hint: Optional[str]) -> None:
        body = self._build_request(hint)
        self.env.log_item(
            "round_start", {"messages": len(body["messages"]), "hinted": bool(hint)}
        )
        self._stream_task = asyncio.create_task(self._consume_stream(body, accumulator))
        try:
            await self._stream_task
        finally:
            self._stream_task = None

    async def _consume_stream(self, body: Dict[str, Any], accumulator: DeltaAccumulator) -> None:
        fragments: List[str] = []
        accumulator.on_text = fragments.append
        async for payload in iter_events(self._get_client().stream(body)):
            accumulator.feed(payload)
            for fragment in fragments:
                await self.env.notify("hook_on_text_delta", fragment)
            fragments.clear()

    async def _dispatch_tools(self, tool_calls: List[ToolCallRecord]) -> List[ToolResult]:
        for call in tool_calls:
            self.env.log_item(
                "tool_call",
                {"tool_name": call.name, "arguments": call.arguments, "call_id": call.id},
            )
        context = ToolContext(messages=self.conversation.snapshot())
        results = await self.env.tool_registry.dispatch_all(
            tool_calls, context, on_error=self._on_tool_error
        )
        for result in results:
            self.env.log_item(
                "tool_result", {"tool_name": result.name, "result": result.content}
            )
            await self.env.notify("hook_on_tool_result", result)
        return results

    async def _on_tool_error(self, tool_name: str, error: str) -> None:
        await self._notice("danger", f"{tool_name} error: {error}")

    async def _finish_cancelled(self, partial_text: str, rounds: int) -> RunResult:
        self.env.log_item("cancelled", {"round": rounds, "content": partial_text})
        if partial_text:
            await self.env.notify("hook_on_assistant_message", partial_text)
            self.conversation.append(Message(role="assistant", content=partial_text))
        return RunResult(Outcome.CANCELLED, text=partial_text, rounds=rounds)

    def cancel(self) -> None:
        """Abort the in-flight stream; no new round starts afterwards."""
        if not self.is_running:
            return
        self._cancel_requested = True
        if self._stream_task and not self._stream_task.done():
            self._stream_task.cancel()
        self.logger.info("Cancellation requested")

    def clear(self) -> None:
        """Drop the conversation history."""
        if self.is_running:
            raise RuntimeError("Cannot clear the conversation while a round is in flight")
        self.conversation.clear()

    async def close(self) -> None:
        if self.client is not None and hasattr(self.client, "close"):
            await self.client.close()
        for plugin in self.plugins:
            if hasattr(plugin, "close"):
                try:
                    await plugin.close()
                except Exception as e:
                    self.logger.error(f"Error closing {plugin.__class__.__name__}: {e}")
