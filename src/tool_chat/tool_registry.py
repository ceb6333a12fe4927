"""
Tool registry: schema generation, argument parsing and dispatch.

Maps plugin callables to Chat Completions tool schemas and runs the tool
calls of a round concurrently, turning every failure into a tool result.
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, get_type_hints

from .conversation import recent_user_text
from .errors import ArgumentParseError, UnknownToolError
from .messages import Message, ToolCallRecord, ToolResult

logger = logging.getLogger(__name__)

# Parameters that are injected by the registry rather than supplied by the model
INJECTED_PARAMS = ("self", "context")

JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    dict: "object",
    list: "array",
}


@dataclass(frozen=True)
class ToolContext:
    """Read-only view of the conversation handed to tool handlers."""

    messages: Tuple[Message, ...] = ()

    def recent_user_text(self, max_turns: int = 3) -> str:
        return recent_user_text(self.messages, max_turns)


def tool(required: Optional[Sequence[str]] = None, **property_extras: Dict[str, Any]):
    """Attach schema details that cannot be read from the signature.

    Args:
        required: Explicit list of required parameters, overriding the
            "no default value" rule.
        **property_extras: Per-parameter JSON schema keys merged into the
            generated property (e.g. ``num={"minimum": 1}``).
    """

    def decorator(func):
        func.__tool_required__ = list(required) if required is not None else None
        func.__tool_property_extras__ = property_extras
        return func

    return decorator


def _split_docstring(doc: str) -> Tuple[str, Dict[str, str]]:
    """Separate the summary from a Google-style ``Args:`` section."""
    summary, _, args_block = doc.partition("\nArgs:")
    descriptions: Dict[str, str] = {}
    current = None
    for line in args_block.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        name, sep, text = stripped.partition(":")
        if sep and name.isidentifier():
            current = name
            descriptions[current] = text.strip()
        elif current:
            descriptions[current] += " " + stripped
    return summary.strip(), descriptions


def callable_to_tool_schema(
    callable_func: Callable, name: str, description: Optional[str] = None
) -> Dict[str, Any]:
    """
    Convert a Python callable (function or method) to a Chat Completions tool schema.

    Args:
        callable_func: The callable to convert
        name: Tool name
        description: Optional description, defaults to the docstring summary

    Returns:
        Tool schema dictionary
    """
    sig = inspect.signature(callable_func)
    type_hints = get_type_hints(callable_func)

    doc_summary, param_docs = _split_docstring(inspect.getdoc(callable_func) or "")
    if description is None:
        description = doc_summary or f"Execute {name}"

    extras = getattr(callable_func, "__tool_property_extras__", {})
    explicit_required = getattr(callable_func, "__tool_required__", None)

    parameters: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}

    for param_name, param in sig.parameters.items():
        if param_name in INJECTED_PARAMS:
            continue

        param_type = type_hints.get(param_name, str)
        param_schema: Dict[str, Any] = {
            "type": JSON_TYPES.get(param_type, "string"),
            "description": param_docs.get(param_name, f"The {param_name} parameter"),
        }
        if param.default is not inspect.Parameter.empty and param.default is not None:
            param_schema["default"] = param.default
        param_schema.update(extras.get(param_name, {}))

        parameters["properties"][param_name] = param_schema

        if explicit_required is None and param.default is inspect.Parameter.empty:
            parameters["required"].append(param_name)

    if explicit_required is not None:
        parameters["required"] = list(explicit_required)

    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": parameters},
    }


def parse_arguments(arguments_text: str) -> Dict[str, Any]:
    """Parse streamed argument text into a dict; empty text means no arguments."""
    try:
        args = json.loads(arguments_text or "{}")
    except json.JSONDecodeError as e:
        raise ArgumentParseError(f"Error parsing arguments: {e}") from e
    if not isinstance(args, dict):
        raise ArgumentParseError(
            f"Error parsing arguments: expected a JSON object, got {type(args).__name__}"
        )
    return args


def encode_content(result: Any) -> str:
    if isinstance(result, str):
        try:
            json.loads(result)
            return result
        except json.JSONDecodeError:
            return json.dumps({"text": result})
    return json.dumps(result, ensure_ascii=False)


class ToolRegistry:
    """Registry for managing tools and their schemas."""

    def __init__(self):
        self.tools: Dict[str, Callable] = {}  # name -> callable
        self.schemas: List[Dict[str, Any]] = []

    def register_callable(
        self,
        callable_func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        """
        Register a callable (function or method) and auto-generate its tool schema.

        Args:
            callable_func: The callable to register
            name: Optional name override (defaults to callable name)
            description: Optional description
        """
        tool_name = name or callable_func.__name__
        if tool_name in self.tools:
            raise ValueError(f"Tool '{tool_name}' is already registered")
        schema = callable_to_tool_schema(callable_func, tool_name, description)

        self.tools[tool_name] = callable_func
        self.schemas.append(schema)

    def get_schemas(self) -> List[Dict[str, Any]]:
        """Get all tool schemas for the completion request."""
        return self.schemas

    def get_tool_names(self) -> List[str]:
        return list(self.tools.keys())

    async def execute_tool(
        self, name: str, args: Dict[str, Any], context: Optional[ToolContext] = None
    ) -> Any:
        """
        Execute a registered tool by name.

        Raises:
            UnknownToolError: If tool is not registered
        """
        if name not in self.tools:
            raise UnknownToolError(f"Unknown tool {name}")

        callable_func = self.tools[name]
        kwargs = dict(args)
        if "context" in inspect.signature(callable_func).parameters:
            kwargs["context"] = context or ToolContext()

        # Execute the callable (handle both sync and async)
        if inspect.iscoroutinefunction(callable_func):
            return await callable_func(**kwargs)
        else:
            return callable_func(**kwargs)

    async def dispatch(
        self,
        call: ToolCallRecord,
        context: Optional[ToolContext] = None,
        on_error: Optional[Callable[[str, str], Any]] = None,
    ) -> ToolResult:
        """Run one tool call; never raises for tool-side failures."""
        name = call.name
        try:
            args = parse_arguments(call.arguments)
            result = await self.execute_tool(name, args, context)
            return ToolResult(tool_call_id=call.id, name=name, content=encode_content(result))
        except Exception as e:
            logger.info(f"TOOL ERROR: {name} - {str(e)}")
            if on_error:
                try:
                    outcome = on_error(name, str(e))
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as hook_error:
                    logger.error(f"Error in tool error hook: {hook_error}")
            return ToolResult(
                tool_call_id=call.id,
                name=name,
                content=json.dumps({"error": str(e)}),
                is_error=True,
            )

    async def dispatch_all(
        self,
        calls: Sequence[ToolCallRecord],
        context: Optional[ToolContext] = None,
        on_error: Optional[Callable[[str, str], Any]] = None,
    ) -> List[ToolResult]:
        """Run all calls concurrently; results keep the order of ``calls``."""
        return list(
            await asyncio.gather(*(self.dispatch(call, context, on_error) for call in calls))
        )

    def clear(self) -> None:
        """Clear all registered tools."""
        self.tools.clear()
        self.schemas.clear()

    def __len__(self) -> int:
        return len(self.tools)
