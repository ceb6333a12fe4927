"""Error taxonomy for the tool-calling chat loop."""


class ToolChatError(Exception):
    """Base class for all tool_chat errors."""


class TransportError(ToolChatError):
    """The primary LLM request failed (network failure or non-2xx status)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StreamDecodeError(ToolChatError):
    """A single event line could not be decoded."""


class ArgumentParseError(ToolChatError):
    """Tool call arguments were not a JSON object."""


class UnknownToolError(ToolChatError):
    """The model asked for a tool that is not registered."""


class MissingCredentialError(ToolChatError):
    """A required key, token or endpoint is not configured."""


class ExecutionTimeoutError(ToolChatError):
    """The sandbox did not reply within the allotted time."""


class RoundLimitExceeded(ToolChatError):
    """The model kept requesting tools past the configured round cap."""
