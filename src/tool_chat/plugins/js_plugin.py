import logging

from ..extraction import extract_code
from ..sandbox import NodeSandboxChannel
from ..tool_registry import ToolContext, tool

logger = logging.getLogger(__name__)


class JSPlugin:
    """Plugin executing JavaScript in an isolated sandbox."""

    def __init__(self, sandbox=None, timeout: float = 30.0):
        self.sandbox = sandbox or NodeSandboxChannel()
        self.timeout = timeout

    @tool(required=["code"])
    async def js_exec(self, code: str = "", context: ToolContext = None) -> dict:
        """Execute JavaScript code safely in a sandbox and return the stdout/result.

        Args:
            code: JavaScript code to execute
        """
        code = str(code or "")
        if not code.strip() and context is not None:
            code = extract_code(context.recent_user_text(3))
        result = await self.sandbox.execute(code, timeout=self.timeout)
        if not result["ok"]:
            logger.info(f"JS_EXEC: script failed: {result['error']}")
        return result

    def hook_provide_tools(self):
        return [self.js_exec]

    async def close(self):
        if hasattr(self.sandbox, "close"):
            await self.sandbox.close()
