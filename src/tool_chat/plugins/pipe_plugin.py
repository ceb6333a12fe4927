import logging

import httpx

from ..errors import MissingCredentialError
from ..extraction import extract_payload
from ..tool_registry import ToolContext, tool

logger = logging.getLogger(__name__)


class PipePlugin:
    """Plugin forwarding arbitrary JSON to a configured proxy endpoint."""

    def __init__(self, url: str = "", token: str = "", timeout: float = 60.0, http_client=None):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._http_client = http_client

    @tool(required=["payload"])
    async def ai_pipe(self, payload: dict = None, context: ToolContext = None):
        """Call AI Pipe proxy for flexible dataflows. Returns JSON result.

        Args:
            payload: Arbitrary JSON payload to send
        """
        url = (self.url or "").strip()
        if not url:
            raise MissingCredentialError("AI Pipe endpoint missing")

        if not payload and context is not None:
            payload = extract_payload(context.recent_user_text(3))

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        if self._http_client is not None:
            response = await self._http_client.post(url, json=payload or {}, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload or {}, headers=headers)

        if response.is_error:
            raise RuntimeError(f"AI Pipe failed: {response.status_code}")
        logger.info(f"AI_PIPE: {response.status_code} from {url}")
        try:
            return response.json()
        except ValueError:
            return {"text": response.text}

    def hook_provide_tools(self):
        return [self.ai_pipe]
