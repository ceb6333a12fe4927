import asyncio
import logging

logger = logging.getLogger(__name__)

# Suppress the oauth2client file_cache warning
logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)

from googleapiclient.discovery import build

from ..errors import MissingCredentialError
from ..extraction import extract_query
from ..tool_registry import ToolContext, tool


class SearchPlugin:
    """Plugin providing Google Programmable Search snippets."""

    def __init__(self, api_key: str = "", cx: str = "", service=None):
        self.api_key = api_key
        self.cx = cx
        self._service = service

    def _get_service(self):
        if self._service is None:
            self._service = build(
                "customsearch", "v1", developerKey=self.api_key, cache_discovery=False
            )
        return self._service

    def _search(self, query: str, num: int) -> list:
        resp = self._get_service().cse().list(q=query, cx=self.cx, num=num).execute()
        return [
            {
                "title": item.get("title", ""),
                "link": item.get("link", ""),
                "snippet": item.get("snippet", ""),
            }
            for item in resp.get("items", [])
        ]

    @tool(
        required=["query"],
        num={"type": "number", "minimum": 1, "maximum": 5},
    )
    async def google_search(self, query: str = "", num: int = 3, context: ToolContext = None) -> dict:
        """Search the web with Google Programmable Search and return top snippets.

        Args:
            query: Search query
            num: Number of results (1-5)
        """
        if not self.api_key or not self.cx:
            raise MissingCredentialError("Google key or CSE CX missing")

        query = (query or "").strip()
        if not query and context is not None:
            query = extract_query(context.recent_user_text(2))
        num = min(5, max(1, int(num or 3)))

        logger.info(f"SEARCH: {query!r} (num={num})")
        snippets = await asyncio.to_thread(self._search, query, num)
        return {"snippets": snippets}

    def hook_provide_tools(self):
        return [self.google_search]

    def hook_provide_system_prompt(self):
        return (
            "Use google_search for web snippets. If the user asks for recent, latest, "
            "today or news information, call google_search first, then synthesize."
        )
