import logging
import uuid
from typing import Callable, Dict, Optional

from .agent import Agent

logger = logging.getLogger(__name__)


class SessionManager:
    """Keeps one independent Agent (and conversation) per session id."""

    def __init__(self, agent_factory: Callable[[str, list], Agent]):
        self.agent_factory = agent_factory
        self.sessions: Dict[str, Agent] = {}

    def create_session(self, *extra_plugins) -> str:
        """Create a new session and return its ID."""
        session_id = str(uuid.uuid4())
        self.sessions[session_id] = self.agent_factory(session_id, list(extra_plugins))
        logger.info(f"Created new session: {session_id}")
        return session_id

    def get_session(self, session_id: str) -> Optional[Agent]:
        return self.sessions.get(session_id)

    async def cleanup_session(self, session_id: str):
        """Cancel any in-flight round and release the session's resources."""
        agent = self.sessions.pop(session_id, None)
        if agent is None:
            return
        agent.cancel()
        await agent.close()
        logger.info(f"Cleaned up session: {session_id}")

    async def cleanup_all(self):
        for session_id in list(self.sessions):
            await self.cleanup_session(session_id)

    def get_session_count(self) -> int:
        return len(self.sessions)
