"""Conversation Manager for the orchestrator.

Tracks one ChatAgent per conversation and expires idle ones.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from shared.logging import get_logger
from orchestrator.agent import ChatAgent

logger = get_logger(__name__)


# Builds a ChatAgent for a given conversation id
AgentFactory = Callable[[Optional[str]], ChatAgent]


class ConversationManager:
    """
    Manages conversations for the orchestrator.

    Responsibilities:
    - Create and retrieve conversation agents
    - Expire conversations idle past their TTL
    - Provide listings and statistics
    """

    def __init__(
        self,
        agent_factory: AgentFactory,
        conversation_ttl_minutes: int = 60
    ) -> None:
        """
        Initialize conversation manager.

        Args:
            agent_factory: Callable building a ChatAgent for a conversation id
            conversation_ttl_minutes: Conversation time-to-live
        """
        self.agent_factory = agent_factory
        self.ttl = timedelta(minutes=conversation_ttl_minutes)

        self._conversations: dict[str, ChatAgent] = {}
        self._lock = asyncio.Lock()

    def _is_expired(self, agent: ChatAgent, now: datetime) -> bool:
        return not agent.busy and now - agent.updated_at > self.ttl

    async def create(self, conversation_id: Optional[str] = None) -> ChatAgent:
        """Create a new conversation."""
        agent = self.agent_factory(conversation_id)

        async with self._lock:
            self._conversations[agent.id] = agent

        logger.info("Conversation created", conversation_id=agent.id)
        return agent

    async def get(self, conversation_id: str) -> Optional[ChatAgent]:
        """
        Get a conversation by ID.

        Returns:
            The conversation agent if found and not expired, None otherwise
        """
        agent = self._conversations.get(conversation_id)
        if agent is None:
            return None

        if self._is_expired(agent, datetime.now(timezone.utc)):
            await self.delete(conversation_id)
            return None

        return agent

    async def get_or_create(self, conversation_id: Optional[str]) -> ChatAgent:
        """Get an existing conversation or create a new one."""
        if conversation_id:
            agent = await self.get(conversation_id)
            if agent:
                return agent

        return await self.create()

    async def delete(self, conversation_id: str) -> bool:
        """
        Delete a conversation, cancelling any in-flight submission.

        Returns:
            True if deleted, False if not found
        """
        async with self._lock:
            agent = self._conversations.pop(conversation_id, None)

        if agent is None:
            return False

        agent.cancel()
        logger.info("Conversation deleted", conversation_id=conversation_id)
        return True

    async def cleanup_expired(self) -> int:
        """
        Remove expired conversations.

        Returns:
            Number of conversations removed
        """
        now = datetime.now(timezone.utc)

        async with self._lock:
            expired = [
                conv_id for conv_id, agent in self._conversations.items()
                if self._is_expired(agent, now)
            ]
            for conv_id in expired:
                del self._conversations[conv_id]

        if expired:
            logger.info("Expired conversations cleaned up", count=len(expired))

        return len(expired)

    def list_conversations(self) -> list[dict[str, Any]]:
        """List conversation summaries."""
        return [
            {
                "id": agent.id,
                "message_count": len(agent.history),
                "created_at": agent.created_at.isoformat(),
                "updated_at": agent.updated_at.isoformat()
            }
            for agent in self._conversations.values()
        ]

    def get_stats(self) -> dict[str, Any]:
        """Get conversation manager statistics."""
        return {
            "total_conversations": len(self._conversations),
            "active_submissions": sum(1 for a in self._conversations.values() if a.busy),
            "ttl_minutes": self.ttl.total_seconds() / 60
        }
