"""Chat Agent - the caller boundary of the orchestrator.

One ChatAgent owns one conversation: its session, dispatcher and loop.
Submissions are serialized per agent, so independent conversations can
run concurrently in the same process while each session stays
non-reentrant.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from shared.config import AgentSettings
from shared.errors import ConversationAbortedError
from shared.logging import bind_context, get_logger
from shared.models import ConversationMessage, OrchestrationResult
from domains.base import ToolExecutor
from orchestrator.dispatcher import Dispatcher
from orchestrator.llm import LLMProvider
from orchestrator.loop import OrchestrationLoop, ProgressCallback
from orchestrator.registry import ToolRegistry
from orchestrator.session import ConversationSession

logger = get_logger(__name__)


WELCOME_MESSAGE = (
    "Hello. I am NURA, your medical support agent. I can monitor your vitals, "
    "answer medical questions, or schedule appointments. How can I assist you today?"
)


class ChatAgent:
    """
    Conversation-scoped entry point for the presentation layer.

    - ``submit`` returns the final answer text
    - ``run`` returns the full OrchestrationResult
    - ``cancel`` aborts the in-flight submission
    """

    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry,
        executor: ToolExecutor,
        settings: Optional[AgentSettings] = None,
        llm_timeout: Optional[float] = None,
        conversation_id: Optional[str] = None
    ) -> None:
        """
        Initialize a chat agent.

        Args:
            provider: Conversational backend shared across conversations
            registry: Tools the model may call
            executor: Host capability that runs the tools
            settings: Loop and dispatch configuration
            llm_timeout: Per-call backend timeout in seconds
            conversation_id: Optional identifier, generated when omitted
        """
        settings = settings or AgentSettings()

        self.id = conversation_id or str(uuid.uuid4())
        self.session = ConversationSession(
            provider,
            registry,
            system_prompt=settings.system_prompt,
            timeout=llm_timeout,
            session_id=self.id
        )
        self.dispatcher = Dispatcher(
            registry,
            executor,
            timeout=settings.tool_timeout_seconds,
            concurrent=settings.concurrent_tools
        )
        self.loop = OrchestrationLoop(
            self.session,
            self.dispatcher,
            max_rounds=settings.max_rounds,
            fallback_text=settings.fallback_text,
            incomplete_text=settings.incomplete_text
        )

        self.created_at = datetime.now(timezone.utc)
        self.updated_at = self.created_at

        # Host-level, per-conversation state such as the latest vitals reading
        self.metadata: dict[str, Any] = {}

        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Task] = None
        self._abort_requested = False

    @property
    def history(self) -> tuple[ConversationMessage, ...]:
        return self.session.history

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def submit(self, user_text: str, on_progress: Optional[ProgressCallback] = None) -> str:
        """
        Submit user text and return the final answer.

        Raises:
            BackendError: If the backend fails; the submission may be retried
            ConversationAbortedError: If ``cancel`` was called meanwhile
        """
        result = await self.run(user_text, on_progress=on_progress)
        return result.text

    async def run(
        self,
        user_text: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> OrchestrationResult:
        """Submit user text and return the full orchestration result."""
        async with self._lock:
            self._abort_requested = False
            self._inflight = asyncio.ensure_future(self._run_bound(user_text, on_progress))
            try:
                return await self._inflight
            except asyncio.CancelledError:
                if self._abort_requested:
                    logger.info("Submission aborted", conversation_id=self.id)
                    raise ConversationAbortedError(
                        f"Submission to conversation {self.id} was cancelled"
                    ) from None
                raise
            finally:
                self._inflight = None
                self.updated_at = datetime.now(timezone.utc)

    async def _run_bound(
        self,
        user_text: str,
        on_progress: Optional[ProgressCallback]
    ) -> OrchestrationResult:
        # Runs in its own task, so the bound context stays local to it
        bind_context(conversation_id=self.id)
        return await self.loop.run(user_text, on_progress=on_progress)

    def cancel(self) -> bool:
        """
        Abort the in-flight submission, if any.

        Returns:
            True if a submission was cancelled
        """
        if not self.busy:
            return False
        self._abort_requested = True
        self._inflight.cancel()
        return True
