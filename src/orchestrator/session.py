"""Conversation Session for the orchestrator.

Owns the ordered message history exchanged with one conversational
backend and exposes a single operation: advance the conversation with new
content and get the next model turn.
"""

import asyncio
import uuid
from typing import Optional, Sequence, Union

from shared.errors import BackendTimeoutError
from shared.logging import get_logger
from shared.models import (
    ConversationMessage,
    ConversationTurn,
    LLMResponse,
    ToolCallRequest,
    ToolCallResult,
)
from orchestrator.llm import LLMProvider
from orchestrator.registry import ToolRegistry

logger = get_logger(__name__)


DEFAULT_SYSTEM_PROMPT = """You are NURA, an advanced 3D Agentic AI Nurse.
You monitor vitals, give safe info, and run tools.
If symptoms are severe, warn about emergencies.
Keep responses concise and helpful.
When using tools, wait for the result before summarizing.
"""


SessionInput = Union[str, Sequence[ToolCallResult]]


class ConversationSession:
    """
    Stateful, ordered exchange with a conversational backend.

    Responsibilities:
    - Declare the registry's tools to the backend once, at creation
    - Append each input and the model's reply to the history, in order
    - Correlate tool results with the pending requests
    - Leave the history untouched when a backend call fails

    A session is not reentrant: callers must serialize ``advance`` calls.
    """

    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry,
        system_prompt: Optional[str] = None,
        timeout: Optional[float] = None,
        session_id: Optional[str] = None
    ) -> None:
        """
        Initialize a conversation session.

        Args:
            provider: Conversational backend
            registry: Tools the model may call
            system_prompt: System instruction, defaults to the NURA prompt
            timeout: Per-call backend timeout in seconds (None = unbounded)
            session_id: Optional identifier, generated when omitted
        """
        self.id = session_id or str(uuid.uuid4())
        self.provider = provider
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self.timeout = timeout

        self._tools = provider.declare_tools(registry.describe())
        self._history: list[ConversationMessage] = []
        self._pending: list[ToolCallRequest] = []
        self._exchange_start = 0
        self._exchange_open = False

        logger.info("Session created", session_id=self.id, tool_count=len(registry))

    @property
    def history(self) -> tuple[ConversationMessage, ...]:
        """Read-only snapshot of the message history."""
        return tuple(self._history)

    @property
    def pending_requests(self) -> tuple[ToolCallRequest, ...]:
        """Tool requests of the last turn still awaiting results."""
        return tuple(self._pending)

    async def advance(self, content: SessionInput) -> ConversationTurn:
        """
        Send new content to the backend and return the next model turn.

        Args:
            content: User text to open an exchange, or the results of the
                previous turn's tool requests

        Returns:
            The model's next turn

        Raises:
            ValueError: If the input does not fit the current exchange state
            BackendError: If the backend call fails; history is left as is
        """
        if isinstance(content, str):
            if self._pending:
                raise ValueError(
                    f"Session has {len(self._pending)} pending tool request(s); "
                    "tool results are expected, not user text"
                )
            message = ConversationMessage(role="user", content=content)
        else:
            if not self._pending:
                raise ValueError("Session has no pending tool requests to answer")
            message = ConversationMessage(
                role="tool",
                tool_results=self._correlate(self._pending, list(content))
            )

        response = await self._complete([*self._history, message])

        turn = ConversationTurn(text=response.content, tool_calls=response.tool_calls)

        if message.role == "user":
            self._exchange_start = len(self._history)
        self._history.append(message)
        self._history.append(ConversationMessage(
            role="model",
            content=response.content,
            tool_calls=response.tool_calls,
            raw=response.raw
        ))
        self._pending = list(turn.tool_calls)
        self._exchange_open = bool(self._pending)

        logger.debug(
            "Session advanced",
            session_id=self.id,
            input_role=message.role,
            tool_calls=len(turn.tool_calls),
            history_length=len(self._history)
        )
        return turn

    async def _complete(self, messages: list[ConversationMessage]) -> LLMResponse:
        """Call the backend, bounded by the session timeout."""
        call = self.provider.complete(messages, tools=self._tools, system_prompt=self.system_prompt)
        if self.timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise BackendTimeoutError(
                f"Backend did not respond within {self.timeout:g}s"
            ) from e

    def _correlate(
        self,
        requests: list[ToolCallRequest],
        results: list[ToolCallResult]
    ) -> list[ToolCallResult]:
        """
        Order results to match the pending requests.

        Requests with an id are matched by id, the rest by position.
        """
        if len(results) != len(requests):
            raise ValueError(
                f"Expected {len(requests)} tool result(s), got {len(results)}"
            )

        by_id = {r.call_id: r for r in results if r.call_id is not None}
        ordered: list[ToolCallResult] = []
        for position, request in enumerate(requests):
            if request.call_id is not None:
                result = by_id.get(request.call_id)
                if result is None:
                    raise ValueError(f"No tool result for call id '{request.call_id}'")
            else:
                result = results[position]
                if result.call_id is not None:
                    raise ValueError(
                        f"Tool result at position {position} carries an id "
                        "but its request has none"
                    )
            ordered.append(result)

        return ordered

    def abandon_exchange(self) -> None:
        """
        Rewind the history to before the latest user text.

        Used when a submission is aborted mid-way, so that no tool request
        is left without its results. A completed exchange is never rewound.
        """
        if not self._exchange_open:
            return

        dropped = len(self._history) - self._exchange_start
        del self._history[self._exchange_start:]
        self._pending = []
        self._exchange_open = False
        logger.info("Exchange abandoned", session_id=self.id, dropped_messages=dropped)
