"""Orchestration loop - the agentic tool-call cycle.

Drives one user submission through the session until the model answers
without requesting tools:

    AwaitingUserInput -> ModelTurnPending -> Terminal
                                          -> ToolResolutionPending -> ModelTurnPending ...
"""

import inspect
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from shared.errors import LoopBoundExceeded
from shared.logging import get_logger
from shared.models import (
    ConversationTurn,
    OrchestrationResult,
    ToolCallLog,
    ToolProgress,
)
from orchestrator.dispatcher import Dispatcher
from orchestrator.session import ConversationSession

logger = get_logger(__name__)


DEFAULT_MAX_ROUNDS = 8
DEFAULT_FALLBACK_TEXT = "I have completed the task."
DEFAULT_INCOMPLETE_TEXT = "I'm sorry, I was unable to complete that request. Please try again."


ProgressCallback = Callable[[ToolProgress], Union[None, Awaitable[None]]]


class LoopState(str, Enum):
    """States of the orchestration loop."""
    AWAITING_USER_INPUT = "awaiting_user_input"
    MODEL_TURN_PENDING = "model_turn_pending"
    TOOL_RESOLUTION_PENDING = "tool_resolution_pending"
    TERMINAL = "terminal"


class OrchestrationLoop:
    """
    Runs the request -> tools -> results cycle until a terminal turn.

    Per-round flow:
        1. Advance the session (user text first, then tool results)
        2. If the turn requests no tools: return its text
        3. Emit one progress event per requested tool
        4. Dispatch the requests and collect ordered results
        5. Feed the results back and repeat

    The loop never retries the backend. Any exception reaches the caller
    after the session exchange has been rewound.
    """

    def __init__(
        self,
        session: ConversationSession,
        dispatcher: Dispatcher,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        fallback_text: str = DEFAULT_FALLBACK_TEXT,
        incomplete_text: str = DEFAULT_INCOMPLETE_TEXT,
        on_progress: Optional[ProgressCallback] = None
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")

        self.session = session
        self.dispatcher = dispatcher
        self.max_rounds = max_rounds
        self.fallback_text = fallback_text
        self.incomplete_text = incomplete_text
        self.on_progress = on_progress
        self.state = LoopState.AWAITING_USER_INPUT

    async def run(
        self,
        user_text: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> OrchestrationResult:
        """
        Run the loop for one user submission.

        Args:
            user_text: The user's raw text
            on_progress: Progress callback for this run, in addition to
                the loop-level one

        Returns:
            OrchestrationResult with the final answer and a log of tool calls

        Raises:
            BackendError: If the backend fails at any point
        """
        callbacks = [cb for cb in (self.on_progress, on_progress) if cb is not None]
        tool_log: list[ToolCallLog] = []
        rounds = 0

        logger.debug("Starting orchestration", session_id=self.session.id, max_rounds=self.max_rounds)

        try:
            self.state = LoopState.MODEL_TURN_PENDING
            turn = await self.session.advance(user_text)

            while not turn.is_terminal:
                if rounds >= self.max_rounds:
                    raise LoopBoundExceeded(self.max_rounds)

                rounds += 1
                self.state = LoopState.TOOL_RESOLUTION_PENDING
                results = await self._resolve_tools(turn, rounds, callbacks, tool_log)

                self.state = LoopState.MODEL_TURN_PENDING
                turn = await self.session.advance(results)

        except LoopBoundExceeded as e:
            logger.warning(
                "Max tool rounds reached",
                session_id=self.session.id,
                rounds=rounds,
                error=str(e)
            )
            self.session.abandon_exchange()
            self.state = LoopState.TERMINAL
            return OrchestrationResult(
                text=self.incomplete_text,
                rounds=rounds,
                tool_calls=tool_log,
                bound_exceeded=True
            )
        except BaseException:
            # Any failure, cancellation included, leaves no request unanswered
            self.session.abandon_exchange()
            self.state = LoopState.AWAITING_USER_INPUT
            raise

        self.state = LoopState.TERMINAL
        text = turn.text if turn.text and turn.text.strip() else self.fallback_text

        logger.info("Orchestration complete", session_id=self.session.id, rounds=rounds)
        return OrchestrationResult(text=text, rounds=rounds, tool_calls=tool_log)

    async def _resolve_tools(
        self,
        turn: ConversationTurn,
        round_number: int,
        callbacks: list[ProgressCallback],
        tool_log: list[ToolCallLog]
    ):
        """Announce, dispatch and log the tool requests of one turn."""
        if turn.text:
            logger.debug("Discarding text of non-terminal turn", length=len(turn.text))

        logger.debug(
            "LLM requested tool calls",
            count=len(turn.tool_calls),
            round=round_number
        )

        # Every announcement precedes the dispatch of its tool
        for request in turn.tool_calls:
            await self._emit(callbacks, ToolProgress(
                tool_name=request.name,
                call_id=request.call_id,
                arguments=request.arguments,
                round=round_number
            ))

        results = await self.dispatcher.execute(turn.tool_calls)

        for request, result in zip(turn.tool_calls, results):
            tool_log.append(ToolCallLog(
                tool_name=request.name,
                arguments=request.arguments,
                result=result.to_response()
            ))

        return results

    async def _emit(self, callbacks: list[ProgressCallback], event: ToolProgress) -> None:
        for callback in callbacks:
            try:
                outcome = callback(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning("Progress callback failed", tool=event.tool_name, error=str(e))
