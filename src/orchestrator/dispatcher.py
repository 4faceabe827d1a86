"""Tool Dispatcher for the orchestrator.

Maps one turn's tool-call requests onto ToolExecutor invocations and
collects exactly one result per request, in request order.
"""

import asyncio
import time
from typing import Optional, Sequence

from shared.errors import ToolError, ToolTimeoutError, UnknownToolError
from shared.logging import get_logger
from shared.models import ToolCallRequest, ToolCallResult, ToolResultStatus
from domains.base import ToolExecutor
from orchestrator.registry import ToolRegistry

logger = get_logger(__name__)


class Dispatcher:
    """
    Executes tool-call requests with per-call failure isolation.

    Responsibilities:
    - Reject names missing from the registry without executing anything
    - Bound each execution by the tool timeout
    - Convert every failure into an error-bearing result
    - Preserve request order regardless of completion order
    """

    def __init__(
        self,
        registry: ToolRegistry,
        executor: ToolExecutor,
        timeout: Optional[float] = 30.0,
        concurrent: bool = True
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            registry: Tools the model is allowed to call
            executor: Host capability that runs the tools
            timeout: Per-call timeout in seconds (None = unbounded)
            concurrent: Run a batch's calls concurrently rather than in order
        """
        self.registry = registry
        self.executor = executor
        self.timeout = timeout
        self.concurrent = concurrent

    async def execute(self, requests: Sequence[ToolCallRequest]) -> list[ToolCallResult]:
        """
        Execute a batch of tool-call requests.

        Args:
            requests: Requests from one model turn

        Returns:
            One result per request, in request order
        """
        if self.concurrent:
            # gather keeps argument order, whatever the completion order
            results = await asyncio.gather(*(self._dispatch(r) for r in requests))
            return list(results)

        results = []
        for request in requests:
            results.append(await self._dispatch(request))
        return results

    async def _dispatch(self, request: ToolCallRequest) -> ToolCallResult:
        """Execute one request; never raises except on cancellation."""
        start_time = time.perf_counter()

        def elapsed() -> float:
            return (time.perf_counter() - start_time) * 1000

        try:
            self.registry.require(request.name)
            payload = await self._invoke(request)
            result = ToolCallResult.success(request, payload, elapsed())
        except UnknownToolError as e:
            logger.warning("Unknown tool requested", tool=request.name, call_id=request.call_id)
            return ToolCallResult.failure(request, str(e), ToolResultStatus.NOT_FOUND, elapsed())
        except ToolTimeoutError as e:
            logger.warning("Tool timed out", tool=request.name, timeout=self.timeout)
            return ToolCallResult.failure(request, str(e), ToolResultStatus.TIMEOUT, elapsed())
        except ToolError as e:
            logger.warning("Tool failed", tool=request.name, error=str(e))
            return ToolCallResult.failure(request, str(e), ToolResultStatus.ERROR, elapsed())
        except Exception as e:
            logger.error("Tool execution failed", tool=request.name, error=str(e), exc_info=True)
            return ToolCallResult.failure(
                request, f"Tool '{request.name}' failed: {e}", ToolResultStatus.ERROR, elapsed()
            )

        logger.info(
            "Tool executed",
            tool=request.name,
            call_id=request.call_id,
            execution_time_ms=round(result.execution_time_ms, 1)
        )
        return result

    async def _invoke(self, request: ToolCallRequest):
        call = self.executor.execute(request.name, dict(request.arguments))
        if self.timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ToolTimeoutError(request.name, self.timeout) from e
