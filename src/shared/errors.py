"""Exception hierarchy for the NURA agent core.

Only ConfigurationError and BackendError (and an aborted submission) reach
the caller. Tool-level errors are absorbed by the Dispatcher and fed back
to the model as data.
"""

from typing import Optional


class AgentError(Exception):
    """Base exception for agent errors."""
    pass


class ConfigurationError(AgentError):
    """Required credential or session setup is missing."""
    pass


class BackendError(AgentError):
    """The conversational backend call could not be completed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendUnavailableError(BackendError):
    """Transport failure or server-side error from the backend."""
    pass


class BackendTimeoutError(BackendUnavailableError):
    """Backend call exceeded the configured timeout."""
    pass


class RateLimitError(BackendError):
    """Backend rejected the call for capacity or rate-limit reasons."""
    pass


class MalformedTurnError(BackendError):
    """Backend output could not be parsed into a conversation turn."""
    pass


class ToolError(AgentError):
    """A single tool invocation failed."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class ToolTimeoutError(ToolError):
    """A tool invocation exceeded the configured timeout."""

    def __init__(self, tool_name: str, timeout: float) -> None:
        super().__init__(
            tool_name, f"Tool '{tool_name}' timed out after {timeout:g}s"
        )
        self.timeout = timeout


class UnknownToolError(ToolError):
    """Requested tool is not in the registry."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(tool_name, f"Unknown tool: '{tool_name}'")


class LoopBoundExceeded(AgentError):
    """The orchestration loop hit its maximum number of rounds."""

    def __init__(self, max_rounds: int) -> None:
        super().__init__(f"Exceeded maximum of {max_rounds} tool rounds")
        self.max_rounds = max_rounds


class ConversationAbortedError(AgentError):
    """The in-flight submission was cancelled by the caller."""
    pass
