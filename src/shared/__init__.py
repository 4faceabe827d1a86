"""Shared models, errors, configuration and logging for the NURA agent."""

from shared.models import (
    ConversationTurn,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
    ToolResultStatus,
)
from shared.errors import (
    AgentError,
    BackendError,
    ConfigurationError,
    ToolError,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "ConversationTurn",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDescriptor",
    "ToolResultStatus",
    "AgentError",
    "BackendError",
    "ConfigurationError",
    "ToolError",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
