"""Orchestrator.

Runs the agentic tool-call loop: manages conversation sessions,
interfaces with the conversational backend, and dispatches tool calls.
"""

from orchestrator.llm import LLMProvider, create_llm_provider
from orchestrator.registry import ToolRegistry
from orchestrator.session import ConversationSession
from orchestrator.dispatcher import Dispatcher
from orchestrator.loop import OrchestrationLoop
from orchestrator.agent import ChatAgent
from orchestrator.conversation import ConversationManager

__all__ = [
    "LLMProvider",
    "create_llm_provider",
    "ToolRegistry",
    "ConversationSession",
    "Dispatcher",
    "OrchestrationLoop",
    "ChatAgent",
    "ConversationManager",
]
