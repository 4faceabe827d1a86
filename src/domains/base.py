"""Base classes for tool domains and the tool executor.

All adapters must:
- Describe their tools with a ToolDescriptor
- Expose one handler per tool, sync or async
- Raise ToolError (or any exception) on failure rather than return a
  half-formed result
- Never depend on the LLM or on conversation state
"""

import asyncio
import inspect
import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from pydantic import BaseModel

from shared.errors import ToolError, UnknownToolError
from shared.logging import get_logger
from shared.models import ToolDescriptor
from shared.schema import validate_arguments

logger = get_logger(__name__)


# A tool handler receives the tool arguments as keyword arguments
ToolHandler = Callable[..., Any]


class ToolExecutor(ABC):
    """
    Capability supplied by the host application to run tools.

    ``execute`` returns a result mapping, or raises ToolError when the
    invocation fails. Timeouts are enforced by the caller.
    """

    @abstractmethod
    async def execute(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Execute one tool invocation.

        Args:
            name: Registered tool name
            arguments: Tool arguments as supplied by the model

        Returns:
            Result mapping

        Raises:
            ToolError: If the tool is missing or its invocation fails
        """
        pass


class BaseAdapter(ABC):
    """
    Base class for tool domains.

    Each adapter:
    - Handles one domain only
    - Declares its tools in ``_define_tools``
    - Has no LLM dependency
    """

    def __init__(self, domain: str) -> None:
        self.domain = domain
        self._tools: dict[str, ToolDescriptor] = {}
        self._handlers: dict[str, ToolHandler] = {}
        self._define_tools()

    @abstractmethod
    def _define_tools(self) -> None:
        """Register every tool of this domain via ``_add_tool``."""
        pass

    def _add_tool(self, descriptor: ToolDescriptor, handler: ToolHandler) -> None:
        self._tools[descriptor.name] = descriptor
        self._handlers[descriptor.name] = handler

    @property
    def tools(self) -> list[ToolDescriptor]:
        """Return all tool descriptors for this domain."""
        return list(self._tools.values())

    def get_tool(self, name: str) -> Optional[ToolDescriptor]:
        """Get a tool descriptor by name."""
        return self._tools.get(name)

    def get_handler(self, name: str) -> Optional[ToolHandler]:
        """Get the handler bound to a tool name."""
        return self._handlers.get(name)


class DomainToolExecutor(ToolExecutor):
    """
    Routes tool invocations to the handlers of registered domain adapters.

    Responsibilities:
    - Look up the handler for a tool name
    - Validate arguments against the tool's parameter schema
    - Run sync handlers in a worker thread, await async ones
    - Normalize return values into JSON-compatible mappings
    """

    def __init__(self) -> None:
        self._descriptors: dict[str, ToolDescriptor] = {}
        self._handlers: dict[str, ToolHandler] = {}
        self._domains: list[str] = []

    def register_adapter(self, adapter: BaseAdapter) -> None:
        """
        Register all tools of a domain adapter.

        Raises:
            ValueError: If a tool name is already taken by another domain
        """
        for descriptor in adapter.tools:
            if descriptor.name in self._handlers:
                raise ValueError(f"Tool '{descriptor.name}' is already registered")
            self._descriptors[descriptor.name] = descriptor
            self._handlers[descriptor.name] = adapter.get_handler(descriptor.name)

        self._domains.append(adapter.domain)
        logger.info("Domain registered", domain=adapter.domain, tool_count=len(adapter.tools))

    @property
    def descriptors(self) -> list[ToolDescriptor]:
        """Descriptors of every registered tool, in registration order."""
        return list(self._descriptors.values())

    @property
    def domains(self) -> list[str]:
        return list(self._domains)

    async def execute(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownToolError(name)

        errors = validate_arguments(arguments, self._descriptors[name].parameters)
        if errors:
            raise ToolError(name, f"Invalid arguments for tool '{name}': {'; '.join(errors)}")

        logger.debug("Executing tool", tool=name, arguments=arguments)

        try:
            if inspect.iscoroutinefunction(handler):
                result = await handler(**arguments)
            else:
                # A cancelled caller leaves the thread running; its result is dropped
                result = await asyncio.to_thread(handler, **arguments)
        except ToolError:
            raise
        except TypeError as e:
            raise ToolError(name, f"Invalid arguments for tool '{name}': {e}") from e
        except Exception as e:
            logger.error("Tool handler failed", tool=name, error=str(e), exc_info=True)
            raise ToolError(name, f"Tool '{name}' raised an error: {e}") from e

        return self._normalize(result)

    def _normalize(self, result: Any) -> dict[str, Any]:
        """Wrap a handler return value as a JSON-compatible mapping."""
        if isinstance(result, BaseModel):
            result = result.model_dump(mode="json")
        if result is None:
            return {}
        if not isinstance(result, dict):
            result = {"result": result}
        return json.loads(json.dumps(result, default=str))
