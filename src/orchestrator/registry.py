"""Tool Registry for the orchestrator.

Immutable catalogue of the tools the model may call. Consumed when a
session declares its tools to the backend, and by the Dispatcher to
reject unknown tool names before anything is executed.
"""

from typing import Iterable, Iterator, Optional

from shared.errors import UnknownToolError
from shared.logging import get_logger
from shared.models import ToolDescriptor

logger = get_logger(__name__)


class ToolRegistry:
    """
    Fixed, ordered set of tool descriptors.

    The registry is built once from a sequence of descriptors and exposes
    no mutation operations.
    """

    def __init__(self, descriptors: Iterable[ToolDescriptor] = ()) -> None:
        """
        Initialize the registry.

        Args:
            descriptors: Tool descriptors in declaration order

        Raises:
            ValueError: If two descriptors share a name
        """
        tools: dict[str, ToolDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in tools:
                raise ValueError(f"Tool '{descriptor.name}' is already registered")
            tools[descriptor.name] = descriptor

        self._tools = tools
        self._ordered = tuple(tools.values())

        logger.debug("Tool registry built", tools=list(tools))

    def describe(self) -> tuple[ToolDescriptor, ...]:
        """Return all descriptors in declaration order."""
        return self._ordered

    def get(self, name: str) -> Optional[ToolDescriptor]:
        """Get a descriptor by exact name."""
        return self._tools.get(name)

    def require(self, name: str) -> ToolDescriptor:
        """
        Get a descriptor by name or fail.

        Raises:
            UnknownToolError: If no tool has this name
        """
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise UnknownToolError(name)
        return descriptor

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)
