"""Core data models for the NURA agent.

Defines the tool, turn and message structures that flow between the
conversational backend, the orchestration loop and the tool executors.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue


class ToolDescriptor(BaseModel):
    """
    Static description of a callable tool.

    ``parameters`` is a JSON Schema object describing the accepted
    arguments. Descriptors are created once at startup and never mutated.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Tool name, unique within a registry")
    description: str = Field(..., description="Clear description for LLM usage")
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema for the tool arguments"
    )

    @property
    def required(self) -> list[str]:
        """Names of the required arguments."""
        return list(self.parameters.get("required", []))


class ToolCallRequest(BaseModel):
    """A tool invocation requested by the model in one turn."""
    model_config = ConfigDict(frozen=True)

    call_id: Optional[str] = None
    name: str
    arguments: dict[str, JsonValue] = Field(default_factory=dict)


class ToolResultStatus(str, Enum):
    """Status of tool execution."""
    SUCCESS = "success"
    ERROR = "error"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"


class ToolCallResult(BaseModel):
    """
    Outcome of one dispatched tool call.

    ``call_id`` echoes the originating request's id, or stays ``None``
    when the request had none.
    """
    call_id: Optional[str] = None
    name: str
    status: ToolResultStatus = ToolResultStatus.SUCCESS
    payload: JsonValue = None
    error: Optional[str] = None
    execution_time_ms: float = 0

    @property
    def is_error(self) -> bool:
        return self.status != ToolResultStatus.SUCCESS

    @classmethod
    def success(
        cls,
        request: ToolCallRequest,
        payload: JsonValue,
        execution_time_ms: float = 0
    ) -> "ToolCallResult":
        return cls(
            call_id=request.call_id,
            name=request.name,
            status=ToolResultStatus.SUCCESS,
            payload=payload,
            execution_time_ms=execution_time_ms
        )

    @classmethod
    def failure(
        cls,
        request: ToolCallRequest,
        error: str,
        status: ToolResultStatus = ToolResultStatus.ERROR,
        execution_time_ms: float = 0
    ) -> "ToolCallResult":
        return cls(
            call_id=request.call_id,
            name=request.name,
            status=status,
            error=error,
            execution_time_ms=execution_time_ms
        )

    def to_response(self) -> dict[str, Any]:
        """Render the mapping sent back to the backend."""
        if self.is_error:
            return {"error": self.error or "Tool execution failed"}
        if self.payload is None or self.payload == {}:
            return {"result": "ok"}
        if isinstance(self.payload, dict):
            return self.payload
        return {"result": self.payload}


class ConversationTurn(BaseModel):
    """
    One turn returned by the conversational backend.

    A turn is terminal iff it requests no tool calls. Text on a
    non-terminal turn is discarded by the orchestration loop.
    """
    text: Optional[str] = None
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return not self.tool_calls


class ConversationMessage(BaseModel):
    """A single message in the session history."""
    role: Literal["user", "model", "tool"] = Field(..., description="Message role")
    content: Optional[str] = None
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)
    tool_results: list[ToolCallResult] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Provider-native form of a model message, replayed verbatim
    raw: Any = Field(default=None, exclude=True, repr=False)


class LLMResponse(BaseModel):
    """Response from the LLM layer."""
    content: Optional[str] = None
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)
    finish_reason: str = "stop"
    usage: dict[str, int] = Field(default_factory=dict)
    raw: Any = Field(default=None, exclude=True, repr=False)


class ToolProgress(BaseModel):
    """Progress notification emitted before a tool is dispatched."""
    tool_name: str
    call_id: Optional[str] = None
    arguments: dict[str, JsonValue] = Field(default_factory=dict)
    round: int = 1


class ToolCallLog(BaseModel):
    """A dispatched tool call as recorded for the caller."""
    tool_name: str
    arguments: dict[str, JsonValue] = Field(default_factory=dict)
    result: dict[str, Any] = Field(default_factory=dict)


class OrchestrationResult(BaseModel):
    """Result of one user submission."""
    text: str
    rounds: int = 0
    tool_calls: list[ToolCallLog] = Field(default_factory=list)
    bound_exceeded: bool = False

    @property
    def tools_used(self) -> list[str]:
        seen: list[str] = []
        for call in self.tool_calls:
            if call.tool_name not in seen:
                seen.append(call.tool_name)
        return seen


class VitalsStatus(str, Enum):
    """Overall patient status derived from vital signs."""
    NORMAL = "Normal"
    WARNING = "Warning"
    CRITICAL = "Critical"


class VitalsData(BaseModel):
    """A snapshot of patient vital signs."""
    heart_rate: int
    blood_pressure: str
    oxygen_level: int
    temperature: float
    status: VitalsStatus = VitalsStatus.NORMAL
