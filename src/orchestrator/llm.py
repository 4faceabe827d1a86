"""LLM Integration Layer.

Supports multiple conversational backends:
- Google Gemini via the google-genai SDK
- OpenAI via LlamaIndex
- A scripted mock for tests and offline runs

Providers are stateless: the ConversationSession owns the history and
passes it in full on every call.
"""

import json
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Optional, Sequence, Union

import httpx
from pydantic import ValidationError

from shared.config import LLMSettings
from shared.errors import (
    BackendError,
    BackendTimeoutError,
    BackendUnavailableError,
    ConfigurationError,
    MalformedTurnError,
    RateLimitError,
)
from shared.logging import get_logger
from shared.models import ConversationMessage, LLMResponse, ToolCallRequest, ToolDescriptor

logger = get_logger(__name__)


def classify_status_error(status_code: Optional[int], message: str) -> BackendError:
    """Map an HTTP status from a backend onto the BackendError taxonomy."""
    if status_code == 429:
        return RateLimitError(message, status_code=status_code)
    if status_code is None or status_code >= 500:
        return BackendUnavailableError(message, status_code=status_code)
    return BackendError(message, status_code=status_code)


class LLMProvider(ABC):
    """
    Abstract base class for conversational backends.

    LLM Integration Rules:
    - Tools are declared once per session via ``declare_tools``
    - The LLM outputs either tool-call requests or a final user response
    - Failures surface as BackendError subclasses, never raw SDK errors
    """

    @abstractmethod
    def declare_tools(self, descriptors: Sequence[ToolDescriptor]) -> Any:
        """
        Convert tool descriptors to the provider's declaration format.

        Args:
            descriptors: Tools the model may call

        Returns:
            Opaque provider-specific declaration, passed back to ``complete``
        """
        pass

    @abstractmethod
    async def complete(
        self,
        messages: list[ConversationMessage],
        tools: Any = None,
        system_prompt: Optional[str] = None
    ) -> LLMResponse:
        """
        Generate the next model turn.

        Args:
            messages: Conversation history, oldest first
            tools: Declaration returned by ``declare_tools``
            system_prompt: System instruction for the model

        Returns:
            LLM response with content and/or tool calls

        Raises:
            BackendError: If the call fails or the output cannot be parsed
        """
        pass


class GeminiProvider(LLMProvider):
    """Google Gemini provider using the google-genai SDK."""

    def __init__(self, settings: LLMSettings) -> None:
        if not settings.api_key:
            raise ConfigurationError(
                "API key is missing for provider 'gemini'. "
                "Set LLM_API_KEY or GEMINI_API_KEY."
            )
        self.settings = settings
        self._client = None

    def _get_client(self):
        """Lazy initialization of the genai client."""
        if self._client is None:
            from google import genai
            from google.genai import types

            http_options = None
            if self.settings.api_base:
                http_options = types.HttpOptions(base_url=self.settings.api_base)

            self._client = genai.Client(api_key=self.settings.api_key, http_options=http_options)
        return self._client

    def declare_tools(self, descriptors: Sequence[ToolDescriptor]) -> Any:
        from google.genai import types

        if not descriptors:
            return None

        return [
            types.Tool(function_declarations=[
                types.FunctionDeclaration(
                    name=d.name,
                    description=d.description,
                    parameters_json_schema=d.parameters,
                )
                for d in descriptors
            ])
        ]

    def _convert_messages(self, messages: list[ConversationMessage]) -> list:
        """Convert session history to Gemini contents."""
        from google.genai import types

        contents = []
        for msg in messages:
            if msg.role == "user":
                contents.append(types.Content(role="user", parts=[types.Part(text=msg.content or "")]))

            elif msg.role == "model":
                # Native content carries thought signatures and must be replayed as is
                if isinstance(msg.raw, types.Content) and msg.raw.parts:
                    contents.append(msg.raw)
                    continue

                parts = []
                if msg.content:
                    parts.append(types.Part(text=msg.content))
                for call in msg.tool_calls:
                    parts.append(types.Part(function_call=types.FunctionCall(
                        id=call.call_id, name=call.name, args=call.arguments
                    )))
                if parts:
                    contents.append(types.Content(role="model", parts=parts))

            elif msg.role == "tool":
                # id is only set when the originating call carried one
                contents.append(types.Content(role="user", parts=[
                    types.Part(function_response=types.FunctionResponse(
                        id=result.call_id,
                        name=result.name,
                        response=result.to_response(),
                    ))
                    for result in msg.tool_results
                ]))

        return contents

    def _parse_response(self, response: Any) -> LLMResponse:
        """Extract text and function calls from a Gemini response."""
        candidates = response.candidates or []
        if not candidates:
            reason = None
            if response.prompt_feedback is not None:
                reason = response.prompt_feedback.block_reason
            raise MalformedTurnError(f"Gemini returned no candidates (block reason: {reason})")

        content = candidates[0].content
        parts = (content.parts if content is not None else None) or []

        texts: list[str] = []
        tool_calls: list[ToolCallRequest] = []
        try:
            for part in parts:
                if part.function_call is not None:
                    call = part.function_call
                    if not call.name:
                        logger.warning("Skipping function call without a name")
                        continue
                    tool_calls.append(ToolCallRequest(
                        call_id=call.id or None,
                        name=call.name,
                        arguments=dict(call.args or {}),
                    ))
                elif part.text and not part.thought:
                    texts.append(part.text)
        except ValidationError as e:
            raise MalformedTurnError(f"Unparseable function call from Gemini: {e}") from e

        usage: dict[str, int] = {}
        if response.usage_metadata is not None:
            usage = {
                key: value
                for key, value in (
                    ("prompt_tokens", response.usage_metadata.prompt_token_count),
                    ("completion_tokens", response.usage_metadata.candidates_token_count),
                    ("total_tokens", response.usage_metadata.total_token_count),
                )
                if value is not None
            }

        return LLMResponse(
            content="".join(texts) or None,
            tool_calls=tool_calls,
            finish_reason="tool_calls" if tool_calls else "stop",
            usage=usage,
            raw=content
        )

    async def complete(
        self,
        messages: list[ConversationMessage],
        tools: Any = None,
        system_prompt: Optional[str] = None
    ) -> LLMResponse:
        """Generate completion using Gemini."""
        from google.genai import errors as genai_errors
        from google.genai import types

        client = self._get_client()
        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            tools=tools,
            temperature=self.settings.temperature,
            max_output_tokens=self.settings.max_tokens,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
        )

        try:
            response = await client.aio.models.generate_content(
                model=self.settings.model,
                contents=self._convert_messages(messages),
                config=config,
            )
        except genai_errors.APIError as e:
            logger.error("LLM completion failed", provider="gemini", code=e.code, error=str(e))
            raise classify_status_error(e.code, f"Gemini API error: {e}") from e
        except httpx.TimeoutException as e:
            raise BackendTimeoutError(f"Gemini request timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.error("LLM completion failed", provider="gemini", error=str(e))
            raise BackendUnavailableError(f"Cannot reach Gemini backend: {e}") from e
        except Exception as e:
            logger.error("LLM completion failed", provider="gemini", error=str(e), exc_info=True)
            raise BackendUnavailableError(f"Unexpected Gemini failure: {e}") from e

        return self._parse_response(response)


class OpenAIProvider(LLMProvider):
    """OpenAI LLM provider using LlamaIndex."""

    def __init__(self, settings: LLMSettings) -> None:
        if not settings.api_key:
            raise ConfigurationError(
                "API key is missing for provider 'openai'. Set LLM_API_KEY."
            )
        self.settings = settings
        self._llm = None

    def _get_llm(self):
        """Lazy initialization of LlamaIndex LLM."""
        if self._llm is None:
            from llama_index.llms.openai import OpenAI

            self._llm = OpenAI(
                model=self.settings.model,
                api_key=self.settings.api_key,
                api_base=self.settings.api_base,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
                timeout=self.settings.timeout_seconds,
            )
        return self._llm

    def declare_tools(self, descriptors: Sequence[ToolDescriptor]) -> Any:
        """Format descriptors in OpenAI function calling format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": d.name,
                    "description": d.description,
                    "parameters": d.parameters,
                }
            }
            for d in descriptors
        ]

    def _convert_messages(
        self,
        messages: list[ConversationMessage],
        system_prompt: Optional[str] = None
    ) -> list:
        """Convert session history to LlamaIndex chat messages."""
        from llama_index.core.llms import ChatMessage, MessageRole

        result = []
        if system_prompt:
            result.append(ChatMessage(role=MessageRole.SYSTEM, content=system_prompt))

        for msg in messages:
            if msg.role == "user":
                result.append(ChatMessage(role=MessageRole.USER, content=msg.content or ""))

            elif msg.role == "model":
                if isinstance(msg.raw, ChatMessage):
                    result.append(msg.raw)
                    continue

                chat_msg = ChatMessage(role=MessageRole.ASSISTANT, content=msg.content or "")
                if msg.tool_calls:
                    chat_msg.additional_kwargs = {"tool_calls": [
                        {
                            "id": call.call_id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": json.dumps(call.arguments),
                            }
                        }
                        for call in msg.tool_calls
                    ]}
                result.append(chat_msg)

            elif msg.role == "tool":
                for tool_result in msg.tool_results:
                    result.append(ChatMessage(
                        role=MessageRole.TOOL,
                        content=json.dumps(tool_result.to_response(), default=str),
                        additional_kwargs={
                            "tool_call_id": tool_result.call_id or "",
                            "name": tool_result.name,
                        },
                    ))

        return result

    async def complete(
        self,
        messages: list[ConversationMessage],
        tools: Any = None,
        system_prompt: Optional[str] = None
    ) -> LLMResponse:
        """Generate completion using OpenAI."""
        import openai

        llm = self._get_llm()
        chat_messages = self._convert_messages(messages, system_prompt)

        try:
            if tools:
                response = await llm.achat(chat_messages, tools=tools)
            else:
                response = await llm.achat(chat_messages)
        except openai.RateLimitError as e:
            raise RateLimitError(f"OpenAI rate limit: {e}", status_code=429) from e
        except openai.APITimeoutError as e:
            raise BackendTimeoutError(f"OpenAI request timed out: {e}") from e
        except openai.APIConnectionError as e:
            logger.error("LLM completion failed", provider="openai", error=str(e))
            raise BackendUnavailableError(f"Cannot reach OpenAI backend: {e}") from e
        except openai.APIStatusError as e:
            logger.error("LLM completion failed", provider="openai", code=e.status_code, error=str(e))
            raise classify_status_error(e.status_code, f"OpenAI API error: {e}") from e
        except Exception as e:
            logger.error("LLM completion failed", provider="openai", error=str(e), exc_info=True)
            raise BackendUnavailableError(f"Unexpected OpenAI failure: {e}") from e

        try:
            selections = llm.get_tool_calls_from_response(response, error_on_no_tool_call=False)
            tool_calls = [
                ToolCallRequest(
                    call_id=selection.tool_id or None,
                    name=selection.tool_name,
                    arguments=selection.tool_kwargs or {},
                )
                for selection in selections
            ]
        except (ValueError, ValidationError) as e:
            raise MalformedTurnError(f"Unparseable tool call from OpenAI: {e}") from e

        message = response.message
        return LLMResponse(
            content=message.content if message else None,
            tool_calls=tool_calls,
            finish_reason="tool_calls" if tool_calls else "stop",
            usage={},  # LlamaIndex may not provide usage info
            raw=message
        )


class MockLLMProvider(LLMProvider):
    """Mock LLM provider for testing without API calls."""

    def __init__(
        self,
        settings: Optional[LLMSettings] = None,
        responses: Optional[list[Union[LLMResponse, Exception]]] = None
    ) -> None:
        self.settings = settings
        self.call_history: list[dict[str, Any]] = []
        self._queue: deque[Union[LLMResponse, Exception]] = deque(responses or [])

    def set_next_response(self, response: Union[LLMResponse, Exception]) -> None:
        """Queue a response (or an exception to raise) for a future call."""
        self._queue.append(response)

    def declare_tools(self, descriptors: Sequence[ToolDescriptor]) -> Any:
        return [d.name for d in descriptors]

    async def complete(
        self,
        messages: list[ConversationMessage],
        tools: Any = None,
        system_prompt: Optional[str] = None
    ) -> LLMResponse:
        """Return the next queued response."""
        self.call_history.append({
            "messages": list(messages),
            "tools": tools,
            "system_prompt": system_prompt
        })

        if self._queue:
            response = self._queue.popleft()
            if isinstance(response, Exception):
                raise response
            return response

        # Default mock response
        return LLMResponse(
            content="This is a mock response.",
            finish_reason="stop",
            usage={"prompt_tokens": 10, "completion_tokens": 5}
        )


def create_llm_provider(settings: LLMSettings) -> LLMProvider:
    """
    Factory function to create appropriate LLM provider.

    Supports:
    - gemini: Google Gemini
    - openai: OpenAI API
    - mock: Mock provider for testing

    Args:
        settings: LLM configuration settings

    Returns:
        Configured LLM provider

    Raises:
        ConfigurationError: If the provider is unsupported or its API key is missing
    """
    providers = {
        "gemini": GeminiProvider,
        "openai": OpenAIProvider,
        "mock": MockLLMProvider,
    }

    provider_class = providers.get(settings.provider)
    if not provider_class:
        raise ConfigurationError(
            f"Unsupported LLM provider: {settings.provider}. "
            f"Supported: {list(providers.keys())}"
        )

    logger.info("Creating LLM provider", provider=settings.provider, model=settings.model)
    return provider_class(settings)
