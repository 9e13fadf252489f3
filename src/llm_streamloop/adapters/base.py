"""Provider adapter contract.

An adapter translates between the engine-neutral shapes used by the stream
loop (``OperateRequest``, history items, stream chunks) and one vendor's
API.  The loop never sees vendor details.

Subclasses must implement ``name``, ``default_model``, ``build_request``,
``execute_stream_request`` and ``classify_error``; the remaining methods
have engine-neutral defaults.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from llm_streamloop.retry.network import is_transient_network_error
from llm_streamloop.types import (
    ClassifiedError,
    ErrorCategory,
    History,
    HistoryItem,
    MessageRole,
    MessageType,
    OperateRequest,
    ProviderToolDefinition,
    StandardToolResult,
    StreamChunk,
    ToolCall,
    TurnResponse,
    make_message,
)


def encode_arguments(arguments: Any) -> str:
    """Tool-call arguments as the JSON string carried in history."""
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments)


def encode_result(result: Any) -> str:
    """JSON-encode a tool result for the provider."""
    return json.dumps(result, default=str)


class ProviderAdapter(ABC):
    """Base class for provider adapters.

    Adapters are shared, read-only collaborators: they must not keep
    per-conversation state, so one instance can serve concurrent loops.
    """

    name: str = "provider"
    default_model: str = ""

    # ------------------------------------------------------------------
    # Request construction
    # ------------------------------------------------------------------

    @abstractmethod
    def build_request(self, request: OperateRequest) -> Any:
        """Build the vendor request for one model round-trip."""

    def format_tools(
        self,
        toolkit: Any,
        output_schema: Any = None,
    ) -> list[Any]:
        """Vendor tool schema for every tool in *toolkit*."""
        return [self.format_tool_definition(d) for d in toolkit.definitions()]

    def format_tool_definition(self, definition: ProviderToolDefinition) -> Any:
        return {
            "name": definition.name,
            "description": definition.description,
            "parameters": definition.parameters,
        }

    def format_output_schema(self, format: Any) -> Any:
        """Vendor structured-output schema for *format* (a JSON schema)."""
        return format

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @abstractmethod
    def execute_stream_request(self, request: Any) -> AsyncIterator[StreamChunk]:
        """Execute *request* as a streaming call.

        Yields Text and ToolCall chunks as they arrive, Error chunks for
        provider-reported failures, and a Done chunk carrying the turn's
        usage.  Transport failures are raised.
        """

    # ------------------------------------------------------------------
    # Response handling
    # ------------------------------------------------------------------

    def extract_tool_calls(self, response: TurnResponse) -> list[ToolCall]:
        return list(response.tool_calls)

    def is_complete(self, response: TurnResponse) -> bool:
        """True when the model is done and does not want any tool run."""
        return not response.has_tool_calls

    def response_to_history_items(self, response: TurnResponse) -> History:
        """History items recording what the model said in one turn."""
        items: History = []
        if response.content:
            items.append(make_message(response.content, MessageRole.ASSISTANT))
        for tc in response.tool_calls:
            items.append({
                "type": MessageType.FUNCTION_CALL.value,
                "call_id": tc.id,
                "name": tc.name,
                "arguments": encode_arguments(tc.arguments),
            })
        return items

    def format_tool_result(
        self, tool_call: ToolCall, result: StandardToolResult,
    ) -> HistoryItem:
        """History item carrying a tool's outcome back to the model."""
        item: HistoryItem = {
            "type": MessageType.FUNCTION_CALL_OUTPUT.value,
            "call_id": tool_call.id,
            "name": tool_call.name,
            "output": result.output,
            "success": result.success,
        }
        if result.error:
            item["error"] = result.error
        return item

    def append_tool_result(
        self, request: Any, tool_call: ToolCall, result: StandardToolResult,
    ) -> Any:
        """Return a copy of a built *request* with the tool outcome appended.

        Optional: the loop itself never calls this, so adapters without a
        request-level representation of tool results leave it unimplemented.
        The outcome is passed as the originating *tool_call* plus its
        *result* rather than as one pre-built payload.
        """
        raise NotImplementedError(f"{self.name} does not support append_tool_result")

    # ------------------------------------------------------------------
    # Error classification
    # ------------------------------------------------------------------

    @abstractmethod
    def classify_error(self, error: BaseException) -> ClassifiedError:
        """Classify a failure raised by ``execute_stream_request``."""

    def is_retryable_error(self, error: BaseException) -> bool:
        return self.classify_error(error).should_retry

    def is_rate_limit_error(self, error: BaseException) -> bool:
        return self.classify_error(error).category == ErrorCategory.RATE_LIMIT

    @staticmethod
    def classify_network_error(error: BaseException) -> ClassifiedError | None:
        """Shared classification for transport failures, or None."""
        if is_transient_network_error(error):
            return ClassifiedError(
                error=error, category=ErrorCategory.RETRYABLE, should_retry=True,
            )
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Release provider resources.  Nothing to release by default."""
