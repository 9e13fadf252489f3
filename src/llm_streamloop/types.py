"""Shared data types for llm-streamloop."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Usage:
    """Token accounting for one model round-trip."""

    input: int = 0
    output: int = 0
    reasoning: int = 0
    total: int = 0
    provider: str = ""
    model: str = ""


# ---------------------------------------------------------------------------
# Tool call records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model.

    ``arguments`` is the provider-encoded payload, usually a JSON string.
    """

    id: str
    name: str
    arguments: str | dict[str, Any] = ""
    raw: Any = None


@dataclass(frozen=True)
class StandardToolResult:
    """Outcome of one tool call, ready to be folded into history."""

    call_id: str
    output: str
    success: bool = True
    error: str = ""


# ---------------------------------------------------------------------------
# Stream chunks
# ---------------------------------------------------------------------------

class ChunkType(enum.Enum):
    """Discriminant for stream chunks."""

    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    ERROR = "error"
    DONE = "done"


@dataclass(frozen=True)
class ErrorInfo:
    """Error payload carried by an ``ErrorChunk``."""

    status: int
    title: str
    detail: str | None = None


@dataclass(frozen=True)
class TextChunk:
    content: str
    type: ClassVar[ChunkType] = ChunkType.TEXT


@dataclass(frozen=True)
class ToolCallChunk:
    tool_call: ToolCall
    type: ClassVar[ChunkType] = ChunkType.TOOL_CALL

    @property
    def id(self) -> str:
        return self.tool_call.id


@dataclass(frozen=True)
class ToolResultChunk:
    id: str
    name: str
    result: Any
    type: ClassVar[ChunkType] = ChunkType.TOOL_RESULT


@dataclass(frozen=True)
class ErrorChunk:
    """In-band error.  ``id`` is set when the error answers a tool call."""

    error: ErrorInfo
    id: str | None = None
    type: ClassVar[ChunkType] = ChunkType.ERROR


@dataclass(frozen=True)
class DoneChunk:
    usage: list[Usage] = field(default_factory=list)
    type: ClassVar[ChunkType] = ChunkType.DONE


StreamChunk = Union[TextChunk, ToolCallChunk, ToolResultChunk, ErrorChunk, DoneChunk]


# ---------------------------------------------------------------------------
# Conversation history
# ---------------------------------------------------------------------------

class MessageType(enum.Enum):
    """``type`` values of engine-neutral history items."""

    MESSAGE = "message"
    FUNCTION_CALL = "function_call"
    FUNCTION_CALL_OUTPUT = "function_call_output"
    REASONING = "reasoning"


class MessageRole(enum.Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


# History items are plain dicts keyed by ``type``; see ``MessageType``.
HistoryItem = dict[str, Any]
History = list[HistoryItem]


def make_message(content: str, role: MessageRole = MessageRole.USER) -> HistoryItem:
    return {
        "type": MessageType.MESSAGE.value,
        "role": role.value,
        "content": content,
    }


def is_message(item: Any, role: MessageRole | None = None) -> bool:
    """True if *item* is a message history item (optionally of *role*)."""
    if not isinstance(item, dict):
        return False
    if item.get("type", MessageType.MESSAGE.value) != MessageType.MESSAGE.value:
        return False
    if "content" not in item:
        return False
    return role is None or item.get("role") == role.value


# ---------------------------------------------------------------------------
# Provider-neutral request / response
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderToolDefinition:
    """Tool definition handed to an adapter for translation."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class OperateRequest:
    """Everything an adapter needs to build one vendor request."""

    model: str
    messages: History
    system: str | None = None
    instructions: str | None = None
    tools: Any = None
    format: Any = None
    temperature: float | None = None
    provider_options: dict[str, Any] = field(default_factory=dict)
    user: str | None = None


@dataclass
class TurnResponse:
    """Summary of what one streamed model round-trip produced."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: list[Usage] = field(default_factory=list)
    model: str = ""
    errors: list[ErrorInfo] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class ErrorCategory(enum.Enum):
    RETRYABLE = "retryable"
    RATE_LIMIT = "rate_limit"
    UNRECOVERABLE = "unrecoverable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassifiedError:
    """Adapter verdict on a failure observed while calling the provider."""

    error: BaseException
    category: ErrorCategory
    should_retry: bool
    suggested_delay_ms: int | None = None


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Event types emitted by the stream loop."""

    # Loop lifecycle
    LOOP_STARTED = "loop.started"
    LOOP_DONE = "loop.done"
    TURN_LIMIT = "loop.turn_limit"

    # Model events
    MODEL_REQUEST = "model.request"
    MODEL_RESPONSE = "model.response"
    MODEL_RETRY = "model.retry"
    STREAM_INTERRUPTED = "model.stream_interrupted"

    # Tool events
    TOOL_EXECUTING = "tool.executing"
    TOOL_EXECUTED = "tool.executed"
    TOOL_ERROR = "tool.error"


@dataclass
class LoopEvent:
    """Event emitted by the stream loop via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
