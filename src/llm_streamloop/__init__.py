"""llm-streamloop: a streaming, tool-calling conversation loop for LLM providers."""

from llm_streamloop.adapters import OpenAICompatibleAdapter, ProviderAdapter
from llm_streamloop.config import EngineConfig, ProfileSpec, RetrySpec, load_config
from llm_streamloop.core import OperateOptions, PlaceholderSpec, StreamLoop
from llm_streamloop.errors import (
    BadGatewayError,
    ConfigError,
    LoopError,
    TooManyRequestsError,
    ToolArgumentError,
    ToolNotFoundError,
)
from llm_streamloop.events import EventBus
from llm_streamloop.hooks import LoopHooks
from llm_streamloop.retry import DEFAULT_RETRY_POLICY, NO_RETRY, RetryPolicy
from llm_streamloop.tools import FunctionTool, Tool, ToolParameter, Toolkit
from llm_streamloop.types import (
    ChunkType,
    DoneChunk,
    ErrorChunk,
    ErrorInfo,
    StreamChunk,
    TextChunk,
    ToolCall,
    ToolCallChunk,
    ToolResultChunk,
    Usage,
)

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_RETRY_POLICY",
    "NO_RETRY",
    "BadGatewayError",
    "ChunkType",
    "ConfigError",
    "DoneChunk",
    "EngineConfig",
    "ErrorChunk",
    "ErrorInfo",
    "EventBus",
    "FunctionTool",
    "LoopError",
    "LoopHooks",
    "OpenAICompatibleAdapter",
    "OperateOptions",
    "PlaceholderSpec",
    "ProfileSpec",
    "ProviderAdapter",
    "RetryPolicy",
    "RetrySpec",
    "StreamChunk",
    "StreamLoop",
    "TextChunk",
    "TooManyRequestsError",
    "Tool",
    "ToolArgumentError",
    "ToolCall",
    "ToolCallChunk",
    "ToolNotFoundError",
    "ToolParameter",
    "ToolResultChunk",
    "Toolkit",
    "Usage",
    "load_config",
]
