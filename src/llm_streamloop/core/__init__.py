"""Core loop components for llm-streamloop."""

from llm_streamloop.core.input import InputProcessor, ProcessedInput, apply_placeholders
from llm_streamloop.core.loop import StreamLoop
from llm_streamloop.core.options import OperateOptions, PlaceholderSpec
from llm_streamloop.core.tool_step import ToolExecutionStep, ToolOutcome

__all__ = [
    "InputProcessor",
    "OperateOptions",
    "PlaceholderSpec",
    "ProcessedInput",
    "StreamLoop",
    "ToolExecutionStep",
    "ToolOutcome",
    "apply_placeholders",
]
