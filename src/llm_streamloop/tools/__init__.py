"""Tool system for llm-streamloop."""

from llm_streamloop.tools.base import FunctionTool, Tool, ToolParameter
from llm_streamloop.tools.toolkit import Toolkit

__all__ = ["FunctionTool", "Tool", "ToolParameter", "Toolkit"]
