"""Tool execution step: run one recorded tool call.

Each call produces exactly one chunk (ToolResult on success, a
"Bad Function Call" Error on failure) and one history item, so the next
turn's request reflects that the tool was attempted either way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from llm_streamloop.adapters.base import ProviderAdapter, encode_result
from llm_streamloop.errors import BAD_FUNCTION_CALL, BadGatewayError
from llm_streamloop.events.bus import EventBus
from llm_streamloop.hooks import HookRunner, LoopHooks, ToolContext
from llm_streamloop.hooks import hook_runner as default_hook_runner
from llm_streamloop.tools.toolkit import Toolkit
from llm_streamloop.types import (
    ErrorChunk,
    ErrorInfo,
    EventType,
    HistoryItem,
    LoopEvent,
    StandardToolResult,
    ToolCall,
    ToolResultChunk,
)

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolOutcome:
    """What one tool call contributes to the stream and to history."""

    chunk: ToolResultChunk | ErrorChunk
    history_item: HistoryItem

    @property
    def success(self) -> bool:
        return isinstance(self.chunk, ToolResultChunk)


class ToolExecutionStep:
    """Runs tool calls through the toolkit with hooks and history folding.

    Usage::

        step = ToolExecutionStep(adapter, toolkit)
        outcome = await step.run(tool_call, hooks)
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        toolkit: Toolkit,
        hook_runner: HookRunner | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._adapter = adapter
        self._toolkit = toolkit
        self._hooks = hook_runner or default_hook_runner
        self._event_bus = event_bus

    async def run(self, tool_call: ToolCall, hooks: LoopHooks | None = None) -> ToolOutcome:
        """Execute *tool_call*; tool failures are reported, never raised."""
        await self._hooks.run_before_tool(
            hooks, ToolContext(tool_name=tool_call.name, args=tool_call.arguments),
        )
        await self._emit(EventType.TOOL_EXECUTING, {
            "tool": tool_call.name,
            "id": tool_call.id,
        })

        try:
            result = await self._toolkit.call(tool_call.name, tool_call.arguments)
            output = encode_result(result)
        except Exception as e:
            return await self._failed(tool_call, e, hooks)

        await self._hooks.run_after_tool(
            hooks,
            ToolContext(tool_name=tool_call.name, args=tool_call.arguments, result=result),
        )
        await self._emit(EventType.TOOL_EXECUTED, {
            "tool": tool_call.name,
            "id": tool_call.id,
        })

        history_item = self._adapter.format_tool_result(
            tool_call,
            StandardToolResult(call_id=tool_call.id, output=output),
        )
        return ToolOutcome(
            chunk=ToolResultChunk(id=tool_call.id, name=tool_call.name, result=result),
            history_item=history_item,
        )

    async def _failed(
        self, tool_call: ToolCall, error: Exception, hooks: LoopHooks | None,
    ) -> ToolOutcome:
        _logger.error("Error executing function call %s: %s", tool_call.name, error)
        await self._hooks.run_on_tool_error(
            hooks,
            ToolContext(tool_name=tool_call.name, args=tool_call.arguments, error=error),
        )
        await self._emit(EventType.TOOL_ERROR, {
            "tool": tool_call.name,
            "id": tool_call.id,
            "error": str(error),
        })

        detail = f"Error executing function call {tool_call.name}.\n{error}"
        history_item = self._adapter.format_tool_result(
            tool_call,
            StandardToolResult(
                call_id=tool_call.id,
                output=encode_result({"error": detail}),
                success=False,
                error=str(error),
            ),
        )
        return ToolOutcome(
            chunk=ErrorChunk(
                error=ErrorInfo(
                    status=BadGatewayError.status,
                    title=BAD_FUNCTION_CALL,
                    detail=detail,
                ),
                id=tool_call.id,
            ),
            history_item=history_item,
        )

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.emit(LoopEvent(type=event_type, data=data))
