"""Tests for ToolExecutionStep."""

from __future__ import annotations

import json

import pytest

from llm_streamloop.adapters.openai_compat import OpenAICompatibleAdapter
from llm_streamloop.core.tool_step import ToolExecutionStep
from llm_streamloop.events.bus import EventBus
from llm_streamloop.hooks import LoopHooks
from llm_streamloop.tools import FunctionTool, Toolkit
from llm_streamloop.types import ErrorChunk, EventType, ToolCall, ToolResultChunk


def _divide(a: float, b: float) -> float:
    return a / b


@pytest.fixture
def step():
    toolkit = Toolkit([FunctionTool("divide", "Divide", _divide)], log=False)
    return ToolExecutionStep(OpenAICompatibleAdapter(), toolkit)


def _call(**arguments) -> ToolCall:
    return ToolCall(id="call_1", name="divide", arguments=json.dumps(arguments))


class TestSuccess:
    async def test_result_chunk(self, step):
        outcome = await step.run(_call(a=6, b=3))
        assert outcome.success
        assert outcome.chunk == ToolResultChunk(id="call_1", name="divide", result=2.0)

    async def test_history_item(self, step):
        outcome = await step.run(_call(a=1, b=4))
        assert outcome.history_item == {
            "type": "function_call_output",
            "call_id": "call_1",
            "name": "divide",
            "output": "0.25",
            "success": True,
        }

    async def test_hooks(self, step):
        seen = []
        hooks = LoopHooks(
            before_each_tool=lambda ctx: seen.append(("before", ctx.tool_name, ctx.result)),
            after_each_tool=lambda ctx: seen.append(("after", ctx.tool_name, ctx.result)),
            on_tool_error=lambda ctx: seen.append(("error", ctx.tool_name, ctx.error)),
        )
        await step.run(_call(a=4, b=2), hooks)
        assert seen == [("before", "divide", None), ("after", "divide", 2.0)]


class TestFailure:
    async def test_error_chunk_carries_id(self, step):
        outcome = await step.run(_call(a=1, b=0))
        assert not outcome.success
        assert isinstance(outcome.chunk, ErrorChunk)
        assert outcome.chunk.id == "call_1"
        assert outcome.chunk.error.status == 502
        assert outcome.chunk.error.title == "Bad Function Call"
        assert outcome.chunk.error.detail.startswith("Error executing function call divide.")
        assert "division by zero" in outcome.chunk.error.detail

    async def test_failure_still_recorded(self, step):
        outcome = await step.run(_call(a=1, b=0))
        item = outcome.history_item
        assert item["type"] == "function_call_output"
        assert item["call_id"] == "call_1"
        assert item["success"] is False
        assert item["error"] == "division by zero"
        assert "division by zero" in json.loads(item["output"])["error"]

    async def test_bad_arguments(self, step):
        outcome = await step.run(ToolCall(id="c9", name="divide", arguments="{oops"))
        assert isinstance(outcome.chunk, ErrorChunk)
        assert outcome.chunk.id == "c9"

    async def test_unserializable_result(self):
        toolkit = Toolkit([FunctionTool("obj", "Obj", lambda: object())], log=False)
        outcome = await ToolExecutionStep(OpenAICompatibleAdapter(), toolkit).run(
            ToolCall(id="c1", name="obj"),
        )
        # default=str makes any object encodable
        assert outcome.success

    async def test_error_hook_and_event(self):
        bus = EventBus()
        seen = []
        bus.subscribe("*", seen.append)
        errors = []
        toolkit = Toolkit([FunctionTool("divide", "Divide", _divide)], log=False)
        step = ToolExecutionStep(OpenAICompatibleAdapter(), toolkit, event_bus=bus)
        await step.run(_call(a=1, b=0), LoopHooks(on_tool_error=lambda ctx: errors.append(ctx.error)))

        assert len(errors) == 1
        assert isinstance(errors[0], ZeroDivisionError)
        assert [e.type for e in seen] == [EventType.TOOL_EXECUTING, EventType.TOOL_ERROR]
        assert seen[1].data["id"] == "call_1"
