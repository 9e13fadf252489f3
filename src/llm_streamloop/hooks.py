"""Caller-supplied lifecycle hooks and their guarded dispatch.

Hooks are side channels: a hook that raises (or whose awaitable fails)
never interrupts the loop and never reaches the caller.
"""

from __future__ import annotations

import contextlib
import inspect
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from llm_streamloop.types import History, Usage

if TYPE_CHECKING:
    from llm_streamloop.core.options import OperateOptions

# A hook is any sync or async callable taking a single context object.
Hook = Callable[[Any], Any]


# ---------------------------------------------------------------------------
# Hook contexts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelRequestContext:
    input: History
    options: OperateOptions | None
    provider_request: Any


@dataclass(frozen=True)
class ModelResponseContext:
    content: str
    input: History
    options: OperateOptions | None
    provider_request: Any
    usage: list[Usage]


@dataclass(frozen=True)
class ToolContext:
    tool_name: str
    args: Any
    result: Any = None
    error: BaseException | None = None


@dataclass(frozen=True)
class ModelErrorContext:
    error: BaseException
    input: History | None
    options: OperateOptions | None
    provider_request: Any


@dataclass(frozen=True)
class LoopHooks:
    """Optional callbacks invoked around model requests and tool calls."""

    before_each_model_request: Hook | None = None
    after_each_model_response: Hook | None = None
    before_each_tool: Hook | None = None
    after_each_tool: Hook | None = None
    on_tool_error: Hook | None = None
    on_retryable_model_error: Hook | None = None
    on_unrecoverable_model_error: Hook | None = None


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class HookRunner:
    """Invokes hooks when defined, awaiting async ones, containing failures."""

    async def run_before_model_request(
        self, hooks: LoopHooks | None, context: ModelRequestContext,
    ) -> None:
        await self._invoke(hooks and hooks.before_each_model_request, context)

    async def run_after_model_response(
        self, hooks: LoopHooks | None, context: ModelResponseContext,
    ) -> None:
        await self._invoke(hooks and hooks.after_each_model_response, context)

    async def run_before_tool(
        self, hooks: LoopHooks | None, context: ToolContext,
    ) -> None:
        await self._invoke(hooks and hooks.before_each_tool, context)

    async def run_after_tool(
        self, hooks: LoopHooks | None, context: ToolContext,
    ) -> None:
        await self._invoke(hooks and hooks.after_each_tool, context)

    async def run_on_tool_error(
        self, hooks: LoopHooks | None, context: ToolContext,
    ) -> None:
        await self._invoke(hooks and hooks.on_tool_error, context)

    async def run_on_retryable_error(
        self, hooks: LoopHooks | None, context: ModelErrorContext,
    ) -> None:
        await self._invoke(hooks and hooks.on_retryable_model_error, context)

    async def run_on_unrecoverable_error(
        self, hooks: LoopHooks | None, context: ModelErrorContext,
    ) -> None:
        await self._invoke(hooks and hooks.on_unrecoverable_model_error, context)

    @staticmethod
    async def _invoke(hook: Hook | None, context: Any) -> None:
        if hook is None:
            return
        # Hook failures belong to the hook owner; they are not logged here.
        with contextlib.suppress(Exception):
            result = hook(context)
            if inspect.isawaitable(result):
                await result


hook_runner = HookRunner()
