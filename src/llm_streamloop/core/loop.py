"""StreamLoop: the streaming multi-turn conversation loop.

    input → adapter request → streamed chunks → tool calls → history → loop

``execute()`` is a lazy async generator.  Each chunk is produced only when
the caller asks for the next one; closing the generator (or simply no
longer iterating it) is the only way to cancel a run.

Chunk order: Text / ToolCall / provider Error chunks in emission order;
after the turn's stream has drained, one ToolResult or Error chunk per tool
call in call order; exactly one Done chunk last.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

from llm_streamloop.adapters.base import ProviderAdapter
from llm_streamloop.config import EngineConfig
from llm_streamloop.core.input import InputProcessor, LoopInput, input_processor
from llm_streamloop.core.options import (
    OperateOptions,
    max_turns_from_options,
    resolve_toolkit,
)
from llm_streamloop.core.tool_step import ToolExecutionStep
from llm_streamloop.errors import ConfigError, TooManyRequestsError
from llm_streamloop.events.bus import EventBus
from llm_streamloop.hooks import (
    HookRunner,
    ModelRequestContext,
    ModelResponseContext,
    hook_runner as default_hook_runner,
)
from llm_streamloop.retry.policy import NO_RETRY, RetryPolicy
from llm_streamloop.retry.wrapper import RetryContext, RetryWrapper
from llm_streamloop.tools.toolkit import Toolkit
from llm_streamloop.types import (
    DoneChunk,
    ErrorChunk,
    EventType,
    History,
    LoopEvent,
    OperateRequest,
    StreamChunk,
    TextChunk,
    ToolCallChunk,
    TurnResponse,
    Usage,
)

_logger = logging.getLogger(__name__)


@dataclass
class _LoopState:
    """Everything one ``execute()`` call owns.  Never shared."""

    history: History
    max_turns: int
    toolkit: Toolkit | None
    system: str | None = None
    instructions: str | None = None
    formatted_tools: Any = None
    formatted_format: Any = None
    turn: int = 0
    usage: list[Usage] = field(default_factory=list)


class StreamLoop:
    """Drives a provider adapter through streamed, tool-calling turns.

    Parameters
    ----------
    adapter:
        Provider adapter; shared and read-only.
    retry_policy:
        Policy used when ``OperateOptions.retry_policy`` is not set.
        Defaults to ``NO_RETRY``.
    toolkit:
        Toolkit used when ``OperateOptions.tools`` is not set.
    event_bus:
        Optional bus receiving ``LoopEvent``s.
    default_turns:
        Turn budget when ``OperateOptions.turns`` is not set.

    A single instance holds no per-run state and may serve concurrent
    ``execute()`` calls.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        retry_policy: RetryPolicy | None = None,
        toolkit: Toolkit | None = None,
        event_bus: EventBus | None = None,
        default_turns: int = 1,
        hook_runner: HookRunner | None = None,
        inputs: InputProcessor | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._adapter = adapter
        self._retry_policy = retry_policy or NO_RETRY
        self._toolkit = toolkit
        self._event_bus = event_bus
        self._default_turns = default_turns
        self._hooks = hook_runner or default_hook_runner
        self._inputs = inputs or input_processor
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        adapter: ProviderAdapter | None = None,
        toolkit: Toolkit | None = None,
        event_bus: EventBus | None = None,
    ) -> StreamLoop:
        """Build a loop from an ``EngineConfig``.

        Without an explicit *adapter*, an ``OpenAICompatibleAdapter`` for
        the active profile is created; ``close()`` releases its HTTP
        client.  With ``discover_tools`` set, plugin tools are registered
        on a copy of *toolkit*, leaving the caller's instance untouched.
        """
        if adapter is None:
            from llm_streamloop.adapters.openai_compat import OpenAICompatibleAdapter

            adapter = OpenAICompatibleAdapter(config.active_profile)

        if config.discover_tools:
            base = toolkit if toolkit is not None else Toolkit()
            toolkit = Toolkit(base.list_tools(), log=base.log)
            toolkit.discover()

        return cls(
            adapter,
            retry_policy=RetryPolicy.from_spec(config.retry),
            toolkit=toolkit,
            event_bus=event_bus,
            default_turns=config.turns,
        )

    async def close(self) -> None:
        """Close the provider adapter and any connections it holds."""
        await self._adapter.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(
        self,
        input: LoopInput,
        options: OperateOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Run the conversation, yielding stream chunks as they are produced.

        Raises ``BadGatewayError`` only when a turn's provider call fails
        before producing any output and cannot be retried; every other
        failure is reported in-band and the run still ends with Done.
        """
        options = options or OperateOptions()
        if not callable(getattr(self._adapter, "execute_stream_request", None)):
            raise ConfigError(f"Provider {self._adapter.name} does not support streaming")

        state = self._initialize_state(input, options)
        hooks = options.hooks
        retry = RetryWrapper(
            self._adapter.classify_error,
            options.retry_policy or self._retry_policy,
            hook_runner=self._hooks,
            event_bus=self._event_bus,
            sleep=self._sleep,
        )
        tool_step = (
            ToolExecutionStep(self._adapter, state.toolkit, self._hooks, self._event_bus)
            if state.toolkit is not None
            else None
        )
        model = options.model or self._adapter.default_model

        await self._emit(EventType.LOOP_STARTED, {
            "model": model,
            "max_turns": state.max_turns,
        })

        while state.turn < state.max_turns:
            request = self._build_request(state, options, model)
            provider_request = self._adapter.build_request(request)

            await self._hooks.run_before_model_request(hooks, ModelRequestContext(
                input=list(state.history),
                options=options,
                provider_request=provider_request,
            ))
            await self._emit(EventType.MODEL_REQUEST, {
                "turn": state.turn + 1,
                "model": model,
            })

            response = TurnResponse(model=model)
            text: list[str] = []
            context = RetryContext(
                input=list(state.history),
                options=options,
                provider_request=provider_request,
                hooks=hooks,
            )
            stream = retry.attempt(
                lambda: self._adapter.execute_stream_request(provider_request),
                context,
            )
            async with aclosing(stream):
                async for chunk in stream:
                    if isinstance(chunk, DoneChunk):
                        response.usage.extend(chunk.usage)
                        continue
                    if isinstance(chunk, TextChunk):
                        text.append(chunk.content)
                    elif isinstance(chunk, ToolCallChunk):
                        response.tool_calls.append(chunk.tool_call)
                    elif isinstance(chunk, ErrorChunk):
                        response.errors.append(chunk.error)
                    yield chunk

            state.turn += 1
            response.content = "".join(text)
            state.usage.extend(
                response.usage or [Usage(provider=self._adapter.name, model=model)]
            )
            if retry.interrupted:
                break

            await self._hooks.run_after_model_response(hooks, ModelResponseContext(
                content=response.content,
                input=list(state.history),
                options=options,
                provider_request=provider_request,
                usage=list(state.usage),
            ))
            await self._emit(EventType.MODEL_RESPONSE, {
                "turn": state.turn,
                "tool_calls": len(response.tool_calls),
                "content_length": len(response.content),
                "attempts": retry.attempts,
            })

            tool_calls = self._adapter.extract_tool_calls(response)
            if (
                tool_step is None
                or state.max_turns <= 1
                or not tool_calls
                or self._adapter.is_complete(response)
            ):
                break

            state.history.extend(self._adapter.response_to_history_items(response))
            for tool_call in tool_calls:
                outcome = await tool_step.run(tool_call, hooks)
                state.history.append(outcome.history_item)
                yield outcome.chunk

            if state.turn >= state.max_turns:
                error = TooManyRequestsError(
                    f"Model requested function call but exceeded {state.max_turns} turns"
                )
                _logger.warning(error.detail)
                await self._emit(EventType.TURN_LIMIT, {"max_turns": state.max_turns})
                yield ErrorChunk(error=error.to_info())
                break

        await self._emit(EventType.LOOP_DONE, {
            "turns": state.turn,
            "interrupted": retry.interrupted,
        })
        yield DoneChunk(usage=list(state.usage))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _initialize_state(self, input: LoopInput, options: OperateOptions) -> _LoopState:
        processed = self._inputs.process(input, options)
        toolkit = resolve_toolkit(options)
        if toolkit is None:
            toolkit = self._toolkit

        formatted_format = None
        if options.format is not None:
            formatted_format = self._adapter.format_output_schema(options.format)
        formatted_tools = None
        if toolkit is not None:
            formatted_tools = self._adapter.format_tools(toolkit, formatted_format)

        return _LoopState(
            history=processed.history,
            max_turns=max_turns_from_options(options, self._default_turns),
            toolkit=toolkit,
            system=processed.system,
            instructions=processed.instructions,
            formatted_tools=formatted_tools,
            formatted_format=formatted_format,
        )

    @staticmethod
    def _build_request(
        state: _LoopState, options: OperateOptions, model: str,
    ) -> OperateRequest:
        return OperateRequest(
            model=model,
            messages=list(state.history),
            system=state.system,
            instructions=state.instructions,
            tools=state.formatted_tools,
            format=state.formatted_format,
            temperature=options.temperature,
            provider_options=dict(options.provider_options or {}),
            user=options.user,
        )

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.emit(LoopEvent(type=event_type, data=data))
